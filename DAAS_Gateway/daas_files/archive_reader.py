"""Expands an uploaded .zip / .tar.gz / .tgz into UploadedFile entries."""

import io
import tarfile
import zipfile

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.errors import BundleTooLargeError, ValidationError
from DAAS_Gateway.daas_shared.types import UploadedFile

MAX_EXPANDED_BYTES = config.CODE_BUNDLE_MAX_BYTES + config.SECRET_BUNDLE_MAX_BYTES


def is_archive_name(filename: str) -> bool:
    return (filename or "").lower().endswith(config.ARCHIVE_SUFFIXES)


def _strip(name: str, components: int) -> str:
    parts = name.split("/")
    return "/".join(parts[components:])


def read_zip(data: bytes) -> list[UploadedFile]:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            entries = [info for info in zf.infolist() if not info.is_dir()]
            expanded = sum(info.file_size for info in entries)
            if expanded > MAX_EXPANDED_BYTES:
                raise BundleTooLargeError("archive", expanded, MAX_EXPANDED_BYTES)
            return [UploadedFile(path=info.filename, data=zf.read(info)) for info in entries]
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
        raise ValidationError("archive", f"Unreadable zip archive: {e}")


def read_tarball(data: bytes, *, strip_components: int = 0) -> list[UploadedFile]:
    files = []
    expanded = 0
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                path = _strip(member.name, strip_components)
                if not path:
                    continue
                expanded += member.size
                if expanded > MAX_EXPANDED_BYTES:
                    raise BundleTooLargeError("archive", expanded, MAX_EXPANDED_BYTES)
                fh = tar.extractfile(member)
                files.append(UploadedFile(path=path, data=fh.read() if fh is not None else b""))
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ValidationError("archive", f"Unreadable tar archive: {e}")
    return files


def read_archive(filename: str, data: bytes) -> list[UploadedFile]:
    if filename.lower().endswith(".zip"):
        return read_zip(data)
    return read_tarball(data)
