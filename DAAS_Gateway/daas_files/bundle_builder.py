"""
Packs a {path: bytes} file set into one gzip-compressed tar archive.

Entries are written in sorted order with a fixed mtime, owner and mode, and
the gzip header carries no timestamp, so equal inputs give equal bytes in
practice. Nothing downstream relies on that: the storage backend computes
its own address for whatever it receives.
"""

import gzip
import io
import tarfile
from typing import Optional

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.crypto_engine import sha256_hex
from DAAS_Gateway.daas_shared.errors import EmptyBundleError
from DAAS_Gateway.daas_shared.types import FileInfo


def build_archive(file_set: dict[str, bytes], *, allow_empty: bool = False) -> bytes:
    if not file_set and not allow_empty:
        raise EmptyBundleError()

    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for path in sorted(file_set):
                data = file_set[path]
                info = tarfile.TarInfo(name=path)
                info.size = len(data)
                info.mtime = config.BUNDLE_FIXED_MTIME
                info.mode = config.BUNDLE_FILE_MODE
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def list_archive(archive: bytes) -> list[str]:
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
        return [m.name for m in tar.getmembers() if m.isfile()]


def extract_file(archive: bytes, target_path: str) -> Optional[bytes]:
    """Return the bytes of one entry, or None when the archive has no such file.

    An entry also matches when it sits under a single wrapper directory
    ('<root>/src/a.js' for 'src/a.js').
    """
    target = target_path.lstrip("/")
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
        for member in tar.getmembers():
            if not member.isfile():
                continue
            if member.name == target or member.name.endswith("/" + target):
                fh = tar.extractfile(member)
                return fh.read() if fh is not None else b""
    return None


def file_info(file_set: dict[str, bytes]) -> list[FileInfo]:
    return [
        FileInfo(path=path, size=len(data), sha256=sha256_hex(data))
        for path, data in sorted(file_set.items())
    ]


def total_size(file_set: dict[str, bytes]) -> int:
    return sum(len(data) for data in file_set.values())
