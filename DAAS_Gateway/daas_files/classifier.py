"""
Splits an uploaded file set into secret, code and ignored partitions.

Order of checks for every path:
    unsafe path (absolute, empty, '..')      → ignored
    built-in deny list / caller patterns     → ignored
    secrets heuristic (.env*, credentials)   → secret
    everything else                          → code

Classification never raises. Rejecting an empty code set is the caller's job.
"""

import logging
import posixpath
import re
from collections.abc import Iterable
from typing import Optional

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.types import ClassifiedBundle, UploadedFile
from DAAS_Gateway.daas_files.file_tree import build_file_tree, detect_project_type

logger = logging.getLogger(__name__)

_SECRET_ENV_RE = re.compile(config.SECRET_ENV_PATTERN)


def normalize_path(path: str) -> Optional[str]:
    """Return a clean relative posix path, or None if the path is unsafe."""
    if not isinstance(path, str):
        return None
    p = path.replace("\\", "/")
    if p.startswith("/"):
        return None
    parts = [s for s in p.split("/") if s not in ("", ".")]
    if not parts or ".." in parts:
        return None
    return "/".join(parts)


def _glob_to_regex(glob: str) -> re.Pattern:
    out = []
    i = 0
    while i < len(glob):
        if glob.startswith("**", i):
            out.append(".*")
            i += 2
        elif glob[i] == "*":
            out.append("[^/]*")
            i += 1
        else:
            out.append(re.escape(glob[i]))
            i += 1
    return re.compile("(?:^|/)" + "".join(out) + "$")


class IgnoreRule:
    """One ignore pattern.

    'dir/'   matches any path containing that directory segment
    '*.log'  wildcard, '*' stays inside one segment, '**' crosses segments
    'text'   plain substring match
    '!rule'  re-includes a path an earlier rule ignored
    """

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.negated = pattern.startswith("!")
        body = pattern[1:] if self.negated else pattern

        if body.endswith("/"):
            self.kind = "dir"
            self.body = "/" + body.lstrip("/")
        elif "*" in body:
            self.kind = "glob"
            self.body = body
            self._regex = _glob_to_regex(body)
        else:
            self.kind = "substring"
            self.body = body

    def matches(self, path: str) -> bool:
        if self.kind == "dir":
            return self.body in "/" + path
        if self.kind == "glob":
            return self._regex.search(path) is not None
        return self.body in path


def _compile_rules(patterns: Iterable[str]) -> list[IgnoreRule]:
    rules = []
    for pattern in patterns:
        if not isinstance(pattern, str):
            continue
        pattern = pattern.strip()
        # a blank pattern would substring-match every path
        if not pattern or pattern == "!":
            continue
        rules.append(IgnoreRule(pattern))
    return rules


class FileClassifier:
    def __init__(self, ignore_patterns: Optional[Iterable[str]] = None, *, use_default_ignores: bool = True):
        patterns = list(config.DEFAULT_IGNORE_PATTERNS) if use_default_ignores else []
        patterns.extend(ignore_patterns or [])
        self._rules = _compile_rules(patterns)

    def should_ignore(self, path: str) -> bool:
        ignored = False
        for rule in self._rules:
            if rule.negated:
                if ignored and rule.matches(path):
                    ignored = False
            elif not ignored and rule.matches(path):
                ignored = True
        return ignored

    def is_secret(self, path: str) -> bool:
        base = posixpath.basename(path)

        if _SECRET_ENV_RE.match(base):
            return not base.endswith(config.SECRET_EXCLUDE_SUFFIXES)
        if base in config.CREDENTIAL_FILENAMES:
            return True
        return posixpath.splitext(base)[1].lower() in config.KEY_MATERIAL_EXTENSIONS

    def classify(self, files: Iterable[UploadedFile]) -> ClassifiedBundle:
        secret_files: dict[str, bytes] = {}
        code_files: dict[str, bytes] = {}
        ignored: list[str] = []

        for f in files:
            path = normalize_path(f.path)

            if path is None or self.should_ignore(path):
                key = path if path is not None else f.path
                if key not in ignored:
                    ignored.append(key)
                logger.debug("ignored %s", f.path)
                continue

            # duplicate paths: last write wins
            if self.is_secret(path):
                secret_files[path] = f.data
                logger.debug("secret %s", path)
            else:
                code_files[path] = f.data
                logger.debug("code %s", path)

        all_files = {**code_files, **secret_files}
        bundle = ClassifiedBundle(
            secret_files=secret_files,
            code_files=code_files,
            ignored=ignored,
            file_tree=build_file_tree(all_files),
            project_type=detect_project_type(code_files),
            total_files=len(all_files),
        )
        logger.info(
            "classified %d files: code=%d secrets=%d ignored=%d type=%s",
            bundle.total_files + len(ignored), len(code_files), len(secret_files), len(ignored), bundle.project_type,
        )
        return bundle


def classify(files: Iterable[UploadedFile], ignore_patterns: Optional[Iterable[str]] = None) -> ClassifiedBundle:
    return FileClassifier(ignore_patterns).classify(files)
