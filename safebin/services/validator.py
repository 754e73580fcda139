"""Path validation guarding every delete and restore."""

from __future__ import annotations

import logging
import os
import re
import sys
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from .errors import ErrorKind, SecurityError

_ENCODED_TRAVERSAL = re.compile(r"%2e%2e|%2f|%5c", re.IGNORECASE)
_DOUBLE_SEPARATOR = re.compile(r"[\\/]{2,}")


class PathIntent(str, Enum):
    """What the validated path is about to be used for."""

    DELETE = "delete"
    RESTORE = "restore"


def _windows_in_use(path: str) -> bool:
    if not os.path.isfile(path):
        return False
    try:
        with open(path, "r+b"):
            pass
    except PermissionError as exc:
        # ERROR_SHARING_VIOLATION / ERROR_LOCK_VIOLATION while another process holds the file
        return getattr(exc, "winerror", None) in (32, 33)
    except OSError:
        return False
    return False


def _posix_in_use(path: str) -> bool:
    return False


# POSIX has no mandatory locks, so only Windows can detect a busy destination
_IN_USE_PROBE: Callable[[str], bool] = _windows_in_use if sys.platform.startswith("win") else _posix_in_use


class PathValidator:
    """Reject paths that are malformed, traverse upward or touch protected locations.

    ``validate`` never mutates the filesystem; it returns the normalized
    absolute path the caller should operate on.
    """

    def __init__(
        self,
        protected_paths: Iterable[str],
        *,
        max_path_bytes: int = 4096,
        home: str | None = None,
        in_use_probe: Callable[[str], bool] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_path_bytes = max_path_bytes
        self.logger = logger or logging.getLogger(__name__)
        self._in_use = in_use_probe or _IN_USE_PROBE
        protected: set[str] = set()
        for entry in protected_paths:
            if not entry or not entry.strip():
                continue
            normalized = self._normalize(entry)
            # /bin -> /usr/bin style aliases are protected under both spellings
            protected.add(self._key(normalized))
            protected.add(self._key(os.path.realpath(normalized)))
        self._protected = sorted(protected)
        home_dir = home if home is not None else os.path.expanduser("~")
        self._home = self._key(self._normalize(home_dir)) if home_dir and home_dir != "~" else None

    @staticmethod
    def _normalize(raw: str) -> str:
        expanded = os.path.expanduser(os.path.expandvars(raw))
        expanded = expanded.replace("/", os.sep).replace("\\", os.sep)
        return os.path.abspath(expanded)

    @staticmethod
    def _key(path: str) -> str:
        return os.path.normcase(path).rstrip(os.sep) or os.sep

    def _fail(self, kind: ErrorKind, intent: PathIntent, path: str, reason: str) -> SecurityError:
        self.logger.warning("Rejected %s path %r: %s", intent.value, path, reason)
        return SecurityError(kind, f"validate_{intent.value}", path, reason)

    def _check_traversal(self, path: str, intent: PathIntent, stage: str) -> None:
        segments = re.split(r"[\\/]", path)
        if ".." in segments:
            raise self._fail(ErrorKind.PATH_TRAVERSAL, intent, path, f"parent directory segment in {stage} path")

        body = path
        if sys.platform.startswith("win") and body.startswith("\\\\"):
            body = body[2:]
        if _DOUBLE_SEPARATOR.search(body):
            raise self._fail(ErrorKind.PATH_TRAVERSAL, intent, path, f"repeated separator in {stage} path")

        if _ENCODED_TRAVERSAL.search(path):
            raise self._fail(ErrorKind.PATH_TRAVERSAL, intent, path, f"encoded traversal sequence in {stage} path")

    def _is_protected(self, key: str) -> bool:
        if os.path.dirname(key) == key:
            return True
        prefix = key.rstrip(os.sep) + os.sep
        if self._home is not None and (key == self._home or self._home.startswith(prefix)):
            return True
        for protected in self._protected:
            # Inside a protected location, or an ancestor that would take one along
            if key == protected or key.startswith(protected + os.sep) or protected.startswith(prefix):
                return True
        return False

    @staticmethod
    def _resolved_candidates(normalized: str) -> list[str]:
        candidates = [normalized]
        if os.path.islink(normalized):
            target = os.readlink(normalized)
            if not os.path.isabs(target):
                target = os.path.join(os.path.dirname(normalized), target)
            candidates.append(os.path.normpath(target))
        parent, name = os.path.split(normalized)
        # Symlinked parent directories redirect the final component elsewhere
        candidates.append(os.path.join(os.path.realpath(parent), name))
        candidates.append(os.path.realpath(normalized))
        return list(dict.fromkeys(candidates))

    def validate(self, path: str | os.PathLike[str], intent: PathIntent = PathIntent.DELETE) -> Path:
        raw = os.fspath(path)

        if not raw or not raw.strip():
            raise self._fail(ErrorKind.INVALID_PATH, intent, raw, "empty path")
        if "\x00" in raw:
            raise self._fail(ErrorKind.INVALID_PATH, intent, raw, "path contains NUL byte")
        if len(raw.encode("utf-8", "surrogateescape")) > self.max_path_bytes:
            raise self._fail(
                ErrorKind.INVALID_PATH,
                intent,
                raw,
                f"path exceeds {self.max_path_bytes} bytes",
            )

        self._check_traversal(raw, intent, "raw")
        normalized = self._normalize(raw)
        self._check_traversal(normalized, intent, "normalized")

        for candidate in self._resolved_candidates(normalized):
            if self._is_protected(self._key(candidate)):
                raise self._fail(ErrorKind.PROTECTED_PATH, intent, raw, "path is a protected system location")

        if intent is PathIntent.RESTORE and self._in_use(normalized):
            raise self._fail(ErrorKind.FILE_IN_USE, intent, raw, "destination is in use by another process")

        return Path(normalized)


__all__ = ["PathIntent", "PathValidator"]
