"""Trash root resolution and platform move-to-trash backends."""

from __future__ import annotations

import configparser
import logging
import os
import shutil
import sys
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Iterator
from urllib.parse import quote, unquote

from safebin.core.config import Settings

from .errors import UnsupportedPlatformError, wrap_os_error

METADATA_DIR_NAME = ".metadata"
_TRASHINFO_SUFFIX = ".trashinfo"
_TRASHINFO_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _make_root(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
        if os.name == "posix":
            path.chmod(0o700)
    except OSError as exc:
        raise wrap_os_error("create_trash_root", path, exc) from exc
    return path


class TrashBackend(ABC):
    """Platform capability moving a path into the trash."""

    name = "base"

    def __init__(self, files_dir: Path, *, logger: logging.Logger | None = None) -> None:
        self.files_dir = Path(files_dir)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def root(self) -> Path:
        """Directory whose ``.metadata`` child holds the metadata files."""
        return self.files_dir

    @property
    def metadata_dir(self) -> Path:
        return self.root / METADATA_DIR_NAME

    @abstractmethod
    def ensure(self) -> Path:
        """Create the trash location if needed and return the files directory."""

    @abstractmethod
    def move_to_trash(self, path: Path) -> Path:
        """Move ``path`` into the trash and return where it landed."""

    def forget(self, trash_path: Path) -> None:
        """Drop any side-car information once ``trash_path`` leaves the trash."""

    def read_origin(self, trash_path: Path) -> str | None:
        """Return the recorded original location of an untracked entry, if known."""

        return None

    def entries(self) -> Iterator[Path]:
        """Yield every object physically present in the trash."""

        if not self.files_dir.is_dir():
            return
        for entry in sorted(self.files_dir.iterdir()):
            if entry.name == METADATA_DIR_NAME:
                continue
            yield entry


class DirectoryTrashBackend(TrashBackend):
    """Move-to-trash backed by a plain directory.

    Colliding names become ``stem_1.ext``, ``stem_2.ext`` and so on. Names are
    reserved under a lock before the move so that concurrent moves within a
    process never pick the same target, and an existing trashed object is
    never overwritten.
    """

    name = "directory"

    def __init__(self, files_dir: Path, *, logger: logging.Logger | None = None) -> None:
        super().__init__(files_dir, logger=logger)
        self._lock = threading.Lock()
        self._reserved: set[str] = set()

    def ensure(self) -> Path:
        return _make_root(self.files_dir)

    def _reserve_name(self, name: str) -> Path:
        stem, ext = os.path.splitext(name)
        if not stem:
            stem, ext = name, ""
        with self._lock:
            candidate = name
            counter = 0
            while (
                candidate == METADATA_DIR_NAME
                or candidate in self._reserved
                or os.path.lexists(self.files_dir / candidate)
            ):
                counter += 1
                candidate = f"{stem}_{counter}{ext}"
            self._reserved.add(candidate)
        return self.files_dir / candidate

    def _release_name(self, target: Path) -> None:
        with self._lock:
            self._reserved.discard(target.name)

    def move_to_trash(self, path: Path) -> Path:
        self.ensure()
        target = self._reserve_name(Path(path).name)
        try:
            self._before_move(Path(path), target)
            shutil.move(os.fspath(path), os.fspath(target))
        except OSError as exc:
            self._discard_info(target)
            raise wrap_os_error("move_to_trash", path, exc) from exc
        finally:
            self._release_name(target)
        self.logger.debug("Moved %s to %s", path, target)
        return target

    def _before_move(self, source: Path, target: Path) -> None:
        """Hook for backends that write side-car information."""

    def _discard_info(self, target: Path) -> None:
        """Hook removing side-car information for ``target``."""

    def forget(self, trash_path: Path) -> None:
        self._discard_info(Path(trash_path))


class XdgTrashBackend(DirectoryTrashBackend):
    """Freedesktop.org trash: ``files/`` plus ``info/<name>.trashinfo`` side-cars."""

    name = "xdg"

    def __init__(self, trash_dir: Path, *, logger: logging.Logger | None = None) -> None:
        super().__init__(Path(trash_dir) / "files", logger=logger)
        self.trash_dir = Path(trash_dir)
        self.info_dir = self.trash_dir / "info"

    def ensure(self) -> Path:
        _make_root(self.trash_dir)
        _make_root(self.info_dir)
        return _make_root(self.files_dir)

    def _info_path(self, trash_path: Path) -> Path:
        return self.info_dir / f"{trash_path.name}{_TRASHINFO_SUFFIX}"

    def _before_move(self, source: Path, target: Path) -> None:
        deleted = datetime.now().strftime(_TRASHINFO_DATE_FORMAT)
        content = (
            "[Trash Info]\n"
            f"Path={quote(os.fspath(source.absolute()))}\n"
            f"DeletionDate={deleted}\n"
        )
        self._info_path(target).write_text(content, encoding="utf-8")

    def _discard_info(self, target: Path) -> None:
        try:
            self._info_path(target).unlink(missing_ok=True)
        except OSError as exc:
            self.logger.warning("Failed removing trash info for %s: %s", target, exc)

    def read_origin(self, trash_path: Path) -> str | None:
        info_path = self._info_path(Path(trash_path))
        if not info_path.is_file():
            return None
        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read(info_path, encoding="utf-8")
            value = parser.get("Trash Info", "Path", fallback=None)
        except configparser.Error as exc:
            self.logger.warning("Unreadable trash info %s: %s", info_path, exc)
            return None
        return unquote(value) if value else None


class TrashLocator:
    """Resolve the platform trash location and pick its backend once."""

    def __init__(
        self,
        settings: Settings,
        *,
        platform: str = sys.platform,
        environ: dict[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.platform = platform
        self.environ = os.environ if environ is None else environ
        self.logger = logger or logging.getLogger(__name__)
        self._backend: TrashBackend | None = None

    def _home(self) -> Path:
        home = self.environ.get("HOME") or self.environ.get("USERPROFILE")
        return Path(home) if home else Path.home()

    def _select_backend(self) -> TrashBackend:
        if self.settings.trash_root is not None:
            return DirectoryTrashBackend(Path(self.settings.trash_root).expanduser(), logger=self.logger)

        if self.platform.startswith("win"):
            appdata = self.environ.get("APPDATA")
            base = Path(appdata) if appdata else self._home() / "AppData" / "Roaming"
            return DirectoryTrashBackend(base / self.settings.app_name / "Trash", logger=self.logger)
        if self.platform == "darwin":
            return DirectoryTrashBackend(self._home() / ".Trash", logger=self.logger)
        if self.platform.startswith(("linux", "freebsd", "openbsd", "netbsd")):
            data_home = self.environ.get("XDG_DATA_HOME")
            base = Path(data_home) if data_home else self._home() / ".local" / "share"
            return XdgTrashBackend(base / "Trash", logger=self.logger)

        raise UnsupportedPlatformError(self.platform)

    def backend(self) -> TrashBackend:
        if self._backend is None:
            self._backend = self._select_backend()
            self.logger.info(
                "Using %s trash backend at %s",
                self._backend.name,
                self._backend.files_dir,
            )
        return self._backend

    def resolve(self) -> Path:
        """Return the trash root, creating it on first use."""

        return self.backend().ensure()


__all__ = [
    "METADATA_DIR_NAME",
    "TrashBackend",
    "DirectoryTrashBackend",
    "XdgTrashBackend",
    "TrashLocator",
]
