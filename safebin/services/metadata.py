"""Trashed item records and their JSON metadata store."""

from __future__ import annotations

import fnmatch
import getpass
import hashlib
import json
import logging
import os
import stat
import tempfile
import threading
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .errors import ErrorKind, TrashError, wrap_os_error
from .locator import METADATA_DIR_NAME

METADATA_FILE_NAME = "deleted_files.json"
_HASH_CHUNK_SIZE = 1024 * 1024

_TYPE_BY_EXTENSION: dict[str, str] = {}
for _kind, _extensions in {
    "text": (".txt", ".md", ".rst", ".log", ".csv", ".ini", ".cfg", ".conf"),
    "image": (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".tif", ".tiff", ".ico"),
    "video": (".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm"),
    "audio": (".mp3", ".wav", ".flac", ".aac", ".ogg", ".m4a", ".wma"),
    "pdf": (".pdf",),
    "office": (".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp"),
    "archive": (".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz", ".tgz"),
    "executable": (".exe", ".msi", ".bat", ".cmd", ".sh", ".app", ".deb", ".rpm", ".bin"),
    "code": (
        ".py", ".go", ".js", ".ts", ".java", ".c", ".h", ".cpp", ".hpp", ".cs",
        ".rb", ".rs", ".php", ".html", ".css", ".json", ".xml", ".yaml", ".yml", ".toml", ".sql",
    ),
}.items():
    for _extension in _extensions:
        _TYPE_BY_EXTENSION[_extension] = _kind


def classify_type(name: str, is_dir: bool = False) -> str:
    """Return the coarse content kind of ``name`` judged by its extension."""

    if is_dir:
        return "directory"
    return _TYPE_BY_EXTENSION.get(os.path.splitext(name)[1].lower(), "file")


def make_item_id(original_path: str, modified: float) -> str:
    """Deterministic id derived from the original path and modification time."""

    return hashlib.md5(f"{original_path}_{int(modified)}".encode("utf-8")).hexdigest()


def file_checksum(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def path_size(path: Path) -> int:
    """Size of a file, or the recursive sum of regular files under a directory."""

    info = os.lstat(path)
    if not stat.S_ISDIR(info.st_mode):
        return info.st_size
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for filename in filenames:
            try:
                entry = os.lstat(os.path.join(dirpath, filename))
            except OSError:
                continue
            if stat.S_ISREG(entry.st_mode):
                total += entry.st_size
    return total


def write_json_atomic(path: Path, payload: Any, *, operation: str) -> None:
    """Write ``payload`` as JSON next to ``path`` and swap it in with one rename."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as exc:
        raise wrap_os_error(operation, path, exc) from exc


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError, ImportError):
        return "unknown"


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TrashedItem:
    """A path that has been moved into the trash."""

    id: str
    original_path: str
    trash_path: str
    name: str
    size: int = 0
    type: str = "file"
    checksum: str | None = None
    deleted_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_by: str = "unknown"
    permissions: str = ""
    restore_attempts: int = 0
    last_restore_time: datetime | None = None
    tracked: bool = True

    @property
    def is_dir(self) -> bool:
        return self.type == "directory"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON storage."""
        return {
            "id": self.id,
            "originalPath": self.original_path,
            "trashPath": self.trash_path,
            "name": self.name,
            "size": self.size,
            "type": self.type,
            "checksum": self.checksum,
            "deletedTime": self.deleted_time.isoformat(),
            "deletedBy": self.deleted_by,
            "permissions": self.permissions,
            "restoreAttempts": self.restore_attempts,
            "lastRestoreTime": self.last_restore_time.isoformat() if self.last_restore_time else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrashedItem:
        """Create TrashedItem from dictionary."""
        return cls(
            id=data.get("id", ""),
            original_path=data.get("originalPath", ""),
            trash_path=data.get("trashPath", ""),
            name=data.get("name", ""),
            size=int(data.get("size") or 0),
            type=data.get("type") or "file",
            checksum=data.get("checksum") or None,
            deleted_time=_parse_time(data.get("deletedTime")) or datetime.now(timezone.utc),
            deleted_by=data.get("deletedBy") or "unknown",
            permissions=data.get("permissions") or "",
            restore_attempts=int(data.get("restoreAttempts") or 0),
            last_restore_time=_parse_time(data.get("lastRestoreTime")),
        )


def matches_pattern(item: TrashedItem, pattern: str) -> bool:
    """Name glob, case-insensitive path substring or exact type; empty matches all."""

    if not pattern:
        return True
    lowered = pattern.lower()
    return (
        fnmatch.fnmatch(item.name.lower(), lowered)
        or lowered in item.original_path.lower()
        or item.type == lowered
    )


@dataclass(slots=True)
class TrashStats:
    """Aggregate view over the records in a store."""

    item_count: int
    total_size: int
    by_type: dict[str, int]
    oldest_deleted_time: datetime | None
    newest_deleted_time: datetime | None


class MetadataStore:
    """JSON-backed record of every trashed item.

    The whole record set lives in ``<root>/.metadata/deleted_files.json``.
    Every mutation reloads the file, applies the change and atomically
    rewrites it, all under a single per-instance lock. The file is re-read
    whenever its modification time changes, so writes from another process
    become visible on the next call, but concurrent writers in separate
    processes are not coordinated.
    """

    def __init__(
        self,
        root: Path,
        *,
        checksum_max_bytes: int = 100 * 1024 * 1024,
        logger: logging.Logger | None = None,
    ) -> None:
        self.root = Path(root)
        self.path = self.root / METADATA_DIR_NAME / METADATA_FILE_NAME
        self.checksum_max_bytes = checksum_max_bytes
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._items: dict[str, TrashedItem] = {}
        self._loaded_mtime: tuple[int, int, int] | None = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _current_mtime(self) -> tuple[int, int, int] | None:
        try:
            info = self.path.stat()
        except FileNotFoundError:
            return None
        return info.st_mtime_ns, info.st_size, info.st_ino

    def _load(self) -> None:
        mtime = self._current_mtime()
        if mtime is not None and mtime == self._loaded_mtime:
            return
        if mtime is None:
            self._items = {}
            self._loaded_mtime = None
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as exc:
            raise TrashError(
                ErrorKind.UNKNOWN,
                "load_metadata",
                str(self.path),
                f"corrupt metadata file: {exc}",
                cause=exc,
            ) from exc
        except OSError as exc:
            raise wrap_os_error("load_metadata", self.path, exc) from exc

        if not isinstance(raw, list):
            raise TrashError(
                ErrorKind.UNKNOWN,
                "load_metadata",
                str(self.path),
                "metadata file must contain a JSON array",
            )

        items: dict[str, TrashedItem] = {}
        for entry in raw:
            item = TrashedItem.from_dict(entry)
            items[item.id] = item
        self._items = items
        self._loaded_mtime = mtime

    def _save(self, items: dict[str, TrashedItem]) -> None:
        """Persist ``items`` and adopt them as the cached state only once the write landed."""

        write_json_atomic(self.path, [item.to_dict() for item in items.values()], operation="save_metadata")
        self._items = items
        self._loaded_mtime = self._current_mtime()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record(self, original_path: str | Path, trash_path: str | Path, info: os.stat_result) -> TrashedItem:
        """Build and persist the record for an object just moved into the trash."""

        original = str(original_path)
        trashed = Path(trash_path)
        is_dir = stat.S_ISDIR(info.st_mode)
        name = os.path.basename(original.rstrip("/\\")) or trashed.name

        try:
            size = path_size(trashed) if is_dir else info.st_size
            checksum = None
            if stat.S_ISREG(info.st_mode) and info.st_size < self.checksum_max_bytes:
                checksum = file_checksum(trashed)
        except OSError as exc:
            raise wrap_os_error("record_metadata", trashed, exc) from exc

        item = TrashedItem(
            id=make_item_id(original, info.st_mtime),
            original_path=original,
            trash_path=str(trashed),
            name=name,
            size=size,
            type=classify_type(name, is_dir),
            checksum=checksum,
            deleted_by=current_user(),
            permissions=stat.filemode(info.st_mode),
        )

        with self._lock:
            self._load()
            base_id, counter = item.id, 0
            while item.id in self._items and self._items[item.id].trash_path != item.trash_path:
                counter += 1
                item.id = make_item_id(base_id, counter)
            self._save({**self._items, item.id: item})

        self.logger.debug("Recorded %s as %s", original, item.id)
        return replace(item)

    def remove(self, item_id: str) -> bool:
        """Detach a record; the trashed bytes are left alone."""

        with self._lock:
            self._load()
            if item_id not in self._items:
                return False
            self._save({key: value for key, value in self._items.items() if key != item_id})
        return True

    def record_restore_attempt(self, item_id: str) -> TrashedItem | None:
        with self._lock:
            self._load()
            current = self._items.get(item_id)
            if current is None:
                return None
            item = replace(
                current,
                restore_attempts=current.restore_attempts + 1,
                last_restore_time=datetime.now(timezone.utc),
            )
            self._save({**self._items, item_id: item})
            return replace(item)

    def cleanup(self, max_age: timedelta, *, now: datetime | None = None) -> int:
        """Drop records older than ``max_age`` whose trash object no longer exists."""

        reference = now or datetime.now(timezone.utc)
        with self._lock:
            self._load()
            stale = {
                item_id
                for item_id, item in self._items.items()
                if reference - item.deleted_time > max_age and not os.path.lexists(item.trash_path)
            }
            if stale:
                self._save({key: value for key, value in self._items.items() if key not in stale})

        if stale:
            self.logger.info("Removed %d orphaned metadata records", len(stale))
        return len(stale)

    def clear(self) -> int:
        with self._lock:
            self._load()
            count = len(self._items)
            self._save({})
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lookup(self, item_id: str) -> TrashedItem | None:
        with self._lock:
            self._load()
            item = self._items.get(item_id)
            return replace(item) if item is not None else None

    def list(self) -> list[TrashedItem]:
        with self._lock:
            self._load()
            return [replace(item) for item in self._items.values()]

    def search(self, pattern: str) -> list[TrashedItem]:
        """Match by name glob, case-insensitive path substring or exact type."""

        return [item for item in self.list() if matches_pattern(item, pattern)]

    def stats(self) -> TrashStats:
        items = self.list()
        times = [item.deleted_time for item in items]
        return TrashStats(
            item_count=len(items),
            total_size=sum(item.size for item in items),
            by_type=dict(Counter(item.type for item in items)),
            oldest_deleted_time=min(times) if times else None,
            newest_deleted_time=max(times) if times else None,
        )


__all__ = [
    "METADATA_FILE_NAME",
    "TrashedItem",
    "TrashStats",
    "MetadataStore",
    "classify_type",
    "make_item_id",
    "file_checksum",
    "path_size",
    "matches_pattern",
    "write_json_atomic",
]
