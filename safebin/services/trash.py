"""Facade wiring the trash components together for callers."""

from __future__ import annotations

import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from safebin.core.config import Settings
from safebin.monitoring.collector import MetricsCollector

from .batch import BatchContext
from .delete import DeleteEngine, DeleteResult
from .errors import ItemNotFoundError, RetentionError, TrashError, wrap_os_error
from .history import HISTORY_FILE_NAME, RestoreHistory, RestoreSession, RollbackReport
from .locator import TrashBackend, TrashLocator
from .metadata import MetadataStore, TrashedItem, TrashStats, path_size
from .restore import RestoreEngine, RestoreResult
from .validator import PathValidator

_SORT_KEYS: dict[str, Callable[[TrashedItem], Any]] = {
    "name": lambda item: item.name.lower(),
    "size": lambda item: item.size,
    "time": lambda item: item.deleted_time,
}


def sort_items(
    items: Iterable[TrashedItem],
    key: str | Callable[[TrashedItem], Any] = "time",
    reverse: bool = False,
) -> list[TrashedItem]:
    """Return ``items`` ordered by ``name``, ``size``, ``time`` or a key function."""

    if callable(key):
        sort_key = key
    else:
        try:
            sort_key = _SORT_KEYS[key]
        except KeyError:
            raise ValueError(f"Unknown sort key '{key}'; expected one of {sorted(_SORT_KEYS)}") from None
    return sorted(items, key=sort_key, reverse=reverse)


class SelectorKind(str, Enum):
    """How a restore request picks items out of the trash."""

    INDEX = "index"
    NAME = "name"
    PATTERN = "pattern"
    ALL = "all"


@dataclass(frozen=True, slots=True)
class RestoreSelector:
    """Which trashed items a restore applies to.

    ``index`` is 1-based into the default :meth:`TrashService.list` order,
    newest deletion first.
    """

    kind: SelectorKind
    value: str | int | None = None

    @classmethod
    def by_index(cls, index: int) -> RestoreSelector:
        return cls(SelectorKind.INDEX, index)

    @classmethod
    def by_name(cls, name: str) -> RestoreSelector:
        return cls(SelectorKind.NAME, name)

    @classmethod
    def by_pattern(cls, pattern: str) -> RestoreSelector:
        return cls(SelectorKind.PATTERN, pattern)

    @classmethod
    def all(cls) -> RestoreSelector:
        return cls(SelectorKind.ALL)


@dataclass(slots=True)
class EmptyReport:
    """Summary of a permanent removal from the trash."""

    purged_count: int
    total_bytes: int


class TrashService:
    """Delete, list, restore and purge against one trash root."""

    def __init__(
        self,
        settings: Settings,
        *,
        backend: TrashBackend,
        store: MetadataStore,
        metrics: MetricsCollector,
        history: RestoreHistory,
        delete_engine: DeleteEngine,
        restore_engine: RestoreEngine,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.store = store
        self.metrics = metrics
        self.history = history
        self.delete_engine = delete_engine
        self.restore_engine = restore_engine
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        platform: str = sys.platform,
        logger: logging.Logger | None = None,
    ) -> TrashService:
        """Build every component for ``settings`` and the given platform."""

        settings = settings or Settings()
        locator = TrashLocator(settings, platform=platform, logger=logger)
        backend = locator.backend()
        backend.ensure()

        metrics = MetricsCollector()
        store = MetadataStore(backend.root, checksum_max_bytes=settings.checksum_max_bytes, logger=logger)
        validator = PathValidator(
            settings.resolved_protected_paths,
            max_path_bytes=settings.max_path_bytes,
            logger=logger,
        )
        history = RestoreHistory(backend.metadata_dir / HISTORY_FILE_NAME, logger=logger)
        delete_engine = DeleteEngine(settings, validator, backend, store, metrics, logger=logger)
        restore_engine = RestoreEngine(
            settings,
            validator,
            backend,
            store,
            metrics,
            history=history,
            logger=logger,
        )
        return cls(
            settings,
            backend=backend,
            store=store,
            metrics=metrics,
            history=history,
            delete_engine=delete_engine,
            restore_engine=restore_engine,
            logger=logger,
        )

    @property
    def trash_root(self) -> Path:
        return self.backend.files_dir

    # ------------------------------------------------------------------
    # Delete / list
    # ------------------------------------------------------------------

    def delete(
        self,
        paths: Sequence[str | os.PathLike[str]],
        *,
        recursive: bool = False,
        dry_run: bool = False,
        ctx: BatchContext | None = None,
    ) -> list[DeleteResult]:
        return self.delete_engine.batch_delete_with_context(ctx, paths, recursive=recursive, dry_run=dry_run)

    def list(
        self,
        sort_by: str = "time",
        reverse: bool = True,
        pattern: str = "",
        *,
        include_untracked: bool = False,
    ) -> list[TrashedItem]:
        items = self.restore_engine.list_restorable(pattern, limit=0, include_untracked=include_untracked)
        return sort_items(items, sort_by, reverse)

    def select(self, selector: RestoreSelector) -> list[TrashedItem]:
        """Resolve ``selector`` to trashed items; raise when nothing matches."""

        items = self.list()
        if selector.kind is SelectorKind.ALL:
            selected = items
        elif selector.kind is SelectorKind.INDEX:
            try:
                index = int(selector.value)  # type: ignore[arg-type]
            except (TypeError, ValueError):
                raise ValueError(f"Index selector needs an integer, got {selector.value!r}") from None
            selected = [items[index - 1]] if 1 <= index <= len(items) else []
        elif selector.kind is SelectorKind.NAME:
            selected = [item for item in items if item.name == selector.value]
        else:
            selected = self.store.search(str(selector.value or ""))
            selected = sort_items(selected, "time", reverse=True)

        if not selected:
            raise ItemNotFoundError("select", f"{selector.kind.value}={selector.value}")
        return selected

    def restore(
        self,
        selector: RestoreSelector,
        target_dir: str | os.PathLike[str] | None = None,
        *,
        overwrite: bool | None = None,
        session_name: str | None = None,
        ctx: BatchContext | None = None,
    ) -> list[RestoreResult]:
        items = self.select(selector)
        return self.restore_engine.restore_batch(
            items,
            target_dir,
            overwrite=overwrite,
            ctx=ctx,
            session_name=session_name,
        )

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    def _check_retention(self, items: Sequence[TrashedItem], operation: str, force: bool) -> None:
        if force or self.settings.trash_retention_days <= 0 or not items:
            return

        retention = timedelta(days=self.settings.trash_retention_days)
        youngest = max(item.deleted_time for item in items)
        age = datetime.now(timezone.utc) - youngest
        if age < retention:
            self.logger.warning(
                "%s blocked; youngest item age %s below retention %s",
                operation,
                age,
                retention,
            )
            raise RetentionError(
                operation,
                str(self.trash_root),
                "trash still holds items within the mandatory retention window",
            )

    def _remove(self, path: Path, operation: str) -> int:
        try:
            size = path_size(path)
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as exc:
            raise wrap_os_error(operation, path, exc) from exc
        self.backend.forget(path)
        return size

    def empty(self, force: bool = False) -> EmptyReport:
        """Permanently remove all trash content and clear all metadata."""

        items = self.store.list() + self.restore_engine.untracked_items()
        self._check_retention(items, "empty", force)

        started = time.perf_counter()
        purged = 0
        total_bytes = 0
        try:
            for entry in list(self.backend.entries()):
                total_bytes += self._remove(entry, "empty")
                purged += 1
        except TrashError as exc:
            # Drop the records whose bytes are already gone so metadata matches disk
            self.store.cleanup(timedelta(0))
            self.metrics.record("empty", time.perf_counter() - started, success=False, error_kind=exc.kind.value)
            raise

        self.store.clear()
        self.metrics.record("empty", time.perf_counter() - started, success=True, size=total_bytes)
        self.logger.info(
            "Emptied trash at %s: %d items, %d bytes (force=%s)",
            self.trash_root,
            purged,
            total_bytes,
            force,
        )
        return EmptyReport(purged_count=purged, total_bytes=total_bytes)

    def purge(self, item_id: str, *, force: bool = False) -> EmptyReport:
        """Permanently remove a single trashed item."""

        item = self.store.lookup(item_id)
        if item is None:
            raise ItemNotFoundError("purge", item_id)
        self._check_retention([item], "purge", force)

        started = time.perf_counter()
        trash_path = Path(item.trash_path)
        try:
            removed = self._remove(trash_path, "purge") if os.path.lexists(trash_path) else 0
        except TrashError as exc:
            self.metrics.record("purge", time.perf_counter() - started, success=False, error_kind=exc.kind.value)
            raise
        self.store.remove(item_id)
        self.metrics.record("purge", time.perf_counter() - started, success=True, size=removed)
        self.logger.info("Purged %s (%s) from trash", item_id, item.name)
        return EmptyReport(purged_count=1, total_bytes=removed)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self, max_age: timedelta) -> int:
        """Remove orphaned metadata records older than ``max_age``."""

        return self.store.cleanup(max_age)

    def cleanup_sessions(self, max_age: timedelta) -> int:
        return self.history.cleanup_sessions(max_age)

    def stats(self) -> TrashStats:
        return self.store.stats()

    def sessions(self, limit: int | None = None) -> list[RestoreSession]:
        return self.history.list_sessions(limit)

    def rollback(self, session_id: str) -> RollbackReport:
        return self.history.rollback_session(session_id, self.delete_engine)


__all__ = [
    "EmptyReport",
    "RestoreSelector",
    "SelectorKind",
    "TrashService",
    "sort_items",
]
