"""Move trashed items back, protecting whatever already sits at the destination."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence

from safebin.core.config import Settings
from safebin.monitoring.collector import MetricsCollector

from .batch import BatchContext, run_bounded
from .delete import skipped_error
from .errors import ErrorKind, TrashError, VerificationError, wrap_os_error
from .history import RestoreHistory, RestoreRecord
from .locator import TrashBackend
from .metadata import (
    MetadataStore,
    TrashedItem,
    classify_type,
    file_checksum,
    make_item_id,
    matches_pattern,
    path_size,
)
from .validator import PathIntent, PathValidator

_BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass
class RestoreResult:
    """Outcome of restoring one trashed item.

    ``integrity`` tells how the restored bytes were checked: ``checksum``
    compares content hashes, ``size`` only compares sizes (large files are
    recorded without a checksum), ``skipped`` means verification was off or
    never reached.

    ``history_error`` is set when the restore went through but could not be
    written to its session log.
    """

    path: str
    item_id: str
    success: bool
    restored_path: str | None = None
    backup_path: str | None = None
    integrity: str = "skipped"
    error: TrashError | None = None
    session_id: str | None = None
    history_error: TrashError | None = None

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


class RestoreEngine:
    """Restore trashed items one at a time or as a bounded batch."""

    def __init__(
        self,
        settings: Settings,
        validator: PathValidator,
        backend: TrashBackend,
        store: MetadataStore,
        metrics: MetricsCollector,
        *,
        history: RestoreHistory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.validator = validator
        self.backend = backend
        self.store = store
        self.metrics = metrics
        self.history = history
        self.logger = logger or logging.getLogger(__name__)
        self._slots = threading.BoundedSemaphore(settings.restore_max_concurrency)
        # destination key -> (lock, number of restores holding or waiting on it)
        self._destination_locks: dict[str, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _untracked_item(self, entry: Path) -> TrashedItem | None:
        try:
            info = os.lstat(entry)
            size = path_size(entry)
        except OSError as exc:
            self.logger.warning("Skipping unreadable trash entry %s: %s", entry, exc)
            return None

        origin = self.backend.read_origin(entry) or ""
        name = os.path.basename(origin) if origin else entry.name
        is_dir = stat.S_ISDIR(info.st_mode)
        return TrashedItem(
            id=make_item_id(str(entry), info.st_mtime),
            original_path=origin,
            trash_path=str(entry),
            name=name,
            size=size,
            type=classify_type(name, is_dir),
            deleted_time=datetime.fromtimestamp(info.st_ctime, tz=timezone.utc),
            permissions=stat.filemode(info.st_mode),
            tracked=False,
        )

    def untracked_items(self) -> list[TrashedItem]:
        """Objects physically in the trash that have no metadata record."""

        tracked = {os.path.normcase(item.trash_path) for item in self.store.list()}
        items = []
        for entry in self.backend.entries():
            if os.path.normcase(str(entry)) in tracked:
                continue
            item = self._untracked_item(entry)
            if item is not None:
                items.append(item)
        return items

    def list_restorable(
        self,
        pattern: str = "",
        limit: int | None = None,
        *,
        include_untracked: bool = False,
    ) -> list[TrashedItem]:
        """Items that can be restored, newest first, optionally capped at ``limit``."""

        items = self.store.search(pattern)
        if include_untracked:
            items.extend(item for item in self.untracked_items() if matches_pattern(item, pattern))
        items.sort(key=lambda item: item.deleted_time, reverse=True)

        cap = limit if limit is not None else self.settings.restore_list_limit
        return items[:cap] if cap else items

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    @contextmanager
    def _destination_lock(self, destination: Path) -> Iterator[None]:
        key = os.path.normcase(os.fspath(destination))
        with self._locks_guard:
            lock, users = self._destination_locks.get(key, (threading.Lock(), 0))
            self._destination_locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._destination_locks[key]
                if users == 1:
                    del self._destination_locks[key]
                else:
                    self._destination_locks[key] = (lock, users - 1)

    def _backup_existing(self, destination: Path) -> Path:
        stamp = datetime.now().strftime(_BACKUP_TIMESTAMP_FORMAT)
        backup = destination.with_name(f"{destination.name}.backup.{stamp}")
        counter = 0
        while os.path.lexists(backup):
            counter += 1
            backup = destination.with_name(f"{destination.name}.backup.{stamp}_{counter}")
        try:
            shutil.move(os.fspath(destination), os.fspath(backup))
        except OSError as exc:
            raise wrap_os_error("backup_existing", destination, exc) from exc
        self.logger.info("Backed up existing %s to %s", destination, backup)
        return backup

    def _remove_existing(self, destination: Path) -> None:
        try:
            if destination.is_dir() and not destination.is_symlink():
                shutil.rmtree(destination)
            else:
                destination.unlink()
        except OSError as exc:
            raise wrap_os_error("overwrite_existing", destination, exc) from exc
        self.logger.info("Overwrote existing %s", destination)

    def _verify(self, item: TrashedItem, destination: Path) -> str:
        try:
            actual_size = path_size(destination)
            if actual_size != item.size:
                raise VerificationError(
                    str(destination),
                    f"size mismatch: recorded {item.size} bytes, restored {actual_size} bytes",
                )
            if item.checksum and destination.is_file():
                if file_checksum(destination) != item.checksum:
                    raise VerificationError(str(destination), "checksum mismatch")
                return "checksum"
        except OSError as exc:
            raise wrap_os_error("verify", destination, exc) from exc
        return "size"

    def _destination_for(self, item: TrashedItem, target_dir: str | os.PathLike[str] | None) -> str:
        if target_dir is not None:
            return os.path.join(os.fspath(target_dir), item.name)
        if item.original_path:
            return item.original_path
        raise TrashError(
            ErrorKind.INVALID_PATH,
            "restore",
            item.trash_path,
            "original location is unknown; a target directory is required",
        )

    def _restore(
        self,
        item: TrashedItem,
        target_dir: str | os.PathLike[str] | None,
        overwrite: bool,
        verify: bool,
    ) -> RestoreResult:
        destination = self.validator.validate(self._destination_for(item, target_dir), PathIntent.RESTORE)
        trash_path = Path(item.trash_path)
        if not os.path.lexists(trash_path):
            raise TrashError(ErrorKind.FILE_NOT_FOUND, "restore", item.trash_path, "trashed object is missing")

        backup: Path | None = None
        with self._destination_lock(destination):
            if os.path.lexists(destination):
                if overwrite:
                    self._remove_existing(destination)
                else:
                    backup = self._backup_existing(destination)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(os.fspath(trash_path), os.fspath(destination))
            except OSError as exc:
                if backup is not None and not os.path.lexists(destination):
                    try:
                        shutil.move(os.fspath(backup), os.fspath(destination))
                    except OSError as undo_exc:
                        self.logger.error("Could not move backup %s back: %s", backup, undo_exc)
                raise wrap_os_error("restore", destination, exc) from exc

            self.backend.forget(trash_path)
            if item.tracked:
                self.store.remove(item.id)
            self.logger.info("Restored %s to %s", item.id, destination)

            result = RestoreResult(
                path=str(destination),
                item_id=item.id,
                success=True,
                restored_path=str(destination),
                backup_path=str(backup) if backup is not None else None,
            )
            if verify:
                try:
                    result.integrity = self._verify(item, destination)
                except TrashError as exc:
                    self.logger.error("Verification failed for %s: %s", destination, exc)
                    result.success = False
                    result.error = exc
        return result

    def restore(
        self,
        item: TrashedItem,
        target_dir: str | os.PathLike[str] | None = None,
        *,
        overwrite: bool | None = None,
        verify: bool | None = None,
        session_id: str | None = None,
    ) -> RestoreResult:
        """Restore ``item`` to its original path or into ``target_dir``.

        Never raises for per-item failures. On failure before the move the
        item stays in the trash with its record intact apart from the attempt
        counter. A verification failure is reported but the move is kept.
        """

        overwrite = self.settings.overwrite_existing if overwrite is None else overwrite
        verify = self.settings.verify_integrity if verify is None else verify

        started = time.perf_counter()
        with self.metrics.track_concurrency():
            try:
                if item.tracked:
                    self.store.record_restore_attempt(item.id)
                result = self._restore(item, target_dir, overwrite, verify)
            except TrashError as exc:
                self.logger.warning("Restore failed for %s: %s", item.id, exc)
                result = RestoreResult(
                    path=item.original_path or item.trash_path,
                    item_id=item.id,
                    success=False,
                    error=exc,
                )
            except Exception as exc:
                self.logger.exception("Unexpected failure restoring %s", item.id)
                result = RestoreResult(
                    path=item.original_path or item.trash_path,
                    item_id=item.id,
                    success=False,
                    error=wrap_os_error("restore", item.trash_path, exc),
                )
        elapsed = time.perf_counter() - started

        self.metrics.record(
            "restore",
            elapsed,
            success=result.success,
            size=item.size if result.success else 0,
            error_kind=result.error.kind.value if result.error else None,
        )

        if session_id is not None and self.history is not None:
            result.session_id = session_id
            record = RestoreRecord(
                item_id=item.id,
                name=item.name,
                trash_path=item.trash_path,
                restored_path=result.restored_path,
                backup_path=result.backup_path,
                size=item.size,
                success=result.success,
                error=result.error.kind.value if result.error else None,
                duration_ms=int(elapsed * 1000),
            )
            try:
                self.history.add_record(session_id, record)
            except TrashError as exc:
                # The restore itself stands; only the session log is incomplete
                self.logger.error("Could not record restore of %s in session %s: %s", item.id, session_id, exc)
                result.history_error = exc
        return result

    def restore_batch(
        self,
        items: Sequence[TrashedItem],
        target_dir: str | os.PathLike[str] | None = None,
        *,
        overwrite: bool | None = None,
        verify: bool | None = None,
        ctx: BatchContext | None = None,
        session_name: str | None = None,
    ) -> list[RestoreResult]:
        """Restore ``items`` with bounded concurrency; ``result[i]`` belongs to ``items[i]``.

        With ``session_name`` the batch is recorded as one restore session
        that can later be rolled back.
        """

        session_id = None
        if session_name is not None:
            if self.history is None:
                raise ValueError("restore sessions require a RestoreHistory")
            session_id = self.history.start_session(session_name)

        def skip(item: TrashedItem, reason: ErrorKind) -> RestoreResult:
            return RestoreResult(
                path=item.original_path or item.trash_path,
                item_id=item.id,
                success=False,
                error=skipped_error("restore", item.trash_path, reason),
                session_id=session_id,
            )

        try:
            results = run_bounded(
                list(items),
                lambda item: self.restore(
                    item,
                    target_dir,
                    overwrite=overwrite,
                    verify=verify,
                    session_id=session_id,
                ),
                max_concurrency=self.settings.restore_max_concurrency,
                ctx=ctx,
                on_skip=skip,
                slots=self._slots,
            )
        finally:
            if session_id is not None:
                try:
                    self.history.end_session(session_id)
                except TrashError as exc:
                    self.logger.error("Could not close restore session %s: %s", session_id, exc)

        succeeded = sum(1 for result in results if result.success)
        self.logger.info(
            "Batch restore complete: %d succeeded, %d failed",
            succeeded,
            len(results) - succeeded,
        )
        return results


__all__ = ["RestoreEngine", "RestoreResult"]
