"""Move paths into the trash with validation, metadata and metrics."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from safebin.core.config import Settings
from safebin.monitoring.collector import MetricsCollector

from .batch import BatchContext, run_bounded
from .errors import ErrorKind, SecurityError, TrashError, wrap_os_error
from .locator import TrashBackend
from .metadata import MetadataStore, TrashedItem
from .validator import PathIntent, PathValidator

_SKIP_REASONS = {
    ErrorKind.CANCELLED: "batch cancelled before the operation started",
    ErrorKind.TIMEOUT: "batch deadline passed before the operation started",
}


@dataclass
class DeleteResult:
    """Outcome of moving a single path into the trash."""

    path: str
    success: bool
    item: TrashedItem | None = None
    error: TrashError | None = None
    dry_run: bool = False

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


def skipped_error(operation: str, path: str, reason: ErrorKind) -> TrashError:
    return TrashError(reason, operation, path, _SKIP_REASONS.get(reason, "operation was not started"))


def _is_within(path: str, parent: str) -> bool:
    path_key = os.path.normcase(os.path.abspath(path))
    parent_key = os.path.normcase(os.path.abspath(parent))
    return path_key == parent_key or path_key.startswith(parent_key.rstrip(os.sep) + os.sep)


class DeleteEngine:
    """Validate, move and record deletions one path or one batch at a time."""

    def __init__(
        self,
        settings: Settings,
        validator: PathValidator,
        backend: TrashBackend,
        store: MetadataStore,
        metrics: MetricsCollector,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.validator = validator
        self.backend = backend
        self.store = store
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)
        self._slots = threading.BoundedSemaphore(settings.max_concurrency)

    def _prepare(self, path: str | os.PathLike[str], recursive: bool) -> tuple[Path, os.stat_result]:
        target = self.validator.validate(path, PathIntent.DELETE)

        for trash_dir in (self.backend.root, self.backend.files_dir):
            if _is_within(os.fspath(target), os.fspath(trash_dir)) or _is_within(
                os.fspath(trash_dir), os.fspath(target)
            ):
                raise SecurityError(
                    ErrorKind.PROTECTED_PATH,
                    "delete",
                    str(target),
                    "path overlaps the trash directory",
                )

        try:
            info = os.lstat(target)
        except OSError as exc:
            raise wrap_os_error("stat", target, exc) from exc

        if stat.S_ISDIR(info.st_mode) and not recursive:
            raise TrashError(
                ErrorKind.IS_DIRECTORY,
                "delete",
                str(target),
                "path is a directory and recursive deletion was not requested",
            )
        return target, info

    def _rollback_move(self, target: Path, trash_path: Path) -> None:
        try:
            shutil.move(os.fspath(trash_path), os.fspath(target))
        except OSError as exc:
            self.logger.error(
                "Orphaned trash object %s for %s; metadata missing and move-back failed: %s",
                trash_path,
                target,
                exc,
            )
            return
        self.backend.forget(trash_path)
        self.logger.warning("Moved %s back from trash after metadata failure", target)

    def _delete(self, path: str | os.PathLike[str], recursive: bool) -> TrashedItem:
        target, info = self._prepare(path, recursive)
        trash_path = self.backend.move_to_trash(target)
        try:
            item = self.store.record(target, trash_path, info)
        except TrashError:
            self._rollback_move(target, trash_path)
            raise

        self.logger.info("Moved %s to trash as %s (%s bytes)", target, item.id, item.size)
        return item

    def safe_delete(
        self,
        path: str | os.PathLike[str],
        *,
        recursive: bool = False,
        dry_run: bool = False,
    ) -> TrashedItem | None:
        """Move ``path`` into the trash and return its record.

        Raises :class:`TrashError` on failure. A dry run performs every check
        but moves nothing, records nothing and returns ``None``.
        """

        if dry_run:
            target, _info = self._prepare(path, recursive)
            self.logger.debug("Dry run: %s would be moved to trash", target)
            return None

        started = time.perf_counter()
        with self.metrics.track_concurrency():
            try:
                item = self._delete(path, recursive)
            except TrashError as exc:
                self.metrics.record("delete", time.perf_counter() - started, success=False, error_kind=exc.kind.value)
                raise
            except Exception:
                self.metrics.record(
                    "delete", time.perf_counter() - started, success=False, error_kind=ErrorKind.UNKNOWN.value
                )
                raise

        self.metrics.record("delete", time.perf_counter() - started, success=True, size=item.size)
        return item

    def delete(
        self,
        path: str | os.PathLike[str],
        *,
        recursive: bool = False,
        dry_run: bool = False,
    ) -> DeleteResult:
        """Like :meth:`safe_delete` but reports failure in the result instead of raising."""

        display = os.fspath(path)
        try:
            item = self.safe_delete(path, recursive=recursive, dry_run=dry_run)
        except TrashError as exc:
            self.logger.debug("Delete failed for %s: %s", display, exc)
            return DeleteResult(path=display, success=False, error=exc, dry_run=dry_run)
        except Exception as exc:
            self.logger.exception("Unexpected failure deleting %s", display)
            return DeleteResult(path=display, success=False, error=wrap_os_error("delete", display, exc), dry_run=dry_run)
        return DeleteResult(path=display, success=True, item=item, dry_run=dry_run)

    def batch_delete(
        self,
        paths: Sequence[str | os.PathLike[str]],
        *,
        recursive: bool = False,
        dry_run: bool = False,
    ) -> list[DeleteResult]:
        """Delete every path with bounded concurrency; ``result[i]`` belongs to ``paths[i]``."""

        return self.batch_delete_with_context(None, paths, recursive=recursive, dry_run=dry_run)

    def batch_delete_with_context(
        self,
        ctx: BatchContext | None,
        paths: Sequence[str | os.PathLike[str]],
        *,
        recursive: bool = False,
        dry_run: bool = False,
    ) -> list[DeleteResult]:
        def skip(path: str | os.PathLike[str], reason: ErrorKind) -> DeleteResult:
            display = os.fspath(path)
            return DeleteResult(
                path=display,
                success=False,
                error=skipped_error("delete", display, reason),
                dry_run=dry_run,
            )

        results = run_bounded(
            list(paths),
            lambda path: self.delete(path, recursive=recursive, dry_run=dry_run),
            max_concurrency=self.settings.max_concurrency,
            ctx=ctx,
            on_skip=skip,
            slots=self._slots,
        )

        succeeded = sum(1 for result in results if result.success)
        self.logger.info(
            "Batch delete complete: %d succeeded, %d failed",
            succeeded,
            len(results) - succeeded,
        )
        return results


__all__ = ["DeleteEngine", "DeleteResult", "skipped_error"]
