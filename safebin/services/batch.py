"""Bounded, cancellable, index-aligned batch execution on worker threads."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

from .errors import ErrorKind

T = TypeVar("T")
R = TypeVar("R")

_SLOT_POLL_SECONDS = 0.05


class BatchContext:
    """Cancellation signal and optional deadline shared by one batch call."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._event = cancel_event or threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def error(self) -> ErrorKind | None:
        """Return why new work must not start, or ``None`` while it may."""

        if self._event.is_set():
            return ErrorKind.CANCELLED
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return ErrorKind.TIMEOUT
        return None


def _acquire_slot(slots: threading.Semaphore, ctx: BatchContext | None) -> ErrorKind | None:
    if ctx is None:
        slots.acquire()
        return None
    while True:
        reason = ctx.error()
        if reason is not None:
            return reason
        if slots.acquire(timeout=_SLOT_POLL_SECONDS):
            return None


def run_bounded(
    items: Sequence[T],
    work: Callable[[T], R],
    *,
    max_concurrency: int,
    ctx: BatchContext | None = None,
    on_skip: Callable[[T, ErrorKind], R] | None = None,
    slots: threading.Semaphore | None = None,
) -> list[R]:
    """Run ``work`` over ``items`` on at most ``max_concurrency`` threads.

    Results are written by input index, so ``result[i]`` always belongs to
    ``items[i]`` whatever the completion order. Each unit checks ``ctx``
    before and while waiting for a concurrency slot; a unit that cannot start
    gets ``on_skip(item, reason)`` instead. Work that already holds a slot is
    never interrupted.
    """

    if not items:
        return []
    if ctx is not None and on_skip is None:
        raise ValueError("on_skip is required when a batch context is supplied")

    semaphore = slots or threading.BoundedSemaphore(max_concurrency)
    results: list[R | None] = [None] * len(items)

    def run(index: int, item: T) -> None:
        reason = _acquire_slot(semaphore, ctx)
        if reason is not None:
            results[index] = on_skip(item, reason)  # type: ignore[misc]
            return
        try:
            results[index] = work(item)
        finally:
            semaphore.release()

    workers = max(1, min(max_concurrency, len(items)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="safebin-batch") as executor:
        futures = [executor.submit(run, index, item) for index, item in enumerate(items)]
        for future in futures:
            future.result()

    return results  # type: ignore[return-value]


@dataclass
class BatchOutcome(Generic[R]):
    """Aggregate of a finished batch: per-item results plus counts."""

    results: list[R] = field(default_factory=list)
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    retryable_failures: int = 0

    @classmethod
    def from_results(cls, results: Sequence[R]) -> BatchOutcome[R]:
        succeeded = sum(1 for result in results if getattr(result, "success", False))
        retryable = sum(
            1
            for result in results
            if not getattr(result, "success", False) and getattr(result, "retryable", False)
        )
        return cls(
            results=list(results),
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            retryable_failures=retryable,
        )


__all__ = ["BatchContext", "BatchOutcome", "run_bounded"]
