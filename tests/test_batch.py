"""Tests for the bounded batch runner."""

from __future__ import annotations

import random
import threading
import time
from types import SimpleNamespace

import pytest

from safebin.services.batch import BatchContext, BatchOutcome, run_bounded
from safebin.services.errors import ErrorKind


def test_results_are_index_aligned_regardless_of_completion_order() -> None:
    items = list(range(30))

    def work(value: int) -> int:
        time.sleep(random.uniform(0, 0.01))
        return value * 10

    assert run_bounded(items, work, max_concurrency=8) == [value * 10 for value in items]


def test_never_exceeds_max_concurrency() -> None:
    lock = threading.Lock()
    state = {"current": 0, "peak": 0}

    def work(_: int) -> None:
        with lock:
            state["current"] += 1
            state["peak"] = max(state["peak"], state["current"])
        time.sleep(0.005)
        with lock:
            state["current"] -= 1

    run_bounded(list(range(50)), work, max_concurrency=3)

    assert 1 <= state["peak"] <= 3


def test_shared_slots_bound_across_calls() -> None:
    slots = threading.BoundedSemaphore(2)
    lock = threading.Lock()
    state = {"current": 0, "peak": 0}

    def work(_: int) -> None:
        with lock:
            state["current"] += 1
            state["peak"] = max(state["peak"], state["current"])
        time.sleep(0.005)
        with lock:
            state["current"] -= 1

    threads = [
        threading.Thread(target=run_bounded, args=(list(range(10)), work), kwargs={"max_concurrency": 2, "slots": slots})
        for _ in range(3)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert state["peak"] <= 2


def test_cancelled_context_skips_every_item() -> None:
    ctx = BatchContext()
    ctx.cancel()
    calls: list[int] = []

    results = run_bounded(
        [1, 2, 3],
        lambda value: calls.append(value) or "done",
        max_concurrency=2,
        ctx=ctx,
        on_skip=lambda value, reason: (value, reason),
    )

    assert calls == []
    assert results == [(1, ErrorKind.CANCELLED), (2, ErrorKind.CANCELLED), (3, ErrorKind.CANCELLED)]


def test_cancel_mid_batch_stops_new_work_only() -> None:
    ctx = BatchContext()
    started = threading.Event()
    release = threading.Event()

    def work(value: int) -> str:
        if value == 0:
            started.set()
            release.wait(timeout=5)
        return "done"

    def cancel_when_first_starts() -> None:
        started.wait(timeout=5)
        ctx.cancel()
        release.set()

    canceller = threading.Thread(target=cancel_when_first_starts)
    canceller.start()
    results = run_bounded(
        list(range(5)),
        work,
        max_concurrency=1,
        ctx=ctx,
        on_skip=lambda value, reason: reason,
    )
    canceller.join()

    assert results[0] == "done"
    assert results[1:] == [ErrorKind.CANCELLED] * 4


def test_expired_deadline_reports_timeout() -> None:
    ctx = BatchContext(timeout=0)

    results = run_bounded([1], lambda value: "done", max_concurrency=1, ctx=ctx, on_skip=lambda v, r: r)

    assert results == [ErrorKind.TIMEOUT]


def test_context_requires_on_skip() -> None:
    with pytest.raises(ValueError):
        run_bounded([1], lambda value: value, max_concurrency=1, ctx=BatchContext())


def test_empty_input() -> None:
    assert run_bounded([], lambda value: value, max_concurrency=4) == []


def test_outcome_counts() -> None:
    results = [
        SimpleNamespace(success=True, retryable=False),
        SimpleNamespace(success=False, retryable=True),
        SimpleNamespace(success=False, retryable=False),
    ]

    outcome = BatchOutcome.from_results(results)

    assert (outcome.total, outcome.succeeded, outcome.failed, outcome.retryable_failures) == (3, 1, 2, 1)
    assert outcome.results == results
