"""Tests for the metrics collector."""

from __future__ import annotations

import threading

from safebin.monitoring.collector import MetricsCollector


def test_records_success_and_failure() -> None:
    metrics = MetricsCollector()

    metrics.record("delete", 0.2, success=True, size=100)
    metrics.record("delete", 0.4, success=False, error_kind="file_not_found")
    metrics.record("delete", 0.6, success=False, error_kind="file_not_found")

    op = metrics.snapshot().operations["delete"]
    assert (op.total, op.succeeded, op.failed) == (3, 1, 2)
    assert op.bytes_processed == 100
    assert op.errors_by_kind == {"file_not_found": 2}
    assert op.min_duration == 0.2
    assert op.max_duration == 0.6
    assert abs(op.average_duration - 0.4) < 1e-9
    assert abs(op.success_rate - 1 / 3) < 1e-9
    assert abs(op.error_rate - 2 / 3) < 1e-9


def test_concurrent_records_are_not_lost() -> None:
    metrics = MetricsCollector()

    def worker() -> None:
        for _ in range(500):
            metrics.record("delete", 0.001, success=True, size=1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    op = metrics.snapshot().operations["delete"]
    assert op.total == 4000
    assert op.bytes_processed == 4000


def test_track_concurrency_records_peak() -> None:
    metrics = MetricsCollector()

    with metrics.track_concurrency():
        with metrics.track_concurrency():
            assert metrics.current_concurrency == 2
        assert metrics.current_concurrency == 1

    assert metrics.current_concurrency == 0
    assert metrics.peak_concurrency == 2


def test_reset_clears_counters() -> None:
    metrics = MetricsCollector()
    metrics.record("restore", 0.1, success=True)
    with metrics.track_concurrency():
        pass

    metrics.reset()

    snapshot = metrics.snapshot()
    assert snapshot.operations == {}
    assert snapshot.peak_concurrency == 0


def test_render_prometheus() -> None:
    metrics = MetricsCollector()
    metrics.record("delete", 0.5, success=True, size=42)
    metrics.record("delete", 0.5, success=False, error_kind="protected_path")

    content = metrics.render_prometheus()

    assert '# TYPE safebin_operations_total counter' in content
    assert 'safebin_operations_total{operation="delete",outcome="success"} 1' in content
    assert 'safebin_operations_total{operation="delete",outcome="failure"} 1' in content
    assert 'safebin_operation_errors_total{operation="delete",kind="protected_path"} 1' in content
    assert 'safebin_operation_bytes_total{operation="delete"} 42' in content
    assert 'safebin_operation_duration_seconds_count{operation="delete"} 2' in content
    assert "safebin_concurrency_peak 0" in content
    assert content.endswith("\n")


def test_render_without_errors_emits_placeholder() -> None:
    content = MetricsCollector().render_prometheus()

    assert 'safebin_operation_errors_total{operation="",kind=""} 0' in content
