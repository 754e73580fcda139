"""Thread-safe operation metrics with Prometheus text rendering."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator


@dataclass
class OperationStats:
    """Aggregate counters for one operation name."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    bytes_processed: int = 0
    total_duration: float = 0.0
    min_duration: float | None = None
    max_duration: float = 0.0
    errors_by_kind: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def observe(self, duration: float, *, success: bool, size: int, error_kind: str | None) -> None:
        self.total += 1
        self.total_duration += duration
        if self.min_duration is None or duration < self.min_duration:
            self.min_duration = duration
        if duration > self.max_duration:
            self.max_duration = duration
        if success:
            self.succeeded += 1
            self.bytes_processed += size
        else:
            self.failed += 1
            self.errors_by_kind[error_kind or "unknown"] += 1


@dataclass(slots=True)
class OperationSnapshot:
    """Point-in-time copy of :class:`OperationStats` with derived rates."""

    operation: str
    total: int
    succeeded: int
    failed: int
    bytes_processed: int
    total_duration: float
    average_duration: float
    min_duration: float
    max_duration: float
    success_rate: float
    error_rate: float
    throughput_bytes_per_second: float
    errors_by_kind: dict[str, int]


@dataclass(slots=True)
class MetricsSnapshot:
    """Point-in-time view over every operation plus concurrency gauges."""

    operations: dict[str, OperationSnapshot]
    current_concurrency: int
    peak_concurrency: int
    uptime_seconds: float

    @property
    def total(self) -> int:
        return sum(op.total for op in self.operations.values())

    @property
    def failed(self) -> int:
        return sum(op.failed for op in self.operations.values())


class MetricsCollector:
    """Record one sample per trash operation and track in-flight concurrency.

    Every counter update happens under a single lock so samples from many
    worker threads never interleave.
    """

    def __init__(self, namespace: str = "safebin") -> None:
        self.namespace = namespace
        self._lock = threading.Lock()
        self._operations: Dict[str, OperationStats] = defaultdict(OperationStats)
        self._current = 0
        self._peak = 0
        self._started = time.monotonic()

    def record(
        self,
        operation: str,
        duration: float,
        *,
        success: bool,
        size: int = 0,
        error_kind: str | None = None,
    ) -> None:
        with self._lock:
            self._operations[operation].observe(duration, success=success, size=size, error_kind=error_kind)

    @contextmanager
    def track_concurrency(self) -> Iterator[None]:
        """Count the enclosed block as one in-flight operation."""

        with self._lock:
            self._current += 1
            if self._current > self._peak:
                self._peak = self._current
        try:
            yield
        finally:
            with self._lock:
                self._current -= 1

    @property
    def peak_concurrency(self) -> int:
        with self._lock:
            return self._peak

    @property
    def current_concurrency(self) -> int:
        with self._lock:
            return self._current

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._peak = self._current
            self._started = time.monotonic()

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            uptime = time.monotonic() - self._started
            operations = {
                name: _snapshot_operation(name, stats)
                for name, stats in sorted(self._operations.items())
            }
            return MetricsSnapshot(
                operations=operations,
                current_concurrency=self._current,
                peak_concurrency=self._peak,
                uptime_seconds=uptime,
            )

    def render_prometheus(self) -> str:
        """Render collected metrics in the Prometheus exposition format."""

        ns = self.namespace
        snapshot = self.snapshot()
        operations = snapshot.operations
        lines: list[str] = []

        lines.append(f"# HELP {ns}_operations_total Trash operations by outcome")
        lines.append(f"# TYPE {ns}_operations_total counter")
        for name, op in operations.items():
            lines.append(f'{ns}_operations_total{{operation="{name}",outcome="success"}} {op.succeeded}')
            lines.append(f'{ns}_operations_total{{operation="{name}",outcome="failure"}} {op.failed}')

        lines.append(f"# HELP {ns}_operation_errors_total Failed trash operations by error kind")
        lines.append(f"# TYPE {ns}_operation_errors_total counter")
        error_lines = [
            f'{ns}_operation_errors_total{{operation="{name}",kind="{kind}"}} {count}'
            for name, op in operations.items()
            for kind, count in sorted(op.errors_by_kind.items())
        ]
        if error_lines:
            lines.extend(error_lines)
        else:
            lines.append(f'{ns}_operation_errors_total{{operation="",kind=""}} 0')

        lines.append(f"# HELP {ns}_operation_bytes_total Bytes moved by successful operations")
        lines.append(f"# TYPE {ns}_operation_bytes_total counter")
        for name, op in operations.items():
            lines.append(f'{ns}_operation_bytes_total{{operation="{name}"}} {op.bytes_processed}')

        lines.append(f"# HELP {ns}_operation_duration_seconds_sum Total time spent in operations")
        lines.append(f"# TYPE {ns}_operation_duration_seconds_sum counter")
        for name, op in operations.items():
            lines.append(f'{ns}_operation_duration_seconds_sum{{operation="{name}"}} {op.total_duration}')

        lines.append(f"# HELP {ns}_operation_duration_seconds_count Total number of timed operations")
        lines.append(f"# TYPE {ns}_operation_duration_seconds_count counter")
        for name, op in operations.items():
            lines.append(f'{ns}_operation_duration_seconds_count{{operation="{name}"}} {op.total}')

        lines.append(f"# HELP {ns}_concurrency_peak Highest number of simultaneous operations")
        lines.append(f"# TYPE {ns}_concurrency_peak gauge")
        lines.append(f"{ns}_concurrency_peak {snapshot.peak_concurrency}")

        lines.append(f"# HELP {ns}_concurrency_current Operations currently in flight")
        lines.append(f"# TYPE {ns}_concurrency_current gauge")
        lines.append(f"{ns}_concurrency_current {snapshot.current_concurrency}")

        return "\n".join(lines) + "\n"


def _snapshot_operation(name: str, stats: OperationStats) -> OperationSnapshot:
    total = stats.total
    return OperationSnapshot(
        operation=name,
        total=total,
        succeeded=stats.succeeded,
        failed=stats.failed,
        bytes_processed=stats.bytes_processed,
        total_duration=stats.total_duration,
        average_duration=stats.total_duration / total if total else 0.0,
        min_duration=stats.min_duration or 0.0,
        max_duration=stats.max_duration,
        success_rate=stats.succeeded / total if total else 0.0,
        error_rate=stats.failed / total if total else 0.0,
        throughput_bytes_per_second=(
            stats.bytes_processed / stats.total_duration if stats.total_duration > 0 else 0.0
        ),
        errors_by_kind=dict(stats.errors_by_kind),
    )
