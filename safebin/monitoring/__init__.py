"""Monitoring utilities for Prometheus instrumentation."""

from .collector import MetricsCollector, MetricsSnapshot, OperationSnapshot
from .router import router

__all__ = ["MetricsCollector", "MetricsSnapshot", "OperationSnapshot", "router"]
