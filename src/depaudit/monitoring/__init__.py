"""Scan monitoring and metrics collection."""

from .metrics import ErrorEntry, MetricsCollector, ScanMetrics

__all__ = ["ErrorEntry", "MetricsCollector", "ScanMetrics"]
