"""Thread-safe metrics collector for scan monitoring."""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class ErrorEntry:
    """A recorded scan error."""

    timestamp: datetime
    package: str
    strategy: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "package": self.package,
            "strategy": self.strategy,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorEntry:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            package=data["package"],
            strategy=data.get("strategy", ""),
            message=data["message"],
        )


@dataclass
class ScanMetrics:
    """Counters describing scan activity."""

    scans_started: int = 0
    scans_completed: int = 0
    cache_hits: int = 0
    insecure_count: int = 0
    error_count: int = 0

    # Per-strategy running averages (seconds)
    strategy_timings: dict[str, float] = field(default_factory=dict)
    strategy_counts: dict[str, int] = field(default_factory=dict)

    # Errors (ring buffer of last N)
    recent_errors: deque[ErrorEntry] = field(default_factory=lambda: deque(maxlen=10))

    last_updated: datetime | None = None

    @property
    def cache_hit_rate(self) -> float:
        """Share of lookups answered from the cache."""
        lookups = self.cache_hits + self.scans_started
        if lookups == 0:
            return 0.0
        return self.cache_hits / lookups

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics to a dictionary for JSON storage."""
        return {
            "scans_started": self.scans_started,
            "scans_completed": self.scans_completed,
            "cache_hits": self.cache_hits,
            "insecure_count": self.insecure_count,
            "error_count": self.error_count,
            "strategy_timings": self.strategy_timings,
            "strategy_counts": self.strategy_counts,
            "recent_errors": [e.to_dict() for e in self.recent_errors],
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanMetrics:
        """Deserialize metrics from a dictionary."""
        metrics = cls(
            scans_started=data.get("scans_started", 0),
            scans_completed=data.get("scans_completed", 0),
            cache_hits=data.get("cache_hits", 0),
            insecure_count=data.get("insecure_count", 0),
            error_count=data.get("error_count", 0),
            strategy_timings=data.get("strategy_timings", {}),
            strategy_counts=data.get("strategy_counts", {}),
            last_updated=(
                datetime.fromisoformat(data["last_updated"])
                if data.get("last_updated")
                else None
            ),
        )
        metrics.recent_errors = deque(
            [ErrorEntry.from_dict(e) for e in data.get("recent_errors", [])],
            maxlen=10,
        )
        return metrics


class MetricsCollector:
    """Thread-safe metrics collector.

    Metrics are kept in memory; ``save`` writes a JSON snapshot when a
    metrics file is configured.
    """

    def __init__(self, metrics_file: Path | None = None):
        self._lock = threading.Lock()
        self._metrics_file = metrics_file
        self._metrics = ScanMetrics()

    def record_cache_hit(self) -> None:
        with self._lock:
            self._metrics.cache_hits += 1
            self._metrics.last_updated = datetime.now(timezone.utc)

    def start_scan(self) -> None:
        with self._lock:
            self._metrics.scans_started += 1
            self._metrics.last_updated = datetime.now(timezone.utc)

    def complete_scan(
        self,
        package: str,
        strategy: str,
        duration: float,
        insecure: bool,
        error: str | None = None,
    ) -> None:
        """Record the outcome of a finished scan."""
        with self._lock:
            m = self._metrics
            m.scans_completed += 1
            if insecure:
                m.insecure_count += 1
            if error is not None:
                m.error_count += 1
                m.recent_errors.append(
                    ErrorEntry(
                        timestamp=datetime.now(timezone.utc),
                        package=package,
                        strategy=strategy,
                        message=error,
                    )
                )

            # Running average
            count = m.strategy_counts.get(strategy, 0)
            average = m.strategy_timings.get(strategy, 0.0)
            m.strategy_timings[strategy] = (average * count + duration) / (count + 1)
            m.strategy_counts[strategy] = count + 1
            m.last_updated = datetime.now(timezone.utc)

    def get_metrics(self) -> ScanMetrics:
        """Return a copy of the current metrics."""
        with self._lock:
            return ScanMetrics.from_dict(self._metrics.to_dict())

    def save(self) -> None:
        """Write the metrics snapshot to the metrics file, if configured."""
        if self._metrics_file is None:
            return
        with self._lock:
            data = self._metrics.to_dict()
        self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._metrics_file.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self._metrics_file)
