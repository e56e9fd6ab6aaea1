"""
Metrics collection for Date Consensus.

Provides a small, thread-safe metrics collection system that tracks:
- Counters: submissions, revisions, rejected writes, cache hits/misses
- Gauges: in-flight HTTP requests, current observation count
- Histograms: request latency and aggregate recompute time

Metrics are exposed in a format compatible with Prometheus scraping.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

METRIC_PREFIX = "dateconsensus_"

# Default latency buckets in milliseconds
DEFAULT_BUCKETS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)


@dataclass
class HistogramBucket:
    """A histogram bucket for tracking value distributions."""

    le: float  # Less than or equal to
    count: int = 0


@dataclass
class Histogram:
    """A cumulative histogram over fixed bucket bounds."""

    name: str
    buckets: list[HistogramBucket] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.buckets:
            self.buckets = [HistogramBucket(le=b) for b in DEFAULT_BUCKETS]
            self.buckets.append(HistogramBucket(le=float("inf")))

    def observe(self, value: float) -> None:
        """Record an observation."""
        self.sum += value
        self.count += 1
        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1


def _series(metric_name: str, values: dict[str, float]) -> list[str]:
    lines = []
    for key, value in values.items():
        if key:
            lines.append(f"{metric_name}{{{key}}} {value}")
        else:
            lines.append(f"{metric_name} {value}")
    return lines


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Collects counters, gauges, and histograms with optional labels.
    """

    def __init__(self, prefix: str = METRIC_PREFIX):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    def _labels_key(self, labels: dict[str, str] | None) -> str:
        """Convert labels dict to a hashable key."""
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    # Counter operations

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        """Increment a counter."""
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        """Get current counter value."""
        with self._lock:
            return self._counters[name].get(self._labels_key(labels), 0)

    # Gauge operations

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def increment_gauge(
        self, name: str, value: float = 1.0, labels: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] += value

    def decrement_gauge(
        self, name: str, value: float = 1.0, labels: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] -= value

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges[name].get(self._labels_key(labels), 0.0)

    # Histogram operations

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record a timing observation in milliseconds."""
        with self._lock:
            key = self._labels_key(labels)
            if key not in self._histograms[name]:
                self._histograms[name][key] = Histogram(name=name)
            self._histograms[name][key].observe(value_ms)

    def get_histogram(self, name: str, labels: dict[str, str] | None = None) -> Histogram | None:
        with self._lock:
            return self._histograms[name].get(self._labels_key(labels))

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Context manager for timing code blocks."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.timing(name, elapsed_ms, labels)

    # Export methods

    def get_all(self) -> dict[str, Any]:
        """Get all metrics as a dictionary."""
        with self._lock:
            result = {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {},
                "gauges": {},
                "histograms": {},
            }

            for section, source in (("counters", self._counters), ("gauges", self._gauges)):
                for name, values in source.items():
                    if len(values) == 1 and "" in values:
                        result[section][name] = values[""]
                    else:
                        result[section][name] = dict(values)

            for name, histograms in self._histograms.items():
                result["histograms"][name] = {}
                for key, hist in histograms.items():
                    result["histograms"][name][key or "_total"] = {
                        "count": hist.count,
                        "sum": hist.sum,
                        "avg": hist.sum / hist.count if hist.count > 0 else 0,
                        "buckets": {str(b.le): b.count for b in hist.buckets},
                    }

            return result

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        with self._lock:
            uptime_name = f"{self.prefix}uptime_seconds"
            lines.append(f"# HELP {uptime_name} Time since application start")
            lines.append(f"# TYPE {uptime_name} gauge")
            lines.append(f"{uptime_name} {time.time() - self._start_time:.2f}")
            lines.append("")

            for name, values in self._counters.items():
                metric_name = f"{self.prefix}{name}"
                lines.append(f"# TYPE {metric_name} counter")
                lines.extend(_series(metric_name, values))
                lines.append("")

            for name, values in self._gauges.items():
                metric_name = f"{self.prefix}{name}"
                lines.append(f"# TYPE {metric_name} gauge")
                lines.extend(_series(metric_name, values))
                lines.append("")

            for name, histograms in self._histograms.items():
                metric_name = f"{self.prefix}{name}"
                lines.append(f"# TYPE {metric_name} histogram")
                for key, hist in histograms.items():
                    label_head = f"{key}," if key else ""
                    label_block = f"{{{key}}}" if key else ""
                    for bucket in hist.buckets:
                        le_val = "+Inf" if bucket.le == float("inf") else bucket.le
                        lines.append(f'{metric_name}_bucket{{{label_head}le="{le_val}"}} {bucket.count}')
                    lines.append(f"{metric_name}_sum{label_block} {hist.sum:.2f}")
                    lines.append(f"{metric_name}_count{label_block} {hist.count}")
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics instance
metrics = MetricsCollector()
