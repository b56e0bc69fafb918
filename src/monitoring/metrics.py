"""
Metrics collection for Guardian Recovery.

Thread-safe counters, gauges and millisecond histograms, exported as a dict
for JSON consumers or in Prometheus text format for scraping.

Engine metrics:
- recovery_requests_opened / _executed / _expired (counter, by class)
- recovery_votes_cast (counter, by support)
- recovery_operations_rejected (counter, by operation and error)
- earnings_withdrawn (counter)
- recovery_requests_open, guardians_active (gauge)
- recovery_operation_duration_ms (histogram, by operation)
"""

import threading
import time
from bisect import bisect_left
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

METRIC_PREFIX = "guardian_recovery"

# Engine operations are in-memory, so the buckets start well below a millisecond
DEFAULT_BUCKETS_MS = (0.1, 0.5, 1, 5, 10, 25, 50, 100, 250, 1000)

METRIC_HELP = {
    "recovery_requests_opened": "Recovery requests opened",
    "recovery_requests_executed": "Recovery requests that reached quorum and executed",
    "recovery_requests_expired": "Recovery requests closed after aging out",
    "recovery_votes_cast": "Staked votes recorded",
    "recovery_operations_rejected": "Engine operations rejected with a recovery error",
    "earnings_withdrawn": "Successful earnings withdrawals",
    "recovery_requests_open": "Recovery requests currently open",
    "guardians_active": "Active guardians",
    "recovery_operation_duration_ms": "Engine operation latency in milliseconds",
    "http_requests_total": "HTTP requests served",
    "http_requests_active": "HTTP requests in flight",
    "http_request_duration_ms": "HTTP request latency in milliseconds",
}

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, Any] | None) -> LabelKey:
    if not labels:
        return ()
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _render_labels(key: LabelKey, *extra: tuple[str, str]) -> str:
    pairs = list(key) + list(extra)
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"


def _format_bound(bound: float) -> str:
    if bound == float("inf"):
        return "+Inf"
    return str(int(bound)) if float(bound).is_integer() else str(bound)


@dataclass
class Histogram:
    """Observations sorted into fixed upper bounds; counts are per bucket, not cumulative."""

    bounds: tuple[float, ...] = DEFAULT_BUCKETS_MS
    bucket_counts: list[int] = field(init=False)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        # Last slot is the +Inf overflow bucket
        self.bucket_counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        self.bucket_counts[bisect_left(self.bounds, value)] += 1

    def cumulative(self) -> list[tuple[float, int]]:
        """(upper bound, observations <= bound) pairs ending with +Inf."""
        running = 0
        result = []
        for bound, n in zip((*self.bounds, float("inf")), self.bucket_counts, strict=True):
            running += n
            result.append((bound, running))
        return result


class MetricsCollector:
    """Thread-safe metrics collector with optional labels."""

    def __init__(self, prefix: str = METRIC_PREFIX):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[LabelKey, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[LabelKey, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[LabelKey, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    # Counters

    def increment(self, name: str, value: int = 1, labels: dict[str, Any] | None = None) -> None:
        with self._lock:
            self._counters[name][_label_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, Any] | None = None) -> int:
        with self._lock:
            return self._counters.get(name, {}).get(_label_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: dict[str, Any] | None = None) -> None:
        with self._lock:
            self._gauges[name][_label_key(labels)] = value

    def increment_gauge(self, name: str, value: float = 1.0, labels: dict[str, Any] | None = None) -> None:
        with self._lock:
            self._gauges[name][_label_key(labels)] += value

    def decrement_gauge(self, name: str, value: float = 1.0, labels: dict[str, Any] | None = None) -> None:
        self.increment_gauge(name, -value, labels)

    def get_gauge(self, name: str, labels: dict[str, Any] | None = None) -> float:
        with self._lock:
            return self._gauges.get(name, {}).get(_label_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: dict[str, Any] | None = None) -> None:
        """Record a duration in milliseconds."""
        with self._lock:
            series = self._histograms[name]
            key = _label_key(labels)
            if key not in series:
                series[key] = Histogram()
            series[key].observe(value_ms)

    @contextmanager
    def timer(self, name: str, labels: dict[str, Any] | None = None):
        """Time the enclosed block into histogram ``name``, even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def get_all(self) -> dict[str, Any]:
        """
        Snapshot of every series. Series are keyed by their rendered label
        set, with ``""`` for the unlabeled series.
        """
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "counters": {
                    name: {_render_labels(k): v for k, v in series.items()}
                    for name, series in self._counters.items()
                },
                "gauges": {
                    name: {_render_labels(k): v for k, v in series.items()}
                    for name, series in self._gauges.items()
                },
                "histograms": {
                    name: {
                        _render_labels(k): {
                            "count": h.count,
                            "sum": round(h.sum, 3),
                            "avg": round(h.sum / h.count, 3) if h.count else 0,
                        }
                        for k, h in series.items()
                    }
                    for name, series in self._histograms.items()
                },
            }

    def _header(self, lines: list[str], name: str, kind: str) -> str:
        metric_name = f"{self.prefix}_{name}"
        if name in METRIC_HELP:
            lines.append(f"# HELP {metric_name} {METRIC_HELP[name]}")
        lines.append(f"# TYPE {metric_name} {kind}")
        return metric_name

    def to_prometheus(self) -> str:
        """Render every series in Prometheus text exposition format."""
        lines: list[str] = []
        with self._lock:
            uptime = self._header(lines, "uptime_seconds", "gauge")
            lines.append(f"{uptime} {time.time() - self._start_time:.2f}")

            for kind, store in (("counter", self._counters), ("gauge", self._gauges)):
                for name in sorted(store):
                    metric_name = self._header(lines, name, kind)
                    for key, value in store[name].items():
                        lines.append(f"{metric_name}{_render_labels(key)} {value}")

            for name in sorted(self._histograms):
                metric_name = self._header(lines, name, "histogram")
                for key, hist in self._histograms[name].items():
                    for bound, count in hist.cumulative():
                        le = ("le", _format_bound(bound))
                        lines.append(f"{metric_name}_bucket{_render_labels(key, le)} {count}")
                    lines.append(f"{metric_name}_sum{_render_labels(key)} {hist.sum:.3f}")
                    lines.append(f"{metric_name}_count{_render_labels(key)} {hist.count}")

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Drop every series (used between tests)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Process-wide collector
metrics = MetricsCollector()
