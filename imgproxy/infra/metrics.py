# imgproxy/infra/metrics.py
"""
In-process metrics for the proxy.

Counters and latency histograms keyed by ``name{label=value,...}``.  The
snapshot is served as JSON by ``/metrics``; nothing is exported to an
external backend.
"""
from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Deque, Dict

from imgproxy.infra.logging_config import get_logger

logger = get_logger(__name__)

# Histograms keep only the most recent observations
HISTOGRAM_MAX_SAMPLES = 10_000


@dataclass
class Counter:
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Sliding sample of observed values (e.g. resolve latency in seconds)"""
    values: Deque[float] = field(default_factory=lambda: deque(maxlen=HISTOGRAM_MAX_SAMPLES))

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        ordered = sorted(self.values)
        if not ordered:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

        last = len(ordered) - 1
        return {
            "count": len(ordered),
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / len(ordered),
            "p95": ordered[min(int(len(ordered) * 0.95), last)],
            "p99": ordered[min(int(len(ordered) * 0.99), last)],
        }


class MetricsCollector:
    """Thread-safe registry of counters and histograms."""

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
        return f"{name}{{{rendered}}}"

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, labels: dict | None = None) -> int:
        """Current value of one counter; 0 if it was never incremented"""
        key = self._make_key(name, labels)
        with self._lock:
            counter = self._counters.get(key)
        return counter.value if counter is not None else 0

    def get_metrics(self) -> dict:
        """Snapshot served by /metrics"""
        with self._lock:
            return {
                "counters": {key: c.value for key, c in self._counters.items()},
                "histograms": {key: h.get_stats() for key, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Process-wide collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Record the duration of a ``with`` block into a histogram."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self._started: float | None = None

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._started is not None:
            observe_histogram(self.metric_name, time.perf_counter() - self._started, **self.labels)


class ProxyMetrics:
    """Image proxy metrics"""

    @staticmethod
    def request_finished(outcome: str) -> None:
        # outcome: "accepted" or the ProxyError class name
        inc_counter("proxy_requests_total", outcome=outcome)

    @staticmethod
    def redirects_followed(count: int) -> None:
        if count:
            inc_counter("proxy_redirects_total", count)

    @staticmethod
    def bytes_relayed(count: int) -> None:
        inc_counter("proxy_bytes_relayed_total", count)

    @staticmethod
    def relay_aborted(reason: str) -> None:
        inc_counter("proxy_relay_aborted_total", reason=reason)

    @staticmethod
    def track_resolve_time() -> Timer:
        return Timer("proxy_resolve_seconds")
