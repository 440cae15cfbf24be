# media_bridge/infra/metrics.py
"""
In-process counters and histograms, served as JSON by GET /metrics.

Names used by the pipelines:
- fetch_requests{outcome, code}      counter (outcome: success, failure, cancelled)
- fetch_duration_ms{outcome}         histogram
- decrypt_requests{outcome, cause}   counter
- decrypt_duration_ms                histogram
- rate_limited_requests{path}        counter

Histograms keep only the most recent HISTOGRAM_WINDOW observations, so a
long-running process reports recent latency with bounded memory.
"""
from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from media_bridge.infra.logging_config import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 1024


class Histogram:
    """Sliding window of observations with summary stats"""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._values: deque[float] = deque(maxlen=window)
        self.total_count = 0

    def observe(self, value: float) -> None:
        self._values.append(value)
        self.total_count += 1

    def snapshot(self) -> dict:
        ordered = sorted(self._values)
        if not ordered:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0, "p99": 0}

        def pct(p: float) -> float:
            return ordered[min(int(len(ordered) * p), len(ordered) - 1)]

        return {
            "count": self.total_count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": round(sum(ordered) / len(ordered), 3),
            "p50": pct(0.50),
            "p95": pct(0.95),
            "p99": pct(0.99),
        }


class MetricsCollector:
    """
    Thread-safe registry of labelled counters and histograms.

    Keys render as ``name{k1=v1,k2=v2}`` with labels sorted by name.
    """

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._histogram_window = histogram_window
        self._counters: dict[str, int] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = Lock()
        self._started_at = time.monotonic()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram(self._histogram_window)
            histogram.observe(value)

    def get_counter(self, name: str, labels: dict | None = None) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0)

    def get_metrics(self) -> dict:
        """Point-in-time copy of everything collected"""
        with self._lock:
            counters = dict(self._counters)
            histograms = {key: h.snapshot() for key, h in self._histograms.items()}

        return {
            "uptime_seconds": round(time.monotonic() - self._started_at, 3),
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{rendered}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


@contextmanager
def timed(name: str, **labels) -> Iterator[None]:
    """Observe the wall-clock duration of the block, in milliseconds."""
    start = time.perf_counter()
    try:
        yield
    finally:
        observe_histogram(name, (time.perf_counter() - start) * 1000, **labels)
