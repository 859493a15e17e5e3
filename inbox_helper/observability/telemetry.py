"""
In-process telemetry helpers.

Nothing is shipped to an external backend; events go to the log and counters
and latencies stay in memory so the debug endpoint and tests can inspect them.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections import deque
from collections.abc import Iterator
from threading import Lock
from typing import Any

logger = logging.getLogger("inbox_helper.telemetry")

_COUNTERS: dict[str, int] = {}
# Most recent samples per metric; older ones are dropped
MAX_LATENCY_SAMPLES = 1000

_LATENCIES: dict[str, deque[float]] = {}
_LOCK = Lock()


def _latency_key(metric_name: str) -> str:
    if metric_name.endswith("_ms"):
        return metric_name
    if metric_name.endswith(".latency"):
        return f"{metric_name}_ms"
    return metric_name


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must redact PII before passing fields.
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """Increment an in-memory counter and return the new value."""
    with _LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counters() -> dict[str, int]:
    with _LOCK:
        return dict(_COUNTERS)


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time the enclosed block and record the sample for percentile stats.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        key = _latency_key(metric_name)
        logger.debug("timing=%s seconds=%.6f", key, elapsed)
        with _LOCK:
            _LATENCIES.setdefault(key, deque(maxlen=MAX_LATENCY_SAMPLES)).append(elapsed)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """
    Latency statistics (count, min, max, avg, p50, p95) for a metric.
    """
    with _LOCK:
        samples = sorted(_LATENCIES.get(_latency_key(metric_name), ()))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p50": samples[int(count * 0.50)],
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def get_all_latency_stats() -> dict[str, dict[str, float]]:
    with _LOCK:
        names = list(_LATENCIES)
    return {name: get_latency_stats(name) for name in names}


def reset_metrics() -> None:
    """Clear counters and latencies (tests)."""
    with _LOCK:
        _COUNTERS.clear()
        _LATENCIES.clear()
