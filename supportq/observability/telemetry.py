"""
Lightweight telemetry helpers.

Nothing is shipped to an external backend: events go to the log and
counters/latencies live in memory so tests and /health can read them.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Iterator
from threading import Lock
from typing import Any

logger = logging.getLogger("supportq.telemetry")

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}
_LOCK = Lock()
_MAX_SAMPLES = 1000


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must ensure PII is redacted.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and emit a debug log.

    Side Effects:
        - Modifies _COUNTERS dict (in-memory state)
        - Writes to logger (debug level)
    """
    with _LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def snapshot() -> dict[str, Any]:
    """Copy of all counters plus average latency per timed block."""
    with _LOCK:
        averages = {
            name: round(sum(samples) / len(samples), 6)
            for name, samples in _LATENCIES.items()
            if samples
        }
        return {"counters": dict(_COUNTERS), "latency_avg_seconds": averages}


def reset() -> None:
    with _LOCK:
        _COUNTERS.clear()
        _LATENCIES.clear()


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time a block of code and keep the most recent samples.

    Side Effects:
        - Appends to _LATENCIES dict (in-memory state)
        - Writes to logger (debug level) with timing
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("timing=%s seconds=%.6f", metric_name, elapsed)
        with _LOCK:
            samples = _LATENCIES.setdefault(metric_name, [])
            samples.append(elapsed)
            if len(samples) > _MAX_SAMPLES:
                del samples[: len(samples) - _MAX_SAMPLES]
