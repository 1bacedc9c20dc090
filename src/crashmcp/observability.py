"""In-process latency metrics for tool calls.

Each operation keeps running aggregates plus a bounded window of recent
samples for percentile estimates.  Nothing is exported; callers read
``latency_metrics_snapshot()`` (tests, debugging) and every sample is
also logged at INFO.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from threading import Lock
from time import perf_counter

logger = logging.getLogger(__name__)

RECENT_WINDOW = 256


@dataclass
class LatencySummary:
    """Aggregated latency metrics for one operation."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0
    recent: deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_WINDOW))

    def add(self, duration_ms: float, ok: bool) -> None:
        self.count += 1
        if not ok:
            self.error_count += 1
        self.total_ms += duration_ms
        self.last_ms = duration_ms
        self.min_ms = duration_ms if self.count == 1 else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        self.recent.append(duration_ms)

    def percentile(self, pct: float) -> float:
        """Nearest-rank percentile over the recent window."""
        if not self.recent:
            return 0.0
        ordered = sorted(self.recent)
        rank = max(math.ceil(pct / 100 * len(ordered)), 1)
        return ordered[rank - 1]


@dataclass
class LatencySample:
    """Handle yielded by ``measure``; clear ``ok`` to record a failure."""

    operation: str
    ok: bool = True


class LatencyRecorder:
    """Thread-safe per-operation latency aggregates."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._stats: dict[str, LatencySummary] = {}

    def record(self, *, operation: str, duration_ms: float, ok: bool) -> None:
        normalized = max(float(duration_ms), 0.0)
        with self._lock:
            self._stats.setdefault(operation, LatencySummary()).add(normalized, ok)

        logger.info(
            "latency operation=%s duration_ms=%.3f ok=%s",
            operation,
            normalized,
            ok,
        )

    @contextmanager
    def measure(self, operation: str) -> Iterator[LatencySample]:
        """Time the enclosed block; an exception records ``ok=False``."""
        sample = LatencySample(operation=operation)
        start = perf_counter()
        try:
            yield sample
        except BaseException:
            sample.ok = False
            raise
        finally:
            self.record(
                operation=operation,
                duration_ms=(perf_counter() - start) * 1000,
                ok=sample.ok,
            )

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {
                operation: {
                    "count": summary.count,
                    "error_count": summary.error_count,
                    "total_ms": round(summary.total_ms, 3),
                    "avg_ms": round(
                        summary.total_ms / summary.count if summary.count else 0.0,
                        3,
                    ),
                    "min_ms": round(summary.min_ms, 3),
                    "max_ms": round(summary.max_ms, 3),
                    "last_ms": round(summary.last_ms, 3),
                    "p50_ms": round(summary.percentile(50), 3),
                    "p95_ms": round(summary.percentile(95), 3),
                }
                for operation, summary in sorted(self._stats.items())
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_RECORDER = LatencyRecorder()


def record_latency(*, operation: str, duration_ms: float, ok: bool = True) -> None:
    """Record one latency sample."""
    _RECORDER.record(operation=operation, duration_ms=duration_ms, ok=ok)


def measure_latency(operation: str):
    """Context manager timing one call of *operation*."""
    return _RECORDER.measure(operation)


def latency_metrics_snapshot() -> dict[str, dict[str, float | int]]:
    """Return current in-process latency aggregates."""
    return _RECORDER.snapshot()


def reset_latency_metrics() -> None:
    """Clear all latency aggregates (test helper)."""
    _RECORDER.reset()
