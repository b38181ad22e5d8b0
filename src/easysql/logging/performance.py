"""Operation timing for adapters, tunnels and the supervisor.

A ``PerformanceLogger`` wraps driver calls in ``measure`` blocks. Each block
produces a ``TimingMetrics`` record that is logged and folded into a
per-operation ``PerformanceMetrics`` aggregate. Aggregates keep only a
window of recent durations, so a client left open for days does not grow
without bound.

Example:
    >>> perf = PerformanceLogger("easysql.adapter.postgres", slow_threshold_ms=500)
    >>> with perf.measure("list_tables", database="app") as timer:
    ...     tables = await adapter.list_tables("app")
    >>> perf.get_metrics("list_tables").total_calls
    1
"""

import math
import statistics
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Generator, Optional

from .structured import StructuredLogger

RECENT_WINDOW = 256


def _ms(seconds: Optional[float]) -> Optional[float]:
    return None if seconds is None else seconds * 1000


@dataclass
class TimingMetrics:
    """One measured call. ``end_time`` stays ``None`` until ``complete``."""

    operation: str
    start_time: float
    end_time: Optional[float] = None
    duration: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> Optional[float]:
        return _ms(self.duration)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        self.end_time = time.perf_counter()
        self.duration = self.end_time - self.start_time
        self.success, self.error = success, error


@dataclass
class PerformanceMetrics:
    """Running totals for one operation name.

    Count, total, min and max cover every call. Median and p95 are computed
    over the last ``RECENT_WINDOW`` calls only.
    """

    operation: str
    total_calls: int = 0
    failed_calls: int = 0
    slow_calls: int = 0
    total_duration: float = 0.0
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    last_error: Optional[str] = None
    recent: Deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_WINDOW), repr=False)

    def add_timing(self, timing: TimingMetrics, slow: bool = False) -> None:
        duration = timing.duration
        if duration is None or not timing.is_complete:
            return

        self.total_calls += 1
        self.total_duration += duration
        self.recent.append(duration)
        self.min_duration = duration if self.min_duration is None else min(self.min_duration, duration)
        self.max_duration = duration if self.max_duration is None else max(self.max_duration, duration)
        if slow:
            self.slow_calls += 1
        if not timing.success:
            self.failed_calls += 1
            self.last_error = timing.error

    @property
    def avg_duration(self) -> Optional[float]:
        if not self.total_calls:
            return None
        return self.total_duration / self.total_calls

    @property
    def median_duration(self) -> Optional[float]:
        return statistics.median(self.recent) if self.recent else None

    @property
    def p95_duration(self) -> Optional[float]:
        if not self.recent:
            return None
        ordered = sorted(self.recent)
        return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]

    @property
    def error_rate(self) -> float:
        """Percentage of calls that raised."""
        return 100.0 * self.failed_calls / self.total_calls if self.total_calls else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "total_calls": self.total_calls,
            "failed_calls": self.failed_calls,
            "slow_calls": self.slow_calls,
            "error_rate": round(self.error_rate, 2),
            "total_duration_ms": _ms(self.total_duration),
            "avg_duration_ms": _ms(self.avg_duration),
            "median_duration_ms": _ms(self.median_duration),
            "p95_duration_ms": _ms(self.p95_duration),
            "min_duration_ms": _ms(self.min_duration),
            "max_duration_ms": _ms(self.max_duration),
            "last_error": self.last_error,
        }


class TimingContext:
    """Times the ``with`` body, including any ``await`` inside it.

    On exit the call is logged at debug, at info when it crossed
    ``slow_threshold_ms``, and at warning when the body raised. The exception
    is never suppressed.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        metadata: Optional[Dict[str, Any]] = None,
        auto_log: bool = True,
        slow_threshold_ms: Optional[float] = None,
    ) -> None:
        self.operation = operation
        self.logger = logger
        self.metadata = metadata or {}
        self.auto_log = auto_log
        self.slow_threshold_ms = slow_threshold_ms
        self.timing: Optional[TimingMetrics] = None

    @property
    def duration(self) -> Optional[float]:
        return None if self.timing is None else self.timing.duration

    @property
    def duration_ms(self) -> Optional[float]:
        return _ms(self.duration)

    @property
    def is_slow(self) -> bool:
        elapsed = self.duration_ms
        return self.slow_threshold_ms is not None and elapsed is not None and elapsed >= self.slow_threshold_ms

    def __enter__(self) -> "TimingContext":
        self.timing = TimingMetrics(self.operation, time.perf_counter(), metadata=self.metadata)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.timing is None:
            return
        error = str(exc_val) if exc_val is not None else None
        self.timing.complete(success=exc_type is None, error=error)

        if self.logger is None or not self.auto_log:
            return
        fields = dict(self.metadata, operation=self.operation, duration_ms=round(self.timing.duration_ms, 3))
        if exc_type is not None:
            self.logger.warning("Operation failed", error=error, error_type=exc_type.__name__, **fields)
        elif self.is_slow:
            self.logger.info("Slow operation", threshold_ms=self.slow_threshold_ms, **fields)
        else:
            self.logger.debug("Operation timed", **fields)


class PerformanceLogger:
    """Named collection of operation timings.

    ``track_metrics=False`` keeps the log lines but skips aggregation.
    """

    def __init__(
        self,
        name: str,
        *,
        auto_log: bool = True,
        track_metrics: bool = True,
        slow_threshold_ms: Optional[float] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.name = name
        self.auto_log = auto_log
        self.track_metrics = track_metrics
        self.slow_threshold_ms = slow_threshold_ms
        self.logger = logger if logger is not None else StructuredLogger(f"perf.{name}")
        self._metrics: Dict[str, PerformanceMetrics] = {}

    @contextmanager
    def measure(self, operation: str, **metadata: Any) -> Generator[TimingContext, None, None]:
        ctx = TimingContext(
            operation,
            logger=self.logger,
            metadata=metadata,
            auto_log=self.auto_log,
            slow_threshold_ms=self.slow_threshold_ms,
        )
        try:
            with ctx:
                yield ctx
        finally:
            if self.track_metrics and ctx.timing is not None:
                metrics = self._metrics.setdefault(operation, PerformanceMetrics(operation))
                metrics.add_timing(ctx.timing, slow=ctx.is_slow)

    def get_metrics(self, operation: str) -> Optional[PerformanceMetrics]:
        return self._metrics.get(operation)

    def reset_metrics(self, operation: Optional[str] = None) -> None:
        """Drop one operation's aggregate, or all of them."""
        if operation is not None:
            self._metrics.pop(operation, None)
            return
        self._metrics = {}

    def get_summary(self) -> Dict[str, Any]:
        aggregates = [self._metrics[name] for name in sorted(self._metrics)]
        return {
            "logger": self.name,
            "operations": {m.operation: m.to_dict() for m in aggregates},
            "total_calls": sum(m.total_calls for m in aggregates),
            "failed_calls": sum(m.failed_calls for m in aggregates),
            "slow_calls": sum(m.slow_calls for m in aggregates),
        }

    def log_performance_summary(self) -> None:
        self.logger.info("Performance summary", **self.get_summary())

    def __repr__(self) -> str:
        return f"PerformanceLogger({self.name!r}, operations={sorted(self._metrics)}, track={self.track_metrics})"
