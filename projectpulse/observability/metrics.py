"""
Operation performance metrics.

Each engine owns one PerformanceMetrics: a bounded history of timed
operations (duration, items processed, throughput) summarised per
operation name. Nothing here is module-global.
"""

import functools
import threading
import time
from collections import deque
from collections.abc import Callable, Sized
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterator


MAX_HISTORY = 1000


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _throughput(data_size: int, duration_ms: float) -> float:
    """Items per second; 0.0 when nothing measurable elapsed."""
    if duration_ms <= 0:
        return 0.0
    return data_size / (duration_ms / 1000)


@dataclass
class OperationMetric:
    """One timed call."""

    operation: str
    duration_ms: float
    data_size: int
    timestamp: datetime

    @property
    def throughput(self) -> float:
        return _throughput(self.data_size, self.duration_ms)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "data_size": self.data_size,
            "throughput": self.throughput,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Timing:
    """Handle yielded by PerformanceMetrics.track; set data_size before the block ends."""

    data_size: int = 1
    duration_ms: float = field(default=0.0, init=False)


class PerformanceMetrics:
    """
    Thread-safe bounded history of operation timings.

    Usage:
        metrics = PerformanceMetrics()
        with metrics.track("project_overview") as timing:
            page = build_page()
            timing.data_size = len(page.data)
        metrics.statistics()
    """

    def __init__(
        self,
        max_history: int = MAX_HISTORY,
        timer: Callable[[], float] = time.perf_counter,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._history: deque[OperationMetric] = deque(maxlen=max_history)
        self._timer = timer
        self._clock = clock
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float, data_size: int = 1) -> OperationMetric:
        metric = OperationMetric(
            operation=operation,
            duration_ms=max(0.0, duration_ms),
            data_size=max(0, data_size),
            timestamp=self._clock(),
        )
        with self._lock:
            self._history.append(metric)
        return metric

    @contextmanager
    def track(self, operation: str) -> Iterator[Timing]:
        """Time the block and record it, whether or not it raises."""
        timing = Timing()
        start = self._timer()
        try:
            yield timing
        finally:
            timing.duration_ms = (self._timer() - start) * 1000
            self.record(operation, timing.duration_ms, timing.data_size)

    def history(self, operation: str | None = None) -> list[OperationMetric]:
        with self._lock:
            metrics = list(self._history)
        if operation is not None:
            metrics = [m for m in metrics if m.operation == operation]
        return metrics

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def statistics(self) -> dict:
        """Totals and averages overall and per operation."""
        metrics = self.history()
        operations: dict[str, dict[str, Any]] = {}
        for metric in metrics:
            op = operations.setdefault(
                metric.operation,
                {"count": 0, "total_duration_ms": 0.0, "total_data_size": 0},
            )
            op["count"] += 1
            op["total_duration_ms"] += metric.duration_ms
            op["total_data_size"] += metric.data_size

        for op in operations.values():
            op["average_duration_ms"] = op["total_duration_ms"] / op["count"]
            op["average_throughput"] = _throughput(op["total_data_size"], op["total_duration_ms"])

        total_duration = sum(m.duration_ms for m in metrics)
        total_size = sum(m.data_size for m in metrics)
        return {
            "total_operations": len(metrics),
            "average_duration_ms": total_duration / len(metrics) if metrics else 0.0,
            "average_throughput": _throughput(total_size, total_duration),
            "operations": operations,
        }


def result_size(result: Any) -> int:
    """Items a call produced: a page's rows, a collection's length, else 1."""
    data = getattr(result, "data", None)
    if isinstance(data, Sized):
        return len(data)
    if isinstance(result, (list, tuple, dict)):
        return len(result)
    return 1


def timed(
    metrics: PerformanceMetrics,
    operation: str | None = None,
    size: Callable[[Any], int] = result_size,
) -> Callable:
    """Decorator to record each call's duration and result size."""

    def decorator(func: Callable) -> Callable:
        name = operation or func.__name__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with metrics.track(name) as timing:
                result = func(*args, **kwargs)
                timing.data_size = size(result)
            return result

        return wrapper

    return decorator
