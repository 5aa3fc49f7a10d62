"""
Performance monitoring

Measures how long a serializer takes to render and how much memory it
allocates, keeps per-class aggregates, and warns about slow or
memory-hungry serializers.

Memory is measured with ``tracemalloc`` and is only reported while tracing is
active (``tracemalloc.start()`` or ``python -X tracemalloc``).
"""
import logging
import math
import threading
import time
import tracemalloc
from typing import Any, Dict, List

from ..conf import optimizer_settings
from .debug import class_path
from .pipeline import RenderWrapper

logger = logging.getLogger(__name__)

BYTE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_time(seconds: float) -> str:
    if seconds >= 1:
        return f"{seconds:.3f}s"
    if seconds >= 0.001:
        return f"{seconds * 1000:.2f}ms"
    return f"{seconds * 1_000_000:.2f}μs"


def format_bytes(size: float) -> str:
    value = max(size, 0)
    power = 0
    while value >= 1024 and power < len(BYTE_UNITS) - 1:
        value /= 1024
        power += 1
    value = round(value, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {BYTE_UNITS[power]}"


def _traced_memory():
    if not tracemalloc.is_tracing():
        return 0, 0
    return tracemalloc.get_traced_memory()


class PerformanceMonitor:
    """
    Aggregates render metrics per serializer class.
    """

    def __init__(self):
        self._stats: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def record_metrics(self, resource_class: str, metrics: Dict[str, Any]) -> None:
        execution_time = metrics["execution_time"]
        memory_used = metrics["memory_used"]

        with self._lock:
            stats = self._stats.setdefault(resource_class, {
                "count": 0,
                "total_time": 0.0,
                "total_memory": 0,
                "max_time": 0.0,
                "max_memory": 0,
                "min_time": math.inf,
                "min_memory": math.inf,
            })
            stats["count"] += 1
            stats["total_time"] += execution_time
            stats["total_memory"] += memory_used
            stats["max_time"] = max(stats["max_time"], execution_time)
            stats["max_memory"] = max(stats["max_memory"], memory_used)
            stats["min_time"] = min(stats["min_time"], execution_time)
            stats["min_memory"] = min(stats["min_memory"], memory_used)
            stats["avg_time"] = stats["total_time"] / stats["count"]
            stats["avg_memory"] = stats["total_memory"] / stats["count"]

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-class aggregates with human readable companions."""
        with self._lock:
            raw = {key: dict(value) for key, value in self._stats.items()}

        formatted = {}
        for resource_class, stats in raw.items():
            min_time = 0 if stats["min_time"] == math.inf else stats["min_time"]
            min_memory = 0 if stats["min_memory"] == math.inf else stats["min_memory"]
            formatted[resource_class] = {
                "count": stats["count"],
                "avg_time": stats["avg_time"],
                "avg_time_formatted": format_time(stats["avg_time"]),
                "max_time": stats["max_time"],
                "max_time_formatted": format_time(stats["max_time"]),
                "min_time": min_time,
                "min_time_formatted": format_time(min_time),
                "total_time": stats["total_time"],
                "total_time_formatted": format_time(stats["total_time"]),
                "avg_memory": stats["avg_memory"],
                "avg_memory_formatted": format_bytes(stats["avg_memory"]),
                "max_memory": stats["max_memory"],
                "max_memory_formatted": format_bytes(stats["max_memory"]),
                "min_memory": min_memory,
                "min_memory_formatted": format_bytes(min_memory),
                "total_memory": stats["total_memory"],
                "total_memory_formatted": format_bytes(stats["total_memory"]),
            }
        return formatted

    def _ranked(self, key: str, limit: int) -> Dict[str, Dict[str, Any]]:
        stats = self.get_stats()
        ranked: List = sorted(stats.items(), key=lambda item: item[1][key], reverse=True)
        return dict(ranked[:limit])

    def slow_resources_report(self, limit: int = 10) -> Dict[str, Dict[str, Any]]:
        return self._ranked("avg_time", limit)

    def memory_intensive_resources_report(self, limit: int = 10) -> Dict[str, Dict[str, Any]]:
        return self._ranked("avg_memory", limit)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


performance_monitor = PerformanceMonitor()


class PerformanceRenderer(RenderWrapper):
    """
    Times a render and records the result on the serializer and the monitor.
    """

    def __init__(self, inner, serializer, monitor: PerformanceMonitor = None, report=None):
        super().__init__(inner, serializer)
        self.monitor = monitor or performance_monitor
        self.report = report

    def render(self, instance, request=None):
        start_time = time.perf_counter()
        start_memory, start_peak = _traced_memory()
        try:
            return self.inner.render(instance, request)
        finally:
            end_memory, end_peak = _traced_memory()
            execution_time = time.perf_counter() - start_time
            self.finish(
                execution_time=execution_time,
                memory_used=end_memory - start_memory,
                peak_memory_increase=max(end_peak - start_peak, 0),
            )

    def finish(self, execution_time: float, memory_used: int, peak_memory_increase: int) -> Dict[str, Any]:
        serializer = self.serializer
        resource_class = class_path(type(serializer))
        metrics = {
            "execution_time": execution_time,
            "execution_time_formatted": format_time(execution_time),
            "memory_used": memory_used,
            "memory_used_formatted": format_bytes(memory_used),
            "peak_memory_increase": peak_memory_increase,
            "peak_memory_increase_formatted": format_bytes(peak_memory_increase),
            "resource_class": resource_class,
            "resource_id": getattr(serializer, "resource_id", "unknown"),
        }
        serializer.performance_metrics = metrics
        self.monitor.record_metrics(resource_class, metrics)

        warnings = []
        slow_threshold = optimizer_settings.SLOW_THRESHOLD
        memory_threshold = optimizer_settings.MEMORY_THRESHOLD
        if execution_time > slow_threshold:
            warnings.append(
                f"Slow transformation: {format_time(execution_time)} "
                f"(threshold: {format_time(slow_threshold)})"
            )
        if memory_used > memory_threshold:
            warnings.append(
                f"High memory usage: {format_bytes(memory_used)} "
                f"(threshold: {format_bytes(memory_threshold)})"
            )
        if warnings:
            logger.warning(
                "Performance warning for %s (ID: %s): %s",
                resource_class,
                metrics["resource_id"],
                "; ".join(warnings),
            )

        if self.report is not None:
            self.report.add("performance_metrics", serializer, metrics)
        return metrics
