"""
Metrics collection and export for cca-workflows.

A single MetricsCollector is created per process (or per command) and
passed by reference to the cache, executor and API client. It is the only
component that renders counters for display.
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..types import ResourceSample

logger = logging.getLogger(__name__)

# Counter names shared by the producers
API_CALLS = "api_calls_total"
API_CACHE_HITS = "api_cache_hits"
API_RATE_LIMIT_WARNINGS = "api_rate_limit_warnings"
API_OPERATIONS = "api_operations"
OPERATIONS_TOTAL = "operations_total"
OPERATIONS_SUCCESSFUL = "operations_successful"
CACHE_OPERATIONS = "cache_operations"
WORKFLOWS_ANALYZED = "workflows_analyzed"
PERFORMANCE_ISSUES = "performance_issues_found"


@dataclass
class MetricsConfig:
    """
    Metrics configuration.

    Attributes:
        slow_operation_seconds: Operations slower than this are logged
        export_dir: Default directory for JSON exports
    """
    slow_operation_seconds: float = 5.0
    export_dir: str = ""


def _percent(part: int, total: int, empty: int = 0) -> int:
    if total <= 0:
        return empty
    return part * 100 // total


class MetricsCollector:
    """
    Thread-safe in-memory metrics collector.

    Provides labelled counters, histograms and gauges plus domain helpers
    for API calls, cache operations and executor operations.
    """

    def __init__(self, config: Optional[MetricsConfig] = None) -> None:
        self._config = config or MetricsConfig()
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._histograms: Dict[str, List[float]] = {}
        self._gauges: Dict[str, float] = {}
        self._start_time = time.time()

    # === Generic primitives ===

    def inc_counter(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a histogram observation."""
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms.setdefault(key, []).append(value)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Set a gauge value."""
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Get counter value."""
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics."""
        key = self._make_key(name, labels)
        with self._lock:
            values = list(self._histograms.get(key, []))
        return self._stats(values)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Get gauge value."""
        key = self._make_key(name, labels)
        with self._lock:
            return self._gauges.get(key, 0.0)

    def get_all(self) -> Dict[str, Any]:
        """Get all raw metrics as a dictionary."""
        with self._lock:
            counters = dict(self._counters)
            histograms = {k: list(v) for k, v in self._histograms.items()}
            gauges = dict(self._gauges)
        return {
            "counters": counters,
            "histograms": {k: self._stats(v) for k, v in histograms.items()},
            "gauges": gauges,
            "uptime_seconds": time.time() - self._start_time,
        }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._gauges.clear()
            self._start_time = time.time()

    # === Domain helpers ===

    def record_api_call(self) -> None:
        self.inc_counter(API_CALLS)

    def record_cache_hit(self) -> None:
        self.inc_counter(API_CACHE_HITS)

    def record_rate_limit_warning(self) -> None:
        self.inc_counter(API_RATE_LIMIT_WARNINGS)

    def record_api_operation(self, endpoint: str, status: str, duration: float) -> None:
        """Record one live API round trip."""
        self.inc_counter(API_OPERATIONS)
        self.inc_counter(API_OPERATIONS, labels={"status": status})
        self.observe_histogram("api_response_seconds", duration)
        logger.debug(f"api {endpoint} status={status} took {duration:.3f}s")

    def record_cache_operation(self, kind: str, cache_name: str) -> None:
        """Record a cache lookup; kind is "hit" or "miss"."""
        self.inc_counter(CACHE_OPERATIONS)
        self.inc_counter(CACHE_OPERATIONS, labels={"cache": cache_name, "kind": kind})
        self.inc_counter(CACHE_OPERATIONS, labels={"kind": kind})

    def record_operation(self, name: str, duration: float, success: bool) -> None:
        """Record a timed operation (one executor item, one analysis step...)."""
        self.inc_counter(OPERATIONS_TOTAL)
        if success:
            self.inc_counter(OPERATIONS_SUCCESSFUL)
        self.observe_histogram("operation_seconds", duration)
        self.observe_histogram("operation_seconds", duration, labels={"operation": name})

        if duration > self._config.slow_operation_seconds:
            logger.warning(f"Slow operation detected: {name} took {duration:.3f}s")

    def record_resource_usage(self, operation: str, jobs: int, sample: ResourceSample) -> None:
        """Record the resource sample taken before a parallel run."""
        self.set_gauge("parallel_jobs", jobs, labels={"operation": operation})
        self.set_gauge("memory_percent", sample.memory_percent)
        self.set_gauge("cpu_percent", sample.cpu_percent)
        self.set_gauge("load_average", sample.load_average)
        self.observe_histogram("memory_percent", sample.memory_percent)
        self.observe_histogram("cpu_percent", sample.cpu_percent)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """
        Time a block and record it as an operation.

        The operation is recorded as failed if the block raises.
        """
        start = time.monotonic()
        success = False
        try:
            yield
            success = True
        finally:
            self.record_operation(name, time.monotonic() - start, success)

    # === Read side ===

    def api_summary(self) -> Dict[str, int]:
        """API client counters plus derived hit rate."""
        calls = self.get_counter(API_CALLS)
        hits = self.get_counter(API_CACHE_HITS)
        return {
            "api_calls_total": calls,
            "cache_hits": hits,
            "cache_hit_rate_percent": _percent(hits, calls),
            "rate_limit_warnings": self.get_counter(API_RATE_LIMIT_WARNINGS),
        }

    def reset_api(self) -> None:
        """Zero the API client counters only."""
        with self._lock:
            for name in (API_CALLS, API_CACHE_HITS, API_RATE_LIMIT_WARNINGS):
                self._counters.pop(name, None)

    def summary(self) -> Dict[str, Any]:
        """Structured snapshot of every counter with derived rates."""
        total = self.get_counter(OPERATIONS_TOTAL)
        successful = self.get_counter(OPERATIONS_SUCCESSFUL)
        cache_ops = self.get_counter(CACHE_OPERATIONS)
        cache_hits = self.get_counter(CACHE_OPERATIONS, labels={"kind": "hit"})
        op_stats = self.get_histogram_stats("operation_seconds")
        memory_stats = self.get_histogram_stats("memory_percent")
        cpu_stats = self.get_histogram_stats("cpu_percent")

        resources: Dict[str, Any] = {"available": memory_stats["count"] > 0}
        if resources["available"]:
            resources.update({
                "average_memory_percent": round(memory_stats["avg"], 1),
                "peak_memory_percent": round(memory_stats["max"], 1),
                "average_cpu_percent": round(cpu_stats["avg"], 1),
                "peak_cpu_percent": round(cpu_stats["max"], 1),
            })

        return {
            "timestamp": datetime.now().astimezone().isoformat(timespec="seconds"),
            "script_duration": round(time.time() - self._start_time, 3),
            "operations": {
                "total": total,
                "successful": successful,
                "success_rate_percent": _percent(successful, total, empty=100),
                "average_time": round(op_stats["avg"], 3),
            },
            "cache": {
                "operations": cache_ops,
                "hit_rate_percent": _percent(cache_hits, cache_ops),
            },
            "api": {
                "operations": self.get_counter(API_OPERATIONS),
                **self.api_summary(),
            },
            "workflows": {
                "analyzed": self.get_counter(WORKFLOWS_ANALYZED),
                "performance_issues_found": self.get_counter(PERFORMANCE_ISSUES),
            },
            "resources": resources,
        }

    def report(self) -> str:
        """Render a human-readable summary."""
        data = self.summary()
        ops = data["operations"]
        cache = data["cache"]
        api = data["api"]
        lines = [
            "Performance Metrics Report",
            f"  Total execution time: {data['script_duration']:.3f}s",
            f"  Total operations: {ops['total']}",
            f"  Successful operations: {ops['successful']} ({ops['success_rate_percent']}%)",
            f"  Average operation time: {ops['average_time']:.3f}s",
            f"  Cache operations: {cache['operations']} (hit rate {cache['hit_rate_percent']}%)",
            f"  API calls: {api['api_calls_total']}",
            f"  API cache hits: {api['cache_hits']} ({api['cache_hit_rate_percent']}%)",
            f"  Rate limit warnings: {api['rate_limit_warnings']}",
        ]
        workflows = data["workflows"]
        if workflows["analyzed"]:
            lines.append(f"  Workflows analyzed: {workflows['analyzed']}")
            lines.append(f"  Performance issues found: {workflows['performance_issues_found']}")
        resources = data["resources"]
        if resources["available"]:
            lines.append(
                f"  Average memory: {resources['average_memory_percent']}% "
                f"(peak: {resources['peak_memory_percent']}%)"
            )
            lines.append(
                f"  Average CPU: {resources['average_cpu_percent']}% "
                f"(peak: {resources['peak_cpu_percent']}%)"
            )
        return "\n".join(lines)

    def export_json(self, path: Optional[str] = None) -> str:
        """
        Serialize summary() to JSON, optionally writing it to a file.

        Returns:
            The JSON document
        """
        document = json.dumps(self.summary(), indent=2)
        if path:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(document + "\n", encoding="utf-8")
            logger.info(f"Performance metrics exported to: {target}")
        return document

    def default_export_path(self) -> Optional[Path]:
        """Timestamped JSON file under export_dir, or None if no export_dir is set."""
        if not self._config.export_dir:
            return None
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        return Path(self._config.export_dir) / f"performance-metrics-{stamp}.json"

    @staticmethod
    def _stats(values: List[float]) -> Dict[str, float]:
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
        return {
            "count": len(values),
            "sum": sum(values),
            "min": min(values),
            "max": max(values),
            "avg": sum(values) / len(values),
        }

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key for a metric with labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"
