"""
Host resource sampling and concurrency recommendations.

Features:
- Memory, CPU and load sampling through psutil
- Conservative defaults when sampling is unavailable
- Advisory ceiling checks (ConstraintViolation)
- Linear job-count degradation once usage crosses 70% of a ceiling
- Readings reused for RESOURCE_CHECK_INTERVAL seconds between checks
"""

import logging
import os
import threading
import time
from typing import Callable, Optional

import psutil

from .config import HarnessConfig
from .errors import ConstraintViolation, InvalidInput
from .types import ResourceSample

logger = logging.getLogger(__name__)

# Degradation starts at this fraction of the configured ceiling
DEGRADATION_THRESHOLD = 0.7

# Assumed "moderate load" when sampling fails
FALLBACK_MEMORY_PERCENT = 50.0
FALLBACK_CPU_PERCENT = 50.0


class ResourceMonitor:
    """
    Samples system memory/CPU/load and recommends a parallel job count.

    sample() always reads the host; checks that are not handed a sample
    use current(), which refreshes at most every resource_check_interval
    seconds.
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        cpu_sample_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or HarnessConfig()
        self.cpu_sample_interval = cpu_sample_interval
        self._clock = clock
        self._last: Optional[ResourceSample] = None
        self._last_at = 0.0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.resource_monitor_enabled

    def sample(self) -> ResourceSample:
        """
        Take a resource sample.

        Never raises: if psutil cannot read the host, logs a warning and
        returns a moderate-load default flagged with fallback=True.
        """
        try:
            memory = psutil.virtual_memory()
            cpu_percent = psutil.cpu_percent(interval=self.cpu_sample_interval)
            cpu_count = psutil.cpu_count() or os.cpu_count() or 1
            try:
                load_average = psutil.getloadavg()[0]
            except (OSError, AttributeError):
                load_average = 0.0
            return ResourceSample(
                memory_percent=float(memory.percent),
                cpu_percent=float(cpu_percent),
                cpu_count=int(cpu_count),
                load_average=float(load_average),
                available_memory_mb=memory.available / 1024 / 1024,
            )
        except (psutil.Error, OSError, NotImplementedError, AttributeError) as exc:
            logger.warning(f"Resource sampling unavailable ({exc}); assuming moderate load")
            return ResourceSample(
                memory_percent=FALLBACK_MEMORY_PERCENT,
                cpu_percent=FALLBACK_CPU_PERCENT,
                cpu_count=os.cpu_count() or 1,
                fallback=True,
            )

    def current(self) -> ResourceSample:
        """Latest sample, re-read once it is resource_check_interval seconds old."""
        with self._lock:
            now = self._clock()
            if self._last is None or now - self._last_at >= self.config.resource_check_interval:
                self._last = self.sample()
                self._last_at = now
            return self._last

    def check_limits(
        self,
        memory_limit: Optional[float] = None,
        cpu_limit: Optional[float] = None,
        sample: Optional[ResourceSample] = None,
    ) -> ResourceSample:
        """
        Compare current usage against the ceilings.

        Returns:
            The sample used for the check

        Raises:
            ConstraintViolation: memory or CPU above its ceiling
        """
        memory_limit = self.config.memory_limit_percent if memory_limit is None else memory_limit
        cpu_limit = self.config.cpu_limit_percent if cpu_limit is None else cpu_limit
        _require_percent(memory_limit, "memory_limit")
        _require_percent(cpu_limit, "cpu_limit")

        sample = sample or self.current()
        if sample.memory_percent > memory_limit:
            raise ConstraintViolation("memory", sample.memory_percent, memory_limit)
        if sample.cpu_percent > cpu_limit:
            raise ConstraintViolation("cpu", sample.cpu_percent, cpu_limit)
        return sample

    def within_limits(self, sample: Optional[ResourceSample] = None) -> bool:
        try:
            self.check_limits(sample=sample)
        except ConstraintViolation as exc:
            logger.warning(f"Resource limits exceeded: {exc}")
            return False
        return True

    def optimal_jobs(
        self,
        base_jobs: int,
        min_jobs: Optional[int] = None,
        max_jobs: Optional[int] = None,
        sample: Optional[ResourceSample] = None,
    ) -> int:
        """
        Recommend a job count for the current load.

        Memory and CPU each scale base_jobs down linearly from 70% of their
        ceiling (factor 1.0) to the ceiling itself (factor 0.0). A load
        average above the core count scales by cores/load. The most
        restrictive factor wins and the result is clamped to
        [min_jobs, min(max_jobs, max_system_parallel_jobs)].

        Raises:
            InvalidInput: base_jobs, min_jobs or max_jobs is not a positive int
        """
        _require_positive_int(base_jobs, "base_jobs")
        min_jobs = self.config.min_parallel_jobs if min_jobs is None else min_jobs
        max_jobs = self.config.max_system_parallel_jobs if max_jobs is None else max_jobs
        _require_positive_int(min_jobs, "min_jobs")
        _require_positive_int(max_jobs, "max_jobs")

        upper = max(min(max_jobs, self.config.max_system_parallel_jobs), min_jobs)
        requested = min(base_jobs, upper)

        if not self.enabled:
            return max(min_jobs, requested)

        sample = sample or self.current()
        factor = min(
            _scale_factor(sample.memory_percent, self.config.memory_limit_percent),
            _scale_factor(sample.cpu_percent, self.config.cpu_limit_percent),
            _load_factor(sample.load_average, sample.cpu_count),
        )

        jobs = max(min_jobs, min(upper, int(requested * factor)))
        if jobs < requested:
            logger.info(
                f"Reducing parallel jobs {requested} -> {jobs} "
                f"(memory {sample.memory_percent:.0f}%, cpu {sample.cpu_percent:.0f}%, "
                f"load {sample.load_average:.2f}/{sample.cpu_count} cores)"
            )
        return jobs


def _scale_factor(usage: float, limit: float) -> float:
    threshold = limit * DEGRADATION_THRESHOLD
    if usage <= threshold:
        return 1.0
    if usage >= limit:
        return 0.0
    return (limit - usage) / (limit - threshold)


def _load_factor(load_average: float, cpu_count: int) -> float:
    if cpu_count <= 0 or load_average <= cpu_count:
        return 1.0
    return cpu_count / load_average


def _require_positive_int(value, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidInput(f"{name} must be a positive integer, got {value!r}")


def _require_percent(value, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 1 <= value <= 100:
        raise InvalidInput(f"{name} must be between 1 and 100, got {value!r}")
