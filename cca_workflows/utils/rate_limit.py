"""
Rate limiting utilities for cca-workflows.

Protects the GitHub API quota: warns when the remaining budget drops
below a buffer, and waits for the reset (or refuses) when it drops below
a hard floor.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import InvalidInput, RateLimited
from ..types import RateLimitState
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)


def _validate_quota_params(buffer: int, floor: int, max_wait: int) -> None:
    """Validate quota guard numeric parameters."""
    if buffer < 0:
        raise InvalidInput("buffer must not be negative")
    if floor < 0:
        raise InvalidInput("floor must not be negative")
    if max_wait <= 0:
        raise InvalidInput("max_wait must be greater than 0")


@dataclass
class RateLimitConfig:
    """
    Quota guard configuration.

    Attributes:
        buffer: Warn when fewer than this many requests remain
        floor: Wait for the reset when fewer than this many remain
        max_wait: Longest acceptable wait in seconds; longer waits fail
    """

    buffer: int = 100
    floor: int = 10
    max_wait: int = 3600

    def __post_init__(self) -> None:
        _validate_quota_params(self.buffer, self.floor, self.max_wait)


class QuotaGuard:
    """
    Enforces the remaining-quota policy for one API client.

    The wait happens in the calling thread only, so in a parallel run
    just the worker that hit the floor blocks.

    Usage:
        guard = QuotaGuard(RateLimitConfig(buffer=100, floor=10))
        guard.enforce(client_state)  # may sleep or raise RateLimited
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or RateLimitConfig()
        self._metrics = metrics
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()

        # Stats
        self._checks = 0
        self._waits = 0
        self._total_wait_time = 0.0

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def enforce(self, state: RateLimitState) -> float:
        """
        Apply the policy to a quota snapshot.

        Returns:
            Seconds slept (0 if no wait was needed)

        Raises:
            RateLimited: remaining is below the floor and the reset is in
                the past or further away than max_wait
        """
        with self._lock:
            self._checks += 1

        if state.remaining >= self._config.buffer:
            return 0.0

        if self._metrics:
            self._metrics.record_rate_limit_warning()
        logger.warning(f"GitHub API rate limit approaching: {state.remaining} requests remaining")

        if state.remaining >= self._config.floor:
            return 0.0

        wait_time = state.reset - self._clock()
        if wait_time <= 0 or wait_time > self._config.max_wait:
            raise RateLimited(
                f"GitHub API rate limit exhausted ({state.remaining} remaining), "
                f"reset in {wait_time:.0f}s",
                wait_seconds=wait_time,
                reset_at=state.reset,
            )

        logger.warning(f"Rate limit almost exhausted. Waiting {wait_time:.0f}s for reset...")
        self._sleep(wait_time)
        with self._lock:
            self._waits += 1
            self._total_wait_time += wait_time
        return wait_time

    def get_stats(self) -> dict:
        """
        Get guard statistics.

        Returns:
            Dictionary with checks, waits and total_wait_time
        """
        with self._lock:
            return {
                "checks": self._checks,
                "waits": self._waits,
                "total_wait_time": self._total_wait_time,
            }

    def reset(self) -> None:
        with self._lock:
            self._checks = 0
            self._waits = 0
            self._total_wait_time = 0.0
