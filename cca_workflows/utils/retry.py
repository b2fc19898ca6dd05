"""Backoff retries for transient `gh` transport failures."""

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    How often and how patiently to retry.

    Only exceptions in retryable_errors are retried; a non-zero gh exit
    status is a normal return value and never retried here.
    """
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_errors: tuple = (
        subprocess.TimeoutExpired,
        ConnectionError,
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delays(self) -> Iterator[float]:
        """Sleep before each retry: base, base*multiplier, ... capped at backoff_max."""
        delay = self.backoff_base
        for _ in range(self.max_attempts - 1):
            yield delay
            delay = min(delay * self.backoff_multiplier, self.backoff_max)


def retry_sync(
    func: Callable[..., T],
    *args: Any,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
    **kwargs: Any,
) -> T:
    """
    Call func(*args, **kwargs), retrying transient failures.

    on_retry(attempt, exc) runs before each backoff sleep. The last
    exception propagates once the attempts are used up; exceptions not
    listed in config.retryable_errors propagate immediately.
    """
    config = config or RetryConfig()
    name = label or getattr(func, "__name__", "call")
    delays = config.delays()

    attempt = 1
    while True:
        try:
            return func(*args, **kwargs)
        except config.retryable_errors as exc:
            delay = next(delays, None)
            if delay is None:
                logger.warning(f"{name}: giving up after {attempt} attempt(s): {exc}")
                raise
            logger.debug(f"{name}: attempt {attempt} failed ({exc}), retrying in {delay:.1f}s")
            if on_retry:
                on_retry(attempt, exc)
            sleep(delay)
            attempt += 1
