"""cca-workflows utilities."""

from .logging import get_logger, setup_logging, setup_logging_from_dict
from .metrics import MetricsCollector, MetricsConfig
from .rate_limit import QuotaGuard, RateLimitConfig
from .retry import RetryConfig, retry_sync

__all__ = [
    "get_logger",
    "setup_logging",
    "setup_logging_from_dict",
    "MetricsCollector",
    "MetricsConfig",
    "QuotaGuard",
    "RateLimitConfig",
    "RetryConfig",
    "retry_sync",
]
