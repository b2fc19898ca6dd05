"""
Exception hierarchy for cca-workflows.

Every error raised by the library derives from HarnessError so CLI
commands can catch one type. Subclasses also inherit from the closest
builtin (ValueError, OSError) so callers that only know the builtin keep
working.
"""

from typing import Optional


class HarnessError(Exception):
    """Base class for all cca-workflows errors."""


class InvalidInput(HarnessError, ValueError):
    """Caller passed a bad key, path, name or numeric value."""


class ConfigError(InvalidInput):
    """A configuration value is outside its allowed domain."""


class CacheIOError(HarnessError, OSError):
    """The cache directory or an entry could not be created or written."""


class RateLimited(HarnessError):
    """
    API quota exhausted and waiting for the reset is not feasible.

    Attributes:
        wait_seconds: Seconds until the quota resets (may be <= 0)
        reset_at: Reset time as epoch seconds
    """

    def __init__(self, message: str, wait_seconds: float = 0.0, reset_at: int = 0):
        super().__init__(message)
        self.wait_seconds = wait_seconds
        self.reset_at = reset_at


class UpstreamError(HarnessError):
    """
    A live call to the external CLI failed.

    Attributes:
        returncode: Exit status of the CLI, None for transport errors
        stderr: Captured error output (truncated)
    """

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ConstraintViolation(HarnessError):
    """
    A resource ceiling was exceeded. Advisory: used to shrink concurrency.

    Attributes:
        which: "memory" or "cpu"
        value: Observed usage percent
        limit: Configured ceiling percent
    """

    def __init__(self, which: str, value: float, limit: float):
        super().__init__(f"{which} usage {value:.1f}% exceeds limit {limit:.1f}%")
        self.which = which
        self.value = value
        self.limit = limit
