"""
cca-workflows type definitions.

Plain dataclasses shared between the cache, resource monitor, executor
and API client.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class ExecutorState(Enum):
    """Lifecycle of a single ParallelExecutor.run() call."""
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING = "awaiting"
    AGGREGATING = "aggregating"
    DONE = "done"


@dataclass
class ResourceSample:
    """Point-in-time view of host load. Never persisted."""
    memory_percent: float
    cpu_percent: float
    cpu_count: int
    load_average: float = 0.0
    available_memory_mb: float = 0.0
    timestamp: float = field(default_factory=time.time)
    fallback: bool = False  # True when sampling failed and defaults were used

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory_percent": round(self.memory_percent, 1),
            "cpu_percent": round(self.cpu_percent, 1),
            "cpu_count": self.cpu_count,
            "load_average": round(self.load_average, 2),
            "available_memory_mb": round(self.available_memory_mb, 1),
            "fallback": self.fallback,
        }


@dataclass
class RateLimitState:
    """Quota snapshot parsed from `gh api rate_limit`."""
    limit: int
    used: int
    remaining: int
    reset: int  # epoch seconds

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RateLimitState":
        """
        Build from the decoded rate_limit JSON document.

        Accepts the top-level ``rate`` object and falls back to
        ``resources.core``.

        Raises:
            KeyError / TypeError / ValueError / AttributeError: if the document is malformed
        """
        rate = data.get("rate")
        if rate is None:
            rate = data["resources"]["core"]
        return cls(
            limit=int(rate["limit"]),
            used=int(rate.get("used", int(rate["limit"]) - int(rate["remaining"]))),
            remaining=int(rate["remaining"]),
            reset=int(rate["reset"]),
        )

    def seconds_until_reset(self, now: Optional[float] = None) -> float:
        return self.reset - (time.time() if now is None else now)


@dataclass
class CacheStats:
    """Summary of a cache directory."""
    directory: Path
    entries: int = 0
    total_bytes: int = 0


@dataclass
class JobResult:
    """Outcome of one item processed by the executor."""
    item: Any
    success: bool
    value: Any = None
    error: Optional[str] = None
    duration: float = 0.0
    timed_out: bool = False
    incomplete: bool = False


@dataclass
class RunResult:
    """Aggregated outcome of ParallelExecutor.run()."""
    function_name: str
    jobs: int
    results: List[JobResult] = field(default_factory=list)
    interrupted_by: Optional[int] = None  # signal number
    duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.incomplete)

    @property
    def incomplete(self) -> int:
        return sum(1 for r in self.results if r.incomplete)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def exit_code(self) -> int:
        """0 on success, 128+signum when interrupted, else capped failure count."""
        if self.interrupted_by is not None:
            return 128 + self.interrupted_by
        bad = self.failures + self.incomplete
        return min(bad, 125)

    def result_for(self, item: Any) -> Optional[JobResult]:
        for result in self.results:
            if result.item == item:
                return result
        return None

    def __bool__(self) -> bool:
        """Allow `if result:` checks."""
        return self.exit_code == 0
