"""
GitHub API access through the `gh` CLI, with response caching and quota protection.

Every response is cached by endpoint for the GitHub cache TTL. Before a
live call the client checks the remaining quota (itself a cached
`gh api rate_limit` call) and either proceeds, warns, waits for the
reset in the calling thread, or raises RateLimited.
"""

import json
import logging
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from .cache import CacheStore, string_cache_key
from .config import HarnessConfig
from .errors import CacheIOError, InvalidInput, UpstreamError
from .types import RateLimitState
from .utils.metrics import MetricsCollector
from .utils.rate_limit import QuotaGuard, RateLimitConfig
from .utils.retry import RetryConfig, retry_sync

logger = logging.getLogger(__name__)

RATE_LIMIT_ENDPOINT = "rate_limit"

# Keep error output in exceptions and logs readable
_STDERR_LIMIT = 500

Runner = Callable[..., Any]

# `gh version 2.40.1 (2023-12-13)`
_GH_VERSION = re.compile(r"gh version (\S+)")


@dataclass
class CLIStatus:
    """What the installed GitHub CLI reports about itself."""
    executable: str
    path: Optional[str] = None
    version: Optional[str] = None
    authenticated: bool = False
    error: Optional[str] = None
    detail: str = ""

    @property
    def available(self) -> bool:
        return self.path is not None

    @property
    def ready(self) -> bool:
        return self.available and self.authenticated


def _default_runner(argv: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    return subprocess.run(list(argv), capture_output=True, text=True, timeout=timeout, check=False)


class GitHubAPIClient:
    """
    Cached, rate-limited wrapper around `gh api` and `gh run list`.

    Safe to share between executor workers: the cache is atomic on disk
    and counters live in the shared MetricsCollector.

    Usage:
        client = GitHubAPIClient(config, metrics=metrics)
        client.init()
        runs = json.loads(client.run_list("--limit", "50", "--json", "name,status"))
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        cache: Optional[CacheStore] = None,
        metrics: Optional[MetricsCollector] = None,
        runner: Optional[Runner] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or HarnessConfig()
        self.metrics_collector = metrics or MetricsCollector()
        if cache is None and self.config.enable_cache:
            cache = CacheStore(
                self.config.get_github_cache_dir(),
                ttl=self.config.github_cache_ttl,
                name="github-api",
                metrics=self.metrics_collector,
            )
        self.cache = cache
        self._runner = runner or _default_runner
        self._sleep = sleep
        self.guard = QuotaGuard(
            RateLimitConfig(
                buffer=self.config.rate_limit_buffer,
                floor=self.config.rate_limit_floor,
                max_wait=self.config.rate_limit_max_wait,
            ),
            metrics=self.metrics_collector,
            sleep=sleep,
            clock=clock,
        )
        self._retry = RetryConfig(max_attempts=max(1, self.config.api_retry_attempts))

    def init(self) -> None:
        """
        Verify `gh` is installed and authenticated, then prepare the cache.

        Raises:
            UpstreamError: gh missing or not authenticated
            CacheIOError: cache directory cannot be created
        """
        status = self.status()
        if not status.ready:
            raise UpstreamError(status.error or "GitHub CLI is not ready", stderr=status.detail)
        logger.debug(f"Using {status.path} ({status.version or 'unknown version'})")

        if self.cache is not None:
            self.cache.init()
            self.cache.sweep()
        state = "enabled" if self.cache is not None else "disabled"
        logger.info(f"GitHub API client initialized with caching {state}")

    def status(self) -> CLIStatus:
        """
        Probe `gh --version` and `gh auth status`.

        Does not touch the API quota and never raises; problems end up in
        CLIStatus.error.
        """
        executable = self.config.github_executable
        status = CLIStatus(executable=executable, path=shutil.which(executable))
        if not status.available:
            status.error = f"GitHub CLI ({executable}) is required for API operations"
            return status

        try:
            version = self._run([executable, "--version"])
            if version.returncode == 0:
                match = _GH_VERSION.search(version.stdout or "")
                lines = (version.stdout or "").strip().splitlines()
                status.version = match.group(1) if match else (lines[0] if lines else None)
            auth = self._run([executable, "auth", "status"])
        except UpstreamError as exc:
            status.error = str(exc)
            return status

        status.authenticated = auth.returncode == 0
        if not status.authenticated:
            status.error = "GitHub CLI authentication required. Run 'gh auth login'"
            status.detail = _trim(auth.stderr)
        return status

    def call(self, endpoint: str) -> str:
        """
        Return the raw JSON body of `gh api <endpoint>`.

        Raises:
            InvalidInput: empty endpoint
            RateLimited: quota exhausted and the reset is too far away
            UpstreamError: gh failed (the failure is not cached)
        """
        if not endpoint or not endpoint.strip():
            raise InvalidInput("API endpoint must not be empty")
        return self._cached(
            f"api_{endpoint}",
            [self.config.github_executable, "api", endpoint],
            endpoint,
            check_quota=endpoint != RATE_LIMIT_ENDPOINT,
        )

    def run_list(self, *args: str) -> str:
        """Return the output of `gh run list <args>` (cached like call())."""
        return self._cached(
            "run_list_" + " ".join(args),
            [self.config.github_executable, "run", "list", *args],
            "run list",
            check_quota=True,
        )

    def get_rate_limit(self) -> RateLimitState:
        """
        Raises:
            UpstreamError: the call failed or returned an unparseable document
        """
        raw = self.call(RATE_LIMIT_ENDPOINT)
        try:
            return RateLimitState.from_payload(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise UpstreamError(f"Unparseable rate limit response: {exc}") from exc

    def check_rate_limit(self) -> RateLimitState:
        """
        Apply the quota policy before a live call.

        Blocks the calling thread until the reset when remaining is below
        the floor; the cached rate-limit entry is then dropped so the next
        check sees the refreshed quota.

        Raises:
            RateLimited: see QuotaGuard.enforce
        """
        state = self.get_rate_limit()
        waited = self.guard.enforce(state)
        if waited and self.cache is not None:
            self.cache.delete(string_cache_key(f"api_{RATE_LIMIT_ENDPOINT}"))
        return state

    def metrics(self) -> dict:
        """Return {api_calls_total, cache_hits, cache_hit_rate_percent, rate_limit_warnings}."""
        return self.metrics_collector.api_summary()

    def reset_metrics(self) -> None:
        self.metrics_collector.reset_api()

    def cleanup(self) -> int:
        """Flush the API cache. Returns the number of entries removed."""
        if self.cache is None:
            return 0
        return self.cache.flush()

    def _cached(self, identity: str, argv: List[str], label: str, check_quota: bool) -> str:
        self.metrics_collector.record_api_call()
        key = string_cache_key(identity)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                self.metrics_collector.record_cache_hit()
                logger.debug(f"Cache hit for {label}")
                return cached

        if check_quota:
            self.check_rate_limit()

        start = time.monotonic()
        try:
            result = self._run(argv)
        except UpstreamError:
            self.metrics_collector.record_api_operation(label, "error", time.monotonic() - start)
            raise
        duration = time.monotonic() - start

        if result.returncode != 0:
            self.metrics_collector.record_api_operation(label, "error", duration)
            stderr = _trim(result.stderr)
            logger.error(f"Failed to call GitHub API endpoint: {label} (exit {result.returncode})")
            raise UpstreamError(
                f"gh exited with status {result.returncode} for {label}: {stderr}",
                returncode=result.returncode,
                stderr=stderr,
            )

        self.metrics_collector.record_api_operation(label, "success", duration)
        if self.cache is not None:
            try:
                self.cache.put(key, result.stdout)
            except CacheIOError as exc:
                logger.warning(f"Could not cache response for {label}: {exc}")
        return result.stdout

    def _run(self, argv: List[str]) -> Any:
        def on_retry(attempt: int, exc: Exception) -> None:
            logger.warning(f"gh call failed ({exc}), retry {attempt}/{self._retry.max_attempts - 1}")

        try:
            return retry_sync(
                self._runner,
                argv,
                self.config.github_timeout,
                config=self._retry,
                on_retry=on_retry,
                sleep=self._sleep,
                label=" ".join(argv[:3]),
            )
        except subprocess.TimeoutExpired as exc:
            raise UpstreamError(f"gh timed out after {self.config.github_timeout}s: {' '.join(argv)}") from exc
        except OSError as exc:
            raise UpstreamError(f"Cannot run {argv[0]}: {exc}") from exc


def _trim(text: Optional[str]) -> str:
    text = (text or "").strip()
    return text[:_STDERR_LIMIT]
