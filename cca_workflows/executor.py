"""
Adaptive parallel executor.

Runs a registered task over a list of items with a bounded thread pool:

- tasks are looked up by name in a TaskRegistry validated at registration
- every item is attempted; failures are counted, never propagated
- per-item timeouts count as failures
- adaptive mode sizes the pool from the ResourceMonitor
- cooperative cancellation through a CancellationToken, with a
  CleanupStack that runs callbacks in reverse registration order
"""

import logging
import re
import signal
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .config import HarnessConfig
from .errors import ConstraintViolation, InvalidInput
from .resources import ResourceMonitor
from .types import ExecutorState, JobResult, RunResult
from .utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)

ADAPTIVE = "adaptive"

_TASK_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")

# How often the dispatcher wakes up to check for cancellation
POLL_INTERVAL = 0.1

Task = Callable[[Any], Any]
ProgressCallback = Callable[[int, int], None]


class TaskRegistry:
    """
    Maps task names to callables.

    Usage:
        registry = TaskRegistry()

        @registry.task("validate_workflow")
        def validate(path):
            ...
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()

    def register(self, name: str, func: Task) -> Task:
        """
        Register a callable under a name.

        Raises:
            InvalidInput: unsafe name or non-callable func
        """
        _validate_task_name(name)
        if not callable(func):
            raise InvalidInput(f"Task {name!r} is not callable")
        with self._lock:
            self._tasks[name] = func
        return func

    def task(self, name: Optional[str] = None) -> Callable[[Task], Task]:
        """Decorator form of register(); defaults to the function's name."""
        def decorator(func: Task) -> Task:
            return self.register(name or func.__name__, func)
        return decorator

    def get(self, name: str) -> Task:
        """
        Raises:
            InvalidInput: unsafe or unknown name
        """
        _validate_task_name(name)
        with self._lock:
            func = self._tasks.get(name)
        if func is None:
            raise InvalidInput(f"Task {name} not found")
        return func

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._tasks)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tasks


class CancellationToken:
    """Cooperative cancellation flag shared by the dispatcher and workers."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.signum: Optional[int] = None

    def cancel(self, signum: Optional[int] = None) -> None:
        if signum is not None and self.signum is None:
            self.signum = signum
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class CleanupStack:
    """
    Cleanup callbacks run in reverse order of registration.

    A failing callback is logged and the remaining ones still run. Can be
    used as a context manager; callbacks run on exit.
    """

    def __init__(self) -> None:
        self._callbacks: List[tuple] = []
        self._lock = threading.Lock()

    def push(self, callback: Callable[[], Any], name: Optional[str] = None) -> None:
        if not callable(callback):
            raise InvalidInput("Cleanup callback must be callable")
        with self._lock:
            self._callbacks.append((name or getattr(callback, "__name__", repr(callback)), callback))

    def run(self) -> int:
        """
        Run and clear all callbacks, newest first.

        Returns:
            Number of callbacks that failed
        """
        with self._lock:
            callbacks = list(reversed(self._callbacks))
            self._callbacks.clear()

        failed = 0
        for name, callback in callbacks:
            logger.info(f"Running cleanup: {name}")
            try:
                callback()
            except Exception as exc:
                failed += 1
                logger.warning(f"Cleanup function {name} failed: {exc}")
        return failed

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def __enter__(self) -> "CleanupStack":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.run()


class ShutdownHandler:
    """
    Installs SIGINT/SIGTERM handlers that cancel a token.

    Must be installed from the main thread. In-flight workers are left to
    finish; the executor reports unfinished items as incomplete.

    Usage:
        token = CancellationToken()
        with ShutdownHandler(token):
            result = executor.run("task", 4, items, token=token)
    """

    def __init__(self, token: CancellationToken, cleanup: Optional[CleanupStack] = None):
        self.token = token
        self.cleanup = cleanup
        self._installed = False
        self._original_sigterm: Any = None
        self._original_sigint: Any = None

    def install(self) -> None:
        if self._installed:
            return

        self._original_sigterm = signal.getsignal(signal.SIGTERM)
        self._original_sigint = signal.getsignal(signal.SIGINT)

        def handle_signal(signum: int, frame: Any) -> None:
            sig_name = "SIGTERM" if signum == signal.SIGTERM else "SIGINT"
            logger.warning(f"Received {sig_name}, cancelling remaining work...")
            self.token.cancel(signum)

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)
        self._installed = True
        logger.debug("Signal handlers installed for graceful shutdown")

    def remove(self) -> None:
        if not self._installed:
            return

        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)
        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)

        self._installed = False
        logger.debug("Signal handlers removed")

    @property
    def exit_code(self) -> Optional[int]:
        """128 + signal number once a signal was received."""
        if self.token.signum is None:
            return None
        return 128 + self.token.signum

    def __enter__(self) -> "ShutdownHandler":
        self.install()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.remove()
        if self.token.cancelled and self.cleanup is not None:
            logger.warning("Interrupted, cleaning up...")
            self.cleanup.run()
            logger.info("Cleanup completed")


class _JobTimeout(Exception):
    pass


class ParallelExecutor:
    """
    Runs a named task over items with up to N concurrent workers.

    Usage:
        executor = ParallelExecutor(registry, config, metrics=metrics)
        result = executor.run("validate_workflow", "adaptive", paths)
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        registry: TaskRegistry,
        config: Optional[HarnessConfig] = None,
        monitor: Optional[ResourceMonitor] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.config = config or HarnessConfig()
        self.monitor = monitor or ResourceMonitor(self.config)
        self.metrics = metrics
        self._state = ExecutorState.IDLE
        self._run_lock = threading.Lock()

    @property
    def state(self) -> ExecutorState:
        return self._state

    def resolve_jobs(self, max_jobs: Union[int, str, None], operation: str = "parallel") -> int:
        """
        Turn a job request into a concrete worker count.

        Args:
            max_jobs: Positive int, "adaptive", or None for the configured default

        Raises:
            InvalidInput: anything else
        """
        if max_jobs is None:
            max_jobs = self.config.max_parallel_jobs
        if max_jobs == ADAPTIVE:
            return self._adaptive_jobs(operation)
        if isinstance(max_jobs, bool) or not isinstance(max_jobs, int) or max_jobs < 1:
            raise InvalidInput(f"Invalid job count: {max_jobs!r}")
        return max_jobs

    def _adaptive_jobs(self, operation: str) -> int:
        base = self.config.max_parallel_jobs
        if not self.config.resource_monitor_enabled:
            logger.debug(f"Resource monitoring disabled, using {base} jobs")
            return base

        sample = self.monitor.current()
        try:
            self.monitor.check_limits(sample=sample)
        except ConstraintViolation as exc:
            jobs = self.config.min_parallel_jobs
            logger.warning(f"{exc}; falling back to {jobs} job(s)")
        else:
            jobs = self.monitor.optimal_jobs(base, sample=sample)

        if self.metrics:
            self.metrics.record_resource_usage(operation, jobs, sample)
        return jobs

    def run(
        self,
        function_name: str,
        max_jobs: Union[int, str, None],
        items: Iterable[Any],
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """
        Apply a registered task to every item.

        Args:
            function_name: Registered task name
            max_jobs: Worker count, "adaptive", or None for the default
            items: Work items; each is passed to the task unchanged
            timeout: Per-item timeout in seconds (defaults to PARALLEL_JOB_TIMEOUT)
            token: Cancellation token (a fresh one if omitted)
            on_progress: Called with (completed, total) after each item

        Returns:
            RunResult with one JobResult per item, in input order

        Raises:
            InvalidInput: unknown/unsafe task name or bad job count
            RuntimeError: another run is in progress on this executor
        """
        func = self.registry.get(function_name)
        items = list(items)
        if timeout is None:
            timeout = self.config.parallel_job_timeout
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise InvalidInput(f"Invalid job timeout: {timeout!r}")

        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("ParallelExecutor.run() is already in progress")
        try:
            self._state = ExecutorState.DISPATCHING
            jobs = self.resolve_jobs(max_jobs, function_name)
            token = token or CancellationToken()
            return self._execute(function_name, func, jobs, items, timeout, token, on_progress)
        finally:
            self._state = ExecutorState.DONE
            self._run_lock.release()

    def _execute(
        self,
        function_name: str,
        func: Task,
        jobs: int,
        items: List[Any],
        timeout: float,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> RunResult:
        start = time.monotonic()
        result = RunResult(function_name=function_name, jobs=jobs)
        if not items:
            return result

        workers = min(jobs, len(items))
        logger.info(f"Running {function_name} on {len(items)} item(s) with {workers} worker(s)")

        slots: List[Optional[JobResult]] = [None] * len(items)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"cca-{function_name}")
        try:
            futures = {
                pool.submit(self._invoke, function_name, func, item, timeout, token): index
                for index, item in enumerate(items)
            }
            self._state = ExecutorState.AWAITING
            pending = set(futures)
            completed = 0
            while pending:
                done, pending = wait(pending, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    if future.cancelled():
                        continue
                    slots[futures[future]] = future.result()
                    completed += 1
                    if on_progress:
                        on_progress(completed, len(items))
                if token.cancelled:
                    break
        finally:
            pool.shutdown(wait=not token.cancelled, cancel_futures=True)

        self._state = ExecutorState.AGGREGATING
        for index, item in enumerate(items):
            job = slots[index]
            if job is None:
                job = JobResult(item=item, success=False, incomplete=True, error="interrupted")
            result.results.append(job)

        if token.cancelled:
            result.interrupted_by = token.signum
        result.duration = time.monotonic() - start

        if result.failures or result.incomplete:
            logger.error(
                f"{function_name}: {result.failures} failed, {result.incomplete} incomplete "
                f"of {result.total} item(s)"
            )
        else:
            logger.info(f"{function_name}: all {result.total} item(s) succeeded")
        return result

    def _invoke(
        self,
        function_name: str,
        func: Task,
        item: Any,
        timeout: float,
        token: CancellationToken,
    ) -> JobResult:
        if token.cancelled:
            return JobResult(item=item, success=False, incomplete=True, error="cancelled before start")

        start = time.monotonic()
        value = None
        error: Optional[str] = None
        timed_out = False
        try:
            value = _call_with_timeout(func, item, timeout)
            success = value is not False
            if not success:
                error = "task returned False"
        except _JobTimeout:
            success = False
            timed_out = True
            error = f"timed out after {timeout}s"
        except Exception as exc:
            success = False
            error = f"{type(exc).__name__}: {exc}"
        duration = time.monotonic() - start

        if not success:
            logger.error(f"{function_name} failed for {item!r}: {error}")
        if self.metrics:
            self.metrics.record_operation(function_name, duration, success)

        return JobResult(
            item=item,
            success=success,
            value=value,
            error=error,
            duration=duration,
            timed_out=timed_out,
        )


def _call_with_timeout(func: Task, item: Any, timeout: float) -> Any:
    """
    Run func(item) in a helper thread and wait at most timeout seconds.

    Python threads cannot be killed; a timed-out call keeps running in
    the background as a daemon thread and its result is discarded.
    SystemExit and other BaseExceptions from the task surface as
    RuntimeError so they fail the item instead of ending the run.
    """
    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = func(item)
        except BaseException as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=target, daemon=True, name=f"cca-job-{threading.get_ident()}")
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise _JobTimeout()
    if "error" in outcome:
        exc = outcome["error"]
        if isinstance(exc, Exception):
            raise exc
        raise RuntimeError(f"task raised {type(exc).__name__}: {exc}") from exc
    if "value" not in outcome:
        raise RuntimeError("task ended without a result")
    return outcome["value"]


def _validate_task_name(name: Any) -> None:
    if not isinstance(name, str) or not _TASK_NAME.match(name):
        raise InvalidInput(f"Unsafe or empty task name: {name!r}")
