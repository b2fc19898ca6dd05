"""
cca-workflows: parallel, cached and rate-limited tooling for GitHub Actions workflows.

A Python library and CLI for validating and analyzing a repository's
workflow files. Work fans out over an adaptive thread pool sized from
current host load; results and GitHub API responses are cached on disk
with atomic writes; API calls respect the remaining quota.

Basic Usage:
    from cca_workflows import (
        HarnessConfig, MetricsCollector, ParallelExecutor, TaskRegistry,
    )

    registry = TaskRegistry()

    @registry.task("lint")
    def lint(path):
        return check(path)

    executor = ParallelExecutor(registry, HarnessConfig(), metrics=MetricsCollector())
    result = executor.run("lint", "adaptive", ["a.yml", "b.yml"])
    print(result.exit_code)

API Client:
    from cca_workflows import GitHubAPIClient

    client = GitHubAPIClient()
    client.init()
    state = client.get_rate_limit()
    print(state.remaining)
"""

from .cache import CacheStore, cache_key, file_cache_key, string_cache_key
from .config import HarnessConfig, load_config
from .errors import (
    CacheIOError,
    ConfigError,
    ConstraintViolation,
    HarnessError,
    InvalidInput,
    RateLimited,
    UpstreamError,
)
from .executor import (
    ADAPTIVE,
    CancellationToken,
    CleanupStack,
    ParallelExecutor,
    ShutdownHandler,
    TaskRegistry,
)
from .github_api import CLIStatus, GitHubAPIClient
from .resources import ResourceMonitor
from .types import CacheStats, ExecutorState, JobResult, RateLimitState, ResourceSample, RunResult
from .utils.metrics import MetricsCollector, MetricsConfig
from .workflows import (
    ValidationResult,
    ValidationSummary,
    WorkflowAnalyzer,
    WorkflowValidator,
    discover_workflows,
    validate_workflow_file,
)

__version__ = "2.1.0"

__all__ = [
    # Cache
    "CacheStore",
    "cache_key",
    "file_cache_key",
    "string_cache_key",
    # Config
    "HarnessConfig",
    "load_config",
    # Errors
    "CacheIOError",
    "ConfigError",
    "ConstraintViolation",
    "HarnessError",
    "InvalidInput",
    "RateLimited",
    "UpstreamError",
    # Executor
    "ADAPTIVE",
    "CancellationToken",
    "CleanupStack",
    "ParallelExecutor",
    "ShutdownHandler",
    "TaskRegistry",
    # GitHub
    "CLIStatus",
    "GitHubAPIClient",
    # Resources
    "ResourceMonitor",
    # Types
    "CacheStats",
    "ExecutorState",
    "JobResult",
    "RateLimitState",
    "ResourceSample",
    "RunResult",
    # Metrics
    "MetricsCollector",
    "MetricsConfig",
    # Workflows
    "ValidationResult",
    "ValidationSummary",
    "WorkflowAnalyzer",
    "WorkflowValidator",
    "discover_workflows",
    "validate_workflow_file",
]
