#!/usr/bin/env python3
"""
Validate a repository's workflows from Python and print a short summary.

Usage:
    python examples/validate_workflows.py [WORKFLOW_DIR]
"""

import sys

from cca_workflows import (
    CacheStore,
    HarnessConfig,
    MetricsCollector,
    ParallelExecutor,
    TaskRegistry,
    WorkflowValidator,
    discover_workflows,
)
from cca_workflows.utils.logging import setup_logging


def main() -> int:
    config = HarnessConfig()
    setup_logging(config)
    metrics = MetricsCollector()

    directory = sys.argv[1] if len(sys.argv) > 1 else config.workflow_dir
    files = discover_workflows(directory)
    if not files:
        print(f"No workflow files in {directory}")
        return 0

    cache = CacheStore(config.get_cache_dir(), ttl=config.cache_ttl, metrics=metrics).init()
    executor = ParallelExecutor(TaskRegistry(), config, metrics=metrics)
    summary = WorkflowValidator(executor, cache).validate(files, max_jobs="adaptive")

    for result in summary.results:
        mark = "ok " if result.ok else "ERR"
        print(f"[{mark}] {result.path}")
        for message in result.errors + result.warnings:
            print(f"      {message}")

    print()
    print(metrics.report())
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
