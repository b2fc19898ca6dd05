"""Shared fixtures for cca-workflows tests."""

import json
import subprocess

import pytest

from cca_workflows.config import HarnessConfig
from cca_workflows.types import ResourceSample
from cca_workflows.utils.metrics import MetricsCollector


@pytest.fixture
def config(tmp_path):
    """HarnessConfig with every directory under tmp_path."""
    return HarnessConfig(
        cache_dir=str(tmp_path / "validate-cache"),
        github_cache_dir=str(tmp_path / "api-cache"),
        metrics_dir=str(tmp_path / "metrics"),
        parallel_job_timeout=10,
    )


@pytest.fixture
def metrics():
    return MetricsCollector()


def make_sample(memory=20.0, cpu=20.0, cores=8, load=1.0) -> ResourceSample:
    """Build a deterministic resource sample."""
    return ResourceSample(
        memory_percent=memory,
        cpu_percent=cpu,
        cpu_count=cores,
        load_average=load,
        available_memory_mb=4096.0,
    )


def rate_limit_payload(remaining=5000, reset=0, limit=5000) -> str:
    """JSON body shaped like `gh api rate_limit`."""
    rate = {"limit": limit, "used": limit - remaining, "remaining": remaining, "reset": reset}
    return json.dumps({"resources": {"core": rate}, "rate": rate})


class FakeGh:
    """
    Scripted stand-in for subprocess.run on `gh` argv lists.

    responses maps an argv tail (tuple after the executable) to either a
    (returncode, stdout) pair or an exception instance to raise.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def __call__(self, argv, timeout):
        self.calls.append(tuple(argv))
        tail = tuple(argv[1:])
        response = self.responses.get(tail, (1, ""))
        if isinstance(response, BaseException):
            raise response
        returncode, stdout = response
        return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr="" if returncode == 0 else "boom")

    def count(self, *tail) -> int:
        return sum(1 for call in self.calls if call[1:] == tail)
