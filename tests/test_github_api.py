"""Tests for cca_workflows.github_api module."""

import json
import subprocess

import pytest

from cca_workflows.cache import string_cache_key
from cca_workflows.errors import CacheIOError, InvalidInput, RateLimited, UpstreamError
from cca_workflows.github_api import GitHubAPIClient
from cca_workflows.utils.metrics import MetricsCollector

from conftest import FakeGh, rate_limit_payload

NOW = 1_700_000_000

RATE_LIMIT = ("api", "rate_limit")
REPOS = ("api", "repos/acme/widgets")


@pytest.fixture
def sleeps():
    return []


def make_client(config, gh, sleeps, metrics=None):
    client = GitHubAPIClient(
        config,
        metrics=metrics or MetricsCollector(),
        runner=gh,
        sleep=sleeps.append,
        clock=lambda: NOW,
    )
    client.cache.init()
    return client


class TestCall:
    """Tests for GitHubAPIClient.call()."""

    def test_live_call_then_cache_hit(self, config, sleeps):
        """Second call should be served from cache without running gh."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload()), REPOS: (0, '{"id": 1}')})
        client = make_client(config, gh, sleeps)

        assert client.call("repos/acme/widgets") == '{"id": 1}'
        assert client.call("repos/acme/widgets") == '{"id": 1}'

        assert gh.count(*REPOS) == 1
        metrics = client.metrics()
        assert metrics["api_calls_total"] == 3  # two repo calls + one rate limit check
        assert metrics["cache_hits"] == 1
        assert metrics["cache_hit_rate_percent"] == 33

    def test_quota_checked_before_live_call(self, config, sleeps):
        """The rate limit should be fetched before the endpoint."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload()), REPOS: (0, "{}")})
        client = make_client(config, gh, sleeps)
        client.call("repos/acme/widgets")
        assert [c[1:] for c in gh.calls] == [RATE_LIMIT, REPOS]

    def test_rate_limit_endpoint_skips_quota_check(self, config, sleeps):
        """Fetching rate_limit itself must not recurse."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload())})
        client = make_client(config, gh, sleeps)
        client.get_rate_limit()
        assert gh.calls == [("gh",) + RATE_LIMIT]

    def test_failure_raises_and_is_not_cached(self, config, sleeps):
        """Non-zero gh exit should raise UpstreamError and leave no cache entry."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload()), REPOS: (1, "")})
        client = make_client(config, gh, sleeps)

        with pytest.raises(UpstreamError) as exc_info:
            client.call("repos/acme/widgets")
        assert exc_info.value.returncode == 1
        assert exc_info.value.stderr == "boom"

        with pytest.raises(UpstreamError):
            client.call("repos/acme/widgets")
        assert gh.count(*REPOS) == 2

    def test_cached_rate_limit_survives_failing_live_call(self, config, sleeps):
        """A cached rate_limit should be returned even if gh would now fail."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload(remaining=4321))})
        client = make_client(config, gh, sleeps)
        assert client.get_rate_limit().remaining == 4321

        gh.responses[RATE_LIMIT] = (1, "")
        assert client.get_rate_limit().remaining == 4321
        assert gh.count(*RATE_LIMIT) == 1

    def test_cache_write_failure_returns_response(self, config, sleeps, monkeypatch):
        """A response that cannot be cached should still be returned."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload()), REPOS: (0, '{"id": 7}')})
        client = make_client(config, gh, sleeps)

        def broken_put(key, payload):
            raise CacheIOError("No space left on device")

        monkeypatch.setattr(client.cache, "put", broken_put)
        assert client.call("repos/acme/widgets") == '{"id": 7}'
        assert client.call("repos/acme/widgets") == '{"id": 7}'
        assert gh.count(*REPOS) == 2

    def test_empty_endpoint(self, config, sleeps):
        """Empty endpoints should be rejected."""
        client = make_client(config, FakeGh(), sleeps)
        with pytest.raises(InvalidInput):
            client.call("  ")

    def test_cache_disabled(self, config, sleeps):
        """With caching off every call should hit gh."""
        config.enable_cache = False
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload())})
        client = GitHubAPIClient(config, runner=gh, sleep=sleeps.append, clock=lambda: NOW)
        client.get_rate_limit()
        client.get_rate_limit()
        assert client.cache is None
        assert gh.count(*RATE_LIMIT) == 2

    def test_transport_error_retried_then_raised(self, config, sleeps):
        """Timeouts should be retried and then surface as UpstreamError."""
        config.api_retry_attempts = 3
        gh = FakeGh({RATE_LIMIT: subprocess.TimeoutExpired(["gh"], 30)})
        client = make_client(config, gh, sleeps)

        with pytest.raises(UpstreamError, match="timed out"):
            client.get_rate_limit()
        assert gh.count(*RATE_LIMIT) == 3
        assert sleeps == [1.0, 2.0]

    def test_run_list(self, config, sleeps):
        """run_list should pass arguments through and cache by them."""
        run_args = ("run", "list", "--limit", "5", "--json", "name")
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload()), run_args: (0, "[]")})
        client = make_client(config, gh, sleeps)

        assert client.run_list("--limit", "5", "--json", "name") == "[]"
        assert client.run_list("--limit", "5", "--json", "name") == "[]"
        assert gh.count(*run_args) == 1

    def test_malformed_rate_limit(self, config, sleeps):
        """Unparseable rate_limit bodies should raise UpstreamError."""
        gh = FakeGh({RATE_LIMIT: (0, "not json")})
        client = make_client(config, gh, sleeps)
        with pytest.raises(UpstreamError, match="Unparseable"):
            client.get_rate_limit()

    def test_rate_limit_from_core_resources(self, config, sleeps):
        """Payloads without a top-level rate should use resources.core."""
        body = json.dumps({"resources": {"core": {"limit": 60, "used": 10, "remaining": 50, "reset": NOW}}})
        gh = FakeGh({RATE_LIMIT: (0, body)})
        state = make_client(config, gh, sleeps).get_rate_limit()
        assert (state.limit, state.used, state.remaining) == (60, 10, 50)


class TestQuotaPolicy:
    """Tests for check_rate_limit() behavior around the buffer and floor."""

    def test_plenty_remaining(self, config, sleeps):
        """Above the buffer there should be no warning and no wait."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload(remaining=4000, reset=NOW + 60))})
        client = make_client(config, gh, sleeps)
        client.check_rate_limit()
        assert client.metrics()["rate_limit_warnings"] == 0
        assert sleeps == []

    def test_below_buffer_warns(self, config, sleeps):
        """Below the buffer a warning should be counted without waiting."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload(remaining=50, reset=NOW + 60))})
        client = make_client(config, gh, sleeps)
        client.check_rate_limit()
        assert client.metrics()["rate_limit_warnings"] == 1
        assert sleeps == []

    def test_below_floor_waits_for_reset(self, config, sleeps):
        """Below the floor with a near reset the caller should sleep exactly until reset."""
        gh = FakeGh({
            RATE_LIMIT: (0, rate_limit_payload(remaining=3, reset=NOW + 30)),
            REPOS: (0, "{}"),
        })
        client = make_client(config, gh, sleeps)

        assert client.call("repos/acme/widgets") == "{}"
        assert sleeps == [30]
        # stale quota snapshot dropped after the wait
        assert client.cache.get(string_cache_key("api_rate_limit")) is None

    def test_exhausted_with_distant_reset(self, config, sleeps):
        """remaining=1 with reset two hours out should raise RateLimited."""
        gh = FakeGh({
            RATE_LIMIT: (0, rate_limit_payload(remaining=1, reset=NOW + 7200)),
            REPOS: (0, "{}"),
        })
        client = make_client(config, gh, sleeps)

        with pytest.raises(RateLimited) as exc_info:
            client.call("repos/acme/widgets")
        assert exc_info.value.wait_seconds == 7200
        assert gh.count(*REPOS) == 0
        assert sleeps == []

    def test_exhausted_with_past_reset(self, config, sleeps):
        """A reset time in the past should also raise RateLimited."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload(remaining=0, reset=NOW - 5))})
        client = make_client(config, gh, sleeps)
        with pytest.raises(RateLimited):
            client.check_rate_limit()


class TestLifecycle:
    """Tests for init/cleanup/metrics reset."""

    def test_init_requires_gh(self, config, sleeps, monkeypatch):
        """Missing gh should raise UpstreamError."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: None)
        client = GitHubAPIClient(config, runner=FakeGh(), sleep=sleeps.append)
        with pytest.raises(UpstreamError, match="required"):
            client.init()

    def test_init_requires_auth(self, config, sleeps, monkeypatch):
        """Failing `gh auth status` should raise UpstreamError."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: "/usr/bin/gh")
        client = GitHubAPIClient(config, runner=FakeGh({("auth", "status"): (1, "")}), sleep=sleeps.append)
        with pytest.raises(UpstreamError, match="authentication"):
            client.init()

    def test_init_prepares_cache(self, config, sleeps, monkeypatch, tmp_path):
        """Successful init should create the cache directory."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: "/usr/bin/gh")
        client = GitHubAPIClient(config, runner=FakeGh({("auth", "status"): (0, "")}), sleep=sleeps.append)
        client.init()
        assert (tmp_path / "api-cache").is_dir()

    def test_status_reports_version_and_login(self, config, sleeps, monkeypatch):
        """status() should parse `gh --version` and read the auth state."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: "/usr/bin/gh")
        gh = FakeGh({
            ("--version",): (0, "gh version 2.40.1 (2023-12-13)\nhttps://github.com/cli/cli/releases/tag/v2.40.1\n"),
            ("auth", "status"): (0, ""),
        })
        status = GitHubAPIClient(config, runner=gh, sleep=sleeps.append).status()
        assert status.path == "/usr/bin/gh"
        assert status.version == "2.40.1"
        assert status.ready is True
        assert status.error is None

    def test_status_missing_gh(self, config, sleeps, monkeypatch):
        """Without gh on PATH nothing should be run."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: None)
        gh = FakeGh()
        status = GitHubAPIClient(config, runner=gh, sleep=sleeps.append).status()
        assert status.available is False
        assert status.ready is False
        assert "required" in status.error
        assert gh.calls == []

    def test_status_not_logged_in(self, config, sleeps, monkeypatch):
        """A failing auth check should be reported with gh's error output."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: "/usr/bin/gh")
        gh = FakeGh({("--version",): (0, "gh version 2.40.1 (2023-12-13)\n"), ("auth", "status"): (1, "")})
        status = GitHubAPIClient(config, runner=gh, sleep=sleeps.append).status()
        assert status.available is True
        assert status.authenticated is False
        assert status.version == "2.40.1"
        assert "gh auth login" in status.error
        assert status.detail == "boom"

    def test_status_never_raises(self, config, sleeps, monkeypatch):
        """Transport failures should end up in the error field."""
        monkeypatch.setattr("cca_workflows.github_api.shutil.which", lambda name: "/usr/bin/gh")
        gh = FakeGh({("--version",): subprocess.TimeoutExpired(["gh"], 10)})
        status = GitHubAPIClient(config, runner=gh, sleep=sleeps.append).status()
        assert status.ready is False
        assert "timed out" in status.error

    def test_cleanup_and_reset(self, config, sleeps):
        """cleanup() should flush the cache; reset_metrics() should zero counters."""
        gh = FakeGh({RATE_LIMIT: (0, rate_limit_payload())})
        client = make_client(config, gh, sleeps)
        client.get_rate_limit()

        assert client.cleanup() == 1
        client.reset_metrics()
        assert client.metrics() == {
            "api_calls_total": 0,
            "cache_hits": 0,
            "cache_hit_rate_percent": 0,
            "rate_limit_warnings": 0,
        }
