"""Tests for cca_workflows.config module."""

import pytest

from cca_workflows.config import HarnessConfig, load_config
from cca_workflows.errors import ConfigError, InvalidInput


class TestHarnessConfigFromDict:
    """Tests for HarnessConfig.from_dict()."""

    def test_default_values(self):
        """Empty dict should use sensible defaults."""
        config = HarnessConfig.from_dict({})

        assert config.max_parallel_jobs == 4
        assert config.min_parallel_jobs == 1
        assert config.max_system_parallel_jobs == 16
        assert config.cache_ttl == 1800
        assert config.memory_limit_percent == 80
        assert config.cpu_limit_percent == 90
        assert config.enable_cache is True
        assert config.rate_limit_buffer == 100
        assert config.rate_limit_floor == 10
        assert config.rate_limit_max_wait == 3600
        assert config.github_cache_ttl == 300

    def test_sections(self):
        """Each YAML section should map onto its fields."""
        config = HarnessConfig.from_dict({
            "parallel": {"max_jobs": 8, "job_timeout": 60},
            "cache": {"enabled": False, "ttl": 600, "dir": "/tmp/c"},
            "resources": {"memory_limit_percent": 70},
            "github": {"rate_limit_buffer": 200, "executable": "/opt/gh"},
            "logging": {"level": "DEBUG"},
            "metrics": {"slow_operation_seconds": 2.5},
            "workflows": {"dir": "wf", "analysis_limit": 20},
        })
        assert config.max_parallel_jobs == 8
        assert config.parallel_job_timeout == 60
        assert config.enable_cache is False
        assert config.cache_dir == "/tmp/c"
        assert config.memory_limit_percent == 70
        assert config.rate_limit_buffer == 200
        assert config.github_executable == "/opt/gh"
        assert config.log_level == "DEBUG"
        assert config.slow_operation_seconds == 2.5
        assert config.workflow_dir == "wf"
        assert config.workflow_analysis_limit == 20

    def test_to_dict_roundtrip(self):
        """to_dict() output should load back to an equal config."""
        config = HarnessConfig(max_parallel_jobs=6, cache_ttl=120, rate_limit_floor=5)
        assert HarnessConfig.from_dict(config.to_dict()) == config


class TestLoadSave:
    """Tests for YAML load/save."""

    def test_save_and_load(self, tmp_path):
        """save() then load() should preserve values."""
        path = tmp_path / "config.yaml"
        HarnessConfig(max_parallel_jobs=7, log_level="WARNING").save(str(path))
        loaded = HarnessConfig.load(str(path))
        assert loaded.max_parallel_jobs == 7
        assert loaded.log_level == "WARNING"

    def test_empty_file(self, tmp_path):
        """An empty file should give defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert HarnessConfig.load(str(path)) == HarnessConfig()

    def test_load_config_bad_yaml(self, tmp_path):
        """Unparseable YAML should become ConfigError."""
        path = tmp_path / "bad.yaml"
        path.write_text("parallel: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(path), environ={})

    def test_load_config_non_mapping(self, tmp_path):
        """A YAML list should be rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(str(path), environ={})

    def test_load_config_empty_section(self, tmp_path):
        """A section with no keys should keep its defaults."""
        path = tmp_path / "sparse.yaml"
        path.write_text("parallel:\ncache:\n  ttl: 120\n")
        config = load_config(str(path), environ={})
        assert config.max_parallel_jobs == 4
        assert config.cache_ttl == 120

    @pytest.mark.parametrize("body", ["parallel: 5\n", "cache: [a, b]\n", "github: text\n"])
    def test_load_config_section_not_mapping(self, tmp_path, body):
        """A scalar or list where a section belongs should become ConfigError."""
        path = tmp_path / "bad-section.yaml"
        path.write_text(body)
        with pytest.raises(ConfigError, match="must be a mapping"):
            load_config(str(path), environ={})

    def test_load_config_missing_file(self, tmp_path):
        """A missing file should become ConfigError."""
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nope.yaml"), environ={})


class TestEnvironmentOverrides:
    """Tests for apply_env()."""

    def test_numeric_and_bool_overrides(self):
        """Environment values should be coerced to field types."""
        config = HarnessConfig().apply_env({
            "MAX_PARALLEL_JOBS": "12",
            "CACHE_TTL": "900",
            "ENABLE_CACHE": "false",
            "RESOURCE_MONITOR_ENABLED": "TRUE",
            "LOG_LEVEL": "DEBUG",
        })
        assert config.max_parallel_jobs == 12
        assert config.cache_ttl == 900
        assert config.enable_cache is False
        assert config.resource_monitor_enabled is True
        assert config.log_level == "DEBUG"

    def test_env_overrides_file(self, tmp_path):
        """Environment should win over the YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text("parallel:\n  max_jobs: 3\n")
        config = load_config(str(path), environ={"MAX_PARALLEL_JOBS": "9"})
        assert config.max_parallel_jobs == 9

    @pytest.mark.parametrize("env", [
        {"MAX_PARALLEL_JOBS": "many"},
        {"ENABLE_CACHE": "yes"},
        {"RESOURCE_MONITOR_ENABLED": "1"},
    ])
    def test_unparseable_values(self, env):
        """Unparseable numbers and booleans should raise ConfigError."""
        with pytest.raises(ConfigError):
            HarnessConfig().apply_env(env)


class TestValidate:
    """Tests for validate()."""

    def test_defaults_valid(self):
        """Default configuration should validate."""
        HarnessConfig().validate()

    @pytest.mark.parametrize("env", [
        {"CACHE_TTL": "59"},
        {"MEMORY_LIMIT_PERCENT": "0"},
        {"MEMORY_LIMIT_PERCENT": "101"},
        {"CPU_LIMIT_PERCENT": "150"},
        {"MAX_PARALLEL_JOBS": "0"},
        {"PARALLEL_JOB_TIMEOUT": "0"},
        {"MIN_PARALLEL_JOBS": "20", "MAX_SYSTEM_PARALLEL_JOBS": "4"},
    ])
    def test_out_of_domain(self, env):
        """Values outside their domain should fail before any work begins."""
        with pytest.raises(ConfigError):
            load_config(environ=env)

    def test_cache_ttl_minimum_accepted(self):
        """CACHE_TTL of exactly 60 should be accepted."""
        assert load_config(environ={"CACHE_TTL": "60"}).cache_ttl == 60

    def test_config_error_is_invalid_input(self):
        """ConfigError should be catchable as InvalidInput and ValueError."""
        with pytest.raises(InvalidInput):
            load_config(environ={"CACHE_TTL": "1"})
        with pytest.raises(ValueError):
            load_config(environ={"CACHE_TTL": "1"})

    def test_default_dirs(self):
        """Unset directories should fall back to the temp dir."""
        config = HarnessConfig()
        assert config.get_cache_dir().endswith("validate-workflows-cache")
        assert config.get_github_cache_dir().endswith("github-api-cache")
        assert config.get_metrics_dir().endswith("performance-metrics")
