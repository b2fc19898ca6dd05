"""
cca-workflows configuration handling.

Provides YAML configuration loading, environment overrides and validation.
"""

import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError

# Environment variable -> HarnessConfig field
ENV_OVERRIDES = {
    "MAX_PARALLEL_JOBS": "max_parallel_jobs",
    "MIN_PARALLEL_JOBS": "min_parallel_jobs",
    "MAX_SYSTEM_PARALLEL_JOBS": "max_system_parallel_jobs",
    "PARALLEL_JOB_TIMEOUT": "parallel_job_timeout",
    "CACHE_TTL": "cache_ttl",
    "CACHE_DIR": "cache_dir",
    "ENABLE_CACHE": "enable_cache",
    "MEMORY_LIMIT_PERCENT": "memory_limit_percent",
    "CPU_LIMIT_PERCENT": "cpu_limit_percent",
    "RESOURCE_MONITOR_ENABLED": "resource_monitor_enabled",
    "RESOURCE_CHECK_INTERVAL": "resource_check_interval",
    "GITHUB_API_RATE_LIMIT_BUFFER": "rate_limit_buffer",
    "LOG_LEVEL": "log_level",
    "LOG_FILE": "log_file",
    "METRICS_DIR": "metrics_dir",
}

MIN_CACHE_TTL = 60


def _default_dir(name: str) -> str:
    return str(Path(tempfile.gettempdir()) / name)


@dataclass
class HarnessConfig:
    """
    cca-workflows configuration.

    Can be loaded from a YAML file, overridden from the environment, or
    created programmatically. Call validate() before starting any work.
    """
    # Parallel execution
    max_parallel_jobs: int = 4
    min_parallel_jobs: int = 1
    max_system_parallel_jobs: int = 16
    parallel_job_timeout: int = 300  # seconds per item

    # Cache
    enable_cache: bool = True
    cache_dir: str = ""
    cache_ttl: int = 1800

    # Resource monitoring
    resource_monitor_enabled: bool = True
    memory_limit_percent: int = 80
    cpu_limit_percent: int = 90
    resource_check_interval: int = 5

    # GitHub API
    github_executable: str = "gh"
    github_timeout: int = 30
    github_cache_dir: str = ""
    rate_limit_buffer: int = 100
    rate_limit_floor: int = 10
    rate_limit_max_wait: int = 3600
    github_cache_ttl: int = 300
    api_retry_attempts: int = 2

    # Logging
    log_level: str = "INFO"
    log_file: str = ""
    log_format: str = "%(asctime)s %(name)s %(levelname)s %(message)s"
    log_max_bytes: int = 10485760  # 10MB
    log_backup_count: int = 3

    # Metrics
    metrics_dir: str = ""
    slow_operation_seconds: float = 5.0

    # Workflow analysis
    workflow_dir: str = ".github/workflows"
    workflow_analysis_limit: int = 50

    @classmethod
    def load(cls, path: str) -> "HarnessConfig":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If config file is invalid YAML
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HarnessConfig":
        """
        Create configuration from a sectioned dictionary.

        Missing or empty sections and keys keep their defaults.

        Raises:
            ConfigError: a section is not a mapping
        """
        parallel_cfg = _section(data, "parallel")
        cache_cfg = _section(data, "cache")
        resources_cfg = _section(data, "resources")
        github_cfg = _section(data, "github")
        logging_cfg = _section(data, "logging")
        metrics_cfg = _section(data, "metrics")
        workflows_cfg = _section(data, "workflows")

        defaults = cls()
        return cls(
            max_parallel_jobs=parallel_cfg.get("max_jobs", defaults.max_parallel_jobs),
            min_parallel_jobs=parallel_cfg.get("min_jobs", defaults.min_parallel_jobs),
            max_system_parallel_jobs=parallel_cfg.get("max_system_jobs", defaults.max_system_parallel_jobs),
            parallel_job_timeout=parallel_cfg.get("job_timeout", defaults.parallel_job_timeout),
            enable_cache=cache_cfg.get("enabled", defaults.enable_cache),
            cache_dir=cache_cfg.get("dir", defaults.cache_dir),
            cache_ttl=cache_cfg.get("ttl", defaults.cache_ttl),
            resource_monitor_enabled=resources_cfg.get("enabled", defaults.resource_monitor_enabled),
            memory_limit_percent=resources_cfg.get("memory_limit_percent", defaults.memory_limit_percent),
            cpu_limit_percent=resources_cfg.get("cpu_limit_percent", defaults.cpu_limit_percent),
            resource_check_interval=resources_cfg.get("check_interval", defaults.resource_check_interval),
            github_executable=github_cfg.get("executable", defaults.github_executable),
            github_timeout=github_cfg.get("timeout", defaults.github_timeout),
            github_cache_dir=github_cfg.get("cache_dir", defaults.github_cache_dir),
            rate_limit_buffer=github_cfg.get("rate_limit_buffer", defaults.rate_limit_buffer),
            rate_limit_floor=github_cfg.get("rate_limit_floor", defaults.rate_limit_floor),
            rate_limit_max_wait=github_cfg.get("rate_limit_max_wait", defaults.rate_limit_max_wait),
            github_cache_ttl=github_cfg.get("cache_ttl", defaults.github_cache_ttl),
            api_retry_attempts=github_cfg.get("retry_attempts", defaults.api_retry_attempts),
            log_level=logging_cfg.get("level", defaults.log_level),
            log_file=logging_cfg.get("file", defaults.log_file),
            log_format=logging_cfg.get("format", defaults.log_format),
            log_max_bytes=logging_cfg.get("max_bytes", defaults.log_max_bytes),
            log_backup_count=logging_cfg.get("backup_count", defaults.log_backup_count),
            metrics_dir=metrics_cfg.get("dir", defaults.metrics_dir),
            slow_operation_seconds=metrics_cfg.get("slow_operation_seconds", defaults.slow_operation_seconds),
            workflow_dir=workflows_cfg.get("dir", defaults.workflow_dir),
            workflow_analysis_limit=workflows_cfg.get("analysis_limit", defaults.workflow_analysis_limit),
        )

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "HarnessConfig":
        """
        Override fields from environment variables (see ENV_OVERRIDES).

        Values are converted to the field's type; unparseable numbers or
        booleans raise ConfigError.
        """
        environ = os.environ if environ is None else environ
        types = {f.name: f.type for f in fields(self)}

        for env_name, attr in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None:
                continue
            setattr(self, attr, _coerce(env_name, raw, types[attr]))
        return self

    def validate(self) -> None:
        """
        Check every value against its domain.

        Raises:
            ConfigError: on the first invalid value
        """
        _require_int(self.max_parallel_jobs, "MAX_PARALLEL_JOBS", minimum=1)
        _require_int(self.min_parallel_jobs, "MIN_PARALLEL_JOBS", minimum=1)
        _require_int(self.max_system_parallel_jobs, "MAX_SYSTEM_PARALLEL_JOBS", minimum=1)
        if self.min_parallel_jobs > self.max_system_parallel_jobs:
            raise ConfigError(
                f"MIN_PARALLEL_JOBS ({self.min_parallel_jobs}) exceeds "
                f"MAX_SYSTEM_PARALLEL_JOBS ({self.max_system_parallel_jobs})"
            )
        _require_int(self.parallel_job_timeout, "PARALLEL_JOB_TIMEOUT", minimum=1)
        _require_int(self.cache_ttl, "CACHE_TTL", minimum=MIN_CACHE_TTL)
        _require_int(self.memory_limit_percent, "MEMORY_LIMIT_PERCENT", minimum=1, maximum=100)
        _require_int(self.cpu_limit_percent, "CPU_LIMIT_PERCENT", minimum=1, maximum=100)
        _require_int(self.resource_check_interval, "RESOURCE_CHECK_INTERVAL", minimum=1)
        _require_bool(self.enable_cache, "ENABLE_CACHE")
        _require_bool(self.resource_monitor_enabled, "RESOURCE_MONITOR_ENABLED")

        _require_int(self.github_timeout, "github.timeout", minimum=1)
        _require_int(self.rate_limit_buffer, "github.rate_limit_buffer", minimum=0)
        _require_int(self.rate_limit_floor, "github.rate_limit_floor", minimum=0)
        _require_int(self.rate_limit_max_wait, "github.rate_limit_max_wait", minimum=1)
        _require_int(self.github_cache_ttl, "github.cache_ttl", minimum=1)
        _require_int(self.api_retry_attempts, "github.retry_attempts", minimum=1)
        if not self.github_executable:
            raise ConfigError("github.executable must not be empty")

        _require_int(self.workflow_analysis_limit, "workflows.analysis_limit", minimum=1)
        if isinstance(self.slow_operation_seconds, bool) or not isinstance(
            self.slow_operation_seconds, (int, float)
        ) or self.slow_operation_seconds <= 0:
            raise ConfigError(
                f"Invalid metrics.slow_operation_seconds value: {self.slow_operation_seconds}"
            )

    def get_cache_dir(self) -> str:
        """Directory for file-validation cache entries."""
        return self.cache_dir or _default_dir("validate-workflows-cache")

    def get_github_cache_dir(self) -> str:
        """Directory for cached GitHub API responses."""
        return self.github_cache_dir or _default_dir("github-api-cache")

    def get_metrics_dir(self) -> str:
        return self.metrics_dir or _default_dir("performance-metrics")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a sectioned dictionary."""
        return {
            "parallel": {
                "max_jobs": self.max_parallel_jobs,
                "min_jobs": self.min_parallel_jobs,
                "max_system_jobs": self.max_system_parallel_jobs,
                "job_timeout": self.parallel_job_timeout,
            },
            "cache": {
                "enabled": self.enable_cache,
                "dir": self.cache_dir,
                "ttl": self.cache_ttl,
            },
            "resources": {
                "enabled": self.resource_monitor_enabled,
                "memory_limit_percent": self.memory_limit_percent,
                "cpu_limit_percent": self.cpu_limit_percent,
                "check_interval": self.resource_check_interval,
            },
            "github": {
                "executable": self.github_executable,
                "timeout": self.github_timeout,
                "cache_dir": self.github_cache_dir,
                "rate_limit_buffer": self.rate_limit_buffer,
                "rate_limit_floor": self.rate_limit_floor,
                "rate_limit_max_wait": self.rate_limit_max_wait,
                "cache_ttl": self.github_cache_ttl,
                "retry_attempts": self.api_retry_attempts,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
                "format": self.log_format,
                "max_bytes": self.log_max_bytes,
                "backup_count": self.log_backup_count,
            },
            "metrics": {
                "dir": self.metrics_dir,
                "slow_operation_seconds": self.slow_operation_seconds,
            },
            "workflows": {
                "dir": self.workflow_dir,
                "analysis_limit": self.workflow_analysis_limit,
            },
        }

    def save(self, path: str) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> HarnessConfig:
    """
    Load defaults, then the YAML file (if any), then environment overrides,
    and validate the result.

    Raises:
        ConfigError: if any value is out of its domain
    """
    try:
        config = HarnessConfig.load(path) if path else HarnessConfig()
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot load config {path}: {exc}") from exc
    config.apply_env(environ)
    config.validate()
    return config


def _coerce(name: str, raw: str, field_type: Any) -> Any:
    if field_type in (bool, "bool"):
        value = raw.strip().lower()
        if value == "true":
            return True
        if value == "false":
            return False
        raise ConfigError(f"Invalid {name} value: {raw} (must be true or false)")
    if field_type in (int, "int"):
        try:
            return int(raw.strip())
        except ValueError:
            raise ConfigError(f"Invalid {name} value: {raw}") from None
    if field_type in (float, "float"):
        try:
            return float(raw.strip())
        except ValueError:
            raise ConfigError(f"Invalid {name} value: {raw}") from None
    return raw


def _require_int(value: Any, name: str, minimum: Optional[int] = None, maximum: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Invalid {name} value: {value!r}")
    if minimum is not None and value < minimum:
        raise ConfigError(f"Invalid {name} value: {value} (minimum {minimum})")
    if maximum is not None and value > maximum:
        raise ConfigError(f"Invalid {name} value: {value} (maximum {maximum})")


def _require_bool(value: Any, name: str) -> None:
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid {name} value: {value!r} (must be true or false)")


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    # `parallel:` with nothing under it loads as None
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return value
