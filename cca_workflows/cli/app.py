"""cca-workflows CLI application."""

import logging
import os
from pathlib import Path

import click
from rich.console import Console

from .. import __version__
from ..config import HarnessConfig, load_config
from ..errors import ConfigError
from ..utils.logging import setup_logging
from ..utils.metrics import MetricsCollector, MetricsConfig

console = Console()


def find_config() -> str | None:
    """
    Find config file using standard priority order:

    1. CCA_WORKFLOWS_CONFIG environment variable
    2. .cca-workflows.yaml in current directory (project config)
    3. ~/.config/cca-workflows/config.yaml (user config)

    Returns None if no config found.
    """
    # 1. Environment variable (highest priority)
    env_config = os.environ.get("CCA_WORKFLOWS_CONFIG")
    if env_config:
        path = Path(env_config)
        if path.exists():
            return str(path)

    # 2. Project config in current directory
    project_config = Path.cwd() / ".cca-workflows.yaml"
    if project_config.exists():
        return str(project_config)

    # 3. User config in ~/.config/cca-workflows/
    user_config = Path.home() / ".config" / "cca-workflows" / "config.yaml"
    if user_config.exists():
        return str(user_config)

    return None


def get_config(ctx: click.Context) -> HarnessConfig:
    """Loaded configuration for the current invocation."""
    return ctx.obj["config"]


def get_metrics(ctx: click.Context) -> MetricsCollector:
    """Shared metrics collector for the current invocation."""
    return ctx.obj["metrics"]


def jobs_option(f):
    """Shared --jobs/-j option: a positive integer or 'adaptive'."""
    def parse(ctx, param, value):
        if value is None or value == "adaptive":
            return value
        if value.isdigit() and int(value) > 0:
            return int(value)
        raise click.BadParameter("must be a positive integer or 'adaptive'")

    return click.option(
        "--jobs", "-j",
        default=None,
        callback=parse,
        help="Parallel jobs: a number or 'adaptive' (default: MAX_PARALLEL_JOBS)",
    )(f)


@click.group()
@click.version_option(version=__version__, prog_name="cca-workflows")
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--no-config", is_flag=True, help="Disable config auto-loading")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--debug", is_flag=True, help="Debug mode")
@click.pass_context
def cli(ctx: click.Context, config: str, no_config: bool, verbose: bool, debug: bool) -> None:
    """cca-workflows: validate and analyze GitHub Actions workflows.

    Runs checks in parallel (sized to current system load), caches results
    on disk and keeps GitHub API usage within the rate limit.

    Config file locations (in priority order):

        1. -c/--config PATH (explicit)

        2. CCA_WORKFLOWS_CONFIG env var

        3. .cca-workflows.yaml (project config)

        4. ~/.config/cca-workflows/config.yaml (user config)

    Environment variables such as MAX_PARALLEL_JOBS or CACHE_TTL override
    the file.

    Examples:

        cca-workflows validate --jobs adaptive

        cca-workflows analyze --export-json metrics.json

        cca-workflows health
    """
    ctx.ensure_object(dict)

    # Determine config file
    if no_config:
        config = None
    elif config is None:
        config = find_config()
        if config and verbose:
            console.print(f"[dim]Using config: {config}[/dim]")

    try:
        settings = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        ctx.exit(1)

    if debug:
        settings.log_level = "DEBUG"
    elif verbose and settings.log_level.upper() not in ("DEBUG", "INFO"):
        settings.log_level = "INFO"
    setup_logging(settings)
    logging.getLogger(__name__).debug(f"Configuration loaded from {config or 'defaults'}")

    ctx.obj["config_path"] = config
    ctx.obj["config"] = settings
    ctx.obj["metrics"] = MetricsCollector(MetricsConfig(
        slow_operation_seconds=settings.slow_operation_seconds,
        export_dir=settings.get_metrics_dir(),
    ))
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug


# Import and register commands
from .commands import analyze, cache, health, rate_limit, validate, version

cli.add_command(validate.validate)
cli.add_command(analyze.analyze)
cli.add_command(cache.cache)
cli.add_command(rate_limit.rate_limit)
cli.add_command(health.health)
cli.add_command(version.version)
