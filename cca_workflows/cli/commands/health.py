"""Health check command."""

import click
from rich.console import Console
from rich.table import Table

from ...github_api import GitHubAPIClient
from ...resources import ResourceMonitor
from ..app import get_config
from .version import cli_status_table

console = Console()


@click.command()
@click.option("--check-cli", is_flag=True, help="Also check that gh is installed and logged in")
@click.pass_context
def health(ctx: click.Context, check_cli: bool) -> None:
    """Check system resources and tool availability.

    Exits with status 1 when memory or CPU usage is above its limit, or
    with --check-cli when gh is missing or not logged in.

    Examples:

        cca-workflows health

        cca-workflows health --check-cli
    """
    config = get_config(ctx)
    monitor = ResourceMonitor(config)
    sample = monitor.sample()

    table = Table(title="System Resources")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_column("Limit")

    memory_color = "green" if sample.memory_percent <= config.memory_limit_percent else "red"
    cpu_color = "green" if sample.cpu_percent <= config.cpu_limit_percent else "red"
    table.add_row("memory", f"[{memory_color}]{sample.memory_percent:.1f}%[/{memory_color}]",
                  f"{config.memory_limit_percent}%")
    table.add_row("cpu", f"[{cpu_color}]{sample.cpu_percent:.1f}%[/{cpu_color}]", f"{config.cpu_limit_percent}%")
    table.add_row("load average", f"{sample.load_average:.2f}", f"{sample.cpu_count} cores")
    table.add_row("available memory", f"{sample.available_memory_mb:.0f} MB", "-")
    table.add_row(
        "adaptive jobs",
        str(monitor.optimal_jobs(config.max_parallel_jobs, sample=sample)),
        f"{config.min_parallel_jobs}-{config.max_system_parallel_jobs}",
    )
    console.print(table)

    if sample.fallback:
        console.print("[yellow]Resource sampling unavailable, showing defaults[/yellow]")

    healthy = True
    if check_cli:
        status = GitHubAPIClient(config).status()
        console.print(cli_status_table(status))
        healthy = status.ready

    if monitor.within_limits(sample):
        console.print("[green]✓ System is within resource limits[/green]")
    else:
        console.print("[red]✗ System is over its resource limits[/red]")
        healthy = False

    if not healthy:
        ctx.exit(1)
