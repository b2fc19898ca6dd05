"""Rate limit command."""

from datetime import datetime

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ...errors import HarnessError
from ...github_api import GitHubAPIClient
from ..app import get_config, get_metrics

console = Console()


@click.command("rate-limit")
@click.pass_context
def rate_limit(ctx: click.Context) -> None:
    """Show the current GitHub API quota.

    Examples:

        cca-workflows rate-limit
    """
    config = get_config(ctx)
    client = GitHubAPIClient(config, metrics=get_metrics(ctx))

    try:
        client.init()
        state = client.get_rate_limit()
    except HarnessError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        ctx.exit(1)

    if state.remaining < config.rate_limit_floor:
        color = "red"
    elif state.remaining < config.rate_limit_buffer:
        color = "yellow"
    else:
        color = "green"

    table = Table(title="GitHub API Rate Limit")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("limit", str(state.limit))
    table.add_row("used", str(state.used))
    table.add_row("remaining", f"[{color}]{state.remaining}[/{color}]")
    table.add_row("reset", datetime.fromtimestamp(state.reset).isoformat(timespec="seconds"))
    table.add_row("reset in", f"{max(0, state.seconds_until_reset()):.0f}s")
    console.print(table)
