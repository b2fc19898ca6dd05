"""Version command."""

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ... import __version__
from ...github_api import CLIStatus, GitHubAPIClient
from ..app import get_config

console = Console()


@click.command()
@click.option("--check-cli", is_flag=True, help="Also report the GitHub CLI version and login state")
@click.pass_context
def version(ctx: click.Context, check_cli: bool) -> None:
    """Show cca-workflows version.

    Examples:

        cca-workflows version

        cca-workflows version --check-cli
    """
    console.print(f"[bold]cca-workflows[/bold] v{__version__}")

    if check_cli:
        console.print()
        console.print(cli_status_table(GitHubAPIClient(get_config(ctx)).status()))


def cli_status_table(status: CLIStatus) -> Table:
    """Render a gh CLI probe as a two-column table."""
    table = Table(title="GitHub CLI")
    table.add_column("Check", style="cyan")
    table.add_column("Result")

    def mark(ok: bool) -> str:
        return "[green]✓[/green]" if ok else "[red]✗[/red]"

    table.add_row("installed", f"{mark(status.available)} {escape(status.path or status.executable)}")
    table.add_row("version", escape(status.version or "-"))
    table.add_row("authenticated", mark(status.authenticated))
    if status.error:
        table.add_row("error", f"[red]{escape(status.error)}[/red]")
    return table
