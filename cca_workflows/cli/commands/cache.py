"""Cache management commands."""

import click
from rich.console import Console
from rich.table import Table

from ...cache import CacheStore
from ..app import get_config

console = Console()

CACHE_CHOICES = ["validation", "api", "all"]


def _stores(ctx: click.Context, which: str) -> list:
    config = get_config(ctx)
    stores = []
    if which in ("validation", "all"):
        stores.append(CacheStore(config.get_cache_dir(), ttl=config.cache_ttl, name="validate-workflows"))
    if which in ("api", "all"):
        stores.append(CacheStore(config.get_github_cache_dir(), ttl=config.github_cache_ttl, name="github-api"))
    return stores


def which_option(f):
    return click.option(
        "--which", "-w",
        type=click.Choice(CACHE_CHOICES),
        default="all",
        help="Cache to operate on (default: all)",
    )(f)


@click.group()
def cache() -> None:
    """Inspect and maintain the on-disk caches.

    Examples:

        cca-workflows cache stats

        cca-workflows cache sweep --which api

        cca-workflows cache flush
    """


@cache.command()
@which_option
@click.pass_context
def stats(ctx: click.Context, which: str) -> None:
    """Show entry counts and sizes."""
    table = Table(title="Caches")
    table.add_column("Cache", style="cyan")
    table.add_column("Directory")
    table.add_column("TTL", justify="right")
    table.add_column("Entries", justify="right")
    table.add_column("Size", justify="right")

    for store in _stores(ctx, which):
        info = store.stats()
        table.add_row(store.name, str(info.directory), f"{store.ttl}s", str(info.entries), f"{info.total_bytes} B")

    console.print(table)


@cache.command()
@which_option
@click.pass_context
def sweep(ctx: click.Context, which: str) -> None:
    """Remove expired entries."""
    for store in _stores(ctx, which):
        removed = store.sweep()
        console.print(f"[green]✓[/green] {store.name}: removed {removed} expired entr{'y' if removed == 1 else 'ies'}")


@cache.command()
@which_option
@click.confirmation_option(prompt="Delete all cache entries?")
@click.pass_context
def flush(ctx: click.Context, which: str) -> None:
    """Remove every entry."""
    for store in _stores(ctx, which):
        removed = store.flush()
        console.print(f"[green]✓[/green] {store.name}: removed {removed} entr{'y' if removed == 1 else 'ies'}")
