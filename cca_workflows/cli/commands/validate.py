"""Validate command."""

from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from ...cache import CacheStore
from ...errors import HarnessError
from ...executor import CancellationToken, CleanupStack, ParallelExecutor, ShutdownHandler, TaskRegistry
from ...resources import ResourceMonitor
from ...workflows import WorkflowValidator, discover_workflows
from ..app import get_config, get_metrics, jobs_option

console = Console()


@click.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@jobs_option
@click.option("--no-cache", is_flag=True, help="Ignore and do not write the validation cache")
@click.option("--timeout", type=click.IntRange(min=1), default=None, help="Per-file timeout in seconds")
@click.pass_context
def validate(ctx: click.Context, paths: tuple, jobs, no_cache: bool, timeout: int) -> None:
    """Validate workflow files in parallel.

    PATHS may be files or directories; defaults to the configured
    workflow directory (.github/workflows).

    Examples:

        cca-workflows validate

        cca-workflows validate --jobs adaptive

        cca-workflows validate -j 2 .github/workflows/ci.yml
    """
    config = get_config(ctx)
    metrics = get_metrics(ctx)
    if timeout is not None:
        config.parallel_job_timeout = timeout

    files = _collect_files(paths or (config.workflow_dir,))
    if not files:
        console.print("[yellow]No workflow files found[/yellow]")
        return

    cache = None
    if config.enable_cache and not no_cache:
        try:
            cache = CacheStore(
                config.get_cache_dir(),
                ttl=config.cache_ttl,
                name="validate-workflows",
                metrics=metrics,
            ).init()
            cache.sweep()
        except HarnessError as e:
            console.print(f"[yellow]Cache disabled: {escape(str(e))}[/yellow]")
            cache = None

    executor = ParallelExecutor(TaskRegistry(), config, ResourceMonitor(config), metrics)
    validator = WorkflowValidator(executor, cache)

    token = CancellationToken()
    cleanup = CleanupStack()
    handler = ShutdownHandler(token, cleanup)
    if cache is not None:
        cleanup.push(cache.sweep, "sweep validation cache")

    try:
        with handler, Progress(
            TextColumn("[cyan]Validating"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            transient=True,
        ) as progress:
            task_id = progress.add_task("validate", total=len(files))
            summary = validator.validate(
                files,
                max_jobs=jobs,
                token=token,
                on_progress=lambda done, total: progress.update(task_id, completed=done),
            )
    except HarnessError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        ctx.exit(1)

    _print_results(summary)

    if handler.exit_code is not None:
        console.print(f"[red]Interrupted: {summary.run.incomplete} file(s) not validated[/red]")
        ctx.exit(handler.exit_code)

    color = "green" if summary.exit_code == 0 else "red"
    console.print(
        f"[{color}]Validation complete: {len(summary.results)} file(s), "
        f"{len(summary.failed_files)} failed, {summary.total_errors} error(s), "
        f"{summary.total_warnings} warning(s) ({summary.run.jobs} job(s), "
        f"{summary.run.duration:.2f}s)[/{color}]"
    )
    ctx.exit(summary.exit_code)


def _collect_files(paths) -> list:
    files = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(discover_workflows(path))
        elif path.is_file():
            files.append(path)
    return files


def _print_results(summary) -> None:
    table = Table(title="Workflow Validation")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Errors", justify="right")
    table.add_column("Warnings", justify="right")

    for result in summary.results:
        status = "[green]✓[/green]" if result.ok else "[red]✗[/red]"
        if result.cached:
            status += " [dim](cached)[/dim]"
        table.add_row(escape(Path(result.path).name), status, str(len(result.errors)), str(len(result.warnings)))

    console.print(table)

    for result in summary.results:
        for error in result.errors:
            console.print(f"[red]\\[ERROR][/red] {escape(error)}")
        for warning in result.warnings:
            console.print(f"[yellow]\\[WARN][/yellow] {escape(warning)}")
