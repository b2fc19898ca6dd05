"""Analyze command."""

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ...errors import HarnessError
from ...github_api import GitHubAPIClient
from ...workflows import WorkflowAnalyzer
from ..app import get_config, get_metrics

console = Console()


@click.command()
@click.option("--workflow-dir", "-d", type=click.Path(file_okay=False), default=None,
              help="Workflow directory (default: from config)")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None,
              help="Number of recent runs to analyze")
@click.option("--export-json", type=click.Path(dir_okay=False), default=None,
              help="Write the metrics summary to this JSON file")
@click.option("--save-metrics", is_flag=True, help="Write the metrics summary into METRICS_DIR")
@click.option("--skip-runtime", is_flag=True, help="Skip run history analysis (no GitHub API calls)")
@click.pass_context
def analyze(
    ctx: click.Context,
    workflow_dir: str,
    limit: int,
    export_json: str,
    save_metrics: bool,
    skip_runtime: bool,
) -> None:
    """Analyze workflow runtime, efficiency and complexity.

    Examples:

        cca-workflows analyze

        cca-workflows analyze --skip-runtime

        cca-workflows analyze --limit 100 --export-json metrics.json
    """
    config = get_config(ctx)
    metrics = get_metrics(ctx)
    client = GitHubAPIClient(config, metrics=metrics)
    analyzer = WorkflowAnalyzer(client, metrics, workflow_dir=workflow_dir, limit=limit)
    failed = False

    if not skip_runtime:
        try:
            with metrics.timer("analyze_runtime"):
                client.init()
                _print_runtime(analyzer.analyze_runtime())
        except HarnessError as e:
            console.print(f"[red]Runtime analysis failed: {escape(str(e))}[/red]")
            failed = True

    with metrics.timer("analyze_efficiency"):
        _print_efficiency(analyzer.analyze_efficiency())
    with metrics.timer("analyze_complexity"):
        _print_complexity(analyzer.analyze_complexity())

    console.print()
    console.print(metrics.report())

    if export_json:
        metrics.export_json(export_json)
        console.print(f"[dim]Metrics exported to {export_json}[/dim]")
    if save_metrics:
        target = metrics.default_export_path()
        if target is not None:
            metrics.export_json(str(target))
            console.print(f"[dim]Metrics saved to {target}[/dim]")

    summary = metrics.summary()["workflows"]
    console.print(
        f"Analysis complete: {summary['analyzed']} workflow(s) analyzed, "
        f"{summary['performance_issues_found']} issue(s) found"
    )
    if failed:
        ctx.exit(1)


def _print_runtime(report) -> None:
    if not report.workflows:
        console.print("[yellow]No workflow run data available[/yellow]")
        return

    table = Table(title="Workflow Runtime")
    table.add_column("Workflow", style="cyan")
    table.add_column("Runs", justify="right")
    table.add_column("Avg (min)", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Failure", justify="right")

    for w in report.workflows:
        success_color = "green" if w.success_rate >= 90 else "red"
        table.add_row(
            escape(w.name),
            str(w.count),
            f"{w.avg_duration_minutes:.1f}",
            f"[{success_color}]{w.success_rate:.0f}%[/{success_color}]",
            f"{w.failure_rate:.0f}%",
        )
    console.print(table)

    if report.slow:
        console.print(f"[yellow]⚠ {report.slow} workflow(s) with >15min average runtime[/yellow]")
    if report.unreliable:
        console.print(f"[yellow]⚠ {report.unreliable} workflow(s) with <90% success rate[/yellow]")


def _print_efficiency(report) -> None:
    if not report.total:
        console.print("[yellow]No workflow files found[/yellow]")
        return

    table = Table(title=f"Workflow Configuration ({report.total} workflows)")
    table.add_column("Pattern", style="cyan")
    table.add_column("Workflows", justify="right")
    table.add_row("Caching", f"{report.caching}/{report.total}")
    table.add_row("Conditionals", f"{report.conditionals}/{report.total}")
    table.add_row("Matrix builds", f"{report.matrix}/{report.total}")
    table.add_row("Explicit permissions", f"{report.permissions}/{report.total}")
    table.add_row("Unpinned actions", f"{report.unpinned}/{report.total}")
    console.print(table)

    for recommendation in report.recommendations:
        console.print(f"[yellow]⚠ {recommendation}[/yellow]")


def _print_complexity(report) -> None:
    if not report.workflows:
        return

    console.print(f"Average jobs per workflow: {report.average_jobs}")
    console.print(f"Average steps per workflow: {report.average_steps}")
    console.print(f"Complex workflows: {len(report.complex_workflows)}/{len(report.workflows)}")
    for w in report.complex_workflows:
        console.print(f"  [yellow]{escape(w.name)}[/yellow] ({w.jobs} jobs, {w.steps} steps)")
