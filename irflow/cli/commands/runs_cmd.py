"""Run inspection commands for the irflow CLI."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.table import Table

from irflow.cli.utils import console, print_output, run_with_system

if TYPE_CHECKING:
    from irflow.system import IrflowSystem

app = typer.Typer(no_args_is_help=True)

_STATUS_STYLE = {
    "completed": "green",
    "partial": "yellow",
    "failed": "red",
    "cancelled": "magenta",
    "running": "cyan",
    "skipped": "dim",
    "pending": "dim",
}


def _styled(status: str) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _when(timestamp: float | None) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S") if timestamp else "-"


@app.command("list")
def list_runs(
    ctx: typer.Context,
    status: Annotated[str | None, typer.Option("--status", help="Filter by run status")] = None,
    version_id: Annotated[
        str | None, typer.Option("--version-id", help="Filter by pipeline version id")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum number of runs")] = 50,
) -> None:
    """List pipeline runs, newest first."""

    async def list_(system: IrflowSystem) -> list[dict[str, Any]]:
        runs = await system.runs.alist_runs(status, version_id, limit)
        return [
            {
                "id": r.id,
                "pipeline_version_id": r.pipeline_version_id,
                "status": str(r.status),
                "origin": r.origin,
                "started_at": r.started_at,
                "completed_at": r.completed_at,
                "duration_ms": r.summary.get("duration_ms"),
            }
            for r in runs
        ]

    try:
        rows = run_with_system(ctx, list_)
    except ValueError as e:
        raise typer.BadParameter(f"unknown status {status!r}", param_hint="--status") from e
    if print_output(rows, ctx):
        return
    if not rows:
        console.print("[yellow]No runs found[/yellow]")
        return

    table = Table(title="Pipeline runs", show_header=True, header_style="bold magenta")
    table.add_column("Run ID", style="cyan")
    table.add_column("Status")
    table.add_column("Origin")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    for row in rows:
        duration = row["duration_ms"]
        table.add_row(
            row["id"],
            _styled(row["status"]),
            row["origin"],
            _when(row["started_at"]),
            f"{duration / 1000:.2f}s" if duration is not None else "-",
        )
    console.print(table)


@app.command("show")
def show_run(
    ctx: typer.Context,
    run_id: Annotated[str, typer.Argument(help="Pipeline run id")],
) -> None:
    """Show a run with its step runs and metric results."""
    detail = run_with_system(ctx, lambda system: system.runs.adescribe_run(run_id))
    if print_output(detail, ctx):
        return

    console.print(f"[bold]Run {detail['id']}[/bold]: {_styled(detail['status'])}")
    console.print(f"  version: {detail['pipeline_version_id']}  origin: {detail['origin']}")
    console.print(
        f"  started: {_when(detail['started_at'])}  finished: {_when(detail['completed_at'])}"
    )
    if detail["error"]:
        console.print(f"  [red]error:[/red] {detail['error']}")

    steps = Table(title="Steps", show_header=True, header_style="bold magenta")
    steps.add_column("Node", style="cyan")
    steps.add_column("Status")
    steps.add_column("Attempts", justify="right")
    steps.add_column("IR")
    steps.add_column("Error", style="dim")
    for step in detail["steps"]:
        validity = {True: "[green]valid[/green]", False: "[red]invalid[/red]", None: "-"}
        steps.add_row(
            step["node_key"],
            _styled(step["status"]),
            str(step["attempts"]),
            validity[step["ir_valid"]],
            step["error"] or "",
        )
    console.print(steps)

    if detail["metrics"]:
        metrics = Table(title="Metrics", show_header=True, header_style="bold magenta")
        metrics.add_column("Metric", style="cyan")
        metrics.add_column("Scope")
        metrics.add_column("Value", justify="right")
        metrics.add_column("Passed")
        for m in detail["metrics"]:
            passed = {True: "[green]✓[/green]", False: "[red]✗[/red]", None: "-"}[m["passed"]]
            scope = "pipeline" if m["step_run_id"] is None else "step"
            metrics.add_row(m["metric_key"], scope, str(m["value"]), passed)
        console.print(metrics)

    scores = detail["summary"].get("scores") or {}
    if scores.get("pipeline") is not None:
        console.print(f"[bold]Pipeline score:[/bold] {scores['pipeline']:.2f}")
