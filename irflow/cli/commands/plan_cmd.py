"""Dry-run planning command for the irflow CLI."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Annotated

import typer
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from irflow.cli.utils import console, parse_assignments, print_output, run_with_system
from irflow.kernel.orchestration.models import ExecutionOptions

if TYPE_CHECKING:
    from irflow.kernel.orchestration.models import ExecutionResult
    from irflow.system import IrflowSystem


def plan(
    ctx: typer.Context,
    pipeline: Annotated[str, typer.Argument(help="Pipeline name")],
    version: Annotated[
        str | None,
        typer.Option("--version", "-v", help="Version label (default: the active version)"),
    ] = None,
    overrides: Annotated[
        list[str] | None,
        typer.Option("--set", "-s", help="Config override KEY=VALUE for every node (repeatable)"),
    ] = None,
    show_config: Annotated[
        bool, typer.Option("--show-config", help="Print the resolved config of each node")
    ] = False,
) -> None:
    """Compile a pipeline version and show its execution plan (dry run).

    Nothing is executed and nothing is written.

    Examples
    --------
    irflow plan invoice-intake
    irflow plan invoice-intake --version v2 --set model.temperature=0
    """
    options = ExecutionOptions(dry_run=True, overrides=parse_assignments(overrides), origin="cli")

    async def dry_run(system: IrflowSystem) -> ExecutionResult:
        definition = await system.pipelines.aget_definition_by_name(pipeline)
        if version is None:
            selected = await system.pipelines.aget_active(definition.id)
        else:
            selected = await system.pipelines.aget_version_by_label(definition.id, version)
        return await system.engine.aexecute(selected.id, options)

    result = run_with_system(ctx, dry_run)
    if print_output(result.to_dict(), ctx):
        return

    table = Table(
        title=f"Plan for {pipeline} ({result.plan.mode})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", justify="right")
    table.add_column("Node", style="cyan")
    table.add_column("Step")
    table.add_column("Depends on")
    table.add_column("Condition", style="dim")
    for index, node in enumerate(result.plan.nodes, start=1):
        step = f"{node.step_name} {node.step_label}"
        if not node.step_active:
            step += " [yellow](inactive)[/yellow]"
        table.add_row(
            str(index), node.key, step, ", ".join(node.depends_on) or "-", node.condition or ""
        )
    console.print(table)

    if result.plan.mode == "graph":
        waves = " → ".join("[" + ", ".join(w) + "]" for w in result.plan.waves)
        console.print(f"[bold]Waves:[/bold] {waves}")
    for warning in result.plan.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    if show_config:
        for key, config in result.resolved_configs.items():
            console.print(
                Panel(
                    Syntax(json.dumps(config, indent=2, default=str), "json"),
                    title=key,
                    border_style="blue",
                )
            )
