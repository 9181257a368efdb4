"""Pipeline and step registry commands for the irflow CLI."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.table import Table

from irflow.cli.utils import console, load_document, print_output, run_with_system
from irflow.kernel.exceptions import ValidationFailure

if TYPE_CHECKING:
    from irflow.stdlib.lib.version_registry import VersionRegistry
    from irflow.system import IrflowSystem

pipelines_app = typer.Typer(no_args_is_help=True)
steps_app = typer.Typer(no_args_is_help=True)


def _when(timestamp: float | None) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S") if timestamp else "-"


async def _alist(registry: VersionRegistry[Any]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for definition in await registry.alist_definitions():
        versions = await registry.alist_versions(definition.id)
        rows.append(
            {
                "id": definition.id,
                "name": definition.name,
                "description": definition.description,
                "versions": [
                    {"id": v.id, "label": v.label, "active": v.is_active} for v in versions
                ],
            }
        )
    return rows


def _render_definitions(title: str, rows: list[dict[str, Any]]) -> None:
    if not rows:
        console.print(f"[yellow]No {title.lower()} registered[/yellow]")
        return
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Active version", style="green")
    table.add_column("Versions")
    table.add_column("Id", style="dim")
    for row in rows:
        active = next((v["label"] for v in row["versions"] if v["active"]), "-")
        labels = ", ".join(v["label"] for v in row["versions"]) or "-"
        table.add_row(row["name"], active, labels, row["id"])
    console.print(table)


def _render_versions(name: str, versions: list[dict[str, Any]]) -> None:
    table = Table(title=f"Versions of {name}", show_header=True, header_style="bold magenta")
    table.add_column("Label", style="cyan")
    table.add_column("Active")
    table.add_column("Created")
    table.add_column("Id", style="dim")
    for v in versions:
        table.add_row(v["label"], "✓" if v["active"] else "", _when(v["created_at"]), v["id"])
    console.print(table)


async def _aversions(registry: VersionRegistry[Any], name: str) -> list[dict[str, Any]]:
    definition = await registry.aget_definition_by_name(name)
    return [
        {"id": v.id, "label": v.label, "active": v.is_active, "created_at": v.created_at}
        for v in await registry.alist_versions(definition.id)
    ]


async def _aactivate(registry: VersionRegistry[Any], name: str, label: str) -> str:
    definition = await registry.aget_definition_by_name(name)
    version = await registry.aactivate(definition.id, label)
    return version.id


# ============================================================================
# Pipelines
# ============================================================================


@pipelines_app.command("list")
def list_pipelines(ctx: typer.Context) -> None:
    """List pipeline definitions and their versions."""
    rows = run_with_system(ctx, lambda system: _alist(system.pipelines))
    if not print_output(rows, ctx):
        _render_definitions("Pipelines", rows)


@pipelines_app.command("versions")
def list_pipeline_versions(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Pipeline name")],
) -> None:
    """List the versions of one pipeline."""
    versions = run_with_system(ctx, lambda system: _aversions(system.pipelines, name))
    if not print_output(versions, ctx):
        _render_versions(name, versions)


@pipelines_app.command("add")
def add_pipeline_version(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Pipeline name (created if missing)")],
    label: Annotated[str, typer.Argument(help="Version label, e.g. v1")],
    dag_file: Annotated[
        Path,
        typer.Argument(help="YAML/JSON file with the DAG payload", exists=True, dir_okay=False),
    ],
    config_file: Annotated[
        Path | None,
        typer.Option("--config-file", help="YAML/JSON file with the pipeline config"),
    ] = None,
    activate: Annotated[bool, typer.Option("--activate", help="Activate the version")] = False,
) -> None:
    """Register a pipeline version from a DAG file."""
    dag = load_document(dag_file)
    config = load_document(config_file) if config_file else {}

    async def add(system: IrflowSystem) -> str:
        definition = await _aensure_definition(system.pipelines, name)
        version = await system.pipelines.acreate_version(
            definition.id, label, {"dag": dag, "config": config}, activate=activate
        )
        return version.id

    version_id = run_with_system(ctx, add)
    if not print_output({"id": version_id, "name": name, "label": label}, ctx):
        console.print(f"[green]✓[/green] Pipeline [cyan]{name}[/cyan] {label}: {version_id}")


@pipelines_app.command("activate")
def activate_pipeline_version(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Pipeline name")],
    label: Annotated[str, typer.Argument(help="Version label")],
) -> None:
    """Make a pipeline version the active one."""
    version_id = run_with_system(ctx, lambda system: _aactivate(system.pipelines, name, label))
    console.print(f"[green]✓[/green] Activated {name} {label} ({version_id})")


# ============================================================================
# Steps
# ============================================================================


@steps_app.command("list")
def list_steps(ctx: typer.Context) -> None:
    """List step definitions and their versions."""
    rows = run_with_system(ctx, lambda system: _alist(system.steps))
    if not print_output(rows, ctx):
        _render_definitions("Steps", rows)


@steps_app.command("versions")
def list_step_versions(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Step name")],
) -> None:
    """List the versions of one step."""
    versions = run_with_system(ctx, lambda system: _aversions(system.steps, name))
    if not print_output(versions, ctx):
        _render_versions(name, versions)


@steps_app.command("add")
def add_step_version(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Step name (created if missing)")],
    label: Annotated[str, typer.Argument(help="Version label, e.g. v1")],
    default_config: Annotated[
        Path | None,
        typer.Option("--default-config", help="YAML/JSON file with the default config"),
    ] = None,
    activate: Annotated[bool, typer.Option("--activate", help="Activate the version")] = False,
) -> None:
    """Register a step version."""
    config = load_document(default_config) if default_config else {}

    async def add(system: IrflowSystem) -> str:
        definition = await _aensure_definition(system.steps, name)
        version = await system.steps.acreate_version(
            definition.id, label, {"default_config": config}, activate=activate
        )
        return version.id

    version_id = run_with_system(ctx, add)
    if not print_output({"id": version_id, "name": name, "label": label}, ctx):
        console.print(f"[green]✓[/green] Step [cyan]{name}[/cyan] {label}: {version_id}")


@steps_app.command("activate")
def activate_step_version(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Step name")],
    label: Annotated[str, typer.Argument(help="Version label")],
) -> None:
    """Make a step version the active one."""
    version_id = run_with_system(ctx, lambda system: _aactivate(system.steps, name, label))
    console.print(f"[green]✓[/green] Activated {name} {label} ({version_id})")


async def _aensure_definition(registry: VersionRegistry[Any], name: str) -> Any:
    if not name.strip():
        raise ValidationFailure("name", "must not be empty")
    for definition in await registry.alist_definitions():
        if definition.name_key == name.strip().casefold():
            return definition
    return await registry.acreate_definition(name)
