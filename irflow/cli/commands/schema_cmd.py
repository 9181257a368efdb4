"""IR schema commands for the irflow CLI."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.table import Table

from irflow.cli.utils import console, err_console, load_document, print_output, run_with_system
from irflow.kernel.exceptions import IrflowError
from irflow.stdlib.lib.schema_registry import check_schema_document, validate_against

if TYPE_CHECKING:
    from irflow.system import IrflowSystem

app = typer.Typer(no_args_is_help=True)

_FILE = {"exists": True, "dir_okay": False, "readable": True}


@app.command("check")
def check(
    ctx: typer.Context,
    schema_file: Annotated[Path, typer.Argument(help="JSON-Schema file (YAML or JSON)", **_FILE)],
    ir_file: Annotated[Path, typer.Argument(help="IR document to validate", **_FILE)],
) -> None:
    """Validate an IR document against a schema file.

    Exits with status 1 when the document is invalid.

    Examples
    --------
    irflow schema check invoice.schema.json sample-ir.json
    """
    try:
        schema = check_schema_document(load_document(schema_file))
        errors = validate_against(schema, load_document(ir_file))
    except IrflowError as e:
        err_console.print(f"[red]Error ({e.code}):[/red] {e}")
        raise typer.Exit(1) from e

    if not print_output({"is_valid": not errors, "errors": errors}, ctx):
        if not errors:
            console.print(f"[green]✓ {ir_file} is valid[/green]")
        else:
            table = Table(
                title=f"{len(errors)} validation error(s)",
                show_header=True,
                header_style="bold red",
            )
            table.add_column("Path", style="cyan")
            table.add_column("Rule")
            table.add_column("Message")
            for error in errors:
                table.add_row(error["path"] or "/", error["validator"], error["message"])
            console.print(table)
    if errors:
        raise typer.Exit(1)


@app.command("add")
def add(
    ctx: typer.Context,
    step: Annotated[str, typer.Argument(help="Step name")],
    label: Annotated[str, typer.Argument(help="Step version label")],
    version: Annotated[str, typer.Argument(help="Schema version, e.g. 1.0")],
    schema_file: Annotated[Path, typer.Argument(help="JSON-Schema file", **_FILE)],
    activate: Annotated[bool, typer.Option("--activate", help="Activate the schema")] = False,
) -> None:
    """Register an IR schema version for a step version."""
    schema = load_document(schema_file)

    async def register(system: IrflowSystem) -> str:
        definition = await system.steps.aget_definition_by_name(step)
        step_version = await system.steps.aget_version_by_label(definition.id, label)
        record = await system.schemas.acreate_schema(
            step_version.id, version, schema, name=schema_file.name, activate=activate
        )
        return record.id

    schema_id = run_with_system(ctx, register)
    if not print_output({"id": schema_id, "version": version}, ctx):
        console.print(f"[green]✓[/green] Schema {version} for {step} {label}: {schema_id}")
