"""irflow CLI - Main entrypoint."""

from __future__ import annotations

import typer
from rich.console import Console

from irflow import __version__
from irflow.cli.commands import pipelines_cmd, plan_cmd, runs_cmd, schema_cmd
from irflow.kernel.logging import configure_logging

app = typer.Typer(
    name="irflow",
    help="irflow - versioned step pipelines with validated intermediate representations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()

app.add_typer(pipelines_cmd.pipelines_app, name="pipelines", help="Manage pipeline versions")
app.add_typer(pipelines_cmd.steps_app, name="steps", help="Manage step versions")
app.add_typer(runs_cmd.app, name="runs", help="Inspect pipeline runs")
app.add_typer(schema_cmd.app, name="schema", help="Check and register IR schemas")
app.command("plan", help="Show the execution plan of a pipeline (dry run)")(plan_cmd.plan)


def _show_version(value: bool) -> None:
    if value:
        console.print(f"[bold blue]irflow[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    config: str | None = typer.Option(
        None, "--config", "-c", help="Path to a TOML file with [tool.irflow] settings"
    ),
    db: str | None = typer.Option(None, "--db", help="SQLite database file (overrides config)"),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Output machine-readable YAML"),
    log_level: str = typer.Option("warning", "--log-level", help="debug|info|warning|error"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=_show_version,
        is_eager=True,
    ),
) -> None:
    """irflow - versioned step pipelines.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if ctx.obj is None:
        ctx.obj = {}

    output_format = "pretty"
    if json_out:
        output_format = "json"
    elif yaml_out:
        output_format = "yaml"

    effective_level = "debug" if verbose else log_level
    level = effective_level.upper()
    if level == "WARN":
        level = "WARNING"
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise typer.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")

    ctx.obj.update({
        "config_path": config,
        "db": db,
        "output_format": output_format,
        "log_level": level,
    })
    configure_logging(level=level, format="rich", force_reconfigure=True)


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
