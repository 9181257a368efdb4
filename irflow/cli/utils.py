"""CLI helper utilities shared by irflow commands."""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import typer
import yaml
from rich.console import Console

from irflow.kernel.config import StorageConfig, load_config
from irflow.kernel.exceptions import IrflowError, ValidationFailure
from irflow.system import IrflowSystem, create_system

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


def output_format(ctx: typer.Context | None) -> str:
    """Return ``pretty``, ``json`` or ``yaml`` from the global flags."""
    if ctx is not None and isinstance(ctx.obj, dict):
        return str(ctx.obj.get("output_format", "pretty"))
    return "pretty"


def print_output(data: Any, ctx: typer.Context | None = None) -> bool:
    """Print ``data`` as JSON or YAML when requested.

    Returns
    -------
    bool
        ``True`` if the data was printed, ``False`` when the caller should
        render its own pretty output
    """
    fmt = output_format(ctx)
    if fmt == "json":
        typer.echo(json.dumps(data, default=str, indent=2))
        return True
    if fmt == "yaml":
        typer.echo(yaml.safe_dump(json.loads(json.dumps(data, default=str)), sort_keys=False))
        return True
    return False


def load_document(path: Path) -> Any:
    """Load a YAML or JSON file (JSON is parsed as YAML).

    Raises
    ------
    ValidationFailure
        If the file cannot be parsed
    """
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValidationFailure(str(path), f"not valid YAML/JSON: {e}") from e


def parse_assignments(values: list[str] | None) -> dict[str, Any]:
    """Turn ``["a.b=1", "mode=strict"]`` into nested overrides.

    Values are parsed as YAML scalars, so ``1`` is an int and ``true`` a bool.

    Examples
    --------
    >>> parse_assignments(["a.b=1", "mode=strict"])
    {'a': {'b': 1}, 'mode': 'strict'}
    """
    result: dict[str, Any] = {}
    for item in values or []:
        if "=" not in item:
            raise typer.BadParameter(f"expected KEY=VALUE, got {item!r}")
        dotted, raw = item.split("=", 1)
        target = result
        *parents, leaf = dotted.strip().split(".")
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = yaml.safe_load(raw) if raw else ""
    return result


def build_system(ctx: typer.Context) -> IrflowSystem:
    """Create a system from the global ``--config`` and ``--db`` options."""
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    config_path = obj.get("config_path")
    config = load_config(config_path)
    db = obj.get("db")
    if db:
        config = dataclasses.replace(config, storage=StorageConfig(backend="sqlite", path=db))
    elif config.storage.backend == "memory":
        err_console.print(
            "[dim]Using in-memory storage; pass --db or configure [tool.irflow.storage][/dim]"
        )
    return create_system(config, observers=[])


def run_with_system(ctx: typer.Context, fn: Callable[[IrflowSystem], Awaitable[T]]) -> T:
    """Run ``fn`` against a fresh system, closing it afterwards.

    irflow errors are printed with their code and end the command with exit
    status 1.
    """

    async def runner() -> T:
        async with build_system(ctx) as system:
            return await fn(system)

    try:
        return asyncio.run(runner())
    except IrflowError as e:
        err_console.print(f"[red]Error ({e.code}):[/red] {e}")
        raise typer.Exit(1) from e
