"""Centralized logging configuration for irflow using Loguru.

Provides consistent logging across the registries, compiler and engine with:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based lazy configuration
- Per-run correlation ids
- Idempotent configuration

Examples
--------
Basic usage:

>>> from irflow.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Pipeline run {} started", "run-123")

Configure logging globally::

    from irflow.kernel.logging import configure_logging
    configure_logging(level="DEBUG", format="rich")
"""

from __future__ import annotations

import contextvars
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from loguru import Logger, Record

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich"]

_CURRENT_CONFIG: dict[str, Any] | None = None
_HANDLER_IDS: list[int] = []

# Correlation id, set per pipeline run by the engine
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _inject_correlation_id(record: Record) -> None:
    record["extra"]["cid"] = correlation_id.get()


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    backtrace: bool = True,
    diagnose: bool = False,
) -> None:
    """Configure global logging for irflow.

    Idempotent: calling it again with the same settings neither duplicates
    handlers nor changes anything.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output
    format : LogFormat, default="structured"
        Output format:
        - "console": plain single-line output
        - "json": serialized records for log aggregation
        - "structured": coloured format with correlation id
        - "rich": Rich console handler
    output_file : str | Path | None, default=None
        Optional file path; file output is always JSON and rotated
    use_color : bool, default=True
        Use ANSI colours in structured format (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    force_reconfigure : bool, default=False
        Reconfigure even if the settings did not change
    backtrace : bool, default=True
        Extended tracebacks
    diagnose : bool, default=False
        Variable values in tracebacks (keep off in production)
    """
    global _CURRENT_CONFIG

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Remove only our own handlers so pytest's capture handlers survive
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()

    logger.configure(patcher=_inject_correlation_id)

    if format == "rich":
        rich_handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            markup=False,
            show_time=include_timestamp,
            show_level=True,
            show_path=True,
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=rich_handler,
                level=level,
                format="{message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "json":
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "structured":
        colorize = use_color and sys.stderr.isatty()
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}] cid={{extra[cid]}} "
            "<cyan>{name}:{function}:{line}</cyan> | <level>{message}</level>"
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=structured_format,
                colorize=colorize,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=f"{timestamp_fmt}{{level: <8}} | {{name}} | {{message}}",
                colorize=False,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        _HANDLER_IDS.append(
            logger.add(
                sink=output_path,
                level=level,
                serialize=True,
                rotation="10 MB",
                retention="1 week",
                compression="zip",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    _CURRENT_CONFIG = current_config


@lru_cache(maxsize=256)
def get_logger(name: str) -> Logger:
    """Get a logger bound to ``name`` (cached).

    Parameters
    ----------
    name : str
        Logger name, typically ``__name__`` of the calling module

    Returns
    -------
    loguru.Logger
        Logger bound with ``module=name``

    Notes
    -----
    If :func:`configure_logging` has not been called yet, the environment
    variables ``IRFLOW_LOG_LEVEL``, ``IRFLOW_LOG_FORMAT``, ``IRFLOW_LOG_FILE``
    and ``IRFLOW_LOG_COLOR`` decide the initial configuration.
    """
    _ensure_configured()
    return logger.bind(module=name)


def set_correlation_id(cid: str) -> contextvars.Token[str]:
    """Set the correlation id for the current async context.

    Returns
    -------
    contextvars.Token
        Token that restores the previous value via :func:`reset_correlation_id`
    """
    return correlation_id.set(cid)


def reset_correlation_id(token: contextvars.Token[str]) -> None:
    """Restore the correlation id that was active before ``set_correlation_id``."""
    correlation_id.reset(token)


def get_correlation_id() -> str:
    """Return the current correlation id, or ``"-"`` when none is set."""
    return correlation_id.get()


def _ensure_configured() -> None:
    if _CURRENT_CONFIG is None:
        level = os.getenv("IRFLOW_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("IRFLOW_LOG_FORMAT", "structured").lower()
        output_file = os.getenv("IRFLOW_LOG_FILE") or None
        use_color = os.getenv("IRFLOW_LOG_COLOR", "true").lower() in ("true", "1", "yes", "on")
        configure_logging(
            level=level,  # type: ignore[arg-type]
            format=format_type,  # type: ignore[arg-type]
            output_file=output_file,
            use_color=use_color,
        )
