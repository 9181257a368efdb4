"""Configuration data models for irflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from irflow.kernel.exceptions import ConfigurationError

FailurePolicyName = Literal["continue", "abort"]
MissingSchemaPolicyName = Literal["permit", "reject"]


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for irflow.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, rich)
    output_file : str | None, default=None
        Optional file path to write logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.irflow.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export IRFLOW_LOG_LEVEL=DEBUG
    export IRFLOW_LOG_FORMAT=json
    export IRFLOW_LOG_FILE=/var/log/irflow/app.log
    ```
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Execution defaults applied when a request does not say otherwise.

    Attributes
    ----------
    failure_policy : {"continue", "abort"}, default="continue"
        What a run does after a step fails
    fatal_schema_violations : bool, default=False
        Fail a step whose IR does not match its schema
    missing_schema_policy : {"permit", "reject"}, default="permit"
        Outcome of validating IR for a step version without any schema
    max_concurrency : int, default=1
        Independent branches executed at the same time (1 = sequential)
    default_retries : int, default=1
        Executor attempts per node when the node does not set ``retries``
    retry_delay : float, default=0.5
        Seconds before the first retry
    retry_backoff : float, default=2.0
        Multiplier applied to the delay after each retry
    step_timeout : float | None, default=None
        Seconds allowed per attempt when the node does not set ``timeoutMs``
    """

    failure_policy: FailurePolicyName = "continue"
    fatal_schema_violations: bool = False
    missing_schema_policy: MissingSchemaPolicyName = "permit"
    max_concurrency: int = 1
    default_retries: int = 1
    retry_delay: float = 0.5
    retry_backoff: float = 2.0
    step_timeout: float | None = None

    def __post_init__(self) -> None:
        """Validate engine settings.

        Raises
        ------
        ConfigurationError
            If a value is outside its allowed range
        """
        if self.failure_policy not in ("continue", "abort"):
            raise ConfigurationError("engine", f"unknown failure_policy {self.failure_policy!r}")
        if self.missing_schema_policy not in ("permit", "reject"):
            raise ConfigurationError(
                "engine", f"unknown missing_schema_policy {self.missing_schema_policy!r}"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError("engine", "max_concurrency must be >= 1")
        if self.default_retries < 1:
            raise ConfigurationError("engine", "default_retries must be >= 1")
        if self.step_timeout is not None and self.step_timeout <= 0:
            raise ConfigurationError("engine", "step_timeout must be positive")


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Where registry and run records are kept.

    Attributes
    ----------
    backend : {"memory", "sqlite"}, default="memory"
        Storage adapter
    path : str, default="irflow.db"
        SQLite database file (ignored for ``memory``)
    """

    backend: Literal["memory", "sqlite"] = "memory"
    path: str = "irflow.db"

    def __post_init__(self) -> None:
        if self.backend not in ("memory", "sqlite"):
            raise ConfigurationError("storage", f"unknown backend {self.backend!r}")


@dataclass(slots=True)
class IrflowConfig:
    """Complete irflow configuration."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
