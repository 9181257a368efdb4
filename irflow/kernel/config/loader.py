"""TOML configuration loader for irflow."""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import fields
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

from irflow.kernel.config.models import EngineConfig, IrflowConfig, LoggingConfig, StorageConfig
from irflow.kernel.exceptions import ConfigurationError
from irflow.kernel.logging import get_logger

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

# env var -> (section, key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, str]] = {
    "IRFLOW_LOG_LEVEL": ("logging", "level", "upper"),
    "IRFLOW_LOG_FORMAT": ("logging", "format", "lower"),
    "IRFLOW_LOG_FILE": ("logging", "output_file", "str"),
    "IRFLOW_LOG_COLOR": ("logging", "use_color", "bool"),
    "IRFLOW_FAILURE_POLICY": ("engine", "failure_policy", "lower"),
    "IRFLOW_FATAL_SCHEMA_VIOLATIONS": ("engine", "fatal_schema_violations", "bool"),
    "IRFLOW_MISSING_SCHEMA_POLICY": ("engine", "missing_schema_policy", "lower"),
    "IRFLOW_MAX_CONCURRENCY": ("engine", "max_concurrency", "int"),
    "IRFLOW_STEP_TIMEOUT": ("engine", "step_timeout", "float"),
    "IRFLOW_STORAGE_BACKEND": ("storage", "backend", "lower"),
    "IRFLOW_STORAGE_PATH": ("storage", "path", "str"),
}

logger = get_logger(__name__)

T = TypeVar("T")


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from an environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


def _parse_env_value(raw: str, kind: str) -> Any:
    if kind == "bool":
        return _parse_bool_env(raw)
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind == "upper":
        return raw.upper()
    if kind == "lower":
        return raw.lower()
    return raw


class ConfigLoader:
    """Loads and processes irflow configuration from TOML files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
    SEARCH_PATHS = ("irflow.toml", ".irflow.toml", "pyproject.toml")

    def load_from_toml(self, path: str | Path | None = None) -> IrflowConfig:
        """Load configuration from a TOML file.

        Parameters
        ----------
        path : str | Path | None
            Path to TOML file. If None, searches ``$IRFLOW_CONFIG_PATH``,
            ``irflow.toml``, ``.irflow.toml`` then ``pyproject.toml``

        Returns
        -------
        IrflowConfig
            Parsed configuration with environment variables applied

        Raises
        ------
        FileNotFoundError
            If no configuration file is found
        """
        config_path = self._find_config_file(path)
        return _load_and_parse_cached(str(config_path.absolute()))

    def _load_and_parse(self, config_path: Path) -> IrflowConfig:
        logger.info("Loading configuration from {}", config_path)

        with config_path.open("rb") as f:
            data = tomllib.load(f)

        if "tool" in data and "irflow" in data["tool"]:
            irflow_data = data["tool"]["irflow"]
        elif config_path.name == "pyproject.toml":
            logger.warning("No [tool.irflow] section found in pyproject.toml, using defaults")
            irflow_data = {}
        else:
            irflow_data = data

        return self.parse(self._substitute_env_vars(irflow_data))

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv("IRFLOW_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from IRFLOW_CONFIG_PATH: {}", config_path)
                return config_path
            logger.warning("IRFLOW_CONFIG_PATH set but file not found: {}", config_path)

        for name in self.SEARCH_PATHS:
            candidate = Path(name)
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            f"No configuration file found. Searched for: {', '.join(self.SEARCH_PATHS)}"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` references with environment values.

        Unknown variables keep their placeholder.
        """
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                value = os.environ.get(match.group(1))
                if value is None:
                    logger.debug("Environment variable ${{{}}} not found", match.group(1))
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def parse(self, data: dict[str, Any]) -> IrflowConfig:
        """Build an :class:`IrflowConfig` from raw section data plus ``IRFLOW_*`` overrides.

        Raises
        ------
        ConfigurationError
            If a section holds unknown keys or an override cannot be parsed
        """
        sections: dict[str, dict[str, Any]] = {
            "logging": dict(data.get("logging", {})),
            "engine": dict(data.get("engine", {})),
            "storage": dict(data.get("storage", {})),
        }

        for env_name, (section, key, kind) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                sections[section][key] = _parse_env_value(raw, kind)
            except ValueError as e:
                raise ConfigurationError(section, f"invalid {env_name}: {e}") from e
            logger.debug("Overriding {}.{} from {}", section, key, env_name)

        return IrflowConfig(
            logging=_build(LoggingConfig, "logging", sections["logging"]),
            engine=_build(EngineConfig, "engine", sections["engine"]),
            storage=_build(StorageConfig, "storage", sections["storage"]),
        )


def _build(cls: type[T], section: str, values: dict[str, Any]) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(section, f"unknown keys: {', '.join(unknown)}")
    return cls(**values)


@lru_cache(maxsize=32)
def _load_and_parse_cached(path_str: str) -> IrflowConfig:
    return ConfigLoader()._load_and_parse(Path(path_str))


def load_config(path: str | Path | None = None) -> IrflowConfig:
    """Load configuration from a TOML file or fall back to defaults.

    Parameters
    ----------
    path : str | Path | None
        Path to configuration file or None to search

    Returns
    -------
    IrflowConfig
        Loaded configuration, or defaults plus ``IRFLOW_*`` overrides when
        no file is found
    """
    loader = ConfigLoader()
    try:
        return loader.load_from_toml(path)
    except FileNotFoundError:
        if path:
            raise
        logger.info("No configuration file found, using defaults")
        return loader.parse({})


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful in tests or after configuration files changed on disk.
    """
    _load_and_parse_cached.cache_clear()
