"""Configuration models and TOML loader."""

from irflow.kernel.config.loader import ConfigLoader, clear_config_cache, load_config
from irflow.kernel.config.models import EngineConfig, IrflowConfig, LoggingConfig, StorageConfig

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "IrflowConfig",
    "LoggingConfig",
    "StorageConfig",
    "clear_config_cache",
    "load_config",
]
