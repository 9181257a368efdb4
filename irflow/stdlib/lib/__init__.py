"""Management-surface libraries.

Each lib receives its storage by constructor injection and exposes its
public ``a*`` coroutines as operations.
"""

from irflow.stdlib.lib.activation import ExclusiveActivation
from irflow.stdlib.lib.logging_observer import LoggingObserver
from irflow.stdlib.lib.metric_registry import MetricRegistry
from irflow.stdlib.lib.run_store import RunStore
from irflow.stdlib.lib.schema_registry import SchemaRegistry
from irflow.stdlib.lib.version_registry import PipelineRegistry, StepRegistry, VersionRegistry

__all__ = [
    "ExclusiveActivation",
    "LoggingObserver",
    "MetricRegistry",
    "PipelineRegistry",
    "RunStore",
    "SchemaRegistry",
    "StepRegistry",
    "VersionRegistry",
]
