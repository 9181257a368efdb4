"""irflow: versioned pipeline registry and execution engine for JSON IR steps.

Pipelines are DAGs of versioned steps.  Each step turns a merged config
into a JSON intermediate representation (IR) that is validated against a
versioned JSON-Schema and scored against metric profiles.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("irflow")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

from irflow.kernel.config import IrflowConfig, load_config
from irflow.kernel.orchestration.engine import ExecutionEngine
from irflow.kernel.orchestration.models import ExecutionOptions, ExecutionResult, FailurePolicy
from irflow.kernel.ports.step_executor import OutputRef, StepOutput, StepRequest
from irflow.stdlib.executors import ExecutorRegistry
from irflow.system import IrflowSystem, create_system

__all__ = [
    "ExecutionEngine",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutorRegistry",
    "FailurePolicy",
    "IrflowConfig",
    "IrflowSystem",
    "OutputRef",
    "StepOutput",
    "StepRequest",
    "__version__",
    "create_system",
    "load_config",
]
