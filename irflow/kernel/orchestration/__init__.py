"""Compilation and execution of pipeline versions."""

from irflow.kernel.orchestration.compiler import DagCompiler
from irflow.kernel.orchestration.engine import ExecutionEngine
from irflow.kernel.orchestration.models import ExecutionOptions, ExecutionResult, FailurePolicy

__all__ = [
    "DagCompiler",
    "ExecutionEngine",
    "ExecutionOptions",
    "ExecutionResult",
    "FailurePolicy",
]
