"""Step executor registry."""

from irflow.stdlib.executors.registry import ExecutorRegistry, FunctionStepExecutor

__all__ = ["ExecutorRegistry", "FunctionStepExecutor"]
