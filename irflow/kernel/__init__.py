"""irflow kernel: domain models, ports, configuration and orchestration."""

from irflow.kernel.exceptions import (
    ConfigurationError,
    ConflictError,
    CycleDetectedError,
    DuplicateNodeKeyError,
    ExecutionFailure,
    InvalidGraphError,
    InvalidTransitionError,
    IrflowError,
    NotFoundError,
    UnresolvedStepError,
    ValidationFailure,
)

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "CycleDetectedError",
    "DuplicateNodeKeyError",
    "ExecutionFailure",
    "InvalidGraphError",
    "InvalidTransitionError",
    "IrflowError",
    "NotFoundError",
    "UnresolvedStepError",
    "ValidationFailure",
]
