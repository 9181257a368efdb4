"""Core exception hierarchy for irflow.

Every error raised by the registries, the compiler and the engine inherits
from :class:`IrflowError` and carries a stable ``code`` so a calling layer
can render a specific message (e.g. "cannot delete active version") without
parsing exception text.
"""

from __future__ import annotations

from typing import Any

# ============================================================================
# Base Exception
# ============================================================================


class IrflowError(Exception):
    """Base exception for all irflow errors.

    Catch this to handle every irflow-specific error.
    """

    code: str = "irflow_error"

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable ``{code, message}`` view of the error."""
        return {"code": self.code, "message": str(self)}


# ============================================================================
# Registry Errors
# ============================================================================


class ConflictError(IrflowError):
    """Raised when a registry mutation would violate a uniqueness or activation rule.

    Examples
    --------
    Example usage::

        raise ConflictError(
            "pipeline_version", "v2", "active_version", "cannot delete an active version"
        )
    """

    code = "conflict"

    def __init__(self, resource_type: str, resource_id: str, reason: str, detail: str) -> None:
        """Initialize conflict error.

        Args
        ----
            resource_type: Kind of entity involved (e.g. "pipeline_definition")
            resource_id: Identifier or label of the entity
            reason: Machine-readable sub-code (e.g. "duplicate_name", "active_version")
            detail: Human-readable explanation
        """
        super().__init__(f"Conflict on {resource_type} '{resource_id}': {detail}")
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.reason = reason
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable view including the conflict reason."""
        return {**super().to_dict(), "reason": self.reason}


class NotFoundError(IrflowError):
    """Raised when a definition, version, schema or run does not exist.

    Examples
    --------
    Example usage::

        raise NotFoundError("step_version", "abc", ["def", "ghi"])
    """

    code = "not_found"

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        """Initialize not found error.

        Args
        ----
            resource_type: Type of resource (e.g. "pipeline_version", "ir_schema")
            resource_id: Identifier of the missing resource
            available: Identifiers that do exist (optional)
        """
        msg = f"{resource_type.replace('_', ' ').title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


# ============================================================================
# Graph Errors (raised at compile time)
# ============================================================================


class InvalidGraphError(IrflowError):
    """Raised when a DAG payload cannot be compiled into an execution plan."""

    code = "invalid_graph"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class CycleDetectedError(InvalidGraphError):
    """Raised when the DAG edges contain a cycle."""

    code = "cycle_detected"

    def __init__(self, cycle: list[str]) -> None:
        """Initialize cycle error.

        Args
        ----
            cycle: Node keys taking part in the cycle
        """
        super().__init__(f"Cycle detected between nodes: {' -> '.join(cycle)}")
        self.cycle = cycle


class DuplicateNodeKeyError(InvalidGraphError):
    """Raised when two DAG nodes share the same key."""

    code = "duplicate_node_key"

    def __init__(self, node_key: str) -> None:
        super().__init__(f"Node key '{node_key}' appears more than once in the DAG")
        self.node_key = node_key


class UnresolvedStepError(InvalidGraphError):
    """Raised when a DAG node references a step version that does not exist."""

    code = "unresolved_step"

    def __init__(self, node_key: str, step_version_id: str) -> None:
        """Initialize unresolved step error.

        Args
        ----
            node_key: Key of the offending node
            step_version_id: The step version id that could not be resolved
        """
        super().__init__(
            f"Node '{node_key}' references unknown step version '{step_version_id}'"
        )
        self.node_key = node_key
        self.step_version_id = step_version_id


# ============================================================================
# Validation & Execution Errors
# ============================================================================


class ValidationFailure(IrflowError):
    """Raised when data does not satisfy a schema or a field constraint.

    Examples
    --------
    Example usage::

        raise ValidationFailure("schema", "not a valid JSON-Schema document")
    """

    code = "validation_failure"

    def __init__(
        self,
        field: str,
        constraint: str,
        value: object = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize validation failure.

        Args
        ----
            field: Name of the field (or document) that failed validation
            constraint: Description of the violated constraint
            value: The invalid value (optional)
            errors: Structured validation errors (optional)
        """
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value
        self.errors = errors or []


class ExecutionFailure(IrflowError):
    """Raised when an external step executor fails or times out.

    Recorded on the StepRun by the engine; never escapes ``aexecute``.
    """

    code = "execution_failure"

    def __init__(self, node_key: str, reason: str, cause: BaseException | None = None) -> None:
        """Initialize execution failure.

        Args
        ----
            node_key: Key of the node whose executor failed
            reason: Human-readable description of the failure
            cause: The underlying exception (optional)
        """
        super().__init__(f"Step '{node_key}' failed: {reason}")
        self.node_key = node_key
        self.reason = reason
        self.cause = cause


class InvalidTransitionError(IrflowError):
    """Raised when a run or step run is moved along an illegal state edge."""

    code = "invalid_transition"

    def __init__(self, entity: str, entity_id: str, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Invalid transition for {entity} '{entity_id}': '{from_state}' -> '{to_state}'"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(IrflowError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("engine", "max_concurrency must be >= 1")
    """

    code = "configuration_error"

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


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
