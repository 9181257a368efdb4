"""Run lifecycle events delivered to observers by the execution engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event."""
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


@dataclass(slots=True)
class PipelineRunStarted(Event):
    """A pipeline run row was created and scheduling begins."""

    pipeline_run_id: str
    pipeline_version_id: str
    planned_nodes: tuple[str, ...] = ()

    def log_message(self) -> str:
        return (
            f"Pipeline run '{self.pipeline_run_id}' started "
            f"({len(self.planned_nodes)} planned nodes)"
        )


@dataclass(slots=True)
class PipelineRunFinished(Event):
    """A pipeline run reached its terminal status."""

    pipeline_run_id: str
    status: str
    duration_ms: float

    def log_message(self) -> str:
        return (
            f"Pipeline run '{self.pipeline_run_id}' finished as {self.status} "
            f"in {self.duration_ms / 1000:.2f}s"
        )


@dataclass(slots=True)
class StepRunStarted(Event):
    """A node's executor is about to be invoked."""

    pipeline_run_id: str
    step_run_id: str
    node_key: str
    attempt: int = 1

    def log_message(self) -> str:
        suffix = f" (attempt {self.attempt})" if self.attempt > 1 else ""
        return f"Step '{self.node_key}' started{suffix}"


@dataclass(slots=True)
class StepRunCompleted(Event):
    """A node finished and its artifact was recorded."""

    pipeline_run_id: str
    step_run_id: str
    node_key: str
    duration_ms: float
    ir_valid: bool = True

    def log_message(self) -> str:
        validity = "" if self.ir_valid else " with invalid IR"
        return f"Step '{self.node_key}' completed{validity} in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class StepRunFailed(Event):
    """A node failed (executor error, timeout or fatal schema violation)."""

    pipeline_run_id: str
    step_run_id: str
    node_key: str
    error: str

    def log_message(self) -> str:
        return f"Step '{self.node_key}' failed: {self.error}"


@dataclass(slots=True)
class StepRunSkipped(Event):
    """A node was skipped (condition false or upstream not completed)."""

    pipeline_run_id: str
    step_run_id: str
    node_key: str
    reason: str

    def log_message(self) -> str:
        return f"Step '{self.node_key}' skipped: {self.reason}"


__all__ = [
    "Event",
    "PipelineRunFinished",
    "PipelineRunStarted",
    "StepRunCompleted",
    "StepRunFailed",
    "StepRunSkipped",
    "StepRunStarted",
]
