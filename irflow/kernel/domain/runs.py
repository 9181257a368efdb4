"""Domain models for pipeline runs, step runs and their outputs.

Written by :class:`~irflow.stdlib.lib.run_store.RunStore` on behalf of the
execution engine.  The allowed status transitions live here so the store
can reject illegal moves.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class StepRunStatus(StrEnum):
    """Lifecycle status of a single node execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepRunStatus.COMPLETED, StepRunStatus.FAILED, StepRunStatus.SKIPPED)


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.RUNNING: frozenset(
        {RunStatus.COMPLETED, RunStatus.PARTIAL, RunStatus.FAILED, RunStatus.CANCELLED}
    ),
}

STEP_RUN_TRANSITIONS: dict[StepRunStatus, frozenset[StepRunStatus]] = {
    StepRunStatus.PENDING: frozenset(
        {StepRunStatus.RUNNING, StepRunStatus.SKIPPED, StepRunStatus.FAILED}
    ),
    StepRunStatus.RUNNING: frozenset({StepRunStatus.COMPLETED, StepRunStatus.FAILED}),
}


@dataclass(slots=True)
class PipelineRun:
    """One execution attempt of a pipeline version."""

    id: str
    pipeline_version_id: str
    status: RunStatus = RunStatus.RUNNING
    origin: str = "api"
    origin_info: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    error: str | None = None


@dataclass(slots=True)
class StepRun:
    """One node execution inside a pipeline run."""

    id: str
    pipeline_run_id: str
    step_version_id: str
    node_key: str
    params: dict[str, Any] = field(default_factory=dict)
    status: StepRunStatus = StepRunStatus.PENDING
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None
    duration_ms: float | None = None
    error: str | None = None


@dataclass(slots=True)
class IRArtifact:
    """The JSON output of a step run and how it fared against its schema."""

    id: str
    step_run_id: str
    pipeline_run_id: str
    ir: Any
    is_valid: bool
    validation_errors: list[dict[str, Any]] = field(default_factory=list)
    schema_id: str | None = None
    schema_version: str | None = None
    warnings: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class StepOutputLink:
    """Something a step produced outside its IR (a document, an image ...)."""

    id: str
    step_run_id: str
    target_type: str
    target_id: str
    meta: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)


def pipeline_run_to_storage(run: PipelineRun) -> dict[str, Any]:
    """Serialise a PipelineRun to a storage-ready dict."""
    return dataclasses.asdict(run)


def pipeline_run_from_storage(data: dict[str, Any]) -> PipelineRun:
    """Reconstruct a PipelineRun from a storage dict."""
    data = dict(data)
    data["status"] = RunStatus(data["status"])
    return PipelineRun(**data)


def step_run_to_storage(step_run: StepRun) -> dict[str, Any]:
    """Serialise a StepRun to a storage-ready dict."""
    return dataclasses.asdict(step_run)


def step_run_from_storage(data: dict[str, Any]) -> StepRun:
    """Reconstruct a StepRun from a storage dict."""
    data = dict(data)
    data["status"] = StepRunStatus(data["status"])
    return StepRun(**data)


def artifact_to_storage(artifact: IRArtifact) -> dict[str, Any]:
    """Serialise an IRArtifact to a storage-ready dict."""
    return dataclasses.asdict(artifact)


def artifact_from_storage(data: dict[str, Any]) -> IRArtifact:
    """Reconstruct an IRArtifact from a storage dict."""
    return IRArtifact(**data)


def output_link_to_storage(link: StepOutputLink) -> dict[str, Any]:
    """Serialise a StepOutputLink to a storage-ready dict."""
    return dataclasses.asdict(link)


def output_link_from_storage(data: dict[str, Any]) -> StepOutputLink:
    """Reconstruct a StepOutputLink from a storage dict."""
    return StepOutputLink(**data)
