"""Domain models for the versioned pipeline, step and schema registries.

Pipelines and steps share one definition shape; their versions differ only
in payload (a pipeline version carries a ``dag`` and a ``config`` blob, a
step version a ``default_config`` blob).
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class DefinitionKind(StrEnum):
    """What a definition versions."""

    PIPELINE = "pipeline"
    STEP = "step"


@dataclass(slots=True)
class Definition:
    """Stable identity of a pipeline or a step.

    ``name_key`` is the case-folded name used for uniqueness checks.  For a
    step, ``name`` also selects the executor implementation.
    """

    id: str
    kind: DefinitionKind
    name: str
    name_key: str
    description: str | None = None
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class PipelineVersion:
    """One immutable-by-label revision of a pipeline's DAG and config."""

    id: str
    definition_id: str
    label: str
    dag: dict[str, Any]
    config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float | None = None


@dataclass(slots=True)
class StepVersion:
    """One revision of a processing step's default configuration."""

    id: str
    definition_id: str
    label: str
    default_config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float | None = None


@dataclass(slots=True)
class IRSchema:
    """A versioned JSON-Schema scoped to one step version."""

    id: str
    step_version_id: str
    version: str
    schema: dict[str, Any]
    name: str | None = None
    is_active: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """Result of validating an IR payload.

    ``schema_version`` is ``None`` when no schema was registered for the step
    version; ``warnings`` then says so explicitly.
    """

    is_valid: bool
    errors: tuple[dict[str, Any], ...] = ()
    schema_id: str | None = None
    schema_version: str | None = None
    warnings: tuple[str, ...] = ()


def definition_to_storage(definition: Definition) -> dict[str, Any]:
    """Serialise a Definition to a storage-ready dict."""
    return dataclasses.asdict(definition)


def definition_from_storage(data: dict[str, Any]) -> Definition:
    """Reconstruct a Definition from a storage dict."""
    data = dict(data)
    data["kind"] = DefinitionKind(data["kind"])
    return Definition(**data)


def pipeline_version_to_storage(version: PipelineVersion) -> dict[str, Any]:
    """Serialise a PipelineVersion to a storage-ready dict."""
    return dataclasses.asdict(version)


def pipeline_version_from_storage(data: dict[str, Any]) -> PipelineVersion:
    """Reconstruct a PipelineVersion from a storage dict."""
    return PipelineVersion(**data)


def step_version_to_storage(version: StepVersion) -> dict[str, Any]:
    """Serialise a StepVersion to a storage-ready dict."""
    return dataclasses.asdict(version)


def step_version_from_storage(data: dict[str, Any]) -> StepVersion:
    """Reconstruct a StepVersion from a storage dict."""
    return StepVersion(**data)


def ir_schema_to_storage(schema: IRSchema) -> dict[str, Any]:
    """Serialise an IRSchema to a storage-ready dict."""
    return dataclasses.asdict(schema)


def ir_schema_from_storage(data: dict[str, Any]) -> IRSchema:
    """Reconstruct an IRSchema from a storage dict."""
    return IRSchema(**data)
