"""Domain models for metric definitions, profiles and recorded results."""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Aggregation(StrEnum):
    """How several samples of one metric are combined."""

    AVG = "avg"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    LATEST = "latest"
    RATIO = "ratio"


class MetricScope(StrEnum):
    """What a metric (or a profile) scores."""

    STEP = "step"
    PIPELINE = "pipeline"


class Comparison(StrEnum):
    """Direction used when comparing a value with its threshold."""

    GTE = "gte"
    LTE = "lte"
    EQ = "eq"


MetricValue = float | str


@dataclass(slots=True)
class MetricDefinition:
    """A named, aggregatable measurement with an optional target."""

    id: str
    key: str
    aggregation: Aggregation = Aggregation.LATEST
    scope: MetricScope = MetricScope.STEP
    target: float | None = None
    name: str | None = None
    description: str | None = None
    unit: str | None = None
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class MetricProfile:
    """A weighted bundle of metric definitions used to score one scope."""

    id: str
    name: str
    scope: MetricScope = MetricScope.STEP
    description: str | None = None
    is_active: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class MetricProfileItem:
    """One metric inside a profile.

    ``config`` understands ``comparison`` (``gte``/``lte``/``eq``),
    ``history`` (how many recent values the aggregation combines) and
    ``expected`` (the passing value of a string metric).
    """

    id: str
    profile_id: str
    metric_id: str
    weight: float = 1.0
    threshold: float | None = None
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class MetricResult:
    """A recorded metric value for one step run (or one pipeline run)."""

    id: str
    pipeline_run_id: str
    step_run_id: str | None
    metric_key: str
    scope: MetricScope
    value: MetricValue
    passed: bool | None = None
    step_version_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)


def metric_definition_to_storage(definition: MetricDefinition) -> dict[str, Any]:
    """Serialise a MetricDefinition to a storage-ready dict."""
    return dataclasses.asdict(definition)


def metric_definition_from_storage(data: dict[str, Any]) -> MetricDefinition:
    """Reconstruct a MetricDefinition from a storage dict."""
    data = dict(data)
    data["aggregation"] = Aggregation(data["aggregation"])
    data["scope"] = MetricScope(data["scope"])
    return MetricDefinition(**data)


def metric_profile_to_storage(profile: MetricProfile) -> dict[str, Any]:
    """Serialise a MetricProfile to a storage-ready dict."""
    return dataclasses.asdict(profile)


def metric_profile_from_storage(data: dict[str, Any]) -> MetricProfile:
    """Reconstruct a MetricProfile from a storage dict."""
    data = dict(data)
    data["scope"] = MetricScope(data["scope"])
    return MetricProfile(**data)


def profile_item_to_storage(item: MetricProfileItem) -> dict[str, Any]:
    """Serialise a MetricProfileItem to a storage-ready dict."""
    return dataclasses.asdict(item)


def profile_item_from_storage(data: dict[str, Any]) -> MetricProfileItem:
    """Reconstruct a MetricProfileItem from a storage dict."""
    return MetricProfileItem(**data)


def metric_result_to_storage(result: MetricResult) -> dict[str, Any]:
    """Serialise a MetricResult to a storage-ready dict."""
    return dataclasses.asdict(result)


def metric_result_from_storage(data: dict[str, Any]) -> MetricResult:
    """Reconstruct a MetricResult from a storage dict."""
    data = dict(data)
    data["scope"] = MetricScope(data["scope"])
    return MetricResult(**data)
