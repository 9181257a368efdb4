"""DAG payload models and the compiled execution plan.

A pipeline version stores its graph as plain JSON::

    {"nodes": [{"key": "ocr", "stepVersionId": "...", "order": 0}],
     "edges": [{"from": "ocr", "to": "classify"}]}

At the compiler boundary the payload is parsed into one of two checked
shapes, selected by a callable discriminator:

- :class:`LinearDag`: no edges and no ``dependsOn``; nodes run by ``order``
- :class:`GraphDag`: dependencies declared; nodes run in topological order

Unknown keys are kept (``extra="allow"``) and :meth:`to_payload` dumps by
alias with ``exclude_unset=True`` so the stored JSON round-trips exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

PlanMode = Literal["linear", "graph"]


class DagNode(BaseModel):
    """One node of a persisted DAG."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    key: str = Field(min_length=1, description="Node key, unique within the DAG")
    step_version_id: str = Field(alias="stepVersionId", min_length=1)
    order: int | float = Field(default=0, description="Position for linear ordering")
    params: dict[str, Any] = Field(default_factory=dict, description="Per-node config")
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    condition: str | None = Field(default=None, description="Skip the node when false")
    continue_on_fail: bool = Field(default=False, alias="continueOnFail")
    retries: int | None = Field(default=None, ge=1, description="Executor attempts")
    timeout_ms: int | None = Field(default=None, gt=0, alias="timeoutMs")
    metric_profile_id: str | None = Field(default=None, alias="metricProfileId")
    schema_version: str | None = Field(default=None, alias="schemaVersion")


class DagEdge(BaseModel):
    """A dependency edge; ``from`` must finish before ``to`` starts."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    from_key: str = Field(alias="from", min_length=1)
    to_key: str = Field(alias="to", min_length=1)


class _DagBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    nodes: list[DagNode] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Dump back to the persisted JSON shape."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class LinearDag(_DagBase):
    """DAG without dependencies (``edges`` absent or empty)."""

    mode: Literal["linear"] = Field(default="linear", exclude=True)
    edges: list[DagEdge] | None = None


class GraphDag(_DagBase):
    """DAG with edges and/or per-node ``dependsOn``."""

    mode: Literal["graph"] = Field(default="graph", exclude=True)
    edges: list[DagEdge] = Field(default_factory=list)


def _dag_shape(value: Any) -> str:
    if isinstance(value, _DagBase):
        return value.mode
    if not isinstance(value, dict):
        return "linear"
    if value.get("edges"):
        return "graph"
    nodes = value.get("nodes")
    if isinstance(nodes, list) and any(
        isinstance(n, dict) and (n.get("dependsOn") or n.get("depends_on")) for n in nodes
    ):
        return "graph"
    return "linear"


DagPayload = Annotated[
    Annotated[LinearDag, Tag("linear")] | Annotated[GraphDag, Tag("graph")],
    Discriminator(_dag_shape),
]

DAG_ADAPTER: TypeAdapter[LinearDag | GraphDag] = TypeAdapter(DagPayload)


def parse_dag(payload: Any) -> LinearDag | GraphDag:
    """Parse a stored DAG payload into its checked shape.

    Raises
    ------
    pydantic.ValidationError
        If the payload does not match either shape
    """
    return DAG_ADAPTER.validate_python(payload)


# ============================================================================
# Compiled plan
# ============================================================================


@dataclass(frozen=True, slots=True)
class PlannedNode:
    """A DAG node resolved against the step registry."""

    key: str
    step_version_id: str
    step_definition_id: str
    step_name: str
    step_label: str
    step_active: bool
    order: int | float
    position: int
    default_config: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    condition: str | None = None
    continue_on_fail: bool = False
    retries: int | None = None
    timeout_ms: int | None = None
    metric_profile_id: str | None = None
    schema_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly view used by dry runs and the CLI."""
        return {
            "key": self.key,
            "stepVersionId": self.step_version_id,
            "stepName": self.step_name,
            "stepLabel": self.step_label,
            "stepActive": self.step_active,
            "order": self.order,
            "dependsOn": list(self.depends_on),
            "condition": self.condition,
        }


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Ordered, fully-resolved plan produced by the DAG compiler.

    ``nodes`` are in execution order.  ``waves`` group node keys whose
    predecessors all sit in earlier waves; a linear plan has one node per
    wave.
    """

    mode: PlanMode
    nodes: tuple[PlannedNode, ...]
    waves: tuple[tuple[str, ...], ...]
    warnings: tuple[str, ...] = ()
    pipeline_version_id: str | None = None

    @property
    def order(self) -> list[str]:
        """Node keys in execution order."""
        return [n.key for n in self.nodes]

    def node(self, key: str) -> PlannedNode:
        """Return the planned node with ``key``."""
        for planned in self.nodes:
            if planned.key == key:
                return planned
        raise KeyError(key)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly view of the plan."""
        return {
            "pipelineVersionId": self.pipeline_version_id,
            "mode": self.mode,
            "order": self.order,
            "waves": [list(w) for w in self.waves],
            "nodes": [n.to_dict() for n in self.nodes],
            "warnings": list(self.warnings),
        }
