"""Request and result models for the execution engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from irflow.kernel.domain.dag import ExecutionPlan
    from irflow.kernel.domain.runs import PipelineRun, StepRun


class FailurePolicy(StrEnum):
    """What a run does after a step fails."""

    CONTINUE = "continue"
    ABORT = "abort"


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Per-request execution options.

    Unset fields (``None``) fall back to the engine configuration.

    Attributes
    ----------
    dry_run : bool
        Compile and resolve configs only; no executor calls, no rows
    overrides : dict[str, Any]
        Config merged into every node
    node_overrides : dict[str, dict[str, Any]]
        Config merged into single nodes (by key), after ``overrides``
    failure_policy : FailurePolicy | None
        ``continue`` or ``abort``
    fatal_schema_violations : bool | None
        Fail steps whose IR does not match the schema
    pinned_schemas : dict[str, str]
        Node key -> IR schema version, beats the node's ``schemaVersion``
    origin : str
        Who started the run (``api``, ``cli``, ``schedule`` ...)
    origin_info : dict[str, Any]
        Free-form details about the origin
    run_id : str | None
        Pre-assigned pipeline run id (lets a caller cancel a run it started)
    max_concurrency : int | None
        Independent branches executed at the same time
    """

    dry_run: bool = False
    overrides: dict[str, Any] = field(default_factory=dict)
    node_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)
    failure_policy: FailurePolicy | None = None
    fatal_schema_violations: bool | None = None
    pinned_schemas: dict[str, str] = field(default_factory=dict)
    origin: str = "api"
    origin_info: dict[str, Any] = field(default_factory=dict)
    run_id: str | None = None
    max_concurrency: int | None = None

    def to_record(self) -> dict[str, Any]:
        """Return the options as stored on the PipelineRun."""
        return {
            "overrides": self.overrides,
            "node_overrides": self.node_overrides,
            "failure_policy": str(self.failure_policy) if self.failure_policy else None,
            "fatal_schema_violations": self.fatal_schema_violations,
            "pinned_schemas": self.pinned_schemas,
            "max_concurrency": self.max_concurrency,
        }


@dataclass(slots=True)
class ExecutionResult:
    """What :meth:`ExecutionEngine.aexecute` returns.

    For a dry run ``run`` is ``None`` and ``step_runs`` is empty;
    ``resolved_configs`` always holds the effective config of every node.
    """

    plan: ExecutionPlan
    resolved_configs: dict[str, dict[str, Any]]
    dry_run: bool = False
    run: PipelineRun | None = None
    step_runs: list[StepRun] = field(default_factory=list)

    @property
    def status(self) -> str | None:
        """Terminal status of the run, ``None`` for a dry run."""
        return str(self.run.status) if self.run is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly view (used by the CLI)."""
        return {
            "dryRun": self.dry_run,
            "plan": self.plan.to_dict(),
            "resolvedConfigs": self.resolved_configs,
            "run": (
                {
                    "id": self.run.id,
                    "status": str(self.run.status),
                    "summary": self.run.summary,
                }
                if self.run is not None
                else None
            ),
            "stepRuns": [
                {"id": s.id, "nodeKey": s.node_key, "status": str(s.status), "error": s.error}
                for s in self.step_runs
            ],
        }
