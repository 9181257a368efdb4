"""RunStore lib: pipeline runs, step runs and everything they record.

The execution engine is the only writer.  Rows are append-only apart from
status transitions, which are checked against the run and step-run state
machines.  The ``a*`` query methods form the reporting surface.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from irflow.kernel.domain.metrics import (
    MetricResult,
    metric_result_from_storage,
    metric_result_to_storage,
)
from irflow.kernel.domain.runs import (
    RUN_TRANSITIONS,
    STEP_RUN_TRANSITIONS,
    IRArtifact,
    PipelineRun,
    RunStatus,
    StepOutputLink,
    StepRun,
    StepRunStatus,
    artifact_from_storage,
    artifact_to_storage,
    output_link_from_storage,
    output_link_to_storage,
    pipeline_run_from_storage,
    pipeline_run_to_storage,
    step_run_from_storage,
    step_run_to_storage,
)
from irflow.kernel.exceptions import InvalidTransitionError, NotFoundError
from irflow.kernel.logging import get_logger
from irflow.stdlib.lib_base import IrflowLib

if TYPE_CHECKING:
    from irflow.kernel.ports.data_store import SupportsCollectionStorage

logger = get_logger(__name__)

_RUNS = "pipeline_runs"
_STEP_RUNS = "step_runs"
_ARTIFACTS = "ir_artifacts"
_METRIC_RESULTS = "metric_results"
_OUTPUT_LINKS = "step_output_links"


class RunStore(IrflowLib):
    """Persistent record of pipeline executions.

    Exposed operations
    ------------------
    - ``aget_run(run_id)`` / ``alist_runs(status?, pipeline_version_id?, limit?)``
    - ``alist_step_runs(run_id)`` / ``aget_step_run(step_run_id)``
    - ``aget_artifact(step_run_id)`` / ``alist_artifacts(run_id)``
    - ``alist_metric_results(...)`` / ``alist_output_links(step_run_id)``
    - ``adescribe_run(run_id)``
    """

    def __init__(self, storage: SupportsCollectionStorage) -> None:
        """Initialise the run store.

        Args
        ----
            storage: Backend for every run collection.
        """
        self._storage = storage

    # ------------------------------------------------------------------
    # Write API (engine only)
    # ------------------------------------------------------------------

    async def create_run(self, run: PipelineRun) -> None:
        """Persist a new pipeline run in ``running`` state."""
        await self._storage.asave(_RUNS, run.id, pipeline_run_to_storage(run))

    async def save_run(self, run: PipelineRun) -> None:
        """Persist summary changes of a still-running pipeline run."""
        await self._storage.asave(_RUNS, run.id, pipeline_run_to_storage(run))

    async def finish_run(
        self,
        run: PipelineRun,
        status: RunStatus,
        *,
        error: str | None = None,
    ) -> PipelineRun:
        """Move a run to its terminal status and stamp ``completed_at``.

        Raises
        ------
        InvalidTransitionError
            If ``status`` is not reachable from the run's current status
        """
        if status not in RUN_TRANSITIONS.get(run.status, frozenset()):
            raise InvalidTransitionError("pipeline_run", run.id, run.status, status)
        run.status = status
        run.completed_at = time.time()
        if error is not None:
            run.error = error
        await self._storage.asave(_RUNS, run.id, pipeline_run_to_storage(run))
        return run

    async def create_step_run(self, step_run: StepRun) -> None:
        """Persist a new step run (``pending``)."""
        await self._storage.asave(_STEP_RUNS, step_run.id, step_run_to_storage(step_run))

    async def transition_step_run(
        self,
        step_run: StepRun,
        status: StepRunStatus,
        *,
        error: str | None = None,
    ) -> StepRun:
        """Move a step run along its state machine and persist it.

        ``started_at`` is stamped on entering ``running``; ``completed_at``
        and ``duration_ms`` on entering a terminal status.

        Raises
        ------
        InvalidTransitionError
            If the move is not allowed
        """
        if status not in STEP_RUN_TRANSITIONS.get(step_run.status, frozenset()):
            raise InvalidTransitionError("step_run", step_run.id, step_run.status, status)
        now = time.time()
        step_run.status = status
        if status is StepRunStatus.RUNNING:
            step_run.started_at = now
        elif status.is_terminal:
            step_run.completed_at = now
            if step_run.started_at is not None:
                step_run.duration_ms = (now - step_run.started_at) * 1000
        if error is not None:
            step_run.error = error
        await self._storage.asave(_STEP_RUNS, step_run.id, step_run_to_storage(step_run))
        return step_run

    async def save_step_run(self, step_run: StepRun) -> None:
        """Persist non-status changes (attempt counter) of a step run."""
        await self._storage.asave(_STEP_RUNS, step_run.id, step_run_to_storage(step_run))

    async def record_artifact(self, artifact: IRArtifact) -> None:
        """Persist the IR artifact of a step run."""
        await self._storage.asave(_ARTIFACTS, artifact.id, artifact_to_storage(artifact))

    async def record_metric_results(self, results: list[MetricResult]) -> None:
        """Persist metric results."""
        for result in results:
            await self._storage.asave(_METRIC_RESULTS, result.id, metric_result_to_storage(result))

    async def record_output_links(self, links: list[StepOutputLink]) -> None:
        """Persist output links of a step run."""
        for link in links:
            await self._storage.asave(_OUTPUT_LINKS, link.id, output_link_to_storage(link))

    # ------------------------------------------------------------------
    # Reporting surface
    # ------------------------------------------------------------------

    async def aget_run(self, run_id: str) -> PipelineRun:
        """Get a pipeline run by ID."""
        data = await self._storage.aload(_RUNS, run_id)
        if data is None:
            raise NotFoundError("pipeline_run", run_id)
        return pipeline_run_from_storage(data)

    async def alist_runs(
        self,
        status: str | None = None,
        pipeline_version_id: str | None = None,
        limit: int = 50,
    ) -> list[PipelineRun]:
        """List pipeline runs, newest first.

        Args
        ----
            status: Filter by run status (running/completed/partial/failed/cancelled).
            pipeline_version_id: Filter by pipeline version.
            limit: Maximum number of results (default 50).
        """
        filters: dict[str, Any] = {}
        if status:
            filters["status"] = str(RunStatus(status))
        if pipeline_version_id:
            filters["pipeline_version_id"] = pipeline_version_id
        docs = await self._storage.aquery(_RUNS, filters or None)
        docs.sort(key=lambda d: d.get("started_at", 0), reverse=True)
        return [pipeline_run_from_storage(d) for d in docs[:limit]]

    async def aget_step_run(self, step_run_id: str) -> StepRun:
        """Get a step run by ID."""
        data = await self._storage.aload(_STEP_RUNS, step_run_id)
        if data is None:
            raise NotFoundError("step_run", step_run_id)
        return step_run_from_storage(data)

    async def alist_step_runs(self, run_id: str) -> list[StepRun]:
        """List the step runs of a pipeline run in creation order."""
        docs = await self._storage.aquery(_STEP_RUNS, {"pipeline_run_id": run_id})
        return sorted((step_run_from_storage(d) for d in docs), key=lambda s: s.created_at)

    async def aget_artifact(self, step_run_id: str) -> IRArtifact | None:
        """Get the IR artifact of a step run, if it produced one."""
        docs = await self._storage.aquery(_ARTIFACTS, {"step_run_id": step_run_id})
        return artifact_from_storage(docs[0]) if docs else None

    async def alist_artifacts(self, run_id: str) -> list[IRArtifact]:
        """List the IR artifacts of a pipeline run."""
        docs = await self._storage.aquery(_ARTIFACTS, {"pipeline_run_id": run_id})
        return sorted((artifact_from_storage(d) for d in docs), key=lambda a: a.created_at)

    async def alist_metric_results(
        self,
        run_id: str | None = None,
        step_run_id: str | None = None,
        metric_key: str | None = None,
        step_version_id: str | None = None,
    ) -> list[MetricResult]:
        """List metric results matching every given filter, oldest first."""
        filters = {
            name: value
            for name, value in (
                ("pipeline_run_id", run_id),
                ("step_run_id", step_run_id),
                ("metric_key", metric_key),
                ("step_version_id", step_version_id),
            )
            if value is not None
        }
        docs = await self._storage.aquery(_METRIC_RESULTS, filters or None)
        return sorted((metric_result_from_storage(d) for d in docs), key=lambda r: r.created_at)

    async def alist_output_links(self, step_run_id: str) -> list[StepOutputLink]:
        """List the outputs a step run reported."""
        docs = await self._storage.aquery(_OUTPUT_LINKS, {"step_run_id": step_run_id})
        return [output_link_from_storage(d) for d in docs]

    async def adescribe_run(self, run_id: str) -> dict[str, Any]:
        """Return a run with its step runs, artifact validity and metric results."""
        run = await self.aget_run(run_id)
        steps: list[dict[str, Any]] = []
        for step_run in await self.alist_step_runs(run_id):
            artifact = await self.aget_artifact(step_run.id)
            steps.append(
                {
                    "id": step_run.id,
                    "node_key": step_run.node_key,
                    "status": str(step_run.status),
                    "attempts": step_run.attempts,
                    "duration_ms": step_run.duration_ms,
                    "error": step_run.error,
                    "ir_valid": artifact.is_valid if artifact is not None else None,
                    "validation_errors": artifact.validation_errors if artifact else [],
                }
            )
        metrics = [
            {
                "metric_key": r.metric_key,
                "step_run_id": r.step_run_id,
                "value": r.value,
                "passed": r.passed,
            }
            for r in await self.alist_metric_results(run_id=run_id)
        ]
        return {
            "id": run.id,
            "pipeline_version_id": run.pipeline_version_id,
            "status": str(run.status),
            "origin": run.origin,
            "started_at": run.started_at,
            "completed_at": run.completed_at,
            "summary": run.summary,
            "error": run.error,
            "steps": steps,
            "metrics": metrics,
        }
