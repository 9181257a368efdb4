"""Tests for the run store state machines and reporting queries."""

from __future__ import annotations

import pytest

from irflow.kernel.domain.metrics import MetricResult, MetricScope
from irflow.kernel.domain.runs import (
    IRArtifact,
    PipelineRun,
    RunStatus,
    StepOutputLink,
    StepRun,
    StepRunStatus,
)
from irflow.kernel.exceptions import InvalidTransitionError, NotFoundError
from irflow.stdlib.adapters.memory import InMemoryCollectionStorage
from irflow.stdlib.lib.run_store import RunStore


@pytest.fixture
def runs() -> RunStore:
    return RunStore(InMemoryCollectionStorage())


def make_run(
    run_id: str = "run-1", version: str = "pv-1", started_at: float = 100.0
) -> PipelineRun:
    return PipelineRun(id=run_id, pipeline_version_id=version, started_at=started_at)


def make_step_run(step_run_id: str = "sr-1", run_id: str = "run-1", key: str = "ocr") -> StepRun:
    return StepRun(id=step_run_id, pipeline_run_id=run_id, step_version_id="sv-1", node_key=key)


class TestPipelineRuns:
    @pytest.mark.asyncio()
    async def test_finish_stamps_completion(self, runs: RunStore) -> None:
        run = make_run()
        await runs.create_run(run)

        await runs.finish_run(run, RunStatus.FAILED, error="no step completed successfully")

        stored = await runs.aget_run("run-1")
        assert stored.status is RunStatus.FAILED
        assert stored.completed_at is not None
        assert stored.error == "no step completed successfully"

    @pytest.mark.asyncio()
    async def test_terminal_runs_cannot_change(self, runs: RunStore) -> None:
        run = make_run()
        await runs.create_run(run)
        await runs.finish_run(run, RunStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError, match="'completed' -> 'failed'"):
            await runs.finish_run(run, RunStatus.FAILED)

    @pytest.mark.asyncio()
    async def test_summary_updates(self, runs: RunStore) -> None:
        run = make_run()
        await runs.create_run(run)

        run.summary["planned_nodes"] = ["a"]
        await runs.save_run(run)

        assert (await runs.aget_run("run-1")).summary == {"planned_nodes": ["a"]}

    @pytest.mark.asyncio()
    async def test_list_filters_newest_first(self, runs: RunStore) -> None:
        seeded = (("r1", "pv-1", 1.0), ("r2", "pv-2", 2.0), ("r3", "pv-1", 3.0))
        for run_id, version, started in seeded:
            await runs.create_run(make_run(run_id, version, started))
        await runs.finish_run(await runs.aget_run("r3"), RunStatus.PARTIAL)

        assert [r.id for r in await runs.alist_runs()] == ["r3", "r2", "r1"]
        assert [r.id for r in await runs.alist_runs(pipeline_version_id="pv-1")] == ["r3", "r1"]
        assert [r.id for r in await runs.alist_runs(status="running")] == ["r2", "r1"]
        assert [r.id for r in await runs.alist_runs(limit=1)] == ["r3"]

    @pytest.mark.asyncio()
    async def test_unknown_status_filter(self, runs: RunStore) -> None:
        with pytest.raises(ValueError):
            await runs.alist_runs(status="exploded")

    @pytest.mark.asyncio()
    async def test_missing_run(self, runs: RunStore) -> None:
        with pytest.raises(NotFoundError, match="Pipeline Run 'nope'"):
            await runs.aget_run("nope")


class TestStepRuns:
    @pytest.mark.asyncio()
    async def test_lifecycle_stamps(self, runs: RunStore) -> None:
        step_run = make_step_run()
        await runs.create_step_run(step_run)

        await runs.transition_step_run(step_run, StepRunStatus.RUNNING)
        await runs.transition_step_run(step_run, StepRunStatus.COMPLETED)

        stored = await runs.aget_step_run("sr-1")
        assert stored.status is StepRunStatus.COMPLETED
        assert stored.started_at is not None
        assert stored.completed_at >= stored.started_at
        assert stored.duration_ms >= 0

    @pytest.mark.asyncio()
    async def test_skip_records_reason(self, runs: RunStore) -> None:
        step_run = make_step_run()
        await runs.create_step_run(step_run)

        await runs.transition_step_run(
            step_run, StepRunStatus.SKIPPED, error="condition 'x' is false"
        )

        stored = await runs.aget_step_run("sr-1")
        assert stored.error == "condition 'x' is false"
        assert stored.started_at is None
        assert stored.duration_ms is None

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ([], StepRunStatus.COMPLETED),
            ([StepRunStatus.SKIPPED], StepRunStatus.RUNNING),
            ([StepRunStatus.RUNNING], StepRunStatus.SKIPPED),
            ([StepRunStatus.RUNNING, StepRunStatus.FAILED], StepRunStatus.COMPLETED),
        ],
    )
    @pytest.mark.asyncio()
    async def test_illegal_transitions(
        self, runs: RunStore, path: list[StepRunStatus], target: StepRunStatus
    ) -> None:
        step_run = make_step_run()
        await runs.create_step_run(step_run)
        for status in path:
            await runs.transition_step_run(step_run, status)

        with pytest.raises(InvalidTransitionError):
            await runs.transition_step_run(step_run, target)

    @pytest.mark.asyncio()
    async def test_list_in_creation_order(self, runs: RunStore) -> None:
        for index, key in enumerate(("b", "a", "c")):
            step_run = make_step_run(f"sr-{key}", key=key)
            step_run.created_at = float(index)
            await runs.create_step_run(step_run)
        await runs.create_step_run(make_step_run("other", run_id="run-2"))

        assert [s.node_key for s in await runs.alist_step_runs("run-1")] == ["b", "a", "c"]


class TestRecords:
    @pytest.mark.asyncio()
    async def test_artifacts_links_and_metrics(self, runs: RunStore) -> None:
        await runs.create_run(make_run())
        step_run = make_step_run()
        await runs.create_step_run(step_run)
        await runs.transition_step_run(step_run, StepRunStatus.RUNNING)
        await runs.record_artifact(
            IRArtifact(
                id="art-1",
                step_run_id="sr-1",
                pipeline_run_id="run-1",
                ir={"pages": "x"},
                is_valid=False,
                validation_errors=[{"path": "/pages", "message": "bad", "validator": "type"}],
                schema_version="1.0",
            )
        )
        await runs.record_output_links(
            [StepOutputLink(id="l1", step_run_id="sr-1", target_type="file", target_id="f-9")]
        )
        await runs.record_metric_results(
            [
                MetricResult(
                    id="m1",
                    pipeline_run_id="run-1",
                    step_run_id="sr-1",
                    metric_key="confidence",
                    scope=MetricScope.STEP,
                    value=0.7,
                    passed=False,
                    step_version_id="sv-1",
                ),
                MetricResult(
                    id="m2",
                    pipeline_run_id="run-1",
                    step_run_id=None,
                    metric_key="confidence",
                    scope=MetricScope.PIPELINE,
                    value=0.7,
                ),
            ]
        )
        await runs.transition_step_run(step_run, StepRunStatus.COMPLETED)

        artifact = await runs.aget_artifact("sr-1")
        assert artifact.validation_errors[0]["path"] == "/pages"
        assert [a.id for a in await runs.alist_artifacts("run-1")] == ["art-1"]
        assert await runs.aget_artifact("unknown") is None
        assert [link.target_id for link in await runs.alist_output_links("sr-1")] == ["f-9"]
        assert len(await runs.alist_metric_results(run_id="run-1")) == 2
        assert [r.id for r in await runs.alist_metric_results(step_run_id="sr-1")] == ["m1"]
        assert [r.id for r in await runs.alist_metric_results(step_version_id="sv-1")] == ["m1"]

        detail = await runs.adescribe_run("run-1")
        assert detail["status"] == "running"
        assert detail["steps"][0]["ir_valid"] is False
        assert detail["steps"][0]["validation_errors"][0]["validator"] == "type"
        assert {m["step_run_id"] for m in detail["metrics"]} == {"sr-1", None}
