"""Execution engine: compile a pipeline version and run it step by step.

The engine is the only writer of run state.  For every node it:

1. resolves the effective config (step defaults -> node params -> run
   overrides -> per-node overrides)
2. creates a ``pending`` StepRun, evaluates the node ``condition`` and
   skips the node when the condition is false or an upstream node did not
   complete
3. invokes the step executor (``running``), with timeout and retries
4. records the IR artifact with its schema validation outcome, output
   links and metric results
5. moves the StepRun to ``completed`` or ``failed``

Run-time errors are recorded on the StepRun and never escape
:meth:`ExecutionEngine.aexecute`; compile errors are raised before any row
exists.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from irflow.kernel.config.models import EngineConfig
from irflow.kernel.domain.registry import ValidationOutcome
from irflow.kernel.domain.runs import (
    IRArtifact,
    PipelineRun,
    RunStatus,
    StepOutputLink,
    StepRun,
    StepRunStatus,
)
from irflow.kernel.exceptions import (
    ExecutionFailure,
    NotFoundError,
    ValidationFailure,
)
from irflow.kernel.expression_parser import compile_condition
from irflow.kernel.logging import get_logger, reset_correlation_id, set_correlation_id
from irflow.kernel.orchestration.compiler import DagCompiler
from irflow.kernel.orchestration.components.step_runner import StepRunner
from irflow.kernel.orchestration.events import (
    Event,
    PipelineRunFinished,
    PipelineRunStarted,
    StepRunCompleted,
    StepRunFailed,
    StepRunSkipped,
    StepRunStarted,
)
from irflow.kernel.orchestration.models import ExecutionOptions, ExecutionResult, FailurePolicy
from irflow.kernel.utils.merge import merge_layers
from irflow.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from collections.abc import Iterable

    from irflow.kernel.domain.dag import ExecutionPlan, PlannedNode
    from irflow.kernel.domain.registry import PipelineVersion
    from irflow.kernel.orchestration.components.metric_evaluator import MetricEvaluator
    from irflow.kernel.ports.observer import Observer
    from irflow.kernel.ports.step_executor import StepExecutor, StepOutput
    from irflow.stdlib.lib.run_store import RunStore
    from irflow.stdlib.lib.schema_registry import SchemaRegistry
    from irflow.stdlib.lib.version_registry import PipelineRegistry, StepRegistry

logger = get_logger(__name__)


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping for one pipeline run in flight."""

    run: PipelineRun
    plan: ExecutionPlan
    configs: dict[str, dict[str, Any]]
    context_config: dict[str, Any]
    policy: FailurePolicy
    fatal_schema: bool
    pinned_schemas: dict[str, str]
    timer: Timer = field(default_factory=Timer)
    statuses: dict[str, StepRunStatus] = field(default_factory=dict)
    irs: dict[str, Any] = field(default_factory=dict)
    step_runs: list[StepRun] = field(default_factory=list)
    step_scores: dict[str, float | None] = field(default_factory=dict)
    metric_errors: dict[str, str] = field(default_factory=dict)
    aborted: bool = False
    cancelled: bool = False
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def halted(self) -> bool:
        return self.aborted or self.cancelled

    def keys_with(self, status: StepRunStatus) -> list[str]:
        return [n.key for n in self.plan.nodes if self.statuses.get(n.key) is status]


class ExecutionEngine:
    """Run pipeline versions against an injected step executor.

    Examples
    --------
    Example usage::

        engine = ExecutionEngine(pipelines, steps, schemas, runs, executor=executors)
        result = await engine.aexecute(version.id)
        result.run.status  # RunStatus.COMPLETED

        preview = await engine.aexecute(version.id, ExecutionOptions(dry_run=True))
        preview.plan.order
    """

    def __init__(
        self,
        pipelines: PipelineRegistry,
        steps: StepRegistry,
        schemas: SchemaRegistry,
        runs: RunStore,
        executor: StepExecutor,
        evaluator: MetricEvaluator | None = None,
        config: EngineConfig | None = None,
        observers: Iterable[Observer] = (),
    ) -> None:
        """Initialise the engine.

        Args
        ----
            pipelines: Source of pipeline versions.
            steps: Step registry used by the compiler.
            schemas: Validates each step's IR.
            runs: Receives every run record.
            executor: External step executor (usually an ``ExecutorRegistry``).
            evaluator: Scores completed steps and runs; metrics are off when ``None``.
            config: Engine defaults.
            observers: Receive lifecycle events.
        """
        self._pipelines = pipelines
        self._schemas = schemas
        self._runs = runs
        self._evaluator = evaluator
        self._config = config or EngineConfig()
        self._observers = list(observers)
        self._compiler = DagCompiler(steps)
        self._runner = StepRunner(executor, self._config)
        self._active: dict[str, _RunState] = {}

    @property
    def compiler(self) -> DagCompiler:
        """The DAG compiler used by this engine."""
        return self._compiler

    @property
    def observers(self) -> list[Observer]:
        """Observers notified of lifecycle events, in registration order."""
        return list(self._observers)

    def add_observer(self, observer: Observer) -> None:
        """Register an observer for runs started after this call."""
        self._observers.append(observer)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def aexecute(
        self, pipeline_version_id: str, options: ExecutionOptions | None = None
    ) -> ExecutionResult:
        """Execute (or dry-run) a pipeline version.

        Args
        ----
            pipeline_version_id: The version to run.
            options: Per-request options; engine defaults apply otherwise.

        Returns
        -------
            ExecutionResult: plan, resolved configs and, unless dry run, the run

        Raises
        ------
            NotFoundError: unknown pipeline version
            InvalidGraphError: the DAG does not compile (no rows are written)
            ValidationFailure: overrides or pinned schemas name unknown node keys
        """
        options = options or ExecutionOptions()
        version = await self._pipelines.aget_version(pipeline_version_id)
        plan = await self._compiler.acompile(version.dag, pipeline_version_id)
        self._check_node_references(plan, options)
        configs = {
            node.key: merge_layers(
                node.default_config,
                node.params,
                options.overrides,
                options.node_overrides.get(node.key),
            )
            for node in plan.nodes
        }

        if options.dry_run:
            logger.info(
                "Dry run of pipeline version '{}': {} node(s)", pipeline_version_id, len(plan.nodes)
            )
            return ExecutionResult(plan=plan, resolved_configs=configs, dry_run=True)

        run_id = options.run_id or str(uuid4())
        if run_id in self._active:
            raise ValidationFailure("run_id", "a run with this id is already in progress", run_id)
        token = set_correlation_id(run_id)
        try:
            state = await self._astart(run_id, version, plan, configs, options)
            try:
                await self._arun_plan(state)
                await self._aevaluate_pipeline(state)
                await self._afinish(state)
            except Exception as e:
                logger.opt(exception=e).error("Pipeline run '{}' crashed: {}", run_id, e)
                if not state.run.status.is_terminal:
                    await self._runs.finish_run(state.run, RunStatus.FAILED, error=str(e))
                raise
            finally:
                self._active.pop(run_id, None)
        finally:
            reset_correlation_id(token)

        return ExecutionResult(
            plan=plan, resolved_configs=configs, run=state.run, step_runs=state.step_runs
        )

    async def acancel(self, pipeline_run_id: str) -> bool:
        """Request cancellation of an in-flight run.

        No new StepRuns are scheduled; running ones finish writing and the
        run ends ``cancelled``.

        Returns
        -------
        bool
            ``True`` if the request was registered, ``False`` if the run is
            not in progress here or cancellation was already requested
        """
        state = self._active.get(pipeline_run_id)
        if state is None or state.cancelled:
            return False
        state.cancelled = True
        logger.info("Cancellation requested for pipeline run '{}'", pipeline_run_id)
        return True

    def active_runs(self) -> list[str]:
        """Ids of runs currently executing in this engine."""
        return list(self._active)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _setting(self, options: ExecutionOptions, version: PipelineVersion, name: str) -> Any:
        value = getattr(options, name)
        if value is not None:
            return value
        if name in version.config:
            return version.config[name]
        return getattr(self._config, name)

    @staticmethod
    def _check_node_references(plan: ExecutionPlan, options: ExecutionOptions) -> None:
        keys = set(plan.order)
        for field_name, mapping in (
            ("node_overrides", options.node_overrides),
            ("pinned_schemas", options.pinned_schemas),
        ):
            unknown = sorted(set(mapping) - keys)
            if unknown:
                raise ValidationFailure(field_name, f"unknown node keys {unknown}")

    async def _astart(
        self,
        run_id: str,
        version: PipelineVersion,
        plan: ExecutionPlan,
        configs: dict[str, dict[str, Any]],
        options: ExecutionOptions,
    ) -> _RunState:
        try:
            policy = FailurePolicy(self._setting(options, version, "failure_policy"))
        except ValueError as e:
            raise ValidationFailure("failure_policy", "must be 'continue' or 'abort'") from e
        concurrency = int(self._setting(options, version, "max_concurrency"))
        if concurrency < 1:
            raise ValidationFailure("max_concurrency", "must be >= 1", concurrency)
        run = PipelineRun(
            id=run_id,
            pipeline_version_id=version.id,
            origin=options.origin,
            origin_info=dict(options.origin_info),
            options=options.to_record(),
            summary={
                "planned_nodes": plan.order,
                "failure_policy": str(policy),
                "max_concurrency": concurrency if plan.mode == "graph" else 1,
            },
        )
        state = _RunState(
            run=run,
            plan=plan,
            configs=configs,
            context_config=merge_layers(version.config, options.overrides),
            policy=policy,
            fatal_schema=bool(self._setting(options, version, "fatal_schema_violations")),
            pinned_schemas=dict(options.pinned_schemas),
        )
        await self._runs.create_run(run)
        self._active[run_id] = state
        logger.info(
            "Started pipeline run '{}' of version '{}' ({} node(s), policy={})",
            run_id,
            version.id,
            len(plan.nodes),
            policy,
        )
        await self._anotify(PipelineRunStarted(run_id, version.id, tuple(plan.order)))
        return state

    async def _arun_plan(self, state: _RunState) -> None:
        concurrency = state.run.summary["max_concurrency"]
        if concurrency <= 1:
            for node in state.plan.nodes:
                if state.halted:
                    break
                await self._arun_node(state, node)
            return

        semaphore = asyncio.Semaphore(concurrency)
        finished = {node.key: asyncio.Event() for node in state.plan.nodes}

        async def schedule(node: PlannedNode) -> None:
            try:
                for dep in node.depends_on:
                    await finished[dep].wait()
                if state.halted:
                    return
                async with semaphore:
                    if not state.halted:
                        await self._arun_node(state, node)
            finally:
                finished[node.key].set()

        async with asyncio.TaskGroup() as group:
            for node in state.plan.nodes:
                group.create_task(schedule(node))

    async def _aevaluate_pipeline(self, state: _RunState) -> None:
        pipeline_score: float | None = None
        if self._evaluator is not None and not state.cancelled:
            try:
                score = await self._evaluator.aevaluate_pipeline(pipeline_run_id=state.run.id)
                pipeline_score = score.score
                if score.results:
                    state.run.summary["pipeline_metrics"] = score.to_summary()
            except Exception as e:
                logger.opt(exception=e).error(
                    "Pipeline metrics of run '{}' failed: {}", state.run.id, e
                )
                state.metric_errors["<pipeline>"] = str(e)
        state.run.summary["scores"] = {"steps": dict(state.step_scores), "pipeline": pipeline_score}

    def _terminal_status(self, state: _RunState) -> RunStatus:
        completed = state.keys_with(StepRunStatus.COMPLETED)
        failed = state.keys_with(StepRunStatus.FAILED)
        if state.cancelled:
            return RunStatus.CANCELLED
        if state.aborted or (failed and not completed):
            return RunStatus.FAILED
        if failed:
            return RunStatus.PARTIAL
        return RunStatus.COMPLETED

    async def _afinish(self, state: _RunState) -> None:
        status = self._terminal_status(state)
        summary = state.run.summary
        summary.update(
            {
                "completed": state.keys_with(StepRunStatus.COMPLETED),
                "failed": state.keys_with(StepRunStatus.FAILED),
                "skipped": state.keys_with(StepRunStatus.SKIPPED),
                "not_started": [k for k in state.plan.order if k not in state.statuses],
                "duration_ms": state.timer.duration_ms,
                "cancelled": state.cancelled,
                "aborted": state.aborted,
            }
        )
        if state.plan.warnings:
            summary["warnings"] = list(state.plan.warnings)
        if state.metric_errors:
            summary["metric_errors"] = dict(state.metric_errors)

        error = None
        if status is RunStatus.FAILED:
            error = (
                "aborted after step failure" if state.aborted else "no step completed successfully"
            )
        async with state.write_lock:
            await self._runs.finish_run(state.run, status, error=error)
        logger.info(
            "Pipeline run '{}' finished as {} ({} completed, {} failed, {} skipped)",
            state.run.id,
            status,
            len(summary["completed"]),
            len(summary["failed"]),
            len(summary["skipped"]),
        )
        await self._anotify(PipelineRunFinished(state.run.id, str(status), state.timer.duration_ms))

    # ------------------------------------------------------------------
    # Node execution
    # ------------------------------------------------------------------

    def _condition_context(self, state: _RunState) -> dict[str, Any]:
        return {
            "nodes": {
                key: {"status": str(status), "ir": state.irs.get(key)}
                for key, status in state.statuses.items()
            },
            "config": state.context_config,
            "run": {"id": state.run.id, "origin": state.run.origin},
        }

    async def _arun_node(self, state: _RunState, node: PlannedNode) -> None:
        config = state.configs[node.key]
        step_run = StepRun(
            id=str(uuid4()),
            pipeline_run_id=state.run.id,
            step_version_id=node.step_version_id,
            node_key=node.key,
            params=config,
        )
        async with state.write_lock:
            await self._runs.create_step_run(step_run)
        state.step_runs.append(step_run)
        state.statuses[node.key] = StepRunStatus.PENDING

        blocked = [
            d for d in node.depends_on if state.statuses.get(d) is not StepRunStatus.COMPLETED
        ]
        if blocked:
            await self._askip(state, step_run, f"upstream node '{blocked[0]}' did not complete")
            return
        if node.condition and not compile_condition(node.condition)(self._condition_context(state)):
            await self._askip(state, step_run, f"condition '{node.condition}' is false")
            return

        async def on_attempt(attempt: int) -> None:
            step_run.attempts = attempt
            async with state.write_lock:
                if attempt == 1:
                    await self._runs.transition_step_run(step_run, StepRunStatus.RUNNING)
                else:
                    await self._runs.save_step_run(step_run)
            state.statuses[node.key] = StepRunStatus.RUNNING
            await self._anotify(StepRunStarted(state.run.id, step_run.id, node.key, attempt))

        try:
            output = await self._runner.arun(
                node,
                config,
                pipeline_run_id=state.run.id,
                step_run_id=step_run.id,
                upstream={d: state.irs[d] for d in node.depends_on},
                on_attempt=on_attempt,
            )
        except ExecutionFailure as e:
            await self._afail(state, node, step_run, str(e))
            return

        try:
            outcome = await self._acomplete(state, node, step_run, output)
        except Exception as e:
            logger.opt(exception=e).error("Recording step '{}' crashed: {}", node.key, e)
            if not step_run.status.is_terminal:
                await self._afail(
                    state, node, step_run, f"Step '{node.key}' could not be recorded: {e}"
                )
            return
        if outcome is None:
            return
        await self._anotify(
            StepRunCompleted(
                state.run.id, step_run.id, node.key, step_run.duration_ms or 0.0, outcome.is_valid
            )
        )

    async def _acomplete(
        self, state: _RunState, node: PlannedNode, step_run: StepRun, output: StepOutput
    ) -> ValidationOutcome | None:
        """Validate, record and score executor output; ``None`` if the step failed."""
        outcome = await self._avalidate(state, node, output)
        async with state.write_lock:
            await self._arecord_outputs(state, step_run, output, outcome)

        if not outcome.is_valid and state.fatal_schema:
            failure = ValidationFailure(
                "ir",
                f"{len(outcome.errors)} schema violation(s) against"
                f" schema version '{outcome.schema_version}'",
                errors=list(outcome.errors),
            )
            await self._afail(state, node, step_run, str(failure))
            return None

        await self._aevaluate_step(state, node, step_run, output)
        async with state.write_lock:
            await self._runs.transition_step_run(step_run, StepRunStatus.COMPLETED)
        state.statuses[node.key] = StepRunStatus.COMPLETED
        state.irs[node.key] = output.ir
        return outcome

    async def _avalidate(
        self, state: _RunState, node: PlannedNode, output: StepOutput
    ) -> ValidationOutcome:
        schema_version = state.pinned_schemas.get(node.key, node.schema_version)
        try:
            return await self._schemas.avalidate(node.step_version_id, output.ir, schema_version)
        except NotFoundError as e:
            logger.warning("Node '{}' pins a missing schema: {}", node.key, e)
            return ValidationOutcome(
                is_valid=False,
                errors=({"path": "", "message": str(e), "validator": "schema_version"},),
                schema_version=schema_version,
            )

    async def _arecord_outputs(
        self,
        state: _RunState,
        step_run: StepRun,
        output: StepOutput,
        outcome: ValidationOutcome,
    ) -> None:
        await self._runs.record_artifact(
            IRArtifact(
                id=str(uuid4()),
                step_run_id=step_run.id,
                pipeline_run_id=state.run.id,
                ir=output.ir,
                is_valid=outcome.is_valid,
                validation_errors=list(outcome.errors),
                schema_id=outcome.schema_id,
                schema_version=outcome.schema_version,
                warnings=list(outcome.warnings),
            )
        )
        if output.outputs:
            await self._runs.record_output_links(
                [
                    StepOutputLink(
                        id=str(uuid4()),
                        step_run_id=step_run.id,
                        target_type=ref.target_type,
                        target_id=ref.target_id,
                        meta=dict(ref.meta),
                    )
                    for ref in output.outputs
                ]
            )

    async def _aevaluate_step(
        self, state: _RunState, node: PlannedNode, step_run: StepRun, output: StepOutput
    ) -> None:
        if self._evaluator is None:
            return
        try:
            async with state.write_lock:
                score = await self._evaluator.aevaluate_step(
                    pipeline_run_id=state.run.id,
                    step_run_id=step_run.id,
                    step_version_id=node.step_version_id,
                    node_key=node.key,
                    reported=output.metrics,
                    profile_id=node.metric_profile_id,
                )
        except Exception as e:
            logger.opt(exception=e).error("Metrics of step '{}' failed: {}", node.key, e)
            state.metric_errors[node.key] = str(e)
            return
        if score.results:
            state.step_scores[node.key] = score.score

    async def _askip(self, state: _RunState, step_run: StepRun, reason: str) -> None:
        async with state.write_lock:
            await self._runs.transition_step_run(step_run, StepRunStatus.SKIPPED, error=reason)
        state.statuses[step_run.node_key] = StepRunStatus.SKIPPED
        logger.info("Step '{}' skipped: {}", step_run.node_key, reason)
        await self._anotify(StepRunSkipped(state.run.id, step_run.id, step_run.node_key, reason))

    async def _afail(
        self, state: _RunState, node: PlannedNode, step_run: StepRun, error: str
    ) -> None:
        async with state.write_lock:
            await self._runs.transition_step_run(step_run, StepRunStatus.FAILED, error=error)
        state.statuses[node.key] = StepRunStatus.FAILED
        logger.warning("Step '{}' failed: {}", node.key, error)
        if state.policy is FailurePolicy.ABORT and not node.continue_on_fail:
            state.aborted = True
            logger.warning("Aborting pipeline run '{}' after '{}' failed", state.run.id, node.key)
        await self._anotify(StepRunFailed(state.run.id, step_run.id, node.key, error))

    async def _anotify(self, event: Event) -> None:
        for observer in self._observers:
            try:
                await observer.handle(event)
            except Exception as e:
                logger.opt(exception=e).error(
                    "Observer {} failed on {}: {}", type(observer).__name__, type(event).__name__, e
                )
