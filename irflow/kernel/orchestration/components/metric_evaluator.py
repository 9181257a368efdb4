"""Metric evaluator: score step runs and pipeline runs against metric profiles.

For each item of the applicable profile the evaluator obtains a raw value,
aggregates it, compares it with the item threshold (or the definition
target) and records one :class:`MetricResult` per metric key.

Value sources, in order:

1. metrics reported by the step executor alongside its IR
2. the injected :class:`~irflow.kernel.ports.metric_source.MetricSource`
3. (pipeline scope only) the run's step-level results for the same key
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from irflow.kernel.domain.metrics import (
    Aggregation,
    Comparison,
    MetricDefinition,
    MetricProfileItem,
    MetricResult,
    MetricScope,
    MetricValue,
)
from irflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from irflow.kernel.ports.metric_source import MetricSource
    from irflow.stdlib.lib.metric_registry import MetricRegistry
    from irflow.stdlib.lib.run_store import RunStore

logger = get_logger(__name__)


def aggregate(aggregation: Aggregation, samples: Sequence[MetricValue]) -> MetricValue:
    """Combine samples according to ``aggregation``.

    String samples only support ``latest``; any other aggregation of a
    string series also yields the most recent sample.

    Examples
    --------
    >>> aggregate(Aggregation.AVG, [1.0, 2.0, 3.0])
    2.0
    >>> aggregate(Aggregation.RATIO, [1, 0, 1, 1])
    0.75
    >>> aggregate(Aggregation.SUM, ["ok", "fail"])
    'fail'
    """
    if not samples:
        raise ValueError("cannot aggregate an empty series")
    if aggregation is Aggregation.LATEST or any(isinstance(s, str) for s in samples):
        return samples[-1]
    numbers = [float(s) for s in samples]
    match aggregation:
        case Aggregation.AVG:
            return sum(numbers) / len(numbers)
        case Aggregation.SUM:
            return sum(numbers)
        case Aggregation.MIN:
            return min(numbers)
        case Aggregation.MAX:
            return max(numbers)
        case Aggregation.RATIO:
            return sum(1 for n in numbers if n) / len(numbers)
    raise ValueError(f"unknown aggregation {aggregation!r}")


def _samples(raw: Any) -> list[MetricValue] | None:
    values = raw if isinstance(raw, list | tuple) else [raw]
    samples: list[MetricValue] = []
    for value in values:
        if isinstance(value, str):
            samples.append(value)
        elif isinstance(value, bool | int | float):
            samples.append(float(value))
        else:
            return None
    return samples or None


def judge(
    value: MetricValue,
    threshold: float | None,
    comparison: Comparison = Comparison.GTE,
    expected: str | None = None,
) -> bool | None:
    """Decide whether a value passes; ``None`` when there is nothing to compare with.

    Examples
    --------
    >>> judge(0.9, 0.8)
    True
    >>> judge(120.0, 100.0, Comparison.LTE)
    False
    >>> judge(0.5, None) is None
    True
    >>> judge("approved", None, expected="approved")
    True
    """
    if isinstance(value, str):
        return value == expected if expected is not None else None
    if threshold is None:
        return None
    match comparison:
        case Comparison.LTE:
            return value <= threshold
        case Comparison.EQ:
            return math.isclose(value, threshold)
    return value >= threshold


@dataclass(slots=True)
class MetricScore:
    """Results recorded for one scope plus the weighted profile score."""

    results: list[MetricResult] = field(default_factory=list)
    score: float | None = None
    profile_id: str | None = None

    def to_summary(self) -> dict[str, Any]:
        """Compact view stored in the PipelineRun summary."""
        return {
            "profile_id": self.profile_id,
            "score": self.score,
            "passed": sorted(r.metric_key for r in self.results if r.passed is True),
            "failed": sorted(r.metric_key for r in self.results if r.passed is False),
        }


class MetricEvaluator:
    """Compute, persist and score metric results.

    Args
    ----
        metrics: Registry holding definitions and profiles.
        runs: Run store that receives the results.
        source: Optional external source of raw metric values.
    """

    def __init__(
        self,
        metrics: MetricRegistry,
        runs: RunStore,
        source: MetricSource | None = None,
    ) -> None:
        self._metrics = metrics
        self._runs = runs
        self._source = source

    async def aevaluate_step(
        self,
        *,
        pipeline_run_id: str,
        step_run_id: str,
        step_version_id: str,
        node_key: str,
        reported: Mapping[str, Any] | None = None,
        profile_id: str | None = None,
    ) -> MetricScore:
        """Score a completed step run.

        Args
        ----
            pipeline_run_id: Owning pipeline run.
            step_run_id: The step run being scored.
            step_version_id: Used to look up history for ``config.history``.
            node_key: Recorded in result details.
            reported: Metrics returned by the step executor.
            profile_id: Pinned profile; the active ``step`` profile otherwise.

        Returns
        -------
            MetricScore: the persisted results and the weighted score
        """
        reported = dict(reported or {})
        items = await self._aprofile_items(MetricScope.STEP, profile_id)
        score = MetricScore(profile_id=items[0][0].profile_id if items else profile_id)
        weighted: list[tuple[float, bool | None]] = []

        for item, definition in items:
            raw = reported.pop(definition.key, None)
            if raw is None:
                raw = await self._afetch(
                    definition.key, pipeline_run_id=pipeline_run_id, step_run_id=step_run_id
                )
            result = await self._abuild_result(
                definition,
                item,
                raw,
                pipeline_run_id=pipeline_run_id,
                step_run_id=step_run_id,
                step_version_id=step_version_id,
                node_key=node_key,
            )
            if result is not None:
                score.results.append(result)
                weighted.append((item.weight, result.passed))

        for key, raw in reported.items():
            definition = await self._metrics.afind_metric_by_key(key)
            if definition is None:
                logger.warning("Skipping metric '{}' of step '{}': not defined", key, node_key)
                continue
            result = await self._abuild_result(
                definition,
                None,
                raw,
                pipeline_run_id=pipeline_run_id,
                step_run_id=step_run_id,
                step_version_id=step_version_id,
                node_key=node_key,
            )
            if result is not None:
                score.results.append(result)

        await self._runs.record_metric_results(score.results)
        score.score = self._weighted_score(weighted)
        return score

    async def aevaluate_pipeline(
        self, *, pipeline_run_id: str, profile_id: str | None = None
    ) -> MetricScore:
        """Score a pipeline run against the pinned or active ``pipeline`` profile."""
        items = await self._aprofile_items(MetricScope.PIPELINE, profile_id)
        score = MetricScore(profile_id=items[0][0].profile_id if items else profile_id)
        weighted: list[tuple[float, bool | None]] = []

        for item, definition in items:
            raw = await self._afetch(definition.key, pipeline_run_id=pipeline_run_id)
            if raw is None:
                step_results = await self._runs.alist_metric_results(
                    run_id=pipeline_run_id, metric_key=definition.key
                )
                raw = [r.value for r in step_results if r.scope is MetricScope.STEP] or None
            result = await self._abuild_result(
                definition, item, raw, pipeline_run_id=pipeline_run_id
            )
            if result is not None:
                score.results.append(result)
                weighted.append((item.weight, result.passed))

        await self._runs.record_metric_results(score.results)
        score.score = self._weighted_score(weighted)
        return score

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _afetch(
        self, metric_key: str, *, pipeline_run_id: str, step_run_id: str | None = None
    ) -> Any:
        """Ask the metric source for a value; a failing source counts as no value."""
        if self._source is None:
            return None
        try:
            return await self._source.afetch(
                metric_key, pipeline_run_id=pipeline_run_id, step_run_id=step_run_id
            )
        except Exception as e:
            logger.opt(exception=e).error(
                "Metric source {} failed on '{}': {}",
                type(self._source).__name__,
                metric_key,
                e,
            )
            return None

    async def _aprofile_items(
        self, scope: MetricScope, profile_id: str | None
    ) -> list[tuple[MetricProfileItem, MetricDefinition]]:
        if profile_id is not None:
            return await self._metrics.aresolve_profile(profile_id)
        profile = await self._metrics.aget_active_profile(scope)
        if profile is None:
            return []
        return await self._metrics.aresolve_profile(profile.id)

    async def _abuild_result(
        self,
        definition: MetricDefinition,
        item: MetricProfileItem | None,
        raw: Any,
        *,
        pipeline_run_id: str,
        step_run_id: str | None = None,
        step_version_id: str | None = None,
        node_key: str | None = None,
    ) -> MetricResult | None:
        if raw is None:
            logger.info("No value for metric '{}'; skipped", definition.key)
            return None
        samples = _samples(raw)
        if samples is None:
            logger.warning(
                "Metric '{}' has a non-scalar value of type {}; skipped",
                definition.key,
                type(raw).__name__,
            )
            return None

        config = item.config if item is not None else {}
        history = int(config.get("history") or 1)
        if history > 1 and step_version_id is not None:
            previous = await self._runs.alist_metric_results(
                metric_key=definition.key, step_version_id=step_version_id
            )
            samples = [r.value for r in previous[-(history - 1) :]] + samples

        value = aggregate(definition.aggregation, samples)
        threshold = (
            item.threshold if item is not None and item.threshold is not None else definition.target
        )
        comparison = Comparison(config.get("comparison", Comparison.GTE))
        passed = judge(value, threshold, comparison, config.get("expected"))

        details: dict[str, Any] = {
            "aggregation": str(definition.aggregation),
            "samples": len(samples),
            "threshold": threshold,
            "comparison": str(comparison),
        }
        if item is not None:
            details["profile_id"] = item.profile_id
            details["weight"] = item.weight
        if node_key is not None:
            details["node_key"] = node_key

        return MetricResult(
            id=str(uuid4()),
            pipeline_run_id=pipeline_run_id,
            step_run_id=step_run_id,
            metric_key=definition.key,
            scope=MetricScope.STEP if step_run_id is not None else MetricScope.PIPELINE,
            value=value,
            passed=passed,
            step_version_id=step_version_id,
            details=details,
        )

    @staticmethod
    def _weighted_score(weighted: list[tuple[float, bool | None]]) -> float | None:
        scored = [(w, p) for w, p in weighted if p is not None]
        total = sum(w for w, _ in scored)
        if not scored or total == 0:
            return None
        return sum(w for w, p in scored if p) / total
