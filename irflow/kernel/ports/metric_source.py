"""Port interface for external metric sources.

The metric evaluator asks a source for raw values it cannot find in the
step's own output.  The source decides where a value comes from (a
reviewer's verdict, a benchmark, a latency log ...).
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from irflow.kernel.domain.metrics import MetricValue


@runtime_checkable
class MetricSource(Protocol):
    """Supplies raw metric values for step runs and pipeline runs."""

    @abstractmethod
    async def afetch(
        self, metric_key: str, *, pipeline_run_id: str, step_run_id: str | None = None
    ) -> MetricValue | list[MetricValue] | None:
        """Return the raw value(s) for ``metric_key``, or ``None`` when unknown.

        Args
        ----
            metric_key: Key of the metric definition.
            pipeline_run_id: The run being scored.
            step_run_id: The step run being scored (``None`` for pipeline scope).
        """
        ...


__all__ = ["MetricSource"]
