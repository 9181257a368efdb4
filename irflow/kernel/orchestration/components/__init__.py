"""Engine components: per-node execution and metric evaluation."""

from irflow.kernel.orchestration.components.metric_evaluator import MetricEvaluator, MetricScore
from irflow.kernel.orchestration.components.step_runner import StepRunner

__all__ = ["MetricEvaluator", "MetricScore", "StepRunner"]
