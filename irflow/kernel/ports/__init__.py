"""Port protocols: storage, step executors, metric sources and observers."""

from irflow.kernel.ports.data_store import SupportsCollectionStorage, SupportsTransactions
from irflow.kernel.ports.metric_source import MetricSource
from irflow.kernel.ports.observer import Observer
from irflow.kernel.ports.step_executor import OutputRef, StepExecutor, StepOutput, StepRequest

__all__ = [
    "MetricSource",
    "Observer",
    "OutputRef",
    "StepExecutor",
    "StepOutput",
    "StepRequest",
    "SupportsCollectionStorage",
    "SupportsTransactions",
]
