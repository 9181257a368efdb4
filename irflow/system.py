"""System wiring: build storage, registries and the engine from configuration.

Usage::

    from irflow import create_system
    from irflow.stdlib.executors import ExecutorRegistry

    executors = ExecutorRegistry({"ocr": run_ocr})
    async with create_system(executor=executors) as system:
        step = await system.steps.acreate_definition("ocr")
        ...
        result = await system.engine.aexecute(version.id)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Self

from irflow.kernel.config import IrflowConfig, load_config
from irflow.kernel.logging import configure_logging, get_logger
from irflow.kernel.orchestration.components.metric_evaluator import MetricEvaluator
from irflow.kernel.orchestration.engine import ExecutionEngine
from irflow.stdlib.adapters import InMemoryCollectionStorage, SQLiteCollectionStorage
from irflow.stdlib.executors import ExecutorRegistry
from irflow.stdlib.lib import (
    LoggingObserver,
    MetricRegistry,
    PipelineRegistry,
    RunStore,
    SchemaRegistry,
    StepRegistry,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from irflow.kernel.ports.data_store import SupportsCollectionStorage
    from irflow.kernel.ports.metric_source import MetricSource
    from irflow.kernel.ports.observer import Observer
    from irflow.kernel.ports.step_executor import StepExecutor
    from irflow.stdlib.lib_base import IrflowLib

logger = get_logger(__name__)


@dataclass(slots=True)
class IrflowSystem:
    """Every component of a running irflow instance, sharing one storage."""

    config: IrflowConfig
    storage: SupportsCollectionStorage
    pipelines: PipelineRegistry
    steps: StepRegistry
    schemas: SchemaRegistry
    metrics: MetricRegistry
    runs: RunStore
    evaluator: MetricEvaluator
    engine: ExecutionEngine
    executor: StepExecutor

    @property
    def observers(self) -> list[Observer]:
        """Observers registered on the engine."""
        return self.engine.observers

    async def asetup(self) -> None:
        """Run the setup hook of every library."""
        for lib in self.libs().values():
            await lib.asetup()

    async def aclose(self) -> None:
        """Tear the libraries down, then release the storage connection."""
        for lib in self.libs().values():
            await lib.ateardown()
        close = getattr(self.storage, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> Self:
        await self.asetup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def libs(self) -> dict[str, IrflowLib]:
        """Management-surface libraries by name."""
        return {
            "pipelines": self.pipelines,
            "steps": self.steps,
            "schemas": self.schemas,
            "metrics": self.metrics,
            "runs": self.runs,
        }


def create_storage(config: IrflowConfig) -> SupportsCollectionStorage:
    """Instantiate the storage backend named by ``config.storage``."""
    if config.storage.backend == "sqlite":
        return SQLiteCollectionStorage(config.storage.path)
    return InMemoryCollectionStorage()


def create_system(
    config: IrflowConfig | None = None,
    *,
    executor: StepExecutor | None = None,
    metric_source: MetricSource | None = None,
    observers: Iterable[Observer] | None = None,
    storage: SupportsCollectionStorage | None = None,
    setup_logging: bool = False,
) -> IrflowSystem:
    """Build a complete system.

    Args
    ----
        config: Configuration; loaded with :func:`load_config` when omitted.
        executor: Step executor; an empty :class:`ExecutorRegistry` by default.
        metric_source: Optional external metric source.
        observers: Lifecycle observers; a :class:`LoggingObserver` by default.
        storage: Use this backend instead of the configured one.
        setup_logging: Apply ``config.logging`` via :func:`configure_logging`.

    Returns
    -------
        IrflowSystem: the wired components
    """
    config = config or load_config()
    if setup_logging:
        configure_logging(
            level=config.logging.level,
            format=config.logging.format,
            output_file=config.logging.output_file,
            use_color=config.logging.use_color,
            include_timestamp=config.logging.include_timestamp,
            force_reconfigure=True,
        )

    storage = storage if storage is not None else create_storage(config)
    executor = executor if executor is not None else ExecutorRegistry()
    observer_list = list(observers) if observers is not None else [LoggingObserver()]

    pipelines = PipelineRegistry(storage)
    steps = StepRegistry(storage)
    schemas = SchemaRegistry(storage, steps, config.engine.missing_schema_policy)
    metrics = MetricRegistry(storage)
    runs = RunStore(storage)
    evaluator = MetricEvaluator(metrics, runs, metric_source)
    engine = ExecutionEngine(
        pipelines,
        steps,
        schemas,
        runs,
        executor,
        evaluator=evaluator,
        config=config.engine,
        observers=observer_list,
    )
    logger.debug(
        "Created irflow system (storage={}, executor={})",
        type(storage).__name__,
        type(executor).__name__,
    )
    return IrflowSystem(
        config=config,
        storage=storage,
        pipelines=pipelines,
        steps=steps,
        schemas=schemas,
        metrics=metrics,
        runs=runs,
        evaluator=evaluator,
        engine=engine,
        executor=executor,
    )
