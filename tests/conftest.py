"""Shared pytest fixtures for the irflow test-suite.

- executors: an empty ExecutorRegistry tests register step functions on
- system: a complete in-memory IrflowSystem using those executors
- seed: helper that registers steps, schemas and pipelines on ``system``
- yielding_storage: in-memory storage that yields on reads, for race tests
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from irflow.kernel.config import EngineConfig, IrflowConfig
from irflow.kernel.domain.registry import PipelineVersion, StepVersion
from irflow.stdlib.adapters.memory import InMemoryCollectionStorage
from irflow.stdlib.executors import ExecutorRegistry
from irflow.system import IrflowSystem, create_system


class Seeder:
    """Register fixtures data on a system with minimal ceremony."""

    def __init__(self, system: IrflowSystem) -> None:
        self.system = system
        self._pipelines = 0

    async def step(
        self,
        name: str,
        label: str = "v1",
        default_config: dict[str, Any] | None = None,
        *,
        activate: bool = True,
    ) -> StepVersion:
        """Create (or reuse) a step definition and add a version to it."""
        steps = self.system.steps
        existing = [d for d in await steps.alist_definitions() if d.name == name]
        definition = existing[0] if existing else await steps.acreate_definition(name)
        return await steps.acreate_version(
            definition.id, label, {"default_config": default_config or {}}, activate=activate
        )

    async def pipeline(
        self,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, str]] | None = None,
        config: dict[str, Any] | None = None,
        *,
        name: str | None = None,
    ) -> PipelineVersion:
        """Create a pipeline definition with one active version ``v1``."""
        self._pipelines += 1
        definition = await self.system.pipelines.acreate_definition(
            name or f"pipeline-{self._pipelines}"
        )
        dag: dict[str, Any] = {"nodes": nodes}
        if edges:
            dag["edges"] = edges
        return await self.system.pipelines.acreate_version(
            definition.id, "v1", {"dag": dag, "config": config or {}}, activate=True
        )

    async def schema(
        self, step_version: StepVersion, schema: dict[str, Any], version: str = "1.0"
    ) -> None:
        """Register and activate an IR schema for a step version."""
        await self.system.schemas.acreate_schema(
            step_version.id, version, schema, activate=True
        )


@pytest.fixture
def executors() -> ExecutorRegistry:
    """Fixture providing an empty executor registry."""
    return ExecutorRegistry()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine defaults for tests: no retry delay so retries run instantly."""
    return EngineConfig(retry_delay=0.0)


@pytest.fixture
def system(executors: ExecutorRegistry, engine_config: EngineConfig) -> IrflowSystem:
    """Fixture providing an in-memory system wired to ``executors``."""
    return create_system(
        IrflowConfig(engine=engine_config),
        executor=executors,
        storage=InMemoryCollectionStorage(),
        observers=[],
    )


@pytest.fixture
def seed(system: IrflowSystem) -> Seeder:
    """Fixture providing a Seeder bound to ``system``."""
    return Seeder(system)


class YieldingStorage(InMemoryCollectionStorage):
    """In-memory storage that hands control back to the loop on every read.

    Lets tests interleave concurrent registry calls at each storage access.
    """

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return await super().aload(collection, key)

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        return await super().aquery(collection, filters)


@pytest.fixture
def yielding_storage() -> InMemoryCollectionStorage:
    """Fixture providing storage that yields to the event loop on reads."""
    return YieldingStorage()
