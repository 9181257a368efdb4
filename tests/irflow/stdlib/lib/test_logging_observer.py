"""Tests for the logging observer."""

from __future__ import annotations

import pytest
from loguru import logger

from irflow.kernel.orchestration.events import (
    PipelineRunFinished,
    PipelineRunStarted,
    StepRunFailed,
    StepRunSkipped,
    StepRunStarted,
)
from irflow.stdlib.lib.logging_observer import LoggingObserver


@pytest.fixture
def captured():
    records: list[tuple[str, str]] = []
    sink_id = logger.add(
        lambda message: records.append((message.record["level"].name, message.record["message"])),
        level="DEBUG",
    )
    yield records
    logger.remove(sink_id)


class TestLoggingObserver:
    @pytest.mark.asyncio()
    async def test_levels_follow_severity(self, captured: list[tuple[str, str]]) -> None:
        observer = LoggingObserver()

        for event in (
            PipelineRunStarted("run-1", "pv-1", ("a",)),
            StepRunStarted("run-1", "sr-1", "a"),
            StepRunFailed("run-1", "sr-1", "a", "boom"),
            StepRunSkipped("run-1", "sr-2", "b", "upstream node 'a' did not complete"),
            PipelineRunFinished("run-1", "failed", 12.5),
        ):
            await observer.handle(event)

        levels = [level for level, _ in captured]
        assert levels == ["DEBUG", "DEBUG", "WARNING", "INFO", "INFO"]
        assert ("WARNING", "Step 'a' failed: boom") in captured
        assert observer.handled == 5

    @pytest.mark.asyncio()
    async def test_level_floor(self, captured: list[tuple[str, str]]) -> None:
        observer = LoggingObserver(level="INFO")

        await observer.handle(StepRunStarted("run-1", "sr-1", "a", attempt=2))

        assert captured[-1][0] == "INFO"
