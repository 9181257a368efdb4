"""Observer that writes run lifecycle events to the irflow log.

Usage::

    from irflow.stdlib.lib.logging_observer import LoggingObserver

    engine = ExecutionEngine(..., observers=[LoggingObserver()])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from irflow.kernel.logging import get_logger
from irflow.kernel.orchestration.events import (
    PipelineRunFinished,
    StepRunFailed,
    StepRunSkipped,
)

if TYPE_CHECKING:
    from irflow.kernel.orchestration.events import Event

logger = get_logger(__name__)


class LoggingObserver:
    """Log every event at a level matching its severity.

    Failures are ``WARNING``, skips and run endings ``INFO``, everything
    else ``DEBUG`` unless ``level`` raises the floor.
    """

    def __init__(self, level: str = "DEBUG") -> None:
        self._level = level
        self.handled = 0

    def _level_for(self, event: Event) -> str:
        if isinstance(event, StepRunFailed):
            return "WARNING"
        if isinstance(event, StepRunSkipped | PipelineRunFinished):
            return "INFO"
        return self._level

    async def handle(self, event: Event) -> None:
        """Log the event's message."""
        self.handled += 1
        logger.log(self._level_for(event), event.log_message())
