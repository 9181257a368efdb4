"""Observer port for run lifecycle events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from irflow.kernel.orchestration.events import Event


@runtime_checkable
class Observer(Protocol):
    """Read-only listener; failures are logged and never affect the run."""

    async def handle(self, event: Event) -> None:
        """Handle an event (read-only, no return value)."""
        ...
