"""Storage port used by the registries and the run store.

Adapters implement :class:`SupportsCollectionStorage`; adapters that can
group writes atomically also implement :class:`SupportsTransactions`.
Callers check capabilities at runtime with ``isinstance(store, SupportsXxx)``.

Collections written by irflow
-----------------------------
``pipeline_definitions``, ``step_definitions``, ``pipeline_versions``,
``step_versions``, ``ir_schemas``,
``metric_definitions``, ``metric_profiles``, ``metric_profile_items``,
``pipeline_runs``, ``step_runs``, ``ir_artifacts``, ``metric_results`` and
``step_output_links``.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SupportsCollectionStorage(Protocol):
    """JSON documents keyed by id inside named collections.

    Documents go in and come out as plain dicts; adapters must not hand out
    references to their internal state.

    Example::

        storage = InMemoryCollectionStorage()
        await storage.asave("step_runs", "sr-1", {"id": "sr-1", "status": "pending"})
        pending = await storage.aquery("step_runs", {"status": "pending"})
    """

    @abstractmethod
    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Insert or replace the document stored under ``key``."""
        ...

    @abstractmethod
    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return the document under ``key``, or ``None``."""
        ...

    @abstractmethod
    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Return documents whose fields equal every value in ``filters``.

        Results keep first-insertion order; replacing a document does not
        move it.  An unknown collection yields an empty list.
        """
        ...

    @abstractmethod
    async def adelete(self, collection: str, key: str) -> bool:
        """Remove the document under ``key``; ``False`` when it was absent."""
        ...


@runtime_checkable
class SupportsTransactions(Protocol):
    """Group several writes so they land together or not at all.

    Only the exclusive-activation primitive opens transactions; every other
    write is a single append or upsert.
    """

    @abstractmethod
    async def abegin(self) -> None:
        """Open a transaction."""
        ...

    @abstractmethod
    async def acommit(self) -> None:
        """Make the writes since :meth:`abegin` durable."""
        ...

    @abstractmethod
    async def arollback(self) -> None:
        """Discard the writes since :meth:`abegin`."""
        ...


__all__ = ["SupportsCollectionStorage", "SupportsTransactions"]
