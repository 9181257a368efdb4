"""In-memory implementation of SupportsCollectionStorage.

The default backend when no persistent storage is configured, and the one
the test-suite runs against.

Usage::

    from irflow.stdlib.adapters.memory import InMemoryCollectionStorage

    storage = InMemoryCollectionStorage()
    await storage.asave("pipeline_runs", "run-1", {"status": "running"})
    doc = await storage.aload("pipeline_runs", "run-1")
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any


class InMemoryCollectionStorage:
    """In-memory ``SupportsCollectionStorage`` with snapshot transactions.

    Data is stored in nested dicts: ``collection -> key -> data``.  Documents
    are copied on the way in and out so callers never alias stored state,
    matching what a real database would do.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._snapshot: dict[str, dict[str, dict[str, Any]]] | None = None
        self._tx_lock = asyncio.Lock()

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Save a document to a collection (upsert semantics)."""
        self._data.setdefault(collection, {})[key] = copy.deepcopy(data)

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key.  Returns ``None`` if not found."""
        doc = self._data.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Query documents with optional equality filters."""
        docs = self._data.get(collection, {}).values()
        if filters:
            docs = [d for d in docs if all(d.get(k) == v for k, v in filters.items())]
        return [copy.deepcopy(d) for d in docs]

    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns ``True`` if it existed."""
        return self._data.get(collection, {}).pop(key, None) is not None

    async def abegin(self) -> None:
        """Snapshot the store so :meth:`arollback` can restore it.

        Waits while another transaction is open.
        """
        await self._tx_lock.acquire()
        self._snapshot = copy.deepcopy(self._data)

    async def acommit(self) -> None:
        """Discard the snapshot, keeping every write made since :meth:`abegin`."""
        if self._snapshot is None:
            return
        self._snapshot = None
        self._tx_lock.release()

    async def arollback(self) -> None:
        """Restore the snapshot taken by :meth:`abegin`."""
        if self._snapshot is None:
            return
        self._data = self._snapshot
        self._snapshot = None
        self._tx_lock.release()
