"""Exclusive activation: "at most one active entity per parent".

Pipeline versions (per pipeline definition), step versions (per step
definition), IR schemas (per step version) and metric profiles (per scope)
all share the same rule.  :class:`ExclusiveActivation` implements it once,
over any collection whose documents carry an ``id``, a parent field and an
``is_active`` flag.

Every swap is a single read-modify-write performed under an
:class:`asyncio.Lock` and, when the storage ``SupportsTransactions``, inside
one storage transaction that is rolled back on error.  Reads of the active
entity take the same lock, so no reader observes zero or two active
siblings halfway through a swap.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from irflow.kernel.exceptions import NotFoundError
from irflow.kernel.logging import get_logger
from irflow.kernel.ports.data_store import SupportsCollectionStorage, SupportsTransactions

logger = get_logger(__name__)


class ExclusiveActivation:
    """Reusable atomic activation swap over one collection.

    Args
    ----
        storage: Backend holding the documents.
        collection: Collection name (e.g. ``"pipeline_versions"``).
        parent_field: Field grouping siblings (e.g. ``"definition_id"``).
        resource_type: Entity name used in error messages.
        lock: Share this lock with another primitive so that both serialise;
            a private lock by default.
    """

    def __init__(
        self,
        storage: SupportsCollectionStorage,
        collection: str,
        parent_field: str,
        resource_type: str,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._storage = storage
        self._collection = collection
        self._parent_field = parent_field
        self._resource_type = resource_type
        self._lock = lock if lock is not None else asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        """The lock guarding swaps and guarded mutations."""
        return self._lock

    @asynccontextmanager
    async def atransaction(self) -> AsyncIterator[None]:
        """Hold the activation lock (and a storage transaction when supported).

        Registries also use this for mutations whose guard depends on the
        active flag, such as refusing to delete an active version.
        """
        async with self._lock:
            if not isinstance(self._storage, SupportsTransactions):
                yield
                return
            await self._storage.abegin()
            try:
                yield
            except BaseException:
                await self._storage.arollback()
                raise
            await self._storage.acommit()

    async def _aload_child(self, parent_id: str, entity_id: str) -> dict[str, Any]:
        doc = await self._storage.aload(self._collection, entity_id)
        if doc is None or doc.get(self._parent_field) != parent_id:
            raise NotFoundError(self._resource_type, entity_id)
        return doc

    async def aactivate(self, parent_id: str, entity_id: str) -> dict[str, Any]:
        """Make ``entity_id`` the only active child of ``parent_id``.

        Returns
        -------
        dict[str, Any]
            The stored document of the newly active entity

        Raises
        ------
        NotFoundError
            If the entity does not exist under ``parent_id``
        """
        async with self.atransaction():
            target = await self._aload_child(parent_id, entity_id)
            active = await self._storage.aquery(
                self._collection, {self._parent_field: parent_id, "is_active": True}
            )
            for doc in active:
                if doc["id"] != entity_id:
                    doc["is_active"] = False
                    await self._storage.asave(self._collection, doc["id"], doc)
            if not target.get("is_active"):
                target["is_active"] = True
                await self._storage.asave(self._collection, entity_id, target)

        logger.info(
            "Activated {} '{}' (deactivated {} sibling(s))",
            self._resource_type,
            entity_id,
            sum(1 for doc in active if doc["id"] != entity_id),
        )
        return target

    async def adeactivate(self, parent_id: str, entity_id: str) -> dict[str, Any]:
        """Clear the active flag of ``entity_id``; the parent may end up with none active.

        Raises
        ------
        NotFoundError
            If the entity does not exist under ``parent_id``
        """
        async with self.atransaction():
            target = await self._aload_child(parent_id, entity_id)
            if target.get("is_active"):
                target["is_active"] = False
                await self._storage.asave(self._collection, entity_id, target)
        logger.info("Deactivated {} '{}'", self._resource_type, entity_id)
        return target

    async def aget_active(self, parent_id: str) -> dict[str, Any] | None:
        """Return the active child of ``parent_id``, or ``None``."""
        async with self._lock:
            active = await self._storage.aquery(
                self._collection, {self._parent_field: parent_id, "is_active": True}
            )
        if len(active) > 1:
            # Only reachable if documents were written around this primitive
            logger.error(
                "{} parent '{}' has {} active children", self._resource_type, parent_id, len(active)
            )
        return active[-1] if active else None
