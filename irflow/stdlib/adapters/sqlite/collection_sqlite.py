"""aiosqlite-backed SupportsCollectionStorage with JSON document tables.

Each collection maps to a table ``irflow_<collection>`` with schema
``(key TEXT PRIMARY KEY, data TEXT NOT NULL)``.  Documents are stored as
JSON; equality filters are applied in Python after loading.

Usage::

    from irflow.stdlib.adapters.sqlite import SQLiteCollectionStorage

    storage = SQLiteCollectionStorage("irflow.db")
    await storage.asetup()
    await storage.asave("pipeline_runs", "run-1", {"status": "running"})
    doc = await storage.aload("pipeline_runs", "run-1")
    await storage.aclose()
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from irflow.kernel.exceptions import ConfigurationError, IrflowError
from irflow.kernel.logging import get_logger

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteCollectionStorage:
    """Async SQLite ``SupportsCollectionStorage`` that also ``SupportsTransactions``.

    The connection runs in autocommit mode; :meth:`abegin` opens an explicit
    transaction that groups every write until :meth:`acommit` or
    :meth:`arollback`.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        timeout: float = 5.0,
        table_prefix: str = "irflow_",
    ) -> None:
        """Initialize SQLite collection storage.

        Args
        ----
            db_path: Path to the SQLite file, or ":memory:" for a private in-memory DB.
            timeout: Seconds to wait for a locked database. Default: 5.0.
            table_prefix: Prefix for generated table names. Default: "irflow_".
        """
        if not _IDENTIFIER.match(table_prefix):
            raise ConfigurationError("storage", f"invalid table prefix {table_prefix!r}")
        self.db_path = str(db_path)
        self.timeout = timeout
        self._table_prefix = table_prefix
        self._connection: aiosqlite.Connection | None = None
        self._ensured_tables: set[str] = set()
        self._in_transaction = False
        self._tx_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def asetup(self) -> None:
        """Open the connection.  Called lazily by every operation."""
        if self._connection is not None:
            return
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(
            self.db_path, timeout=self.timeout, isolation_level=None
        )
        await self._connection.execute("PRAGMA journal_mode = WAL")
        logger.debug("Opened SQLite collection storage at {}", self.db_path)

    async def aclose(self) -> None:
        """Close the connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._ensured_tables.clear()

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[aiosqlite.Cursor]:
        await self.asetup()
        if self._connection is None:
            raise IrflowError("SQLite connection not established")
        async with self._connection.cursor() as cursor:
            try:
                yield cursor
            except aiosqlite.Error as e:
                logger.error("SQLite error on {}: {}", self.db_path, e)
                raise

    # ------------------------------------------------------------------
    # SupportsCollectionStorage implementation
    # ------------------------------------------------------------------

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Save a document (upsert semantics)."""
        table = await self._ensure_table(collection)
        async with self._cursor() as cursor:
            await cursor.execute(
                f"INSERT INTO {table} (key, data) VALUES (?, ?) "
                "ON CONFLICT (key) DO UPDATE SET data = excluded.data",
                (key, json.dumps(data, default=str)),
            )

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key."""
        table = await self._ensure_table(collection)
        async with self._cursor() as cursor:
            await cursor.execute(f"SELECT data FROM {table} WHERE key = ?", (key,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Query all documents in insertion order, optionally filtered."""
        table = await self._ensure_table(collection)
        async with self._cursor() as cursor:
            await cursor.execute(f"SELECT data FROM {table} ORDER BY rowid")
            rows = await cursor.fetchall()

        docs = [json.loads(row[0]) for row in rows]
        if filters:
            docs = [d for d in docs if all(d.get(k) == v for k, v in filters.items())]
        return docs

    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns True if it existed."""
        table = await self._ensure_table(collection)
        async with self._cursor() as cursor:
            await cursor.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # SupportsTransactions implementation
    # ------------------------------------------------------------------

    async def abegin(self) -> None:
        """Begin an immediate transaction (takes the write lock up front).

        Waits while another transaction is open on this connection.
        """
        await self._tx_lock.acquire()
        try:
            async with self._cursor() as cursor:
                await cursor.execute("BEGIN IMMEDIATE")
        except BaseException:
            self._tx_lock.release()
            raise
        self._in_transaction = True

    async def acommit(self) -> None:
        """Commit the current transaction."""
        if not self._in_transaction:
            return
        try:
            async with self._cursor() as cursor:
                await cursor.execute("COMMIT")
        finally:
            self._in_transaction = False
            self._tx_lock.release()

    async def arollback(self) -> None:
        """Roll back the current transaction."""
        if not self._in_transaction:
            return
        try:
            async with self._cursor() as cursor:
                await cursor.execute("ROLLBACK")
        finally:
            self._in_transaction = False
            # tables created inside the transaction are gone again
            self._ensured_tables.clear()
            self._tx_lock.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_table(self, collection: str) -> str:
        if not _IDENTIFIER.match(collection):
            raise ConfigurationError("storage", f"invalid collection name {collection!r}")
        table_name = f"{self._table_prefix}{collection}"
        if table_name in self._ensured_tables:
            return table_name

        async with self._cursor() as cursor:
            await cursor.execute(
                f"CREATE TABLE IF NOT EXISTS {table_name} ("
                "key TEXT PRIMARY KEY, data TEXT NOT NULL)"
            )
        self._ensured_tables.add(table_name)
        return table_name
