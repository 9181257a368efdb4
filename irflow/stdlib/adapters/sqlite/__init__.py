"""SQLite storage adapter (aiosqlite)."""

from irflow.stdlib.adapters.sqlite.collection_sqlite import SQLiteCollectionStorage

__all__ = ["SQLiteCollectionStorage"]
