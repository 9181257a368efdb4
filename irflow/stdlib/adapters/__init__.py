"""Storage adapters implementing the collection-storage port."""

from irflow.stdlib.adapters.memory import InMemoryCollectionStorage
from irflow.stdlib.adapters.sqlite import SQLiteCollectionStorage

__all__ = ["InMemoryCollectionStorage", "SQLiteCollectionStorage"]
