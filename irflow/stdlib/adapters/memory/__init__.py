"""In-memory storage adapter."""

from irflow.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage

__all__ = ["InMemoryCollectionStorage"]
