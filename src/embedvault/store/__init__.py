"""Document/cluster persistence backends."""

from .base import VectorStore, metadata_matches
from .memory import InMemoryVectorStore
from .sqlite import SqliteVectorStore

__all__ = ["VectorStore", "InMemoryVectorStore", "SqliteVectorStore", "metadata_matches"]
