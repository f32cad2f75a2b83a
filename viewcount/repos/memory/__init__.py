"""
Memory implementations of the document store.

In-memory store for testing and local runs; no external dependencies.
"""

from .document_store import (
    MemoryDocumentStore,
    MemoryTransaction,
    MemoryWriteBatch,
)

__all__ = [
    "MemoryDocumentStore",
    "MemoryTransaction",
    "MemoryWriteBatch",
]
