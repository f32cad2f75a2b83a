"""Cloud Firestore implementation of the document store."""

from .document_store import (
    FirestoreDocumentStore,
    FirestoreTransaction,
    FirestoreWriteBatch,
)

__all__ = [
    "FirestoreDocumentStore",
    "FirestoreTransaction",
    "FirestoreWriteBatch",
]
