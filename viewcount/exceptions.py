"""
Exceptions raised by the view count tracker.

Store-level failures derive from StoreError and are raised by DocumentStore
implementations. FetchFailure and ReconcileFailure are raised by the sync use
case and are fatal for a run; they carry the phase and the external ids
involved so the caller can decide whether to retry the whole run.
"""

from typing import Iterable, List, Optional


class ViewCountError(Exception):
    """Base class for all view count tracker errors."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        external_ids: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.external_ids: List[str] = sorted(external_ids or [])


class StoreError(ViewCountError):
    """Raised when the document store rejects an operation."""

    pass


class TransactionConflict(StoreError):
    """Concurrent writes invalidated a transaction's snapshot.

    Safe to retry; stores retry on their own and raise this only once their
    attempts are exhausted.
    """

    pass


class TransactionAborted(StoreError):
    """Raised from inside a transaction body to abandon it. Not retried."""

    pass


class BatchCommitFailure(StoreError):
    """A write batch failed to commit. None of its operations applied."""

    def __init__(
        self,
        message: str,
        document_paths: Optional[Iterable[str]] = None,
        phase: Optional[str] = None,
        external_ids: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message, phase=phase, external_ids=external_ids)
        self.document_paths: List[str] = list(document_paths or [])


class BatchLimitExceeded(StoreError):
    """More operations were added to a batch than the store accepts."""

    pass


class DocumentNotFound(StoreError):
    """A targeted update addressed a document that does not exist."""

    def __init__(self, document_path: str) -> None:
        super().__init__(f"Document not found: {document_path}")
        self.document_path = document_path


class FetchFailure(ViewCountError):
    """The metrics source was unreachable or returned a malformed payload."""

    pass


class ReconcileFailure(ViewCountError):
    """The reconcile transaction failed; nothing from it was committed."""

    pass
