"""
Defines the repository protocols for the view count tracker.

The DocumentStore protocol is the only way the rest of the package touches
the document database. Transactions and write batches are protocols as well
so that the in-memory and Firestore stores can hand out their own
implementations.
"""

from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Protocol,
    TypeVar,
    Union,
    overload,
    runtime_checkable,
)

from .domain import MetricRecord
from .store import (
    CollectionHandle,
    Converter,
    DocumentHandle,
    DocumentSnapshot,
    Query,
    QuerySnapshot,
    Snapshot,
    WriteResult,
)

T = TypeVar("T")
S = TypeVar("S")
R = TypeVar("R")


@runtime_checkable
class StoreTransaction(Protocol):
    """
    Transaction context handed to a ``run_transaction`` body.

    All reads observe one consistent snapshot and must happen before the
    first write. Writes are buffered and applied atomically on commit.
    """

    @overload
    async def get(self, target: DocumentHandle[T]) -> DocumentSnapshot[T]:
        ...

    @overload
    async def get(self, target: Query[T]) -> QuerySnapshot[T]:
        ...

    async def get(
        self, target: Union[DocumentHandle[T], Query[T]]
    ) -> Union[DocumentSnapshot[T], QuerySnapshot[T]]:
        ...

    def set(
        self, document: DocumentHandle[T], data: T, merge: bool = False
    ) -> None:
        ...

    def update(
        self, document: DocumentHandle[T], data: Dict[str, Any]
    ) -> None:
        """Partial update. Raises DocumentNotFound for missing documents."""
        ...


@runtime_checkable
class WriteBatch(Protocol):
    """
    A group of writes committed atomically on its own.

    Batches are independent: a failed commit leaves earlier batches applied.
    Adding more than MAX_BATCH_OPERATIONS writes raises BatchLimitExceeded.
    """

    def set(
        self, document: DocumentHandle[T], data: T, merge: bool = False
    ) -> None:
        ...

    def update(
        self, document: DocumentHandle[T], data: Dict[str, Any]
    ) -> None:
        ...

    def delete(self, document: DocumentHandle[Any]) -> None:
        ...

    def __len__(self) -> int:
        ...

    async def commit(self) -> List[WriteResult]:
        """Apply every write or none. Raises BatchCommitFailure."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """
    Typed access to a document database.

    Implementations own a long-lived connection and are shared by every
    repository built on top of them.
    """

    def collection(
        self, path: str, converter: Converter[T]
    ) -> CollectionHandle[T]:
        """Typed handle for a top-level collection."""
        ...

    def sub_collection(
        self,
        parent: DocumentHandle[Any],
        name: str,
        converter: Converter[S],
    ) -> CollectionHandle[S]:
        """Typed handle for a child collection under one document."""
        ...

    def allocate_id(
        self, collection: CollectionHandle[T]
    ) -> DocumentHandle[T]:
        """Reserve a new document id client-side, without writing."""
        ...

    async def get(self, document: DocumentHandle[T]) -> DocumentSnapshot[T]:
        ...

    async def stream(
        self, target: Union[CollectionHandle[T], Query[T]]
    ) -> QuerySnapshot[T]:
        ...

    async def run_transaction(
        self, fn: Callable[[StoreTransaction], Awaitable[R]]
    ) -> R:
        """
        Run ``fn`` inside a transaction and commit its writes atomically.

        The store retries ``fn`` when a conflicting write invalidates its
        snapshot, so ``fn`` may run more than once and must not have side
        effects outside the transaction.

        Raises:
            TransactionConflict: retries exhausted
            Exception: anything raised by ``fn`` propagates unchanged and
                nothing is written
        """
        ...

    def start_batch(self) -> WriteBatch:
        ...

    def exists(self, snapshot: Snapshot) -> bool:
        ...


@runtime_checkable
class MetricsSourceRepository(Protocol):
    """Protocol for the external source of current view counts."""

    async def fetch_current_values(
        self, external_ids: List[str]
    ) -> List[MetricRecord]:
        """
        Fetch the current state of every requested video in one call.

        Raises:
            FetchFailure: source unreachable or response malformed
        """
        ...


@runtime_checkable
class TargetConfigurationRepository(Protocol):
    """Protocol for loading the set of video ids to track."""

    async def get_target_ids(self) -> List[str]:
        """Return the configured external ids, deduplicated, in order."""
        ...
