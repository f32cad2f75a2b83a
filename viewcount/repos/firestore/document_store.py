"""
Cloud Firestore implementation of DocumentStore.

Wraps the async client of google-cloud-firestore. Handles, queries and
snapshots from viewcount.store are translated to Firestore references at the
boundary, so nothing above this module imports the Firestore SDK.

Transactions go through ``async_transactional``, which retries the body when
Firestore aborts it because of contention. Once its attempts are exhausted
the failure is surfaced as TransactionConflict.
"""

import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    TypeVar,
    Union,
)

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter as NativeFilter

from viewcount.exceptions import (
    BatchCommitFailure,
    BatchLimitExceeded,
    DocumentNotFound,
    StoreError,
    TransactionConflict,
)
from viewcount.repositories import DocumentStore, StoreTransaction, WriteBatch
from viewcount.store import (
    MAX_BATCH_OPERATIONS,
    SERVER_TIMESTAMP,
    CollectionHandle,
    Converter,
    DocumentHandle,
    DocumentSnapshot,
    Query,
    QuerySnapshot,
    Snapshot,
    WriteResult,
    exists,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")
R = TypeVar("R")

_DIRECTIONS = {
    "asc": firestore.Query.ASCENDING,
    "desc": firestore.Query.DESCENDING,
}


def _to_native_value(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, dict):
        return {k: _to_native_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_native_value(v) for v in value]
    return value


async def _collect(result: Any) -> List[Any]:
    """Gather native snapshots from whatever a transactional get returned."""
    if hasattr(result, "__aiter__"):
        return [snapshot async for snapshot in result]
    if isinstance(result, (list, tuple)):
        return list(result)
    return [result]


class FirestoreTransaction(StoreTransaction):
    """Adapter from StoreTransaction to a native AsyncTransaction."""

    def __init__(
        self, store: "FirestoreDocumentStore", native: Any
    ) -> None:
        self._store = store
        self._native = native
        self._missing: Set[str] = set()
        self._has_writes = False

    async def get(
        self, target: Union[DocumentHandle[T], Query[T]]
    ) -> Union[DocumentSnapshot[T], QuerySnapshot[T]]:
        if self._has_writes:
            raise StoreError(
                "Transactions require all reads to be executed before "
                "all writes"
            )
        if isinstance(target, DocumentHandle):
            natives = await _collect(
                await self._native.get(self._store._document_ref(target))
            )
            snapshot = self._store._wrap_document(
                target, natives[0] if natives else None
            )
            if not snapshot.exists:
                self._missing.add(target.path)
            return snapshot
        if isinstance(target, Query):
            natives = await _collect(
                await self._native.get(self._store._native_query(target))
            )
            return self._store._wrap_query(target, natives)
        raise TypeError(f"unexpected read target: {type(target).__name__}")

    def set(
        self, document: DocumentHandle[T], data: T, merge: bool = False
    ) -> None:
        payload = _to_native_value(
            document.collection.converter.to_storage(data)
        )
        self._native.set(
            self._store._document_ref(document), payload, merge=merge
        )
        self._missing.discard(document.path)
        self._has_writes = True

    def update(
        self, document: DocumentHandle[T], data: Dict[str, Any]
    ) -> None:
        # Only documents read inside this transaction are known to be
        # missing; anything else fails at commit time instead.
        if document.path in self._missing:
            raise DocumentNotFound(document.path)
        self._native.update(
            self._store._document_ref(document), _to_native_value(data)
        )
        self._has_writes = True


class FirestoreWriteBatch(WriteBatch):
    """Adapter from WriteBatch to a native AsyncWriteBatch."""

    def __init__(self, store: "FirestoreDocumentStore", native: Any) -> None:
        self._store = store
        self._native = native
        self._paths: List[str] = []

    def _track(self, document: DocumentHandle[Any]) -> None:
        if len(self._paths) >= MAX_BATCH_OPERATIONS:
            raise BatchLimitExceeded(
                f"A batch accepts at most {MAX_BATCH_OPERATIONS} operations"
            )
        self._paths.append(document.path)

    def set(
        self, document: DocumentHandle[T], data: T, merge: bool = False
    ) -> None:
        self._track(document)
        payload = _to_native_value(
            document.collection.converter.to_storage(data)
        )
        self._native.set(
            self._store._document_ref(document), payload, merge=merge
        )

    def update(
        self, document: DocumentHandle[T], data: Dict[str, Any]
    ) -> None:
        self._track(document)
        self._native.update(
            self._store._document_ref(document), _to_native_value(data)
        )

    def delete(self, document: DocumentHandle[Any]) -> None:
        self._track(document)
        self._native.delete(self._store._document_ref(document))

    def __len__(self) -> int:
        return len(self._paths)

    async def commit(self) -> List[WriteResult]:
        try:
            native_results = await self._native.commit()
        except google_exceptions.GoogleAPICallError as e:
            logger.error(
                "Firestore batch commit failed",
                extra={
                    "operations": len(self._paths),
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            raise BatchCommitFailure(
                f"Batch commit failed: {e}", document_paths=self._paths
            ) from e
        return [
            WriteResult(path=path, update_time=getattr(r, "update_time", None))
            for path, r in zip(self._paths, native_results)
        ]


class FirestoreDocumentStore(DocumentStore):
    """
    DocumentStore backed by Cloud Firestore.

    The AsyncClient is long-lived and shared by every repository built on
    this store.
    """

    def __init__(
        self, client: firestore.AsyncClient, max_attempts: int = 5
    ) -> None:
        self._client = client
        self.max_attempts = max_attempts
        logger.debug(
            "Initialized FirestoreDocumentStore",
            extra={"project": getattr(client, "project", None)},
        )

    @classmethod
    def from_settings(
        cls,
        project: Optional[str] = None,
        database: Optional[str] = None,
        max_attempts: int = 5,
    ) -> "FirestoreDocumentStore":
        kwargs: Dict[str, Any] = {}
        if project:
            kwargs["project"] = project
        if database:
            kwargs["database"] = database
        return cls(firestore.AsyncClient(**kwargs), max_attempts=max_attempts)

    # --- handles ---

    def collection(
        self, path: str, converter: Converter[T]
    ) -> CollectionHandle[T]:
        return CollectionHandle(path=path, converter=converter)

    def sub_collection(
        self,
        parent: DocumentHandle[Any],
        name: str,
        converter: Converter[S],
    ) -> CollectionHandle[S]:
        return CollectionHandle(
            path=f"{parent.path}/{name}", converter=converter
        )

    def allocate_id(
        self, collection: CollectionHandle[T]
    ) -> DocumentHandle[T]:
        # document() without an id generates one client-side
        native_ref = self._client.collection(collection.path).document()
        return collection.document(native_ref.id)

    # --- reads ---

    async def get(self, document: DocumentHandle[T]) -> DocumentSnapshot[T]:
        native = await self._document_ref(document).get()
        return self._wrap_document(document, native)

    async def stream(
        self, target: Union[CollectionHandle[T], Query[T]]
    ) -> QuerySnapshot[T]:
        if isinstance(target, CollectionHandle):
            target = target.query()
        natives = [s async for s in self._native_query(target).stream()]
        return self._wrap_query(target, natives)

    # --- transactions and batches ---

    async def run_transaction(
        self, fn: Callable[[StoreTransaction], Awaitable[R]]
    ) -> R:
        transaction = self._client.transaction(max_attempts=self.max_attempts)

        @firestore.async_transactional
        async def _body(native_transaction: Any) -> R:
            return await fn(FirestoreTransaction(self, native_transaction))

        try:
            return await _body(transaction)
        except google_exceptions.Aborted as e:
            raise TransactionConflict(
                f"Transaction aborted by contention: {e}"
            ) from e
        except ValueError as e:
            # async_transactional reports exhausted attempts as ValueError
            if "Failed to commit transaction" in str(e):
                raise TransactionConflict(str(e)) from e
            raise

    def start_batch(self) -> FirestoreWriteBatch:
        return FirestoreWriteBatch(self, self._client.batch())

    def exists(self, snapshot: Snapshot) -> bool:
        return exists(snapshot)

    # --- translation ---

    def _document_ref(self, document: DocumentHandle[Any]) -> Any:
        return self._client.document(document.path)

    def _native_query(self, query: Query[Any]) -> Any:
        native: Any = self._client.collection(query.collection.path)
        for f in query.filters:
            native = native.where(
                filter=NativeFilter(f.field_path, f.op, f.value)
            )
        if query.ordering is not None:
            field_path, direction = query.ordering
            native = native.order_by(
                field_path, direction=_DIRECTIONS[direction]
            )
        if query.limit_to is not None:
            native = native.limit(query.limit_to)
        return native

    def _wrap_document(
        self, document: DocumentHandle[T], native: Optional[Any]
    ) -> DocumentSnapshot[T]:
        data = None
        if native is not None and native.exists:
            data = document.collection.converter.from_storage(
                native.to_dict()
            )
        return DocumentSnapshot(reference=document, data=data)

    def _wrap_query(
        self, query: Query[T], natives: List[Any]
    ) -> QuerySnapshot[T]:
        collection = query.collection
        docs = [
            self._wrap_document(collection.document(n.id), n)
            for n in natives
        ]
        return QuerySnapshot(query=query, docs=docs)
