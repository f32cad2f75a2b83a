"""
Memory implementation of DocumentStore.

This module provides an in-memory implementation of the DocumentStore
protocol. Documents live in a dictionary keyed by document path, next to a
version counter per document and a membership counter per collection.

Transactions use optimistic concurrency: reads record the versions they
observed, writes are buffered, and the commit only goes through if nothing
that was read has changed in the meantime. Otherwise the body is run again,
up to ``max_attempts`` times, which reproduces the snapshot-isolated,
retry-on-conflict behaviour of the production store.

The implementation is ideal for tests and local runs where external
dependencies should be avoided. All operations stay async to maintain
interface compatibility.
"""

import asyncio
import copy
import logging
import operator
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
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
    FieldFilter,
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

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda actual, expected: actual in expected,
}


@dataclass
class _PendingWrite:
    kind: str  # "set" | "update" | "delete"
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    merge: bool = False


def _parent_path(document_path: str) -> str:
    return document_path.rsplit("/", 1)[0]


def _resolve_sentinels(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: _resolve_sentinels(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_sentinels(v, now) for v in value]
    return value


def _matches(data: Dict[str, Any], field_filter: FieldFilter) -> bool:
    if field_filter.field_path not in data:
        return False
    actual = data[field_filter.field_path]
    try:
        return _COMPARATORS[field_filter.op](actual, field_filter.value)
    except TypeError:
        return False


class MemoryTransaction(StoreTransaction):
    """One attempt of a transaction body against a MemoryDocumentStore."""

    def __init__(self, store: "MemoryDocumentStore") -> None:
        self._store = store
        self._read_versions: Dict[str, int] = {}
        self._read_memberships: Dict[str, int] = {}
        self._writes: List[_PendingWrite] = []
        self._created_paths: Set[str] = set()

    async def get(
        self, target: Union[DocumentHandle[T], Query[T]]
    ) -> Union[DocumentSnapshot[T], QuerySnapshot[T]]:
        if self._writes:
            raise StoreError(
                "Transactions require all reads to be executed before "
                "all writes"
            )
        if isinstance(target, DocumentHandle):
            self._read_versions[target.path] = self._store._version(
                target.path
            )
            return self._store._read_document(target)
        if isinstance(target, Query):
            collection_path = target.collection.path
            self._read_memberships[collection_path] = (
                self._store._membership(collection_path)
            )
            snapshot = self._store._run_query(target)
            for doc in snapshot.docs:
                self._read_versions[doc.reference.path] = (
                    self._store._version(doc.reference.path)
                )
            return snapshot
        raise TypeError(f"unexpected read target: {type(target).__name__}")

    def set(
        self, document: DocumentHandle[T], data: T, merge: bool = False
    ) -> None:
        payload = document.collection.converter.to_storage(data)
        self._writes.append(
            _PendingWrite("set", document.path, payload, merge)
        )
        self._created_paths.add(document.path)

    def update(
        self, document: DocumentHandle[T], data: Dict[str, Any]
    ) -> None:
        if (
            document.path not in self._created_paths
            and not self._store._has(document.path)
        ):
            raise DocumentNotFound(document.path)
        self._writes.append(_PendingWrite("update", document.path, dict(data)))

    def _is_current(self) -> bool:
        for path, version in self._read_versions.items():
            if self._store._version(path) != version:
                return False
        for path, version in self._read_memberships.items():
            if self._store._membership(path) != version:
                return False
        return True


class MemoryWriteBatch(WriteBatch):
    """Write batch buffered in memory and applied under the store lock."""

    def __init__(self, store: "MemoryDocumentStore") -> None:
        self._store = store
        self._writes: List[_PendingWrite] = []
        self._committed = False

    def _add(self, write: _PendingWrite) -> None:
        if self._committed:
            raise StoreError("Cannot modify a batch that has been committed")
        if len(self._writes) >= MAX_BATCH_OPERATIONS:
            raise BatchLimitExceeded(
                f"A batch accepts at most {MAX_BATCH_OPERATIONS} operations"
            )
        self._writes.append(write)

    def set(
        self, document: DocumentHandle[T], data: T, merge: bool = False
    ) -> None:
        payload = document.collection.converter.to_storage(data)
        self._add(_PendingWrite("set", document.path, payload, merge))

    def update(
        self, document: DocumentHandle[T], data: Dict[str, Any]
    ) -> None:
        self._add(_PendingWrite("update", document.path, dict(data)))

    def delete(self, document: DocumentHandle[Any]) -> None:
        self._add(_PendingWrite("delete", document.path))

    def __len__(self) -> int:
        return len(self._writes)

    async def commit(self) -> List[WriteResult]:
        if self._committed:
            raise StoreError("Batch has already been committed")
        paths = [w.path for w in self._writes]
        async with self._store._lock:
            try:
                results = self._store._apply(self._writes)
            except DocumentNotFound as e:
                logger.error(
                    "MemoryDocumentStore: Batch commit failed",
                    extra={"operations": len(paths), "error": str(e)},
                )
                raise BatchCommitFailure(
                    f"Batch commit failed: {e}", document_paths=paths
                ) from e
            self._store.commit_history.append(paths)
        self._committed = True
        logger.debug(
            "MemoryDocumentStore: Batch committed",
            extra={"operations": len(paths)},
        )
        return results


class MemoryDocumentStore(DocumentStore):
    """
    Memory implementation of DocumentStore using Python dictionaries.

    ``commit_history`` records the document paths of every committed batch,
    in commit order.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize store with empty in-memory storage."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._versions: Dict[str, int] = {}
        self._memberships: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self.commit_history: List[List[str]] = []

        logger.debug("Initializing MemoryDocumentStore")

    # --- handles ---

    def collection(
        self, path: str, converter: Converter[T]
    ) -> CollectionHandle[T]:
        if not path or path.count("/") % 2:
            raise ValueError(f"Invalid collection path: {path!r}")
        return CollectionHandle(path=path, converter=converter)

    def sub_collection(
        self,
        parent: DocumentHandle[Any],
        name: str,
        converter: Converter[S],
    ) -> CollectionHandle[S]:
        return self.collection(f"{parent.path}/{name}", converter)

    def allocate_id(
        self, collection: CollectionHandle[T]
    ) -> DocumentHandle[T]:
        return collection.document(uuid.uuid4().hex[:20])

    # --- reads ---

    async def get(self, document: DocumentHandle[T]) -> DocumentSnapshot[T]:
        return self._read_document(document)

    async def stream(
        self, target: Union[CollectionHandle[T], Query[T]]
    ) -> QuerySnapshot[T]:
        if isinstance(target, CollectionHandle):
            target = target.query()
        return self._run_query(target)

    # --- transactions and batches ---

    async def run_transaction(
        self, fn: Callable[[StoreTransaction], Awaitable[R]]
    ) -> R:
        for attempt in range(1, self.max_attempts + 1):
            transaction = MemoryTransaction(self)
            result = await fn(transaction)
            async with self._lock:
                if transaction._is_current():
                    self._apply(transaction._writes)
                    logger.debug(
                        "MemoryDocumentStore: Transaction committed",
                        extra={
                            "attempt": attempt,
                            "writes": len(transaction._writes),
                        },
                    )
                    return result
            logger.warning(
                "MemoryDocumentStore: Transaction conflict, retrying",
                extra={"attempt": attempt, "max_attempts": self.max_attempts},
            )
        raise TransactionConflict(
            f"Failed to commit transaction in {self.max_attempts} attempts"
        )

    def start_batch(self) -> MemoryWriteBatch:
        return MemoryWriteBatch(self)

    def exists(self, snapshot: Snapshot) -> bool:
        return exists(snapshot)

    # --- internals ---

    def _has(self, path: str) -> bool:
        return path in self._documents

    def _version(self, path: str) -> int:
        return self._versions.get(path, 0)

    def _membership(self, collection_path: str) -> int:
        return self._memberships.get(collection_path, 0)

    def _read_document(
        self, document: DocumentHandle[T]
    ) -> DocumentSnapshot[T]:
        raw = self._documents.get(document.path)
        data = None
        if raw is not None:
            data = document.collection.converter.from_storage(
                copy.deepcopy(raw)
            )
        return DocumentSnapshot(reference=document, data=data)

    def _run_query(self, query: Query[T]) -> QuerySnapshot[T]:
        collection = query.collection
        matched = [
            (path, raw)
            for path, raw in self._documents.items()
            if _parent_path(path) == collection.path
            and all(_matches(raw, f) for f in query.filters)
        ]
        if query.ordering is not None:
            field_path, direction = query.ordering
            matched = [m for m in matched if field_path in m[1]]
            matched.sort(
                key=lambda m: m[1][field_path], reverse=direction == "desc"
            )
        else:
            matched.sort(key=lambda m: m[0])
        if query.limit_to is not None:
            matched = matched[: query.limit_to]
        docs = [
            DocumentSnapshot(
                reference=collection.document(path.rsplit("/", 1)[1]),
                data=collection.converter.from_storage(copy.deepcopy(raw)),
            )
            for path, raw in matched
        ]
        return QuerySnapshot(query=query, docs=docs)

    def _apply(self, writes: List[_PendingWrite]) -> List[WriteResult]:
        """Apply writes atomically. Caller must hold the lock."""
        # Validate before mutating so a failure leaves nothing applied.
        present = set(self._documents)
        for write in writes:
            if write.kind == "update" and write.path not in present:
                raise DocumentNotFound(write.path)
            if write.kind == "set":
                present.add(write.path)
            elif write.kind == "delete":
                present.discard(write.path)

        now = self._clock()
        results = []
        for write in writes:
            existed = write.path in self._documents
            data = _resolve_sentinels(copy.deepcopy(write.data), now)
            if write.kind == "set":
                if write.merge and existed:
                    self._documents[write.path].update(data)
                else:
                    self._documents[write.path] = data
            elif write.kind == "update":
                self._documents[write.path].update(data)
            else:
                self._documents.pop(write.path, None)
            if existed != (write.path in self._documents):
                parent = _parent_path(write.path)
                self._memberships[parent] = self._membership(parent) + 1
            self._versions[write.path] = self._version(write.path) + 1
            results.append(WriteResult(path=write.path, update_time=now))
        return results
