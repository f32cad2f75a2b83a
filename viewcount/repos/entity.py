"""
Generic repository over a root collection and one child collection per root.

EntityRepository is parameterized by the root record type and the child
record type instead of being subclassed per collection. It only composes the
DocumentStore primitives; every consistency guarantee comes from the store.
VideoRepository binds it to tracked videos and their view history.
"""

import asyncio
import logging
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from viewcount.domain import SampleEntry, TrackedEntity
from viewcount.repositories import DocumentStore, StoreTransaction, WriteBatch
from viewcount.store import (
    MAX_BATCH_OPERATIONS,
    MAX_IN_VALUES,
    SERVER_TIMESTAMP,
    CollectionHandle,
    Converter,
    DocumentHandle,
    ModelConverter,
    QuerySnapshot,
    WriteResult,
    chunked,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")
C = TypeVar("C")
T = TypeVar("T")

VIDEO_COLLECTION = "video"
VIEW_HISTORY_COLLECTION = "view-history"


class EntityRepository(Generic[R, C]):
    """
    Typed access to root documents and their child collections.

    Args:
        store: DocumentStore shared by every repository
        root_collection_path: path of the root collection
        child_collection_name: name of the child collection under each root
        root_converter: converter for root records
        child_converter: converter for child records
        key_field: root field holding the external id
        touch_field: root field re-stamped with the server time on update
        child_time_field: child field used to order and range-filter children
    """

    def __init__(
        self,
        store: DocumentStore,
        root_collection_path: str,
        child_collection_name: str,
        root_converter: Converter[R],
        child_converter: Converter[C],
        key_field: str = "external_id",
        touch_field: Optional[str] = "updated_at",
        child_time_field: str = "created_at",
    ) -> None:
        self.store = store
        self.child_collection_name = child_collection_name
        self.key_field = key_field
        self.touch_field = touch_field
        self.child_time_field = child_time_field
        self._child_converter = child_converter
        self.roots: CollectionHandle[R] = store.collection(
            root_collection_path, root_converter
        )

    def root(self, doc_id: str) -> DocumentHandle[R]:
        return self.roots.document(doc_id)

    def children(self, root_doc_id: str) -> CollectionHandle[C]:
        return self.store.sub_collection(
            self.root(root_doc_id),
            self.child_collection_name,
            self._child_converter,
        )

    # --- plain reads ---

    async def get_all(self) -> Dict[str, R]:
        logger.debug(
            "EntityRepository: Fetching all roots",
            extra={"collection": self.roots.path},
        )
        snapshot = await self.store.stream(self.roots)
        if not self.store.exists(snapshot):
            logger.warning(
                "EntityRepository: No roots found",
                extra={"collection": self.roots.path},
            )
            return {}
        return snapshot.to_dict()

    # --- transactional operations ---

    async def run_transaction(
        self, fn: Callable[[StoreTransaction], Awaitable[T]]
    ) -> T:
        return await self.store.run_transaction(fn)

    async def get_by_external_ids(
        self, tx: StoreTransaction, external_ids: Sequence[str]
    ) -> Dict[str, R]:
        """
        Load the roots whose key field matches any of ``external_ids``.

        ``in`` filters are capped at MAX_IN_VALUES values, so larger id sets
        are split into several queries inside the same transaction and the
        results merged by document id.
        """
        unique_ids = list(dict.fromkeys(external_ids))
        if not unique_ids:
            return {}

        found: Dict[str, R] = {}
        for shard in chunked(unique_ids, MAX_IN_VALUES):
            query = self.roots.where(self.key_field, "in", shard)
            snapshot = await tx.get(query)
            found.update(snapshot.to_dict())

        logger.debug(
            "EntityRepository: Fetched roots by external id in transaction",
            extra={
                "collection": self.roots.path,
                "requested": len(unique_ids),
                "found": len(found),
            },
        )
        return found

    def update_in_tx(
        self, tx: StoreTransaction, doc_id: str, record: R
    ) -> None:
        data = self.roots.converter.to_storage(record)
        if self.touch_field:
            data[self.touch_field] = SERVER_TIMESTAMP
        tx.update(self.root(doc_id), data)

    def append_child_in_tx(
        self, tx: StoreTransaction, root_doc_id: str, child: C
    ) -> str:
        handle = self.store.allocate_id(self.children(root_doc_id))
        tx.set(handle, child)
        return handle.id

    # --- batched operations ---

    def start_batch(self) -> WriteBatch:
        return self.store.start_batch()

    async def commit_batch(self, batch: WriteBatch) -> List[WriteResult]:
        return await batch.commit()

    def add_root_with_batch(self, batch: WriteBatch, record: R) -> str:
        """Stage a new root and return the id allocated for it."""
        handle = self.store.allocate_id(self.roots)
        batch.set(handle, record)
        return handle.id

    def add_child_with_batch(
        self, batch: WriteBatch, root_doc_id: str, child: C
    ) -> str:
        handle = self.store.allocate_id(self.children(root_doc_id))
        batch.set(handle, child)
        return handle.id

    # --- maintenance ---

    async def get_children_between(
        self, root_doc_id: str, start: datetime, end: datetime
    ) -> QuerySnapshot[C]:
        """Children with ``start <= time < end``, oldest first."""
        query = (
            self.children(root_doc_id)
            .where(self.child_time_field, ">=", start)
            .where(self.child_time_field, "<", end)
            .order_by(self.child_time_field, "asc")
        )
        return await self.store.stream(query)

    async def get_oldest_child(self, root_doc_id: str) -> Optional[C]:
        query = (
            self.children(root_doc_id)
            .order_by(self.child_time_field, "asc")
            .limit(1)
        )
        snapshot = await self.store.stream(query)
        if not self.store.exists(snapshot):
            return None
        return snapshot.docs[0].data

    async def delete_documents(
        self, documents: Sequence[DocumentHandle[Any]]
    ) -> int:
        """
        Delete ``documents`` in batches of at most MAX_BATCH_OPERATIONS.

        Groups come from a stable partition of the input, so every document
        lands in exactly one batch. All commits run concurrently; batches
        are atomic individually, not as a whole.
        """
        groups = chunked(list(documents), MAX_BATCH_OPERATIONS)
        batches = []
        for group in groups:
            batch = self.start_batch()
            for document in group:
                batch.delete(document)
            batches.append(batch)

        logger.info(
            "EntityRepository: Deleting documents",
            extra={"documents": len(documents), "batches": len(batches)},
        )
        await asyncio.gather(*(self.commit_batch(b) for b in batches))
        return len(documents)


class VideoRepository(EntityRepository[TrackedEntity, SampleEntry]):
    """Tracked videos in ``video`` with samples in ``view-history``."""

    def __init__(self, store: DocumentStore) -> None:
        super().__init__(
            store,
            root_collection_path=VIDEO_COLLECTION,
            child_collection_name=VIEW_HISTORY_COLLECTION,
            root_converter=ModelConverter(
                TrackedEntity, server_timestamp_fields=("updated_at",)
            ),
            child_converter=ModelConverter(
                SampleEntry, server_timestamp_fields=("created_at",)
            ),
        )
