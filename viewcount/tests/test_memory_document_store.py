"""
Tests for MemoryDocumentStore.

These cover the DocumentStore contract (typed handles, queries, batches,
transactions) and the optimistic concurrency loop that gives transactions
their snapshot semantics.
"""

from datetime import datetime, timezone

import pytest

from viewcount.domain import SampleEntry, TrackedEntity
from viewcount.exceptions import (
    BatchCommitFailure,
    BatchLimitExceeded,
    DocumentNotFound,
    StoreError,
    TransactionAborted,
    TransactionConflict,
)
from viewcount.repos.memory.document_store import MemoryDocumentStore
from viewcount.repositories import DocumentStore, StoreTransaction, WriteBatch
from viewcount.store import (
    MAX_BATCH_OPERATIONS,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    ModelConverter,
    QuerySnapshot,
    chunked,
    exists,
)
from viewcount.tests.factories import TrackedEntityFactory

ENTITY_CONVERTER = ModelConverter(
    TrackedEntity, server_timestamp_fields=("updated_at",)
)
SAMPLE_CONVERTER = ModelConverter(
    SampleEntry, server_timestamp_fields=("created_at",)
)


async def _seed(store: MemoryDocumentStore, *entities: TrackedEntity):
    videos = store.collection("video", ENTITY_CONVERTER)
    batch = store.start_batch()
    handles = []
    for entity in entities:
        handle = store.allocate_id(videos)
        batch.set(handle, entity)
        handles.append(handle)
    await batch.commit()
    return videos, handles


class TestHandlesAndConverters:
    def test_store_satisfies_protocol(
        self, store: MemoryDocumentStore
    ) -> None:
        assert isinstance(store, DocumentStore)
        assert isinstance(store.start_batch(), WriteBatch)

    def test_collection_path_must_address_a_collection(
        self, store: MemoryDocumentStore
    ) -> None:
        with pytest.raises(ValueError):
            store.collection("video/abc", ENTITY_CONVERTER)
        with pytest.raises(ValueError):
            store.collection("", ENTITY_CONVERTER)

    def test_sub_collection_path_nests_under_parent(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        history = store.sub_collection(
            videos.document("abc"), "view-history", SAMPLE_CONVERTER
        )
        assert history.path == "video/abc/view-history"
        assert history.parent_path == "video/abc"
        assert history.name == "view-history"

    def test_allocate_id_does_not_write(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        first = store.allocate_id(videos)
        second = store.allocate_id(videos)
        assert first.id != second.id
        assert store._documents == {}

    def test_invalid_document_id_is_rejected(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        with pytest.raises(ValueError):
            videos.document("a/b")
        with pytest.raises(ValueError):
            videos.document("")

    def test_converter_stamps_missing_timestamps(self) -> None:
        entity = TrackedEntityFactory.build(updated_at=None)
        data = ENTITY_CONVERTER.to_storage(entity)
        assert data["updated_at"] is SERVER_TIMESTAMP

    def test_in_filter_is_capped(self, store: MemoryDocumentStore) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        with pytest.raises(ValueError):
            videos.where("external_id", "in", [str(i) for i in range(31)])
        # 30 is still fine
        videos.where("external_id", "in", [str(i) for i in range(30)])

    def test_unsupported_operator_is_rejected(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        with pytest.raises(ValueError):
            videos.where("title", "array-contains", "x")


class TestReadsAndBatches:
    @pytest.mark.asyncio
    async def test_batch_commit_stamps_server_timestamp(
        self, store: MemoryDocumentStore, clock
    ) -> None:
        videos, (handle,) = await _seed(store, TrackedEntityFactory.build())

        snapshot = await store.get(handle)
        assert snapshot.exists
        assert snapshot.data.updated_at == clock.readings[0]

    @pytest.mark.asyncio
    async def test_get_missing_document(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        snapshot = await store.get(videos.document("missing"))
        assert not snapshot.exists
        assert snapshot.data is None
        assert not store.exists(snapshot)

    @pytest.mark.asyncio
    async def test_stream_filters_orders_and_limits(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, _ = await _seed(
            store,
            TrackedEntityFactory.build(external_id="a", milestone=300),
            TrackedEntityFactory.build(external_id="b", milestone=100),
            TrackedEntityFactory.build(external_id="c", milestone=200),
        )

        snapshot = await store.stream(
            videos.where("milestone", ">=", 150).order_by("milestone", "desc")
        )
        assert [d.data.external_id for d in snapshot] == ["a", "c"]

        limited = await store.stream(
            videos.order_by("milestone").limit(1)
        )
        assert [d.data.external_id for d in limited] == ["b"]

        by_id = await store.stream(
            videos.where("external_id", "in", ["b", "zzz"])
        )
        assert [d.data.external_id for d in by_id] == ["b"]

    @pytest.mark.asyncio
    async def test_stream_does_not_include_sub_collections(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, (handle,) = await _seed(store, TrackedEntityFactory.build())
        history = store.sub_collection(
            handle, "view-history", SAMPLE_CONVERTER
        )
        batch = store.start_batch()
        batch.set(store.allocate_id(history), SampleEntry(value=1))
        await batch.commit()

        assert (await store.stream(videos)).size == 1
        assert (await store.stream(history)).size == 1

    @pytest.mark.asyncio
    async def test_batch_rejects_more_than_limit(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        batch = store.start_batch()
        for i in range(MAX_BATCH_OPERATIONS):
            batch.delete(videos.document(f"doc-{i}"))
        assert len(batch) == MAX_BATCH_OPERATIONS

        with pytest.raises(BatchLimitExceeded):
            batch.delete(videos.document("one-too-many"))

    @pytest.mark.asyncio
    async def test_failed_batch_applies_nothing(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        batch = store.start_batch()
        created = store.allocate_id(videos)
        batch.set(created, TrackedEntityFactory.build())
        batch.update(videos.document("missing"), {"milestone": 5})

        with pytest.raises(BatchCommitFailure) as exc_info:
            await batch.commit()

        assert created.path in exc_info.value.document_paths
        assert not (await store.get(created)).exists
        assert store.commit_history == []

    @pytest.mark.asyncio
    async def test_committed_batch_cannot_be_reused(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        batch = store.start_batch()
        batch.set(store.allocate_id(videos), TrackedEntityFactory.build())
        await batch.commit()

        with pytest.raises(StoreError):
            batch.delete(videos.document("x"))
        with pytest.raises(StoreError):
            await batch.commit()

    @pytest.mark.asyncio
    async def test_merge_set_keeps_other_fields(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, (handle,) = await _seed(
            store, TrackedEntityFactory.build(title="Original")
        )
        entity = (await store.get(handle)).data
        batch = store.start_batch()
        batch.set(
            handle, entity.model_copy(update={"milestone": 5000}), merge=True
        )
        await batch.commit()

        stored = (await store.get(handle)).data
        assert stored.milestone == 5000
        assert stored.title == "Original"


class TestTransactions:
    @pytest.mark.asyncio
    async def test_writes_are_applied_on_commit(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, (handle,) = await _seed(
            store, TrackedEntityFactory.build(milestone=1000)
        )

        async def body(tx: StoreTransaction) -> int:
            assert isinstance(tx, StoreTransaction)
            snapshot = await tx.get(handle)
            tx.update(handle, {"milestone": snapshot.data.milestone + 1000})
            return snapshot.data.milestone

        before = await store.run_transaction(body)

        assert before == 1000
        assert (await store.get(handle)).data.milestone == 2000

    @pytest.mark.asyncio
    async def test_exception_in_body_discards_writes(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, (handle,) = await _seed(
            store, TrackedEntityFactory.build(milestone=1000)
        )

        async def body(tx: StoreTransaction) -> None:
            await tx.get(handle)
            tx.update(handle, {"milestone": 1})
            raise TransactionAborted("changed my mind")

        with pytest.raises(TransactionAborted):
            await store.run_transaction(body)
        assert (await store.get(handle)).data.milestone == 1000

    @pytest.mark.asyncio
    async def test_update_of_missing_document_raises(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)

        async def body(tx: StoreTransaction) -> None:
            tx.update(videos.document("missing"), {"milestone": 1})

        with pytest.raises(DocumentNotFound) as exc_info:
            await store.run_transaction(body)
        assert exc_info.value.document_path == "video/missing"

    @pytest.mark.asyncio
    async def test_reads_after_writes_are_rejected(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, (handle,) = await _seed(store, TrackedEntityFactory.build())

        async def body(tx: StoreTransaction) -> None:
            tx.update(handle, {"milestone": 1})
            await tx.get(handle)

        with pytest.raises(StoreError):
            await store.run_transaction(body)

    @pytest.mark.asyncio
    async def test_conflicting_write_triggers_retry(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, (handle,) = await _seed(
            store, TrackedEntityFactory.build(milestone=1000)
        )
        attempts = []

        async def body(tx: StoreTransaction) -> None:
            snapshot = await tx.get(handle)
            attempts.append(snapshot.data.milestone)
            if len(attempts) == 1:
                # Concurrent writer commits between our read and commit
                batch = store.start_batch()
                batch.update(handle, {"milestone": 5000})
                await batch.commit()
            tx.update(handle, {"milestone": snapshot.data.milestone + 1})

        await store.run_transaction(body)

        assert attempts == [1000, 5000]
        assert (await store.get(handle)).data.milestone == 5001

    @pytest.mark.asyncio
    async def test_new_document_in_queried_collection_conflicts(
        self, store: MemoryDocumentStore
    ) -> None:
        videos, _ = await _seed(store, TrackedEntityFactory.build())
        attempts = []

        async def body(tx: StoreTransaction) -> int:
            snapshot = await tx.get(videos.query())
            attempts.append(snapshot.size)
            if len(attempts) == 1:
                batch = store.start_batch()
                batch.set(
                    store.allocate_id(videos), TrackedEntityFactory.build()
                )
                await batch.commit()
            return snapshot.size

        assert await store.run_transaction(body) == 2
        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_conflict_and_write_nothing(
        self, clock
    ) -> None:
        store = MemoryDocumentStore(max_attempts=3, clock=clock)
        videos, (handle,) = await _seed(
            store, TrackedEntityFactory.build(milestone=1000)
        )
        attempts = 0

        async def body(tx: StoreTransaction) -> None:
            nonlocal attempts
            attempts += 1
            snapshot = await tx.get(handle)
            interfering = store.start_batch()
            interfering.update(
                handle, {"title": f"interference {attempts}"}
            )
            await interfering.commit()
            tx.update(handle, {"milestone": snapshot.data.milestone * 10})

        with pytest.raises(TransactionConflict):
            await store.run_transaction(body)

        assert attempts == 3
        assert (await store.get(handle)).data.milestone == 1000

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            MemoryDocumentStore(max_attempts=0)


class TestExistsAndChunked:
    def test_exists_normalises_snapshot_shapes(
        self, store: MemoryDocumentStore
    ) -> None:
        videos = store.collection("video", ENTITY_CONVERTER)
        present = DocumentSnapshot(
            reference=videos.document("a"),
            data=TrackedEntityFactory.build(),
        )
        absent = DocumentSnapshot(reference=videos.document("b"), data=None)

        assert exists(present)
        assert not exists(absent)
        assert exists([absent, present])
        assert not exists([])
        assert not exists(QuerySnapshot(query=videos.query(), docs=[]))
        assert exists(QuerySnapshot(query=videos.query(), docs=[present]))

    def test_exists_rejects_unknown_types(self) -> None:
        with pytest.raises(TypeError):
            exists("not a snapshot")  # type: ignore[arg-type]

    def test_chunked_is_a_stable_partition(self) -> None:
        items = list(range(1200))
        groups = chunked(items, 500)
        assert [len(g) for g in groups] == [500, 500, 200]
        assert [i for g in groups for i in g] == items

    def test_chunked_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            chunked([1, 2], 0)


def test_sentinel_is_a_singleton() -> None:
    import copy

    assert copy.deepcopy(SERVER_TIMESTAMP) is SERVER_TIMESTAMP
    assert repr(SERVER_TIMESTAMP) == "SERVER_TIMESTAMP"
    assert datetime.now(timezone.utc) is not SERVER_TIMESTAMP
