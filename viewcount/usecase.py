"""
Defines the use cases for view count tracking.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .domain import (
    MetricRecord,
    NotificationCategory,
    NotificationEvent,
    NotificationProperties,
    RunResult,
    RunStatus,
    SampleEntry,
    TrackedEntity,
)
from .exceptions import (
    DocumentNotFound,
    FetchFailure,
    ReconcileFailure,
)
from .milestones import MilestonePolicy
from .repos.entity import EntityRepository
from .repos.notification import NotificationRepository
from .repositories import (
    MetricsSourceRepository,
    StoreTransaction,
    WriteBatch,
)
from .store import MAX_BATCH_OPERATIONS, chunked

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

VideoStore = EntityRepository[TrackedEntity, SampleEntry]


class ViewCountSyncUseCase:
    """
    Records the current view count of every target video and raises
    milestone notifications.

    A run has three strictly sequential steps:

    1. fetch the current values from the metrics source
    2. reconcile them with the tracked videos in a single transaction:
       advance milestones, write notifications, append one sample per video
    3. insert the videos that are not tracked yet, roots first and their
       first samples second

    Failures in steps 1 and 2 abort the run with FetchFailure or
    ReconcileFailure and leave the store untouched. Step 2 has committed by
    the time step 3 runs, so step 3 failures are reported in the RunResult
    with status ``partial`` instead of being raised. Requested ids the
    source has no data for are listed in ``not_returned`` and also make the
    run ``partial``.
    """

    def __init__(
        self,
        metrics_repo: MetricsSourceRepository,
        video_repo: VideoStore,
        notification_repo: NotificationRepository,
        milestone_policy: MilestonePolicy,
    ):
        self.metrics_repo = metrics_repo
        self.video_repo = video_repo
        self.notification_repo = notification_repo
        self.milestone_policy = milestone_policy

    async def run_once(self, external_ids: Sequence[str]) -> RunResult:
        target_ids = list(dict.fromkeys(external_ids))
        logger.info(
            "Starting view count sync",
            extra={
                "target_count": len(target_ids),
                "policy": repr(self.milestone_policy),
            },
        )
        result = RunResult()
        if not target_ids:
            logger.info("No target videos configured, nothing to sync")
            return result

        # 1. Fetch
        records = await self._fetch(target_ids)
        not_returned = [i for i in target_ids if i not in records]
        if not_returned:
            result.not_returned.extend(not_returned)
            result.errors.append(
                f"fetch: no data returned for {', '.join(not_returned)}"
            )
        values = {
            external_id: record.value
            for external_id, record in records.items()
        }

        # 2. Transactional reconcile
        processed, skipped = await self._reconcile(values)
        result.processed = processed
        result.skipped.extend(skipped)

        # 3. Discover and insert
        resolved = set(processed) | set(skipped)
        discovered = {
            external_id: record
            for external_id, record in records.items()
            if external_id not in resolved
        }
        if discovered:
            await self._insert_new(discovered, result)

        if (
            result.not_returned
            or result.failed_inserts
            or result.missing_samples
        ):
            result.status = RunStatus.PARTIAL

        logger.info(
            "View count sync finished",
            extra={
                "status": result.status.value,
                "processed": len(result.processed),
                "not_returned": len(result.not_returned),
                "notified": len(result.notified),
                "inserted": len(result.inserted),
                "missing_samples": len(result.missing_samples),
                "failed_inserts": len(result.failed_inserts),
                "skipped": len(result.skipped),
            },
        )
        return result

    # --- step 1 ---

    async def _fetch(self, target_ids: List[str]) -> Dict[str, MetricRecord]:
        try:
            fetched = await self.metrics_repo.fetch_current_values(target_ids)
        except FetchFailure:
            raise
        except Exception as e:
            logger.error(
                "Failed to fetch current view counts",
                extra={"target_count": len(target_ids), "error": str(e)},
                exc_info=True,
            )
            raise FetchFailure(
                f"Failed to fetch current view counts: {e}",
                phase="fetch",
                external_ids=target_ids,
            ) from e

        records = {record.external_id: record for record in fetched}
        for external_id, record in records.items():
            logger.info(
                "Fetched view count",
                extra={"external_id": external_id, "value": record.value},
            )
        missing = set(target_ids) - set(records)
        if missing:
            logger.warning(
                "Metrics source returned no data for some videos",
                extra={"external_ids": sorted(missing)},
            )
        return records

    # --- step 2 ---

    def _evaluate(
        self, entity: TrackedEntity, value: int
    ) -> Optional[NotificationEvent]:
        """Decide which notification, if any, a new value raises."""
        if value >= entity.milestone:
            category = NotificationCategory.REACHED
        elif self.milestone_policy.is_approaching(value):
            category = NotificationCategory.APPROACHING
        else:
            return None
        return NotificationEvent(
            subject_id=entity.external_id,
            subject_title=entity.title,
            category=category,
            properties=NotificationProperties(
                observed_value=value, milestone=entity.milestone
            ),
        )

    async def _reconcile(
        self, values: Dict[str, int]
    ) -> Tuple[Dict[str, Optional[NotificationCategory]], List[str]]:
        async def reconcile_in_tx(
            tx: StoreTransaction,
        ) -> Tuple[Dict[str, Optional[NotificationCategory]], List[str]]:
            # The body may run several times, so all state lives in here.
            processed: Dict[str, Optional[NotificationCategory]] = {}
            skipped: List[str] = []

            # Reads first: tracked videos, then already written events
            entities = await self.video_repo.get_by_external_ids(
                tx, list(values)
            )
            plans = []
            for doc_id, entity in entities.items():
                value = values.get(entity.external_id)
                if value is None:
                    continue
                plans.append(
                    (doc_id, entity, value, self._evaluate(entity, value))
                )
            existing = await self.notification_repo.get_existing_ids_in_tx(
                tx,
                [
                    self.notification_repo.id_for(event)
                    for _, _, _, event in plans
                    if event is not None
                ],
            )

            staged = set()
            for doc_id, entity, value, event in plans:
                if event and event.category == NotificationCategory.REACHED:
                    advanced = entity.model_copy(
                        update={
                            "milestone": self.milestone_policy.next_milestone(
                                value
                            ),
                            "updated_at": None,
                        }
                    )
                    try:
                        self.video_repo.update_in_tx(tx, doc_id, advanced)
                    except DocumentNotFound as e:
                        logger.warning(
                            "Tracked video disappeared during reconcile, "
                            "skipping",
                            extra={
                                "external_id": entity.external_id,
                                "document_path": e.document_path,
                            },
                        )
                        skipped.append(entity.external_id)
                        continue

                category = None
                if event is not None:
                    notification_id = self.notification_repo.id_for(event)
                    if notification_id in existing | staged:
                        logger.info(
                            "Notification already recorded, not re-creating",
                            extra={"notification_id": notification_id},
                        )
                    else:
                        self.notification_repo.set_in_tx(tx, event)
                        staged.add(notification_id)
                        category = event.category

                self.video_repo.append_child_in_tx(
                    tx, doc_id, SampleEntry(value=value)
                )
                processed[entity.external_id] = category
            return processed, skipped

        try:
            return await self.video_repo.run_transaction(reconcile_in_tx)
        except Exception as e:
            logger.error(
                "Reconcile transaction failed, nothing was committed",
                extra={
                    "target_count": len(values),
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            raise ReconcileFailure(
                f"Reconcile transaction failed: {e}",
                phase="reconcile",
                external_ids=values,
            ) from e

    # --- step 3 ---

    def _to_entity(self, record: MetricRecord) -> TrackedEntity:
        return TrackedEntity(
            external_id=record.external_id,
            title=record.title,
            owner_id=record.owner_id,
            created_at=record.created_at,
            milestone=self.milestone_policy.next_milestone(record.value),
        )

    async def _commit_groups(
        self, groups: List[Tuple[WriteBatch, Dict[str, str]]]
    ) -> List[Optional[Exception]]:
        """Commit every batch concurrently and collect per-batch errors."""
        outcomes = await asyncio.gather(
            *(self.video_repo.commit_batch(batch) for batch, _ in groups),
            return_exceptions=True,
        )
        errors: List[Optional[Exception]] = []
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                errors.append(None)
        return errors

    async def _insert_new(
        self, records: Dict[str, MetricRecord], result: RunResult
    ) -> None:
        entities: Dict[str, TrackedEntity] = {}
        for external_id, record in records.items():
            try:
                entities[external_id] = self._to_entity(record)
            except (ValidationError, ValueError) as e:
                logger.error(
                    "Could not convert metrics record, skipping",
                    extra={"external_id": external_id, "error": str(e)},
                )
                result.skipped.append(external_id)
        if not entities:
            return

        logger.info(
            "Inserting newly discovered videos",
            extra={"external_ids": sorted(entities)},
        )

        # Phase one: roots. Ids are allocated before the commit.
        root_groups = []
        for group in chunked(list(entities), MAX_BATCH_OPERATIONS):
            batch = self.video_repo.start_batch()
            doc_ids = {
                external_id: self.video_repo.add_root_with_batch(
                    batch, entities[external_id]
                )
                for external_id in group
            }
            root_groups.append((batch, doc_ids))

        committed: Dict[str, str] = {}
        root_failed = False
        errors = await self._commit_groups(root_groups)
        for (_, doc_ids), error in zip(root_groups, errors):
            if error is None:
                committed.update(doc_ids)
                continue
            root_failed = True
            result.failed_inserts.extend(doc_ids)
            result.errors.append(f"insert_roots: {error}")
            logger.error(
                "Root batch commit failed",
                extra={"external_ids": sorted(doc_ids), "error": str(error)},
            )
        result.inserted.extend(committed)

        if root_failed:
            # Phase two is skipped; committed roots stay without a sample
            result.missing_samples.extend(committed)
            logger.warning(
                "Skipping first samples because a root batch failed",
                extra={"missing_samples": sorted(committed)},
            )
            return

        # Phase two: first samples, addressed by the committed root ids
        sample_groups = []
        for group in chunked(list(committed), MAX_BATCH_OPERATIONS):
            batch = self.video_repo.start_batch()
            sample_ids = {}
            for external_id in group:
                sample_ids[external_id] = self.video_repo.add_child_with_batch(
                    batch,
                    committed[external_id],
                    SampleEntry(value=records[external_id].value),
                )
            sample_groups.append((batch, sample_ids))

        errors = await self._commit_groups(sample_groups)
        for (_, sample_ids), error in zip(sample_groups, errors):
            if error is None:
                continue
            result.missing_samples.extend(sample_ids)
            result.errors.append(f"insert_samples: {error}")
            logger.error(
                "Sample batch commit failed",
                extra={
                    "external_ids": sorted(sample_ids),
                    "error": str(error),
                },
            )


class PruneViewHistoryUseCase:
    """Deletes view history samples older than a cut-off."""

    def __init__(self, video_repo: VideoStore):
        self.video_repo = video_repo

    async def execute(self, before: datetime) -> int:
        """
        Delete every sample created before ``before``.

        Returns:
            Number of deleted samples
        """
        if before.tzinfo is None:
            raise ValueError("before must be timezone-aware")

        roots = await self.video_repo.get_all()
        documents = []
        for doc_id in roots:
            # Videos whose history starts at or after the cut-off are skipped
            oldest = await self.video_repo.get_oldest_child(doc_id)
            if oldest is None or (
                oldest.created_at is not None and oldest.created_at >= before
            ):
                continue
            snapshot = await self.video_repo.get_children_between(
                doc_id, EPOCH, before
            )
            documents.extend(doc.reference for doc in snapshot)

        logger.info(
            "Pruning view history",
            extra={
                "before": before.isoformat(),
                "videos": len(roots),
                "samples": len(documents),
            },
        )
        if not documents:
            return 0
        return await self.video_repo.delete_documents(documents)
