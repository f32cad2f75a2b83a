"""
Temporal worker for view count operations.

This module sets up the Temporal worker that hosts the sync and prune
workflows and their activities, and makes sure the ten-minute sync schedule
exists.
"""

import asyncio
import logging
import os
from typing import Any, Callable, Optional, Sequence, cast

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleSpec,
)
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.service import RPCError
from temporalio.worker import Worker

from .activities import PruneViewHistoryActivity, ViewCountSyncActivity
from .milestones import RoundNumberMilestonePolicy
from .repos.entity import VideoRepository
from .repos.local.target_config import LocalTargetConfigurationRepository
from .repos.memory.document_store import MemoryDocumentStore
from .repos.mock.metrics import MockMetricsRepository
from .repos.notification import NotificationRepository
from .repositories import DocumentStore, MetricsSourceRepository
from .usecase import PruneViewHistoryUseCase, ViewCountSyncUseCase
from .workflows import PruneViewHistoryWorkflow, ViewCountSyncWorkflow

logger = logging.getLogger(__name__)

DEFAULT_TASK_QUEUE = "viewcount-task-queue"
DEFAULT_SYNC_CRON = "0,10,20,30,40,50 * * * *"
DEFAULT_SYNC_TIMEZONE = "Asia/Tokyo"
SYNC_SCHEDULE_ID = "viewcount-sync"


def setup_logging() -> None:
    """Configure logging based on environment variables"""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    # Validate log level
    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        print(f"Invalid log level: {log_level}, defaulting to INFO")
        numeric_level = logging.INFO

    log_format = os.environ.get(
        "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.basicConfig(
        level=numeric_level,
        format=log_format,
        force=True,  # Override any existing configuration
    )
    logger.info(
        "Logging configured",
        extra={"log_level": log_level, "numeric_level": numeric_level},
    )


async def get_temporal_client_with_retries(
    endpoint: str, attempts: int = 10, delay: int = 5
) -> Client:
    """Attempt to connect to Temporal with retries."""
    logger.debug(
        "Attempting to connect to Temporal",
        extra={
            "endpoint": endpoint,
            "max_attempts": attempts,
            "delay_seconds": delay,
        },
    )

    for attempt in range(attempts):
        try:
            client = await Client.connect(
                endpoint,
                namespace="default",
                data_converter=pydantic_data_converter,
            )
            logger.info(
                "Successfully connected to Temporal",
                extra={"endpoint": endpoint, "attempt": attempt + 1},
            )
            return client
        except RPCError as e:
            logger.warning(
                "Failed to connect to Temporal",
                extra={
                    "endpoint": endpoint,
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "error": str(e),
                    "retry_in_seconds": delay,
                },
            )
            if attempt + 1 == attempts:
                logger.error(
                    "All connection attempts to Temporal failed",
                    extra={"endpoint": endpoint, "total_attempts": attempts},
                )
                raise
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected exit from retry loop")


def build_document_store() -> DocumentStore:
    """Firestore when FIRESTORE_PROJECT is set, memory otherwise."""
    project = os.environ.get("FIRESTORE_PROJECT")
    if not project:
        logger.warning(
            "FIRESTORE_PROJECT not set, using the in-memory document store. "
            "Nothing will be persisted."
        )
        return MemoryDocumentStore()

    from viewcount.repos.firestore.document_store import (
        FirestoreDocumentStore,
    )

    logger.info(
        "Using Firestore document store", extra={"project": project}
    )
    return FirestoreDocumentStore.from_settings(
        project=project, database=os.environ.get("FIRESTORE_DATABASE")
    )


def build_metrics_repository() -> MetricsSourceRepository:
    """YouTube when YOUTUBE_DATA_API_KEY is set, the mock source otherwise."""
    api_key = os.environ.get("YOUTUBE_DATA_API_KEY")
    if not api_key:
        logger.warning(
            "YOUTUBE_DATA_API_KEY not set, using the mock metrics source"
        )
        return MockMetricsRepository()

    from viewcount.repos.youtube.metrics import (
        YouTubeMetricsRepository,
        get_youtube_service,
    )

    logger.info("YouTube metrics repository initialized successfully")
    return YouTubeMetricsRepository(get_youtube_service(api_key))


def build_sync_schedule(
    task_queue: str, cron: str, time_zone: str
) -> Schedule:
    return Schedule(
        action=ScheduleActionStartWorkflow(
            ViewCountSyncWorkflow.run,
            id=f"{SYNC_SCHEDULE_ID}-run",
            task_queue=task_queue,
        ),
        spec=ScheduleSpec(
            cron_expressions=[cron],
            time_zone_name=time_zone,
        ),
    )


async def ensure_sync_schedule(
    client: Client,
    task_queue: str,
    cron: Optional[str] = None,
    time_zone: Optional[str] = None,
) -> None:
    """Create the periodic sync schedule unless it already exists."""
    cron = cron or os.environ.get("SYNC_CRON", DEFAULT_SYNC_CRON)
    time_zone = time_zone or os.environ.get(
        "SYNC_TIMEZONE", DEFAULT_SYNC_TIMEZONE
    )
    logger.info(
        "Scheduling periodic view count sync",
        extra={"cron": cron, "time_zone": time_zone},
    )
    try:
        await client.create_schedule(
            SYNC_SCHEDULE_ID,
            build_sync_schedule(task_queue, cron, time_zone),
        )
        logger.info(f"Created periodic sync schedule: {SYNC_SCHEDULE_ID}")
    except ScheduleAlreadyRunningError:
        logger.info(f"Sync schedule already exists: {SYNC_SCHEDULE_ID}")


async def run_worker(
    temporal_address: Optional[str] = None,
    task_queue: Optional[str] = None,
) -> None:
    """
    Run the Temporal worker for view count operations.

    Args:
        temporal_address: Address of the Temporal server
        task_queue: Task queue to poll
    """
    setup_logging()

    if temporal_address is None:
        temporal_address = os.environ.get(
            "TEMPORAL_ADDRESS", "localhost:7233"
        )
    if task_queue is None:
        task_queue = os.environ.get("VIEWCOUNT_TASK_QUEUE", DEFAULT_TASK_QUEUE)

    logger.info(
        "Starting view count worker",
        extra={
            "temporal_address": temporal_address,
            "task_queue": task_queue,
        },
    )

    client = await get_temporal_client_with_retries(temporal_address)

    # 1. Instantiate backend repositories
    store = build_document_store()
    video_repo = VideoRepository(store)
    notification_repo = NotificationRepository(store)
    metrics_repo = build_metrics_repository()
    target_config_repo = LocalTargetConfigurationRepository()

    # 2. Instantiate use cases and activity classes
    sync_activity = ViewCountSyncActivity(
        use_case=ViewCountSyncUseCase(
            metrics_repo=metrics_repo,
            video_repo=video_repo,
            notification_repo=notification_repo,
            milestone_policy=RoundNumberMilestonePolicy(),
        ),
        target_config_repo=target_config_repo,
    )
    prune_activity = PruneViewHistoryActivity(
        use_case=PruneViewHistoryUseCase(video_repo=video_repo)
    )
    activities = [sync_activity.run_once, prune_activity.prune]

    # 3. Make sure the periodic sync is scheduled
    try:
        await ensure_sync_schedule(client, task_queue)
    except RPCError as e:
        logger.warning(f"Failed to create sync schedule: {e}")
        # Continue without scheduling - manual sync still available

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=[ViewCountSyncWorkflow, PruneViewHistoryWorkflow],
        activities=cast(Sequence[Callable[..., Any]], activities),
    )

    logger.info(
        "Starting worker execution",
        extra={"task_queue": task_queue, "activity_count": len(activities)},
    )
    await worker.run()


def main() -> None:
    """Entry point for the view count worker."""
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
