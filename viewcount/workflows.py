"""
Temporal workflows for view count operations.

Workflows orchestrate the activities in a deterministic manner.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from .activities import PRUNE_ACTIVITY_NAME, SYNC_ACTIVITY_NAME
    from .domain import RunResult

logger = logging.getLogger(__name__)

# A failed run is never retried inside the workflow; the next scheduled
# run picks up from the committed state.
NO_RETRY = RetryPolicy(maximum_attempts=1)


@workflow.defn
class ViewCountSyncWorkflow:
    """
    Workflow started by the sync schedule every ten minutes.

    It runs the sync activity once and reports its RunResult, or None when
    the run failed before committing anything.
    """

    @workflow.run
    async def run(
        self, external_ids: Optional[List[str]] = None
    ) -> Optional[RunResult]:
        """
        Executes one view count sync.

        Args:
            external_ids: Videos to sync. Defaults to the configured targets.

        Returns:
            The RunResult of the run, or None if it failed
        """
        logger.info(
            "Starting ViewCountSyncWorkflow",
            extra={
                "target_count": len(external_ids) if external_ids else None
            },
        )

        try:
            result = await workflow.execute_activity(
                SYNC_ACTIVITY_NAME,
                external_ids,
                start_to_close_timeout=timedelta(minutes=5),
                retry_policy=NO_RETRY,
                result_type=RunResult,
            )
        except ActivityError as e:
            logger.error(
                "ViewCountSyncWorkflow failed",
                extra={"error": str(e.cause or e)},
                exc_info=True,
            )
            return None

        logger.info(
            "ViewCountSyncWorkflow completed",
            extra={
                "status": result.status.value,
                "notified": len(result.notified),
                "inserted": len(result.inserted),
            },
        )
        return result


@workflow.defn
class PruneViewHistoryWorkflow:
    """Workflow deleting view history older than a retention period."""

    @workflow.run
    async def run(self, retention_days: int) -> Optional[int]:
        if retention_days <= 0:
            logger.warning(
                f"Refusing to prune with retention_days={retention_days}"
            )
            return None

        before = workflow.now() - timedelta(days=retention_days)
        logger.info(
            "Starting PruneViewHistoryWorkflow",
            extra={"before": before.isoformat()},
        )

        try:
            deleted = await workflow.execute_activity(
                PRUNE_ACTIVITY_NAME,
                before,
                start_to_close_timeout=timedelta(minutes=10),
                retry_policy=NO_RETRY,
                result_type=int,
            )
        except ActivityError as e:
            logger.error(
                "PruneViewHistoryWorkflow failed",
                extra={"error": str(e.cause or e)},
                exc_info=True,
            )
            return None

        logger.info(
            "PruneViewHistoryWorkflow completed", extra={"deleted": deleted}
        )
        return deleted
