"""
Activities for view count operations.

Every step of a sync run talks to the metrics source or the document store,
so the whole use case runs inside an activity and the workflows only decide
when and with which arguments it runs.
"""

import logging
from datetime import datetime
from typing import List, Optional

from temporalio import activity

from .domain import RunResult
from .repositories import TargetConfigurationRepository
from .usecase import PruneViewHistoryUseCase, ViewCountSyncUseCase

logger = logging.getLogger(__name__)

SYNC_ACTIVITY_NAME = "viewcount.sync.run_once"
PRUNE_ACTIVITY_NAME = "viewcount.history.prune"


class ViewCountSyncActivity:
    """
    Activity running one view count sync.
    This class is instantiated on the worker and its method is registered as
    an activity.
    """

    def __init__(
        self,
        use_case: ViewCountSyncUseCase,
        target_config_repo: TargetConfigurationRepository,
    ):
        self._use_case = use_case
        self._target_config_repo = target_config_repo

    @activity.defn(name=SYNC_ACTIVITY_NAME)
    async def run_once(
        self, external_ids: Optional[List[str]] = None
    ) -> RunResult:
        """
        Sync the given videos, or the configured targets when none are given.

        FetchFailure and ReconcileFailure propagate and fail the activity.
        """
        if not external_ids:
            external_ids = await self._target_config_repo.get_target_ids()
        logger.info(
            "Running view count sync activity",
            extra={"target_count": len(external_ids)},
        )
        return await self._use_case.run_once(external_ids)


class PruneViewHistoryActivity:
    """Activity deleting old view history samples."""

    def __init__(self, use_case: PruneViewHistoryUseCase):
        self._use_case = use_case

    @activity.defn(name=PRUNE_ACTIVITY_NAME)
    async def prune(self, before: datetime) -> int:
        deleted = await self._use_case.execute(before)
        logger.info(
            "Pruned view history",
            extra={"before": before.isoformat(), "deleted": deleted},
        )
        return deleted
