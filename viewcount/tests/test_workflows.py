"""
Tests for view count workflows.

These tests focus on verifying how the workflows call their activities,
not on the business logic, which is tested in the use case tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from temporalio.exceptions import ActivityError, RetryState

from viewcount.activities import PRUNE_ACTIVITY_NAME, SYNC_ACTIVITY_NAME
from viewcount.domain import NotificationCategory, RunResult, RunStatus
from viewcount.workflows import (
    NO_RETRY,
    PruneViewHistoryWorkflow,
    ViewCountSyncWorkflow,
)


def _activity_error(activity_type: str) -> ActivityError:
    return ActivityError(
        "activity failed",
        scheduled_event_id=1,
        started_event_id=2,
        identity="test-worker",
        activity_type=activity_type,
        activity_id="1",
        retry_state=RetryState.MAXIMUM_ATTEMPTS_REACHED,
    )


class TestViewCountSyncWorkflow:
    @pytest.mark.asyncio
    async def test_runs_sync_activity_once_without_retries(self):
        run_result = RunResult(
            processed={"v1": NotificationCategory.REACHED, "v2": None},
            inserted=["v3"],
        )

        with patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            mock_execute_activity.return_value = run_result

            result = await ViewCountSyncWorkflow().run(["v1", "v2", "v3"])

        assert result is run_result
        mock_execute_activity.assert_called_once_with(
            SYNC_ACTIVITY_NAME,
            ["v1", "v2", "v3"],
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=NO_RETRY,
            result_type=RunResult,
        )
        assert NO_RETRY.maximum_attempts == 1

    @pytest.mark.asyncio
    async def test_without_ids_passes_none_to_activity(self):
        with patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            mock_execute_activity.return_value = RunResult()

            await ViewCountSyncWorkflow().run()

        assert mock_execute_activity.call_args.args == (
            SYNC_ACTIVITY_NAME,
            None,
        )

    @pytest.mark.asyncio
    async def test_partial_result_is_returned_as_is(self):
        run_result = RunResult(
            inserted=["v1"],
            missing_samples=["v1"],
            status=RunStatus.PARTIAL,
        )
        with patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            mock_execute_activity.return_value = run_result

            result = await ViewCountSyncWorkflow().run(["v1"])

        assert result.status == RunStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_failed_activity_returns_none(self):
        with patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            mock_execute_activity.side_effect = _activity_error(
                SYNC_ACTIVITY_NAME
            )

            result = await ViewCountSyncWorkflow().run(["v1"])

        assert result is None


class TestPruneViewHistoryWorkflow:
    @pytest.mark.asyncio
    async def test_cutoff_is_retention_days_before_workflow_time(self):
        now = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

        with patch("temporalio.workflow.now", return_value=now), patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            mock_execute_activity.return_value = 12

            deleted = await PruneViewHistoryWorkflow().run(30)

        assert deleted == 12
        mock_execute_activity.assert_called_once_with(
            PRUNE_ACTIVITY_NAME,
            datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc),
            start_to_close_timeout=timedelta(minutes=10),
            retry_policy=NO_RETRY,
            result_type=int,
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retention_days", [0, -1])
    async def test_non_positive_retention_is_refused(self, retention_days):
        with patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            result = await PruneViewHistoryWorkflow().run(retention_days)

        assert result is None
        mock_execute_activity.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_activity_returns_none(self):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        with patch("temporalio.workflow.now", return_value=now), patch(
            "temporalio.workflow.execute_activity"
        ) as mock_execute_activity:
            mock_execute_activity.side_effect = _activity_error(
                PRUNE_ACTIVITY_NAME
            )

            result = await PruneViewHistoryWorkflow().run(7)

        assert result is None
