"""
Tests for the view count domain models.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from viewcount.domain import (
    NotificationCategory,
    RunResult,
    RunStatus,
    SampleEntry,
    TrackedEntity,
)
from viewcount.tests.factories import (
    MetricRecordFactory,
    TrackedEntityFactory,
)


class TestTrackedEntity:
    def test_naive_created_at_is_treated_as_utc(self) -> None:
        entity = TrackedEntityFactory.build(
            created_at=datetime(2024, 5, 1, 9, 30)
        )
        assert entity.created_at.tzinfo is not None
        assert entity.created_at.utcoffset().total_seconds() == 0

    def test_title_is_stripped(self) -> None:
        entity = TrackedEntityFactory.build(title="  Launch video \n")
        assert entity.title == "Launch video"

    def test_negative_milestone_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TrackedEntityFactory.build(milestone=-1)

    def test_round_trips_through_python_dump(self) -> None:
        entity = TrackedEntityFactory.build(
            updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
        )
        restored = TrackedEntity.model_validate(
            entity.model_dump(mode="python")
        )
        assert restored == entity


class TestSampleEntry:
    def test_negative_value_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SampleEntry(value=-5)

    def test_created_at_defaults_to_none(self) -> None:
        assert SampleEntry(value=3).created_at is None


class TestMetricRecord:
    def test_value_must_be_non_negative(self) -> None:
        with pytest.raises(ValidationError):
            MetricRecordFactory.build(value=-1)


class TestRunResult:
    def test_defaults_to_succeeded_and_empty(self) -> None:
        result = RunResult()
        assert result.status == RunStatus.SUCCEEDED
        assert result.processed == {}
        assert result.notified == {}

    def test_notified_filters_out_ids_without_notification(self) -> None:
        result = RunResult(
            processed={
                "a": NotificationCategory.REACHED,
                "b": None,
                "c": NotificationCategory.APPROACHING,
            }
        )
        assert result.notified == {
            "a": NotificationCategory.REACHED,
            "c": NotificationCategory.APPROACHING,
        }

    def test_category_values_match_stored_strings(self) -> None:
        assert NotificationCategory.REACHED.value == "VIEW_COUNT_REACHED"
        assert NotificationCategory.APPROACHING.value == "VIEW_COUNT_APPROACH"
