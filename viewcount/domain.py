"""
Domain models for the view count tracker.

These models follow the Pydantic v2 patterns used across the project. The
stored documents (TrackedEntity, SampleEntry, NotificationEvent) are plain
records; the store layer decides how they are serialized.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
import logging
import zoneinfo

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


def _ensure_aware(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
        logger.warning(f"Converting naive datetime {v} to UTC")
        return v.replace(tzinfo=zoneinfo.ZoneInfo("UTC"))
    return v


# --- Enums ---


class NotificationCategory(str, Enum):
    """Kind of milestone event raised for a tracked video."""

    REACHED = "VIEW_COUNT_REACHED"
    APPROACHING = "VIEW_COUNT_APPROACH"


class RunStatus(str, Enum):
    """Outcome of a single sync run that got past the reconcile step."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"


# --- Stored documents ---


class TrackedEntity(BaseModel):
    """
    A video whose view count is tracked.

    The milestone is the next threshold future view counts are compared
    against. It only moves forward, and only when a crossing is detected.
    """

    external_id: str = Field(
        ..., description="Video id on the metrics source"
    )
    title: str = Field(..., description="Video title at creation time")
    owner_id: str = Field(..., description="Channel id of the uploader")
    created_at: datetime = Field(
        ..., description="Publish timestamp reported by the source"
    )
    milestone: int = Field(
        ..., ge=0, description="Next view count threshold"
    )
    updated_at: Optional[datetime] = Field(
        None,
        description="Server-assigned write timestamp, None until stamped",
    )

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_timezone_aware(
        cls, v: Optional[datetime]
    ) -> Optional[datetime]:
        """Ensure datetime fields are timezone-aware."""
        return _ensure_aware(v)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()


class SampleEntry(BaseModel):
    """One view count observation, stored under its TrackedEntity."""

    value: int = Field(..., ge=0, description="Observed view count")
    created_at: Optional[datetime] = Field(
        None, description="Server-assigned creation timestamp"
    )

    @field_validator("created_at")
    @classmethod
    def ensure_timezone_aware(
        cls, v: Optional[datetime]
    ) -> Optional[datetime]:
        return _ensure_aware(v)


class NotificationProperties(BaseModel):
    observed_value: int
    milestone: int


class NotificationEvent(BaseModel):
    """
    A milestone notification, written in the same transaction as the state
    change it describes. Delivery is left to an external consumer.
    """

    subject_id: str = Field(..., description="External id of the video")
    subject_title: str
    category: NotificationCategory
    properties: NotificationProperties
    created_at: Optional[datetime] = None


# --- Metrics source records ---


class MetricRecord(BaseModel):
    """Current state of one video as reported by the metrics source."""

    external_id: str
    title: str
    owner_id: str
    created_at: datetime
    value: int = Field(..., ge=0)

    @field_validator("created_at")
    @classmethod
    def ensure_timezone_aware(cls, v: datetime) -> datetime:
        return _ensure_aware(v)  # type: ignore[return-value]


# --- Run results ---


class RunResult(BaseModel):
    """
    Report of one sync run.

    ``processed`` covers every id that was already tracked when the reconcile
    transaction ran, mapped to the notification category raised for it (or
    None). ``not_returned`` lists requested ids the metrics source had no
    data for. The remaining lists describe the discovery/insert step.
    """

    processed: Dict[str, Optional[NotificationCategory]] = Field(
        default_factory=dict
    )
    not_returned: List[str] = Field(default_factory=list)
    inserted: List[str] = Field(default_factory=list)
    missing_samples: List[str] = Field(default_factory=list)
    failed_inserts: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    status: RunStatus = RunStatus.SUCCEEDED

    @property
    def notified(self) -> Dict[str, NotificationCategory]:
        return {k: v for k, v in self.processed.items() if v is not None}
