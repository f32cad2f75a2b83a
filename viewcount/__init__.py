"""
View count tracker.

Polls view counts for a fixed set of videos, keeps their history in a
document store and records a notification whenever a video crosses or
approaches its next milestone.
"""

from .activities import PruneViewHistoryActivity, ViewCountSyncActivity
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
    BatchCommitFailure,
    BatchLimitExceeded,
    DocumentNotFound,
    FetchFailure,
    ReconcileFailure,
    StoreError,
    TransactionAborted,
    TransactionConflict,
    ViewCountError,
)
from .milestones import (
    FixedStepMilestonePolicy,
    MilestonePolicy,
    RoundNumberMilestonePolicy,
)
from .repositories import (
    DocumentStore,
    MetricsSourceRepository,
    StoreTransaction,
    TargetConfigurationRepository,
    WriteBatch,
)
from .usecase import PruneViewHistoryUseCase, ViewCountSyncUseCase
from .workflows import PruneViewHistoryWorkflow, ViewCountSyncWorkflow

__all__ = [
    # Domain models
    "TrackedEntity",
    "SampleEntry",
    "NotificationEvent",
    "NotificationProperties",
    "NotificationCategory",
    "MetricRecord",
    "RunResult",
    "RunStatus",
    # Errors
    "ViewCountError",
    "StoreError",
    "TransactionConflict",
    "TransactionAborted",
    "BatchCommitFailure",
    "BatchLimitExceeded",
    "DocumentNotFound",
    "FetchFailure",
    "ReconcileFailure",
    # Milestone policies
    "MilestonePolicy",
    "FixedStepMilestonePolicy",
    "RoundNumberMilestonePolicy",
    # Repository protocols
    "DocumentStore",
    "StoreTransaction",
    "WriteBatch",
    "MetricsSourceRepository",
    "TargetConfigurationRepository",
    # Use Cases
    "ViewCountSyncUseCase",
    "PruneViewHistoryUseCase",
    # Workflows
    "ViewCountSyncWorkflow",
    "PruneViewHistoryWorkflow",
    # Activities
    "ViewCountSyncActivity",
    "PruneViewHistoryActivity",
]
