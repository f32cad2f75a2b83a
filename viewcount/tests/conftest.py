from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from viewcount.repos.entity import VideoRepository
from viewcount.repos.memory.document_store import MemoryDocumentStore
from viewcount.repos.notification import NotificationRepository


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.readings: List[datetime] = []

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        self.readings.append(current)
        return current


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: Callable[[], datetime]) -> MemoryDocumentStore:
    """A fresh in-memory document store with a deterministic clock."""
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def video_repo(store: MemoryDocumentStore) -> VideoRepository:
    return VideoRepository(store)


@pytest.fixture
def notification_repo(store: MemoryDocumentStore) -> NotificationRepository:
    return NotificationRepository(store)
