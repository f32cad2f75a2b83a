"""
Repository for milestone notifications in the ``news`` collection.
"""

import logging
from typing import Dict, Iterable, Set

from viewcount.domain import NotificationCategory, NotificationEvent
from viewcount.repositories import DocumentStore, StoreTransaction
from viewcount.store import CollectionHandle, ModelConverter

logger = logging.getLogger(__name__)

NEWS_COLLECTION = "news"


class NotificationRepository:
    """
    Stores NotificationEvents under ids derived from their content.

    The id is built from (subject_id, category, milestone), so writing the
    same event twice lands on the same document.
    """

    def __init__(
        self, store: DocumentStore, collection_path: str = NEWS_COLLECTION
    ) -> None:
        self.store = store
        self.events: CollectionHandle[NotificationEvent] = store.collection(
            collection_path,
            ModelConverter(
                NotificationEvent, server_timestamp_fields=("created_at",)
            ),
        )

    @staticmethod
    def notification_id(
        subject_id: str, category: NotificationCategory, milestone: int
    ) -> str:
        return f"{subject_id}-{category.value}-{milestone}"

    @classmethod
    def id_for(cls, event: NotificationEvent) -> str:
        return cls.notification_id(
            event.subject_id, event.category, event.properties.milestone
        )

    async def get_existing_ids_in_tx(
        self, tx: StoreTransaction, notification_ids: Iterable[str]
    ) -> Set[str]:
        """Return the subset of ``notification_ids`` already stored."""
        existing = set()
        for notification_id in dict.fromkeys(notification_ids):
            snapshot = await tx.get(self.events.document(notification_id))
            if snapshot.exists:
                existing.add(notification_id)
        return existing

    def set_in_tx(self, tx: StoreTransaction, event: NotificationEvent) -> str:
        notification_id = self.id_for(event)
        tx.set(self.events.document(notification_id), event)
        logger.debug(
            "NotificationRepository: Staged notification",
            extra={
                "notification_id": notification_id,
                "category": event.category.value,
            },
        )
        return notification_id

    async def get_all(self) -> Dict[str, NotificationEvent]:
        snapshot = await self.store.stream(self.events)
        return snapshot.to_dict()
