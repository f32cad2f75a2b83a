"""Repository implementations for the view count tracker."""

from .entity import EntityRepository, VideoRepository
from .notification import NotificationRepository

__all__ = [
    "EntityRepository",
    "VideoRepository",
    "NotificationRepository",
]
