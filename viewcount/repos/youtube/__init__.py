"""YouTube Data API implementations of view count repositories."""

from .metrics import YouTubeMetricsRepository, get_youtube_service

__all__ = ["YouTubeMetricsRepository", "get_youtube_service"]
