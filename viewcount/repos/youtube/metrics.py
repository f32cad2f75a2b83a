"""
YouTube Data API v3 implementation of the MetricsSourceRepository protocol.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from googleapiclient.discovery import build, Resource
from googleapiclient.errors import HttpError

from viewcount.domain import MetricRecord
from viewcount.exceptions import FetchFailure
from viewcount.repositories import MetricsSourceRepository
from viewcount.store import chunked

logger = logging.getLogger(__name__)

# videos.list accepts at most 50 ids per call
MAX_IDS_PER_REQUEST = 50


def get_youtube_service(api_key: str) -> Resource:
    """Build a YouTube Data API client authenticated with an API key."""
    if not api_key:
        raise ValueError("A YouTube Data API key is required")
    return build("youtube", "v3", developerKey=api_key, cache_discovery=False)


def _parse_timestamp(value: str) -> datetime:
    # The API returns RFC 3339 timestamps with a Z suffix
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _video_item_to_record(item: Dict[str, Any]) -> MetricRecord:
    """Converts a videos.list resource to a MetricRecord."""
    snippet = item["snippet"]
    statistics = item["statistics"]
    return MetricRecord(
        external_id=item["id"],
        title=snippet.get("title", ""),
        owner_id=snippet["channelId"],
        created_at=_parse_timestamp(snippet["publishedAt"]),
        value=int(statistics["viewCount"]),
    )


class YouTubeMetricsRepository(MetricsSourceRepository):
    """
    Reads current view counts from the YouTube Data API.

    Items that cannot be converted (hidden statistics, missing snippet
    fields) are logged and left out, so the caller sees them as not
    returned by the source.
    """

    def __init__(self, service: Resource):
        self._service = service

    async def fetch_current_values(
        self, external_ids: List[str]
    ) -> List[MetricRecord]:
        records: List[MetricRecord] = []
        unique_ids = list(dict.fromkeys(external_ids))
        for group in chunked(unique_ids, MAX_IDS_PER_REQUEST):
            request = self._service.videos().list(
                part="snippet,statistics",
                id=",".join(group),
                maxResults=MAX_IDS_PER_REQUEST,
            )
            try:
                response = await self._execute_request(request)
            except HttpError as e:
                raise FetchFailure(
                    f"YouTube Data API request failed: {e}",
                    phase="fetch",
                    external_ids=group,
                ) from e

            items = None
            if isinstance(response, dict):
                items = response.get("items")
            if items is None:
                raise FetchFailure(
                    "YouTube Data API response has no items",
                    phase="fetch",
                    external_ids=group,
                )
            for item in items:
                record = self._convert(item)
                if record is not None:
                    records.append(record)

        logger.debug(
            "Fetched view counts from YouTube",
            extra={"requested": len(external_ids), "returned": len(records)},
        )
        return records

    def _convert(self, item: Dict[str, Any]) -> Optional[MetricRecord]:
        try:
            return _video_item_to_record(item)
        except Exception as e:
            logger.warning(
                f"Skipping invalid video item {item.get('id', 'unknown')}: "
                f"{e}"
            )
            return None

    async def _execute_request(self, request: Any) -> Any:
        """Execute a Google API client request in a worker thread."""
        try:
            return await asyncio.to_thread(request.execute)
        except Exception as e:
            error_type = type(e).__name__
            logger.error(
                f"YouTube API request failed: {error_type}: {str(e)}",
                extra={
                    "error_type": error_type,
                    "request_uri": getattr(request, "uri", "unknown"),
                    "request_method": getattr(request, "method", "unknown"),
                },
                exc_info=True,
            )
            raise
