"""
Mock metrics source with sample videos for local runs and demonstration.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from viewcount.domain import MetricRecord
from viewcount.repositories import MetricsSourceRepository

logger = logging.getLogger(__name__)


class MockMetricsRepository(MetricsSourceRepository):
    """
    Mock metrics source that serves a fixed set of videos.

    Every call advances each view count by ``growth_per_call`` so repeated
    runs eventually cross milestones. Ids that are not known to the mock are
    simply not returned, like unknown ids on the real API.
    """

    def __init__(
        self,
        records: Optional[List[MetricRecord]] = None,
        growth_per_call: int = 0,
    ):
        self._records: Dict[str, MetricRecord] = {
            r.external_id: r
            for r in (records if records is not None else self._sample())
        }
        self.growth_per_call = growth_per_call
        self.calls: List[List[str]] = []

    def _sample(self) -> List[MetricRecord]:
        published = datetime(2023, 4, 1, 12, 0, tzinfo=timezone.utc)
        return [
            MetricRecord(
                external_id="mock-video-001",
                title="Sample Music Video",
                owner_id="mock-channel-001",
                created_at=published,
                value=95_400,
            ),
            MetricRecord(
                external_id="mock-video-002",
                title="Sample Live Recording",
                owner_id="mock-channel-001",
                created_at=published,
                value=1_020,
            ),
            MetricRecord(
                external_id="mock-video-003",
                title="Sample Cover Song",
                owner_id="mock-channel-002",
                created_at=published,
                value=48,
            ),
        ]

    def set_value(self, external_id: str, value: int) -> None:
        record = self._records[external_id]
        self._records[external_id] = record.model_copy(update={"value": value})

    async def fetch_current_values(
        self, external_ids: List[str]
    ) -> List[MetricRecord]:
        self.calls.append(list(external_ids))
        found = []
        for external_id in dict.fromkeys(external_ids):
            record = self._records.get(external_id)
            if record is None:
                continue
            found.append(record)
            if self.growth_per_call:
                self.set_value(
                    external_id, record.value + self.growth_per_call
                )
        logger.debug(
            "MockMetricsRepository: Served view counts",
            extra={"requested": len(external_ids), "returned": len(found)},
        )
        return found
