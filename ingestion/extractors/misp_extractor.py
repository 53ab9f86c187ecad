"""
MISP threat-sharing platform page fetcher (``/events/restSearch``).
"""

import calendar
from typing import Any, Dict, List, Optional

import httpx
import logging

from core.exceptions import DecodeError
from ingestion.base import PageFetcher, PageResult, TimeWindow, ERROR_BODY_LIMIT
from models.base import FeedType

logger = logging.getLogger(__name__)


class MispExtractor(PageFetcher):
    """
    Fetch MISP events whose timestamp falls in the window.

    MISP pages are 1-based and it reports no total, so the offset is mapped
    to ``page = offset // page_size + 1`` and ``total_count`` is None.
    """

    feed_type = FeedType.MISP

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        source_name: str = "misp",
        verify_ssl: bool = True,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(source_name=source_name, timeout=timeout, client=client, verify=verify_ssl)
        self.search_url = f"{base_url.rstrip('/')}/events/restSearch"
        self.api_key = api_key

    def build_body(self, offset: int, page_size: int, window: TimeWindow) -> Dict[str, Any]:
        return {
            "returnFormat": "json",
            "page": offset // page_size + 1,
            "limit": page_size,
            "timestamp": [
                calendar.timegm(window.start.timetuple()),
                calendar.timegm(window.end.timetuple()),
            ],
            "includeEventTags": True,
        }

    @staticmethod
    def extract_events(data: Any) -> Optional[List[Dict[str, Any]]]:
        """Accept both ``{"response": [{"Event": ...}]}`` and ``{"response": {"Event": [...]}}``"""
        if not isinstance(data, dict):
            return None
        body = data.get("response")
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            events = body.get("Event", [])
            return events if isinstance(events, list) else [events]
        return None

    async def fetch_page(self, offset: int, page_size: int, window: TimeWindow) -> PageResult:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = self.api_key

        body = self.build_body(offset, page_size, window)
        logger.info(f"Fetching {self.source_name} page {body['page']} (limit={page_size})")

        response = await self._send("POST", self.search_url, headers=headers, json=body)

        data = self._decode_json(response, self.search_url)
        events = self.extract_events(data)
        if events is None:
            raise DecodeError(
                "Response has no events",
                context={
                    "url": self.search_url,
                    "source_name": self.source_name,
                    "response_body": response.text[:ERROR_BODY_LIMIT]
                }
            )

        return PageResult(records=events, total_count=None, page_size=page_size, offset=offset)
