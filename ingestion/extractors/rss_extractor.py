"""
RSS Feed Extractor

Pages over entries of an RSS/Atom feed.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import feedparser
import httpx
import logging

from core.exceptions import DecodeError
from ingestion.base import PageFetcher, PageResult, TimeWindow
from models.base import FeedType

logger = logging.getLogger(__name__)


def entry_timestamp(entry: Dict[str, Any]) -> Optional[datetime]:
    """Published time, falling back to updated time (naive UTC)"""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6])
    return None


class RSSExtractor(PageFetcher):
    """
    Feeds have no server-side paging: every call downloads the feed, keeps
    entries inside the window (undated entries are always kept), orders them
    oldest first and returns the ``[offset, offset + page_size)`` slice.
    ``total_count`` is the number of entries in the window.
    """

    feed_type = FeedType.RSS

    def __init__(
        self,
        source_name: str,
        feed_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(source_name=source_name, timeout=timeout, client=client)
        self.feed_url = feed_url

    @staticmethod
    def to_record(entry: Dict[str, Any]) -> Dict[str, Any]:
        """Plain-dict view of a feedparser entry"""
        published = entry_timestamp(entry)
        updated = entry.get("updated_parsed")
        return {
            "id": entry.get("id", entry.get("link", "")),
            "title": entry.get("title", ""),
            "summary": entry.get("summary", entry.get("description", "")),
            "link": entry.get("link", ""),
            "author": entry.get("author", ""),
            "published": published.isoformat() if published else None,
            "updated": datetime(*updated[:6]).isoformat() if updated else None,
            "categories": [tag.get("term", "") for tag in entry.get("tags", [])],
            "enclosures": [link.get("href", "") for link in entry.get("enclosures", [])],
        }

    def select_entries(self, entries: List[Dict[str, Any]], window: TimeWindow) -> List[Dict[str, Any]]:
        in_window = []
        for entry in entries:
            published = entry_timestamp(entry)
            if published is not None and not window.contains(published):
                continue
            in_window.append((published or datetime.min, entry))

        in_window.sort(key=lambda pair: pair[0])
        return [entry for _, entry in in_window]

    async def fetch_page(self, offset: int, page_size: int, window: TimeWindow) -> PageResult:
        response = await self._send("GET", self.feed_url)

        # Parse RSS in thread pool
        feed = await asyncio.to_thread(feedparser.parse, response.text)

        if feed.bozo and not feed.entries:
            raise DecodeError(
                f"Failed to parse RSS feed: {feed.bozo_exception}",
                context={"url": self.feed_url, "source_name": self.source_name}
            )

        entries = self.select_entries(feed.entries, window)
        page = entries[offset:offset + page_size]

        logger.info(
            f"Feed {self.source_name}: {len(entries)} entries in window, "
            f"returning {len(page)} from offset {offset}"
        )

        return PageResult(
            records=[self.to_record(entry) for entry in page],
            total_count=len(entries),
            page_size=page_size,
            offset=offset,
        )
