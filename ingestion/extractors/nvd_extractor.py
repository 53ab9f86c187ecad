"""
NVD CVE API 2.0 page fetcher.

One call = one GET against the CVE endpoint, scoped by the
``lastModStartDate``/``lastModEndDate`` window and paged with
``startIndex``/``resultsPerPage``. Authentication uses the static ``apiKey``
header. Retries, budgets and checkpointing belong to the fetch cycle
controller; the upstream is rate limited, so nothing here retries.
"""

from datetime import datetime
from typing import Optional

import httpx
import logging

from core.config import settings
from core.exceptions import DecodeError
from ingestion.base import PageFetcher, PageResult, TimeWindow, ERROR_BODY_LIMIT
from models.base import FeedType

logger = logging.getLogger(__name__)


def format_nvd_timestamp(moment: datetime) -> str:
    """Extended ISO-8601 with milliseconds, as the CVE API expects"""
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class NvdExtractor(PageFetcher):
    """
    Fetch CVE pages modified within a time window.

    Attributes:
        api_url: CVE API endpoint
        api_key: Value of the ``apiKey`` header (optional, raises rate limits)
        timeout: Request timeout in seconds (default: 30.0)
    """

    feed_type = FeedType.NVD

    def __init__(
        self,
        source_name: str = "nvd",
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(source_name=source_name, timeout=timeout, client=client)
        self.api_url = api_url or settings.NVD_API_URL
        self.api_key = api_key if api_key is not None else settings.NVD_API_KEY

    def build_params(self, offset: int, page_size: int, window: TimeWindow) -> dict:
        return {
            "resultsPerPage": page_size,
            "startIndex": offset,
            "lastModStartDate": format_nvd_timestamp(window.start),
            "lastModEndDate": format_nvd_timestamp(window.end),
        }

    async def fetch_page(self, offset: int, page_size: int, window: TimeWindow) -> PageResult:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apiKey"] = self.api_key

        params = self.build_params(offset, page_size, window)
        logger.info(
            f"Fetching {self.source_name} page at startIndex={offset} "
            f"({params['lastModStartDate']} → {params['lastModEndDate']})"
        )

        response = await self._send("GET", self.api_url, headers=headers, params=params)
        data = self._decode_json(response, self.api_url)

        vulnerabilities = data.get("vulnerabilities") if isinstance(data, dict) else None
        if not isinstance(vulnerabilities, list):
            raise DecodeError(
                "Response has no vulnerabilities array",
                context={
                    "url": self.api_url,
                    "source_name": self.source_name,
                    "response_body": response.text[:ERROR_BODY_LIMIT]
                }
            )

        total = data.get("totalResults")
        try:
            total_count = int(total) if total is not None else None
        except (TypeError, ValueError):
            raise DecodeError(
                f"Invalid totalResults value: {total!r}",
                context={"url": self.api_url, "source_name": self.source_name}
            )

        logger.debug(f"Fetched {len(vulnerabilities)} of {total_count} vulnerabilities")

        return PageResult(
            records=vulnerabilities,
            total_count=total_count,
            page_size=page_size,
            offset=offset,
        )
