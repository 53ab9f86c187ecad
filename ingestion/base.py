"""
Page fetcher contract shared by every upstream feed
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx
import logging

from core.exceptions import DecodeError, FetchError, TransientFetchError, UpstreamError
from models.base import FeedType

logger = logging.getLogger(__name__)

# Longest response body kept on an error for diagnostics
ERROR_BODY_LIMIT = 500


@dataclass(frozen=True)
class TimeWindow:
    """Half-open modification-time range ``[start, end)`` (naive UTC)"""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class PageResult:
    """
    One page of raw items.

    ``total_count`` is None for upstreams that do not report a total; the
    controller then treats a short page as the last one.
    """
    records: List[Dict[str, Any]]
    total_count: Optional[int]
    page_size: int
    offset: int = 0

    @property
    def returned_count(self) -> int:
        return len(self.records)


@dataclass
class FetchFailure:
    """A page fetch that did not produce a page"""
    error: FetchError
    offset: int
    attempts: int = 1

    @property
    def retryable(self) -> bool:
        return isinstance(self.error, TransientFetchError)


FetchOutcome = Union[PageResult, FetchFailure]


@dataclass
class UpsertReport:
    """Per-batch sink outcome; ``failures`` holds ``{natural_id, error}`` dicts"""
    success_count: int = 0
    failure_count: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def add_failure(self, natural_id: Optional[str], error: str) -> None:
        self.failure_count += 1
        self.failures.append({"natural_id": natural_id, "error": error})

    def merge(self, other: "UpsertReport") -> None:
        self.success_count += other.success_count
        self.failure_count += other.failure_count
        self.failures.extend(other.failures)


class PageFetcher(ABC):
    """
    Abstract base class for paginated upstream sources.

    Responsibilities:
    - Exactly one upstream round trip per ``fetch_page`` call
    - No internal retries (the controller owns retry policy and budget)
    - Typed failures: TransientFetchError, UpstreamError, DecodeError
    """

    feed_type: FeedType

    def __init__(
        self,
        source_name: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        verify: bool = True
    ):
        self.source_name = source_name
        self.timeout = timeout
        self.verify = verify
        self._client = client

    @abstractmethod
    async def fetch_page(self, offset: int, page_size: int, window: TimeWindow) -> PageResult:
        """
        Fetch one page.

        Args:
            offset: Zero-based index of the first item of the page
            page_size: Requested number of items
            window: Modification-time range to query

        Returns:
            PageResult with the raw items of this page

        Raises:
            TransientFetchError, UpstreamError, DecodeError
        """
        pass

    async def fetch(self, offset: int, page_size: int, window: TimeWindow) -> FetchOutcome:
        """``fetch_page`` with failures returned as ``FetchFailure``"""
        try:
            return await self.fetch_page(offset, page_size, window)
        except FetchError as e:
            logger.warning(f"Fetch failed for {self.source_name} at offset {offset}: {e.message}")
            return FetchFailure(error=e, offset=offset)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Issue one HTTP request and map transport and status failures.

        Raises:
            TransientFetchError: Timeout or connection-level failure
            UpstreamError: Non-2xx response
        """
        try:
            if self._client is not None:
                response = await self._client.request(method, url, timeout=self.timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify) as client:
                    response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientFetchError(
                f"Request to {self.source_name} timed out",
                context={"url": url, "source_name": self.source_name, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            raise TransientFetchError(
                f"Network error reaching {self.source_name}",
                context={"url": url, "source_name": self.source_name},
                original_exception=e
            )

        if not response.is_success:
            raise UpstreamError(
                f"{self.source_name} returned HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:ERROR_BODY_LIMIT],
                context={"url": url, "source_name": self.source_name}
            )

        return response

    def _decode_json(self, response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(
                "Failed to parse JSON response",
                context={
                    "url": url,
                    "source_name": self.source_name,
                    "response_body": response.text[:ERROR_BODY_LIMIT]
                },
                original_exception=e
            )
