"""
Batched, best-effort shipping of log entries to an external queue.

The queue owns its buffer: ``submit()`` only appends, ``flush()`` drains the
buffer in batches, retries each batch with the shared ``RetryPolicy`` and
stops after ``max_sends`` send calls so log shipping never eats the
invocation's outbound-request budget. Entries still buffered when the cap is
reached are dropped and counted.
"""

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from core.exceptions import RetryableError
from core.retry import RetryPolicy

# Records emitted here must not be fed back into the queue
logger = logging.getLogger(__name__)


class QueueSendError(RetryableError):
    """A batch could not be delivered to the queue."""
    pass


class QueueTransport(ABC):
    """Delivers one batch of serialized entries."""

    @abstractmethod
    async def send_batch(self, messages: List[Dict[str, Any]], batch_id: str) -> None:
        pass


class HTTPQueueTransport(QueueTransport):
    """
    POST ``{"messages": [{"body": ...}, ...]}`` to a queue's batch endpoint.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    async def send_batch(self, messages: List[Dict[str, Any]], batch_id: str) -> None:
        headers = {"Content-Type": "application/json", "X-Batch-ID": batch_id}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, json={"messages": messages}, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json={"messages": messages}, headers=headers)
        except httpx.HTTPError as e:
            raise QueueSendError(
                "Log batch delivery failed",
                context={"batch_id": batch_id, "url": self.url},
                original_exception=e
            )

        if response.status_code >= 400:
            raise QueueSendError(
                f"Log queue rejected batch with HTTP {response.status_code}",
                context={"batch_id": batch_id, "status_code": response.status_code}
            )


class _SendCapReached(Exception):
    pass


@dataclass
class FlushReport:
    sent_batches: int = 0
    sent_entries: int = 0
    dropped_entries: int = 0


class LogQueue:
    """
    Owned buffer of log entries with a serialized flush.

    Attributes:
        batch_size: Entries per send call (default: 50)
        max_sends: Send calls allowed per flush, retries included (default: 45)
        retry_policy: Backoff applied to each batch
    """

    def __init__(
        self,
        transport: QueueTransport,
        batch_size: int = 50,
        max_sends: int = 45,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.transport = transport
        self.batch_size = batch_size
        self.max_sends = max_sends
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)

        self._buffer: List[Dict[str, Any]] = []
        self._buffer_lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._batch_counter = 0
        self.dropped = 0

    def __len__(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)

    def submit(self, entry: Dict[str, Any]) -> None:
        """Buffer one entry; never blocks on the network."""
        entry = dict(entry)
        entry.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        with self._buffer_lock:
            self._buffer.append(entry)

    def next_batch_id(self) -> str:
        """``YYYYMMDDHH`` followed by a 9-digit counter."""
        batch_id = f"{datetime.now(timezone.utc):%Y%m%d%H}{self._batch_counter:09d}"
        self._batch_counter += 1
        return batch_id

    def _take(self, count: int) -> List[Dict[str, Any]]:
        with self._buffer_lock:
            batch = self._buffer[:count]
            del self._buffer[:count]
            return batch

    def _drop_remaining(self) -> int:
        with self._buffer_lock:
            count = len(self._buffer)
            self._buffer.clear()
        self.dropped += count
        return count

    async def flush(self) -> FlushReport:
        """
        Send everything buffered, within the send cap.

        Concurrent callers are serialized; a caller arriving while another
        flush runs waits and then flushes whatever is left.
        """
        report = FlushReport()

        async with self._flush_lock:
            sends = 0

            while len(self) > 0:
                if sends >= self.max_sends:
                    dropped = self._drop_remaining()
                    report.dropped_entries += dropped
                    logger.warning(
                        f"Log queue send cap ({self.max_sends}) reached; dropped {dropped} entries"
                    )
                    break

                batch = self._take(self.batch_size)
                batch_id = self.next_batch_id()
                messages = [{"body": json.dumps(entry, default=str)} for entry in batch]

                async def send() -> None:
                    nonlocal sends
                    if sends >= self.max_sends:
                        raise _SendCapReached()
                    sends += 1
                    await self.transport.send_batch(messages, batch_id)

                try:
                    await self.retry_policy.run(send, retry_on=(QueueSendError,), log=logger)
                    report.sent_batches += 1
                    report.sent_entries += len(batch)
                except QueueSendError as e:
                    self.dropped += len(batch)
                    report.dropped_entries += len(batch)
                    logger.warning(f"Skipping log batch {batch_id} after retries: {e.message}")
                except _SendCapReached:
                    self.dropped += len(batch)
                    report.dropped_entries += len(batch)

        return report
