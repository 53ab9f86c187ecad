"""
Per-invocation limits on outbound requests and wall-clock time
"""

import time
from typing import Callable, Optional


class CycleBudget:
    """
    Request and elapsed-time allowance for one cycle.

    Either limit may be None (unbounded). The controller records every
    upstream attempt and checks ``exhausted`` after each stored page.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        max_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_requests = max_requests
        self.max_seconds = max_seconds
        self._clock = clock
        self._started_at = clock()
        self.requests_made = 0

    def record_request(self, count: int = 1) -> None:
        self.requests_made += count

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    @property
    def remaining_requests(self) -> Optional[int]:
        if self.max_requests is None:
            return None
        return max(0, self.max_requests - self.requests_made)

    @property
    def exhausted(self) -> bool:
        if self.max_requests is not None and self.requests_made >= self.max_requests:
            return True
        if self.max_seconds is not None and self.elapsed >= self.max_seconds:
            return True
        return False

    def to_dict(self) -> dict:
        return {
            "requests_made": self.requests_made,
            "max_requests": self.max_requests,
            "elapsed_seconds": round(self.elapsed, 3),
            "max_seconds": self.max_seconds,
        }
