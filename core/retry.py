"""
Retry policy shared by the log queue sender and the page fetch step.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from core.exceptions import RetryableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed attempt count with exponential backoff.

    ``max_attempts`` includes the first try, so ``max_attempts=1`` disables
    retrying. The delay before attempt ``n + 1`` is
    ``base_delay * multiplier ** (n - 1)`` capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        retry_on: Tuple[Type[BaseException], ...] = (RetryableError,),
        on_attempt: Optional[Callable[[int], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ) -> Any:
        """
        Run ``operation`` until it succeeds or attempts are exhausted.

        Exceptions outside ``retry_on`` propagate immediately; the last
        retryable exception is re-raised once attempts run out. Retry
        warnings go to ``log`` (default: this module's logger).
        """
        attempts = max(1, self.max_attempts)

        for attempt in range(1, attempts + 1):
            if on_attempt is not None:
                on_attempt(attempt)
            try:
                return await operation()
            except retry_on as e:
                if attempt >= attempts:
                    raise
                delay = self.delay_for(attempt)
                (log or logger).warning(
                    f"Attempt {attempt}/{attempts} failed: {e}. Retrying in {delay} seconds"
                )
                await sleep(delay)
