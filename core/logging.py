"""
Logging configuration
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.config import settings
from core.log_queue import HTTPQueueTransport, LogQueue
from core.retry import RetryPolicy

# ``extra`` keys copied from a record into the shipped entry
ENTRY_CONTEXT_FIELDS = ("source_id", "run_id", "state", "offset", "error_context")


class QueueLogHandler(logging.Handler):
    """Submit log records to a ``LogQueue`` as JSON-able entries."""

    def __init__(self, log_queue: LogQueue, level: int = logging.INFO):
        super().__init__(level=level)
        self.log_queue = log_queue
        # The queue's own diagnostics stay local
        self.addFilter(lambda record: not record.name.startswith("core.log_queue"))

    def to_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in ENTRY_CONTEXT_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)
        if record.exc_info:
            entry["exception"] = logging.Formatter().formatException(record.exc_info)
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.log_queue.submit(self.to_entry(record))
        except Exception:
            self.handleError(record)


def build_log_queue() -> Optional[LogQueue]:
    """Create the log queue from settings, or None when shipping is disabled"""
    if not settings.LOG_QUEUE_URL:
        return None

    return LogQueue(
        transport=HTTPQueueTransport(
            url=settings.LOG_QUEUE_URL,
            token=settings.LOG_QUEUE_TOKEN,
            timeout=settings.HTTP_TIMEOUT,
        ),
        batch_size=settings.LOG_QUEUE_BATCH_SIZE,
        max_sends=settings.LOG_QUEUE_MAX_SENDS,
        retry_policy=RetryPolicy(
            max_attempts=settings.LOG_QUEUE_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
        ),
    )


def setup_logging(log_queue: Optional[LogQueue] = None):
    """Configure application logging"""

    # Get log level from settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_queue is not None:
        handlers.append(QueueLogHandler(log_queue, level=log_level))

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True
    )

    # Set SQLAlchemy and HTTP client logging to WARNING to reduce noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured at {settings.LOG_LEVEL} level"
        f"{' with queue shipping' if log_queue is not None else ''}"
    )
