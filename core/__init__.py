"""
Core utilities and configuration for the threat-intel ingestion worker.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine, session factory and dialect helpers
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and the log-queue handler
    log_queue: Batched, best-effort log shipping
    retry: Retry policy with exponential backoff

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import TransientFetchError, CheckpointWriteError
    from core.logging import setup_logging, build_log_queue

Example:
    # Initialize logging, shipping to the queue when one is configured
    log_queue = build_log_queue()
    setup_logging(log_queue)

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    "build_log_queue",
    "LogQueue",
    "RetryPolicy",
    # Exceptions
    "IngestionError",
    "RetryableError",
    "FetchError",
    "TransientFetchError",
    "UpstreamError",
    "DecodeError",
    "RecordInvalid",
    "SinkWriteError",
    "CheckpointError",
    "CheckpointReadError",
    "CheckpointWriteError",
    "CycleInProgressError",
    "UnknownSourceError",
]
