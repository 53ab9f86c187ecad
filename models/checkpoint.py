from sqlalchemy import Column, Integer, String, DateTime, Text, BigInteger
from models.base import Base, FeedType, CycleState, enum_type, utcnow


class FetchCheckpoint(Base):
    """
    Durable ingestion progress per source.

    Purpose:
    - Resume a paginated window from the last fully stored page
    - Advance the time watermark only when a window is fully consumed
    - Guard against two concurrent cycles for one source (lease columns)

    Design:
    - One row per source, written only through single-statement upserts
    - ``next_offset`` is meaningful only against ``window_start``/``window_end``
    - ``items_fetched`` only ever grows
    """
    __tablename__ = "fetch_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Source identification
    source_id = Column(String(100), nullable=False, unique=True)
    feed_type = Column(enum_type(FeedType), nullable=False)

    # Progress
    last_fetch_time = Column(DateTime, nullable=True)  # Watermark; NULL = never fetched
    next_offset = Column(Integer, nullable=False, default=0)
    items_fetched = Column(BigInteger, nullable=False, default=0)
    last_success_time = Column(DateTime, nullable=True)

    # In-progress window the offset belongs to
    window_start = Column(DateTime, nullable=True)
    window_end = Column(DateTime, nullable=True)

    # Last outcome (informational, never used to resume)
    last_status = Column(enum_type(CycleState), nullable=True)
    last_error = Column(Text, nullable=True)
    last_run_at = Column(DateTime, nullable=True, index=True)

    # Single-flight lease
    lease_owner = Column(String(64), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
