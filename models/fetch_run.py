from sqlalchemy import Column, BigInteger, String, DateTime, Float, Integer, Text, Index, Uuid
from models.base import Base, CycleState, JSONType, enum_type, utcnow
import uuid


class FetchRun(Base):
    """
    Audit row for each fetch cycle invocation.

    Purpose:
    - Audit trail of all invocations and their terminal state
    - Performance monitoring (duration, pages, requests)
    - Error tracking and debugging

    ``state`` is NULL while the invocation is running.
    """
    __tablename__ = "fetch_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Source identification
    source_id = Column(String(100), nullable=False, index=True)

    # Outcome
    state = Column(enum_type(CycleState), nullable=True, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    pages_fetched = Column(Integer, default=0)
    requests_made = Column(Integer, default=0)
    records_fetched = Column(Integer, default=0)
    records_stored = Column(Integer, default=0)
    records_invalid = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    total_count = Column(Integer, nullable=True)

    # Checkpoint info
    offset_before = Column(Integer, nullable=True)
    offset_after = Column(Integer, nullable=True)
    window_start = Column(DateTime, nullable=True)
    window_end = Column(DateTime, nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_fetch_run_source_started", "source_id", "started_at"),
    )
