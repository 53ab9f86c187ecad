"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class, shared enums (FeedType, CycleState),
          portable column types and the ``utcnow`` clock
    checkpoint: Per-source ingestion progress and single-flight lease
    intel_record: Canonical threat-intel records keyed by natural id
    fetch_run: Audit trail of fetch cycle invocations

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and JSON elsewhere; enums are stored by value so the
    same schema works on PostgreSQL and SQLite.

Usage:
    from models.checkpoint import FetchCheckpoint
    from models.intel_record import IntelRecord
    from models.fetch_run import FetchRun
    from models.base import FeedType, CycleState

Relationships:
    - FetchCheckpoint → FetchRun (one-to-many by source_id, not enforced)
    - IntelRecord rows are shared by every invocation that sees the same
      natural id; they are rewritten, never duplicated
"""

__all__ = [
    "Base",
    "FeedType",
    "CycleState",
    "FetchCheckpoint",
    "IntelRecord",
    "FetchRun",
]
