"""
Durable per-source ingestion progress.

Every write is a single statement (an upsert or a conditional update), so
two invocations never interleave a read-modify-write on the same row. The
store hands out plain ``Checkpoint`` values, never ORM instances, so nothing
it returns goes stale across a rollback.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.database import dialect_insert
from core.exceptions import CheckpointReadError, CheckpointWriteError
from models.base import CycleState, FeedType, utcnow
from models.checkpoint import FetchCheckpoint

logger = logging.getLogger(__name__)

# Columns written by ``put``; lease and outcome columns have their own writers
PROGRESS_FIELDS = (
    "last_fetch_time",
    "next_offset",
    "items_fetched",
    "last_success_time",
    "window_start",
    "window_end",
)


@dataclass
class Checkpoint:
    """Snapshot of one ``fetch_checkpoints`` row"""
    source_id: str
    feed_type: FeedType
    last_fetch_time: Optional[datetime] = None
    next_offset: int = 0
    items_fetched: int = 0
    last_success_time: Optional[datetime] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    last_status: Optional[CycleState] = None
    last_error: Optional[str] = None
    last_run_at: Optional[datetime] = None

    @property
    def has_open_window(self) -> bool:
        return self.window_start is not None and self.window_end is not None


class CheckpointStore:
    """
    Read and write ``fetch_checkpoints`` rows.

    ``get`` raises ``CheckpointReadError`` and every writer raises
    ``CheckpointWriteError``; the session is rolled back first so it stays
    usable for the caller's bookkeeping.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get(self, source_id: str) -> Optional[Checkpoint]:
        """Return the checkpoint, or None for a source that was never seen"""
        try:
            table = FetchCheckpoint.__table__
            result = await self.db.execute(
                select(table).where(table.c.source_id == source_id)
            )
            row = result.mappings().one_or_none()
            if row is None:
                return None
            checkpoint = Checkpoint(
                source_id=row["source_id"],
                feed_type=row["feed_type"],
                last_fetch_time=row["last_fetch_time"],
                next_offset=row["next_offset"] or 0,
                items_fetched=row["items_fetched"] or 0,
                last_success_time=row["last_success_time"],
                window_start=row["window_start"],
                window_end=row["window_end"],
                last_status=row["last_status"],
                last_error=row["last_error"],
                last_run_at=row["last_run_at"],
            )
            # Release the read transaction; later writes open their own
            await self.db.commit()
            return checkpoint
        except SQLAlchemyError as e:
            await self._rollback()
            raise CheckpointReadError(
                "Failed to read checkpoint",
                context={"source_id": source_id, "operation": "read", "table_name": "fetch_checkpoints"},
                original_exception=e
            )

    async def put(self, checkpoint: Checkpoint) -> None:
        """Create or update the progress columns in one statement"""
        now = utcnow()
        values = {field: getattr(checkpoint, field) for field in PROGRESS_FIELDS}

        insert = dialect_insert(self.db)
        stmt = insert(FetchCheckpoint).values(
            source_id=checkpoint.source_id,
            feed_type=checkpoint.feed_type,
            created_at=now,
            updated_at=now,
            **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id"],
            set_={**values, "updated_at": now}
        )

        await self._write(stmt, checkpoint.source_id, "put")

    async def record_outcome(
        self,
        source_id: str,
        state: CycleState,
        error: Optional[str] = None
    ) -> None:
        """Store the last cycle outcome; progress columns are untouched"""
        now = utcnow()
        stmt = (
            update(FetchCheckpoint)
            .where(FetchCheckpoint.source_id == source_id)
            .values(last_status=state, last_error=error, last_run_at=now, updated_at=now)
        )
        await self._write(stmt, source_id, "record_outcome")

    async def acquire_lease(
        self,
        source_id: str,
        feed_type: FeedType,
        owner: str,
        ttl_seconds: int,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Take the single-flight lease for a source.

        Creates the checkpoint row when missing, then claims the lease only
        if it is free, expired or already ours. Returns False when another
        owner holds a live lease.
        """
        now = now or utcnow()

        insert = dialect_insert(self.db)
        create_row = insert(FetchCheckpoint).values(
            source_id=source_id,
            feed_type=feed_type,
            next_offset=0,
            items_fetched=0,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["source_id"])

        claim = (
            update(FetchCheckpoint)
            .where(
                FetchCheckpoint.source_id == source_id,
                or_(
                    FetchCheckpoint.lease_expires_at.is_(None),
                    FetchCheckpoint.lease_expires_at < now,
                    FetchCheckpoint.lease_owner == owner,
                )
            )
            .values(lease_owner=owner, lease_expires_at=now + timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        )

        try:
            await self.db.execute(create_row)
            result = await self.db.execute(claim)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            raise CheckpointWriteError(
                "Failed to acquire source lease",
                context={"source_id": source_id, "operation": "lease", "owner": owner},
                original_exception=e
            )

        acquired = result.rowcount == 1
        if not acquired:
            logger.info(f"Lease for {source_id} is held by another invocation")
        return acquired

    async def release_lease(self, source_id: str, owner: str) -> None:
        """Drop the lease if this owner still holds it"""
        stmt = (
            update(FetchCheckpoint)
            .where(FetchCheckpoint.source_id == source_id, FetchCheckpoint.lease_owner == owner)
            .values(lease_owner=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self._write(stmt, source_id, "release_lease")

    async def _write(self, stmt, source_id: str, operation: str) -> None:
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            raise CheckpointWriteError(
                "Failed to write checkpoint",
                context={"source_id": source_id, "operation": operation, "table_name": "fetch_checkpoints"},
                original_exception=e
            )

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback after checkpoint failure also failed: {e}")
