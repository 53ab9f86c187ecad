"""
Unit tests for checkpoint persistence and the source lease
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from sqlalchemy.exc import OperationalError

from core.exceptions import CheckpointReadError, CheckpointWriteError
from ingestion.checkpoint import Checkpoint, CheckpointStore
from models.base import CycleState, FeedType

NOW = datetime(2024, 6, 1, 12, 0, 0)


class TestCheckpointStore:
    """Test progress reads and writes"""

    @pytest.mark.asyncio
    async def test_unknown_source_has_no_checkpoint(self, db_session):
        assert await CheckpointStore(db_session).get("nvd") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, db_session):
        store = CheckpointStore(db_session)
        window_start = NOW - timedelta(days=30)

        await store.put(Checkpoint(
            source_id="nvd",
            feed_type=FeedType.NVD,
            next_offset=4000,
            items_fetched=4000,
            window_start=window_start,
            window_end=NOW,
        ))
        checkpoint = await store.get("nvd")

        assert checkpoint.next_offset == 4000
        assert checkpoint.items_fetched == 4000
        assert checkpoint.last_fetch_time is None
        assert checkpoint.window_start == window_start
        assert checkpoint.window_end == NOW
        assert checkpoint.has_open_window

    @pytest.mark.asyncio
    async def test_put_overwrites_progress(self, db_session):
        store = CheckpointStore(db_session)
        await store.put(Checkpoint(source_id="nvd", feed_type=FeedType.NVD, next_offset=2))

        await store.put(Checkpoint(
            source_id="nvd", feed_type=FeedType.NVD, next_offset=0, last_fetch_time=NOW
        ))
        checkpoint = await store.get("nvd")

        assert checkpoint.next_offset == 0
        assert checkpoint.last_fetch_time == NOW
        assert not checkpoint.has_open_window

    @pytest.mark.asyncio
    async def test_record_outcome_keeps_progress(self, db_session):
        store = CheckpointStore(db_session)
        await store.put(Checkpoint(source_id="nvd", feed_type=FeedType.NVD, next_offset=6))

        await store.record_outcome("nvd", CycleState.FAILED, "nvd returned HTTP 500")
        checkpoint = await store.get("nvd")

        assert checkpoint.next_offset == 6
        assert checkpoint.last_status == CycleState.FAILED
        assert checkpoint.last_error == "nvd returned HTTP 500"
        assert checkpoint.last_run_at is not None

    @pytest.mark.asyncio
    async def test_read_failure_is_typed(self, db_session):
        store = CheckpointStore(db_session)
        db_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))

        with pytest.raises(CheckpointReadError) as exc_info:
            await store.get("nvd")

        assert exc_info.value.context["source_id"] == "nvd"

    @pytest.mark.asyncio
    async def test_write_failure_is_typed(self, db_session):
        store = CheckpointStore(db_session)
        db_session.execute = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))

        with pytest.raises(CheckpointWriteError):
            await store.put(Checkpoint(source_id="nvd", feed_type=FeedType.NVD, next_offset=2))


class TestSourceLease:
    """Test single-flight lease"""

    @pytest.mark.asyncio
    async def test_acquire_creates_row(self, db_session):
        store = CheckpointStore(db_session)

        assert await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW) is True

        checkpoint = await store.get("nvd")
        assert checkpoint is not None
        assert checkpoint.next_offset == 0

    @pytest.mark.asyncio
    async def test_second_owner_is_refused(self, db_session):
        store = CheckpointStore(db_session)

        assert await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW) is True
        assert await store.acquire_lease("nvd", FeedType.NVD, "run-b", 60, now=NOW) is False

    @pytest.mark.asyncio
    async def test_same_owner_may_reacquire(self, db_session):
        store = CheckpointStore(db_session)

        await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW)
        assert await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW) is True

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self, db_session):
        store = CheckpointStore(db_session)

        await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW)
        later = NOW + timedelta(seconds=61)

        assert await store.acquire_lease("nvd", FeedType.NVD, "run-b", 60, now=later) is True

    @pytest.mark.asyncio
    async def test_release_frees_the_lease(self, db_session):
        store = CheckpointStore(db_session)

        await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW)
        await store.release_lease("nvd", "run-a")

        assert await store.acquire_lease("nvd", FeedType.NVD, "run-b", 60, now=NOW) is True

    @pytest.mark.asyncio
    async def test_release_by_other_owner_is_ignored(self, db_session):
        store = CheckpointStore(db_session)

        await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW)
        await store.release_lease("nvd", "run-b")

        assert await store.acquire_lease("nvd", FeedType.NVD, "run-c", 60, now=NOW) is False

    @pytest.mark.asyncio
    async def test_lease_does_not_touch_progress(self, db_session):
        store = CheckpointStore(db_session)
        await store.put(Checkpoint(source_id="nvd", feed_type=FeedType.NVD, next_offset=8, items_fetched=8))

        await store.acquire_lease("nvd", FeedType.NVD, "run-a", 60, now=NOW)

        assert (await store.get("nvd")).next_offset == 8
