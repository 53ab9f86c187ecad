"""
Unit tests for sink writers
"""

import pytest
from unittest.mock import MagicMock, patch
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from pymongo.errors import BulkWriteError, ServerSelectionTimeoutError

from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.loaders.relational_loader import RelationalLoader
from models.base import FeedType
from models.intel_record import IntelRecord
from schemas.normalized import IntelRecordCreate


def make_record(natural_id: str, description: str = "first version", score: float = 5.0) -> IntelRecordCreate:
    return IntelRecordCreate(
        natural_id=natural_id,
        feed_type=FeedType.NVD,
        source_name="nvd",
        description=description,
        severity_score=score,
        severity_label="medium",
        reference_urls=["https://example.com/a", "https://example.com/a", ""],
    )


async def count_records(db_session) -> int:
    result = await db_session.execute(select(func.count()).select_from(IntelRecord))
    return result.scalar_one()


class TestRelationalLoader:
    """Test relational upsert sink"""

    @pytest.mark.asyncio
    async def test_upsert_inserts_records(self, db_session):
        loader = RelationalLoader(db_session)

        report = await loader.upsert_batch([make_record("CVE-1"), make_record("CVE-2")])

        assert report.success_count == 2
        assert report.failure_count == 0
        assert await count_records(db_session) == 2

        row = (await db_session.execute(
            select(IntelRecord).where(IntelRecord.natural_id == "CVE-1")
        )).scalar_one()
        assert row.feed_type == FeedType.NVD
        assert row.severity_label == "MEDIUM"
        assert row.reference_urls == ["https://example.com/a"]

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, db_session):
        loader = RelationalLoader(db_session)
        records = [make_record(f"CVE-{i}") for i in range(5)]

        await loader.upsert_batch(records)
        first = (await db_session.execute(
            select(IntelRecord.natural_id, IntelRecord.description, IntelRecord.severity_score)
            .order_by(IntelRecord.natural_id)
        )).all()

        await loader.upsert_batch(records)
        second = (await db_session.execute(
            select(IntelRecord.natural_id, IntelRecord.description, IntelRecord.severity_score)
            .order_by(IntelRecord.natural_id)
        )).all()

        assert await count_records(db_session) == 5
        assert first == second

    @pytest.mark.asyncio
    async def test_upsert_updates_mutable_fields_and_keeps_first_seen(self, db_session):
        loader = RelationalLoader(db_session)

        await loader.upsert_batch([make_record("CVE-9", description="first version", score=5.0)])
        before = (await db_session.execute(
            select(IntelRecord.first_seen_at).where(IntelRecord.natural_id == "CVE-9")
        )).scalar_one()

        await loader.upsert_batch([make_record("CVE-9", description="revised", score=9.1)])

        row = (await db_session.execute(
            select(IntelRecord.description, IntelRecord.severity_score, IntelRecord.first_seen_at)
            .where(IntelRecord.natural_id == "CVE-9")
        )).one()
        assert row.description == "revised"
        assert row.severity_score == 9.1
        assert row.first_seen_at == before
        assert await count_records(db_session) == 1

    @pytest.mark.asyncio
    async def test_failing_record_is_isolated(self, db_session):
        loader = RelationalLoader(db_session, batch_size=200)
        original = loader._upsert_statement

        def flaky_statement(row):
            if row["natural_id"] == "CVE-BAD":
                raise IntegrityError("INSERT", {}, Exception("constraint violated"))
            return original(row)

        records = [make_record("CVE-A"), make_record("CVE-BAD"), make_record("CVE-C")]

        with patch.object(loader, "_upsert_statement", side_effect=flaky_statement):
            report = await loader.upsert_batch(records)

        assert report.success_count == 2
        assert report.failure_count == 1
        assert report.failures[0]["natural_id"] == "CVE-BAD"
        assert "IntegrityError" in report.failures[0]["error"]
        assert await count_records(db_session) == 2

    @pytest.mark.asyncio
    async def test_sub_batches_cover_every_record(self, db_session):
        loader = RelationalLoader(db_session, batch_size=3)

        report = await loader.upsert_batch([make_record(f"CVE-{i}") for i in range(10)])

        assert report.success_count == 10
        assert await count_records(db_session) == 10

    @pytest.mark.asyncio
    async def test_empty_batch(self, db_session):
        report = await RelationalLoader(db_session).upsert_batch([])

        assert report.success_count == 0
        assert report.failures == []


class TestMongoMirror:
    """Test document mirror"""

    @pytest.mark.asyncio
    async def test_upsert_builds_keyed_operations(self):
        collection = MagicMock()
        mirror = MongoMirror(collection)

        report = await mirror.upsert_batch([make_record("CVE-1"), make_record("CVE-2")])

        assert report.success_count == 2
        operations = collection.bulk_write.call_args.args[0]
        assert collection.bulk_write.call_args.kwargs == {"ordered": False}
        assert [op._filter for op in operations] == [{"natural_id": "CVE-1"}, {"natural_id": "CVE-2"}]
        assert all(op._upsert for op in operations)
        assert "first_seen_at" in operations[0]._doc["$setOnInsert"]
        assert "first_seen_at" not in operations[0]._doc["$set"]

    @pytest.mark.asyncio
    async def test_partial_bulk_failure_is_reported(self):
        collection = MagicMock()
        collection.bulk_write.side_effect = BulkWriteError({
            "writeErrors": [{"index": 1, "code": 11000, "errmsg": "duplicate key"}],
        })
        mirror = MongoMirror(collection)

        report = await mirror.upsert_batch([make_record("CVE-1"), make_record("CVE-2")])

        assert report.success_count == 1
        assert report.failures == [{"natural_id": "CVE-2", "error": "duplicate key"}]

    @pytest.mark.asyncio
    async def test_unreachable_server_never_raises(self):
        collection = MagicMock()
        collection.bulk_write.side_effect = ServerSelectionTimeoutError("no servers")
        mirror = MongoMirror(collection)

        report = await mirror.upsert_batch([make_record("CVE-1")])

        assert report.success_count == 0
        assert report.failure_count == 1

    def test_disabled_without_uri(self):
        with patch("ingestion.loaders.mongo_loader.settings") as mock_settings:
            mock_settings.MONGODB_URI = None
            assert MongoMirror.from_settings() is None

    def test_client_has_explicit_timeouts(self):
        with patch("ingestion.loaders.mongo_loader.settings") as mock_settings, \
                patch("ingestion.loaders.mongo_loader.MongoClient") as client_cls:
            mock_settings.MONGODB_URI = "mongodb://mongo.example:27017"
            mock_settings.MONGODB_TIMEOUT_MS = 5000
            mock_settings.MONGODB_DATABASE = "threat_intel"
            mock_settings.MONGODB_COLLECTION = "intel_records"

            mirror = MongoMirror.from_settings()

        assert mirror is not None
        options = client_cls.call_args.kwargs
        assert options["serverSelectionTimeoutMS"] == 5000
        assert options["connectTimeoutMS"] == 5000
        assert options["socketTimeoutMS"] == 5000
        assert options["timeoutMS"] == 5000
