"""
Best-effort mirror of canonical records into a MongoDB collection
"""

import asyncio
from typing import Any, Dict, List, Optional

from pymongo import MongoClient, UpdateOne
from pymongo.collection import Collection
from pymongo.errors import BulkWriteError, PyMongoError
import logging

from core.config import settings
from ingestion.base import UpsertReport
from models.base import utcnow
from schemas.normalized import IntelRecordCreate

logger = logging.getLogger(__name__)


class MongoMirror:
    """
    Upsert records into a document collection keyed by ``natural_id``.

    The relational store is authoritative; mirror failures are reported
    and logged but never raised.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    @classmethod
    def from_settings(cls) -> Optional["MongoMirror"]:
        """Build the mirror from settings, or None when MONGODB_URI is unset"""
        if not settings.MONGODB_URI:
            return None

        client = MongoClient(
            settings.MONGODB_URI,
            serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
            connectTimeoutMS=settings.MONGODB_TIMEOUT_MS,
            socketTimeoutMS=settings.MONGODB_TIMEOUT_MS,
            timeoutMS=settings.MONGODB_TIMEOUT_MS,
        )
        collection = client[settings.MONGODB_DATABASE][settings.MONGODB_COLLECTION]
        return cls(collection)

    @staticmethod
    def build_operations(records: List[IntelRecordCreate]) -> List[UpdateOne]:
        now = utcnow()
        operations = []
        for record in records:
            document: Dict[str, Any] = record.model_dump()
            document["updated_at"] = now
            operations.append(UpdateOne(
                {"natural_id": record.natural_id},
                {"$set": document, "$setOnInsert": {"first_seen_at": now}},
                upsert=True,
            ))
        return operations

    async def upsert_batch(self, records: List[IntelRecordCreate]) -> UpsertReport:
        report = UpsertReport()
        if not records:
            return report

        operations = self.build_operations(records)

        try:
            # pymongo is blocking; keep it off the event loop
            await asyncio.to_thread(self.collection.bulk_write, operations, ordered=False)
            report.success_count = len(records)

        except BulkWriteError as e:
            write_errors = e.details.get("writeErrors", [])
            for write_error in write_errors:
                index = write_error.get("index")
                natural_id = records[index].natural_id if index is not None and index < len(records) else None
                report.add_failure(natural_id, write_error.get("errmsg", "write error"))
            report.success_count = len(records) - report.failure_count
            logger.warning(f"Mongo mirror: {report.failure_count} of {len(records)} writes failed")

        except PyMongoError as e:
            for record in records:
                report.add_failure(record.natural_id, f"{type(e).__name__}: {e}")
            logger.error(f"Mongo mirror bulk_write error: {e}")

        return report
