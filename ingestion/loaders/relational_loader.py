"""
Load canonical records into the relational store with upsert logic (idempotency)
"""

from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.database import dialect_insert
from core.exceptions import SinkWriteError
from ingestion.base import UpsertReport
from models.base import utcnow
from models.intel_record import IntelRecord
from schemas.normalized import IntelRecordCreate

logger = logging.getLogger(__name__)

# Never rewritten by an upsert
IMMUTABLE_COLUMNS = ("natural_id", "first_seen_at")

# Errors isolated to the record that caused them
RECORD_ERRORS = (SQLAlchemyError, TypeError, ValueError)


class RelationalLoader:
    """
    Upsert ``IntelRecordCreate`` items keyed by ``natural_id``.

    Ensures:
    - One atomic INSERT ... ON CONFLICT (natural_id) DO UPDATE per record
    - No duplicate rows on repeated runs
    - One bad record never aborts the batch: a failing sub-batch is rolled
      back and replayed record by record, each in its own transaction
    """

    def __init__(self, db_session: AsyncSession, batch_size: int = 200):
        self.db = db_session
        self.batch_size = batch_size

    @staticmethod
    def _to_row(record: IntelRecordCreate) -> Dict[str, Any]:
        row = record.model_dump()
        now = utcnow()
        row["first_seen_at"] = now
        row["updated_at"] = now
        return row

    def _upsert_statement(self, row: Dict[str, Any]):
        insert = dialect_insert(self.db)
        stmt = insert(IntelRecord).values(**row)
        return stmt.on_conflict_do_update(
            index_elements=["natural_id"],
            set_={
                column: stmt.excluded[column]
                for column in row
                if column not in IMMUTABLE_COLUMNS
            }
        )

    async def upsert_batch(self, records: List[IntelRecordCreate]) -> UpsertReport:
        """
        Upsert records in sub-batches of ``batch_size``.

        Returns:
            UpsertReport with per-record failures
        """
        report = UpsertReport()

        for start in range(0, len(records), self.batch_size):
            chunk = records[start:start + self.batch_size]

            try:
                for record in chunk:
                    await self.db.execute(self._upsert_statement(self._to_row(record)))
                await self.db.commit()
                report.success_count += len(chunk)

            except RECORD_ERRORS as e:
                await self.db.rollback()
                logger.warning(
                    f"Sub-batch {start // self.batch_size + 1} failed ({type(e).__name__}); "
                    f"retrying {len(chunk)} records individually"
                )
                report.merge(await self._upsert_individually(chunk))

        logger.info(
            f"Upserted {report.success_count} records into intel_records "
            f"({report.failure_count} failed)"
        )
        return report

    async def _upsert_individually(self, records: List[IntelRecordCreate]) -> UpsertReport:
        report = UpsertReport()

        for record in records:
            try:
                await self.db.execute(self._upsert_statement(self._to_row(record)))
                await self.db.commit()
                report.success_count += 1
            except RECORD_ERRORS as e:
                await self.db.rollback()
                error = SinkWriteError(
                    f"Upsert failed for {record.natural_id}",
                    context={"natural_id": record.natural_id, "table_name": "intel_records"},
                    original_exception=e
                )
                report.add_failure(record.natural_id, f"{type(e).__name__}: {e}")
                logger.error(error.message, extra={"error_context": error.to_dict()})

        return report
