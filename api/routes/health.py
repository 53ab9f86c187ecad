"""
Health check endpoint with database and checkpoint status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from api.dependencies import get_db
from schemas.api import HealthCheckResponse, CheckpointInfo
from models.base import CycleState, utcnow
from models.checkpoint import FetchCheckpoint
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])

SUCCESS_STATES = (CycleState.DONE, CycleState.BUDGET_STOPPED)


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Checkpoint status for every source that has run
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    checkpoints = []
    successful_sources = 0
    failed_sources = 0
    now = utcnow()

    if db_connected:
        try:
            result = await db.execute(select(FetchCheckpoint).order_by(FetchCheckpoint.source_id))
            rows = result.scalars().all()

            for row in rows:
                if row.last_status == CycleState.FAILED:
                    failed_sources += 1
                elif row.last_status in SUCCESS_STATES:
                    successful_sources += 1

                checkpoints.append(CheckpointInfo(
                    source_id=row.source_id,
                    feed_type=row.feed_type,
                    last_status=row.last_status,
                    last_fetch_time=row.last_fetch_time,
                    last_success_time=row.last_success_time,
                    last_run_at=row.last_run_at,
                    next_offset=row.next_offset or 0,
                    items_fetched=row.items_fetched or 0,
                    in_progress=row.lease_expires_at is not None and row.lease_expires_at > now,
                    last_error=row.last_error,
                ))
        except Exception as e:
            logger.error(f"Failed to fetch checkpoints: {str(e)}")

    # Overall status is derived by HealthCheckResponse
    return HealthCheckResponse(
        database_connected=db_connected,
        checkpoints=checkpoints,
        total_sources=len(checkpoints),
        successful_sources=successful_sources,
        failed_sources=failed_sources
    )
