"""
Fetch trigger endpoint: run one cycle for a named source
"""

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_log_queue, get_mirror, get_sources
from core.exceptions import UnknownSourceError
from core.log_queue import LogQueue
from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.runner import FetchCycleController
from ingestion.sources import FeedSource
from models.base import CycleState
from schemas.api import CycleSummary, ErrorResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Fetch"])


@router.api_route(
    "/fetch/{source_id}",
    methods=["GET", "POST"],
    response_model=CycleSummary,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown source"},
        409: {"model": ErrorResponse, "description": "A cycle for this source is already running"},
        500: {"description": "The cycle failed; body carries the error and the summary"},
    },
)
async def trigger_fetch(
    source_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    sources: Dict[str, FeedSource] = Depends(get_sources),
    log_queue: Optional[LogQueue] = Depends(get_log_queue),
    mirror: Optional[MongoMirror] = Depends(get_mirror),
):
    """
    Run one bounded fetch cycle.

    - 200: window fully consumed (``hasMore`` false) or budget reached (``hasMore`` true)
    - 500: upstream, decode or checkpoint failure; the checkpoint is unchanged
    - 404: no such source
    - 409: another invocation holds the source lease
    """
    request_id = getattr(request.state, "request_id", "-")

    source = sources.get(source_id)
    if source is None:
        raise UnknownSourceError(
            f"No feed source is registered as '{source_id}'",
            context={"source_id": source_id, "known_sources": sorted(sources)}
        )

    logger.info(f"[{request_id}] {request.method} /fetch/{source_id}")

    try:
        result = await FetchCycleController(db, source, mirror=mirror).run()
    finally:
        if log_queue is not None:
            await log_queue.flush()

    summary = result.to_summary()

    if result.state is CycleState.FAILED:
        return JSONResponse(
            status_code=500,
            content={"error": result.error, **summary.model_dump(mode="json", by_alias=True)},
        )

    return summary
