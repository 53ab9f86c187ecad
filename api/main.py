"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import fetch, health
from core.config import settings
from core.exceptions import CycleInProgressError, UnknownSourceError
from core.logging import build_log_queue, setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.scheduler import IngestionScheduler
from ingestion.sources import build_sources
from schemas.api import ErrorResponse

# Configure logging
log_queue = build_log_queue()
setup_logging(log_queue)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Threat Intel Ingestion Worker",
    description="Resumable, budgeted ingestion of threat-intelligence feeds",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(fetch.router)

scheduler = None


@app.exception_handler(UnknownSourceError)
async def unknown_source_handler(request: Request, exc: UnknownSourceError):
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(error="Unknown source", detail=exc.message).model_dump(mode="json"),
    )


@app.exception_handler(CycleInProgressError)
async def cycle_in_progress_handler(request: Request, exc: CycleInProgressError):
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(error="Cycle in progress", detail=exc.message).model_dump(mode="json"),
    )


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    global scheduler

    logger.info("Starting threat intel ingestion worker")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    app.state.sources = build_sources()
    app.state.log_queue = log_queue
    app.state.mirror = MongoMirror.from_settings()
    logger.info(f"Sources: {', '.join(app.state.sources) or 'none'}")

    if settings.SCHEDULER_ENABLED:
        scheduler = IngestionScheduler(
            app.state.sources,
            log_queue=log_queue,
            mirror=app.state.mirror,
        )
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down threat intel ingestion worker")
    if scheduler is not None:
        scheduler.stop()
    if log_queue is not None:
        await log_queue.flush()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Threat Intel Ingestion Worker",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "fetch": "/fetch/{source_id}",
            "sources": sorted(getattr(app.state, "sources", {}))
        }
    }
