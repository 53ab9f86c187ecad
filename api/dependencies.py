"""
FastAPI dependencies
"""

from typing import AsyncGenerator, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from core.log_queue import LogQueue
from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.sources import FeedSource


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session per request"""
    async for session in get_session():
        yield session


def get_sources(request: Request) -> Dict[str, FeedSource]:
    return getattr(request.app.state, "sources", {})


def get_log_queue(request: Request) -> Optional[LogQueue]:
    return getattr(request.app.state, "log_queue", None)


def get_mirror(request: Request) -> Optional[MongoMirror]:
    return getattr(request.app.state, "mirror", None)
