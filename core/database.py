"""
Database session management with SQLAlchemy async
"""

from typing import Optional
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    """Driver-level connect and statement timeouts"""
    if url.startswith("postgresql+asyncpg"):
        return {
            "timeout": settings.DB_CONNECT_TIMEOUT,
            "command_timeout": settings.DB_COMMAND_TIMEOUT,
        }
    if url.startswith("sqlite+aiosqlite"):
        return {"timeout": settings.DB_COMMAND_TIMEOUT}
    return {}


def build_engine(url: Optional[str] = None, echo: bool = False):
    url = url or settings.DATABASE_URL
    return create_async_engine(
        url,
        echo=echo,
        poolclass=NullPool,
        connect_args=_connect_args(url),
    )


# Create async engine
engine = build_engine(echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL == "DEBUG")

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def get_session() -> AsyncSession:
    """Get database session"""
    async with async_session_maker() as session:
        yield session


def dialect_insert(session: AsyncSession):
    """
    Return the dialect-specific ``insert`` construct for the session's engine.

    Both the PostgreSQL and SQLite variants support
    ``on_conflict_do_update`` / ``on_conflict_do_nothing``.
    """
    bind = getattr(session, "bind", None)
    dialect = getattr(bind, "dialect", None)
    if getattr(dialect, "name", None) == "sqlite":
        return sqlite.insert
    return postgresql.insert
