import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import build_engine
from models.base import Base
# Import all models to ensure they are registered
from models.checkpoint import FetchCheckpoint
from models.fetch_run import FetchRun
from models.intel_record import IntelRecord

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    engine = build_engine(echo=True)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        # Create all tables defined in models
        await conn.run_sync(Base.metadata.create_all)
        logger.info(
            f"Tables ready: {FetchCheckpoint.__tablename__}, "
            f"{IntelRecord.__tablename__}, {FetchRun.__tablename__}"
        )

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
