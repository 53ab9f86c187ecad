import logging
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.database import async_session_maker
from core.exceptions import CycleInProgressError
from core.log_queue import LogQueue
from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.runner import CycleResult, FetchCycleController
from ingestion.sources import FeedSource

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """One interval job per source; a source never overlaps itself"""

    def __init__(
        self,
        sources: Dict[str, FeedSource],
        session_factory: Optional[async_sessionmaker] = None,
        log_queue: Optional[LogQueue] = None,
        mirror: Optional[MongoMirror] = None,
        interval_minutes: Optional[int] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.sources = sources
        self.SessionLocal = session_factory or async_session_maker
        self.log_queue = log_queue
        self.mirror = mirror
        self.interval_minutes = interval_minutes or settings.SCHEDULE_INTERVAL_MINUTES

    async def run_source_job(self, source_id: str) -> Optional[CycleResult]:
        """Job to run one fetch cycle"""
        source = self.sources[source_id]
        logger.info(f"Scheduler: Starting fetch cycle for {source_id}")

        try:
            async with self.SessionLocal() as session:
                controller = FetchCycleController(session, source, mirror=self.mirror)
                return await controller.run()

        except CycleInProgressError:
            logger.info(f"Scheduler: {source_id} is already running elsewhere, skipping")
            return None

        except Exception as e:
            logger.error(f"Scheduler: fetch cycle for {source_id} failed - {e}")
            return None

        finally:
            if self.log_queue is not None:
                await self.log_queue.flush()

    def start(self):
        """Start the scheduler"""
        for source_id in self.sources:
            self.scheduler.add_job(
                self.run_source_job,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                args=[source_id],
                id=f"fetch_{source_id}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        logger.info(f"Ingestion scheduler started with {len(self.sources)} sources")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Ingestion scheduler stopped")
