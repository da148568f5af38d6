import logging
import asyncio
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from core.config import settings
from core.database import async_session_maker
from core.exceptions import StoreUnavailableError
from ingestion.runner import SyncOrchestrator
from models.base import SyncType

logger = logging.getLogger(__name__)

# Held for the whole of any run; the API trigger and the scheduled job share it
SYNC_RUN_LOCK = asyncio.Lock()


class SyncScheduler:
    def __init__(self, interval_minutes: Optional[int] = None, session_factory=None):
        self.scheduler = AsyncIOScheduler()
        self.interval_minutes = interval_minutes or settings.SYNC_CRON_INTERVAL_MINUTES
        self.SessionLocal = session_factory or async_session_maker

    async def run_sync_job(self):
        """Job to run an incremental sync"""
        if SYNC_RUN_LOCK.locked():
            logger.warning("Scheduler: a sync is already running, skipping this tick")
            return

        async with SYNC_RUN_LOCK:
            logger.info("Scheduler: Starting incremental sync")
            async with self.SessionLocal() as session:
                try:
                    summary = await SyncOrchestrator(session).run(SyncType.INCREMENTAL)
                    logger.info(f"Scheduler: sync {summary.status.value} ({summary.error_count} errors)")
                except StoreUnavailableError as e:
                    logger.error(f"Scheduler: sync aborted - {e.message}")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="catalog_sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")
