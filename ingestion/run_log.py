"""
Best-effort SyncRun audit log.

Uses its own sessions so an audit failure never poisons the sync's
transaction and a rolled-back sync never loses its audit row. Every method
swallows store errors after logging them: a run must not fail because its
audit row could not be written.
"""

from datetime import datetime
from typing import Optional
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.base import SyncRunStatus, SyncType
from models.sync_run import SyncRun
from schemas.sync import SyncSummary

logger = logging.getLogger(__name__)


class SyncRunLog:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self.run_pk: Optional[int] = None

    async def start(self, sync_type: SyncType, started_at: Optional[datetime] = None) -> Optional[str]:
        """Create the running row. Returns its run_id, or None if it could not be written."""
        run_id = uuid.uuid4()
        try:
            async with self.session_factory() as session:
                run = SyncRun(
                    run_id=run_id,
                    sync_type=sync_type,
                    status=SyncRunStatus.RUNNING,
                    started_at=started_at or datetime.utcnow(),
                )
                session.add(run)
                await session.commit()
                self.run_pk = run.id
            return str(run_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not record sync start: {e}")
            return None

    async def finish(self, summary: SyncSummary) -> bool:
        """Finalize the row from the run summary. Returns False if the write failed."""
        if self.run_pk is None:
            return False
        try:
            async with self.session_factory() as session:
                run = await session.get(SyncRun, self.run_pk)
                if run is None:
                    return False
                run.status = summary.status
                run.completed_at = summary.completed_at or datetime.utcnow()
                run.duration_seconds = summary.duration_seconds
                run.vehicles_processed = summary.reconcile.processed
                run.vehicles_created = summary.reconcile.created
                run.vehicles_updated = summary.reconcile.updated
                run.vehicles_unchanged = summary.reconcile.unchanged
                run.vehicles_filtered = summary.reconcile.filtered
                run.vehicles_archived = summary.reconcile.archived + summary.cleanup.archived
                run.images_processed = summary.images.processed
                run.images_created = summary.images.created
                run.errors_count = summary.error_count
                run.error_message = summary.error_digest()
                run.run_metadata = summary.model_dump(mode="json")
                await session.commit()
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not record sync completion: {e}")
            return False

    async def fail(self, message: str) -> bool:
        """Mark the row failed when the run could not produce a summary."""
        if self.run_pk is None:
            return False
        try:
            async with self.session_factory() as session:
                run = await session.get(SyncRun, self.run_pk)
                if run is None:
                    return False
                run.status = SyncRunStatus.FAILED
                run.completed_at = datetime.utcnow()
                run.duration_seconds = (run.completed_at - run.started_at).total_seconds()
                run.error_message = message[:1000]
                await session.commit()
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not record sync failure: {e}")
            return False


async def last_successful_run(session: AsyncSession) -> Optional[SyncRun]:
    result = await session.execute(
        select(SyncRun)
        .where(SyncRun.status == SyncRunStatus.COMPLETED)
        .order_by(SyncRun.completed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
