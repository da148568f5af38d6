# ============================================================================
# File: ingestion/runner.py
# Description: Catalog sync orchestrator (fetch, reconcile, cleanup, images)
# ============================================================================
"""
Sync Orchestrator - one run of the catalog synchronization.

Phases, in order:
1. Fetch - page through the catalog until exhaustion or the record limit
2. Reconcile - batches of records through the Reconciler, with retries
3. Reactivation sweep - optional, restores vehicles a past cleanup withdrew
4. Cleanup - re-verify published vehicles the run did not confirm
5. Images - drain the pending image queue
6. Finalize - summary and best-effort SyncRun row

Only StoreUnavailableError escapes run(). Everything else is counted on
the summary and the run continues.
"""

from datetime import datetime
from typing import List, Optional
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.database import async_session_maker, ping
from core.exceptions import (
    SyncException,
    CatalogError,
    NonRetryableError,
    DatabaseError,
    DatabaseConnectionError,
    StoreUnavailableError,
)
from ingestion.cleanup import CleanupVerifier
from ingestion.extractors.catalog_client import CatalogClient
from ingestion.loaders.image_pipeline import ImagePipeline
from ingestion.reconciler import Reconciler, ReconcileOutcome, ReconcileResult
from ingestion.run_log import SyncRunLog
from ingestion.tracker import ValidSetTracker
from ingestion.transformers.filters import VehicleFilter
from models.base import SyncRunStatus, SyncType
from schemas.catalog import CatalogVehicle
from schemas.sync import FetchStats, ReconcileStats, SyncSummary

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """
    Runs the catalog sync against one database session.

    Responsibilities:
    - Keep every record fetched before a page failure
    - Retry transient per-record failures with exponential backoff
    - Track admissible records even when their write fails
    - Never run cleanup on an empty valid set or a cancelled run
    - Surface local store unavailability to the caller
    """

    def __init__(
        self,
        db_session: AsyncSession,
        client: Optional[CatalogClient] = None,
        vehicle_filter: Optional[VehicleFilter] = None,
        image_pipeline: Optional[ImagePipeline] = None,
        session_factory: Optional[async_sessionmaker] = None,
        batch_size: Optional[int] = None,
        limit: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        batch_delay: Optional[float] = None,
        page_delay: Optional[float] = None,
        grace_hours: Optional[float] = None,
        lookup_delay: Optional[float] = None,
        sweep_enabled: Optional[bool] = None,
    ):
        self.db = db_session
        self.client = client or CatalogClient()
        self.reconciler = Reconciler(db_session, vehicle_filter)
        self.cleanup = CleanupVerifier(self.client, self.reconciler, grace_hours, lookup_delay)
        self.images = image_pipeline or ImagePipeline(db_session)
        self.session_factory = session_factory or async_session_maker

        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.limit = limit if limit is not None else settings.SYNC_LIMIT
        self.max_retries = max(1, max_retries or settings.SYNC_MAX_RETRIES)
        self.retry_base_delay = retry_base_delay if retry_base_delay is not None else settings.SYNC_RETRY_BASE_DELAY
        self.batch_delay = batch_delay if batch_delay is not None else settings.SYNC_BATCH_DELAY
        self.page_delay = page_delay if page_delay is not None else settings.CATALOG_PAGE_DELAY
        self.sweep_enabled = sweep_enabled if sweep_enabled is not None else settings.REACTIVATION_SWEEP_ENABLED

    async def run(self, sync_type: SyncType = SyncType.INCREMENTAL, cancel_event: Optional[asyncio.Event] = None) -> SyncSummary:
        """
        Run one sync.

        Args:
            sync_type: FULL rewrites every admitted record; INCREMENTAL and
                MANUAL skip records whose fingerprint is unchanged
            cancel_event: Checked between batches; a cancelled run skips cleanup

        Returns:
            The run summary (also stored on the SyncRun row)

        Raises:
            StoreUnavailableError: the local store stopped answering
        """
        summary = SyncSummary(sync_type=sync_type)
        run_log = SyncRunLog(self.session_factory)
        summary.run_id = await run_log.start(sync_type, summary.started_at)
        incremental = sync_type != SyncType.FULL
        tracker = ValidSetTracker()

        logger.info(f"Starting {sync_type.value} sync (run {summary.run_id})")

        try:
            # --------------------------------------------------
            # PHASE 1: FETCH
            # --------------------------------------------------
            records = await self._fetch_all(summary.fetch)

            # --------------------------------------------------
            # PHASE 2: RECONCILE
            # --------------------------------------------------
            summary.cancelled = await self._reconcile_all(records, incremental, tracker, summary, cancel_event)

            # --------------------------------------------------
            # PHASE 3: REACTIVATION SWEEP
            # --------------------------------------------------
            if self.sweep_enabled and not summary.cancelled:
                try:
                    await self.cleanup.reactivation_sweep(tracker, summary.cleanup)
                except DatabaseError as e:
                    await self._on_store_error(e)
                    summary.cleanup.errors += 1
                    summary.record_error("reactivation", e.message)

            # --------------------------------------------------
            # PHASE 4: CLEANUP
            # --------------------------------------------------
            if summary.cancelled:
                summary.cleanup.skipped = True
                summary.cleanup.skip_reason = "run cancelled"
                logger.warning("[Cleanup] Run was cancelled; skipping cleanup")
            else:
                try:
                    await self.cleanup.run(tracker, summary.cleanup)
                except DatabaseError as e:
                    await self._on_store_error(e)
                    summary.cleanup.errors += 1
                    summary.record_error("cleanup", e.message)
                for external_id, message in self.cleanup.failures:
                    summary.record_error("cleanup", message, external_id=external_id)

            # --------------------------------------------------
            # PHASE 5: IMAGES
            # --------------------------------------------------
            try:
                summary.images = await self.images.drain(cancel_event)
            except DatabaseError as e:
                summary.images = self.images.stats
                await self._on_store_error(e)
                summary.images.errors += 1
                summary.record_error("images", e.message)

        except StoreUnavailableError as e:
            logger.error(f"Sync aborted: {e.message}", extra={"error_context": e.to_dict()})
            summary.record_error("store", e.message)
            self._finalize(summary, tracker, SyncRunStatus.FAILED)
            await run_log.finish(summary)
            raise
        except Exception as e:
            logger.exception(f"Sync crashed: {e}")
            await run_log.fail(f"{type(e).__name__}: {e}")
            raise

        # --------------------------------------------------
        # PHASE 6: FINALIZE
        # --------------------------------------------------
        ok = summary.error_count == 0 and not summary.cancelled
        self._finalize(summary, tracker, SyncRunStatus.COMPLETED if ok else SyncRunStatus.FAILED)
        await run_log.finish(summary)

        r = summary.reconcile
        logger.info(
            f"Sync {summary.status.value} in {summary.duration_seconds:.1f}s - "
            f"fetched {summary.fetch.records_fetched}, created {r.created}, updated {r.updated}, "
            f"unchanged {r.unchanged}, filtered {r.filtered}, archived {r.archived + summary.cleanup.archived}, "
            f"images {summary.images.created}, errors {summary.error_count}"
        )
        return summary

    @staticmethod
    def _finalize(summary: SyncSummary, tracker: ValidSetTracker, status: SyncRunStatus):
        summary.status = status
        summary.completed_at = datetime.utcnow()
        summary.duration_seconds = (summary.completed_at - summary.started_at).total_seconds()
        summary.valid_set_size = len(tracker)

    async def _on_store_error(self, error: DatabaseError):
        """Escalate to StoreUnavailableError when the store no longer answers."""
        if not isinstance(error, DatabaseConnectionError):
            return
        if await ping(self.db):
            return
        raise StoreUnavailableError(
            "Local store is unreachable",
            context=dict(error.context),
            original_exception=error,
        )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def _fetch_all(self, stats: FetchStats) -> List[CatalogVehicle]:
        records: List[CatalogVehicle] = []
        page = 1

        while True:
            try:
                result = await self.client.fetch_page(page)
            except CatalogError as e:
                stats.fetch_error = f"page {page}: {e.message}"
                if page == 1:
                    stats.fetch_aborted = True
                    logger.error(f"First catalog page failed; nothing to reconcile: {e.message}")
                else:
                    logger.warning(f"Catalog page {page} failed; keeping {len(records)} records already fetched: {e.message}")
                break

            stats.pages_fetched += 1
            stats.invalid_records += result.invalid_records
            if result.meta.total_count is not None:
                stats.total_count = result.meta.total_count
            records.extend(result.records)

            if self.limit and len(records) >= self.limit:
                records = records[:self.limit]
                stats.limit_reached = True
                logger.info(f"Record limit {self.limit} reached at page {page}")
                break

            if not result.has_more:
                break

            page += 1
            if self.page_delay:
                await asyncio.sleep(self.page_delay)

        stats.records_fetched = len(records)
        logger.info(f"Fetched {len(records)} records from {stats.pages_fetched} pages")
        return records

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    async def _reconcile_all(
        self,
        records: List[CatalogVehicle],
        incremental: bool,
        tracker: ValidSetTracker,
        summary: SyncSummary,
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        """Process records in batches. Returns True if the run was cancelled."""
        total_batches = (len(records) + self.batch_size - 1) // self.batch_size

        for batch_number, start in enumerate(range(0, len(records), self.batch_size), start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Sync cancelled before batch {batch_number}/{total_batches}")
                return True

            batch = records[start:start + self.batch_size]
            for record in batch:
                await self._process_record(record, incremental, tracker, summary)

            logger.info(
                f"Batch {batch_number}/{total_batches} done: {summary.reconcile.processed}/{len(records)} processed, "
                f"{summary.reconcile.errors} errors"
            )
            if self.batch_delay and batch_number < total_batches:
                await asyncio.sleep(self.batch_delay)

        return False

    async def _process_record(
        self,
        record: CatalogVehicle,
        incremental: bool,
        tracker: ValidSetTracker,
        summary: SyncSummary,
    ):
        stats = summary.reconcile
        stats.processed += 1

        # Judged once; an admissible record stays tracked whatever happens to its write
        verdict = self.reconciler.evaluate(record)
        if verdict.admit:
            tracker.add(record.external_id)
        else:
            stats.filtered += 1
            stats.filter_reasons[verdict.reason.value] = stats.filter_reasons.get(verdict.reason.value, 0) + 1

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self.reconciler.reconcile(record, incremental=incremental, verdict=verdict)
                break
            except NonRetryableError as e:
                self._record_failure(summary, record, e)
                return
            except SyncException as e:
                if attempt >= self.max_retries:
                    if isinstance(e, DatabaseError):
                        await self._on_store_error(e)
                    self._record_failure(summary, record, e)
                    return
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                stats.retries += 1
                logger.warning(
                    f"Record {record.external_id} failed (attempt {attempt}/{self.max_retries}), "
                    f"retrying in {delay:.1f}s: {e.message}"
                )
                await asyncio.sleep(delay)
            except Exception as e:
                await self.db.rollback()
                logger.exception(f"Unexpected error reconciling record {record.external_id}")
                stats.errors += 1
                summary.record_error("reconcile", str(e), external_id=record.external_id)
                return

        self._count(result, stats)

    @staticmethod
    def _count(result: ReconcileResult, stats: ReconcileStats):
        if result.reactivated:
            stats.reactivated += 1
        if result.outcome == ReconcileOutcome.CREATED:
            stats.created += 1
        elif result.outcome == ReconcileOutcome.UPDATED:
            stats.updated += 1
        elif result.outcome == ReconcileOutcome.UNCHANGED:
            stats.unchanged += 1
        elif result.outcome == ReconcileOutcome.ARCHIVED:
            if result.changed:
                stats.archived += 1
        elif result.outcome == ReconcileOutcome.SKIPPED:
            stats.skipped += 1

    @staticmethod
    def _record_failure(summary: SyncSummary, record: CatalogVehicle, error: SyncException):
        summary.reconcile.errors += 1
        summary.record_error("reconcile", error.message, external_id=record.external_id)
        logger.error(
            f"Record {record.external_id} failed: {error.message}",
            extra={"error_context": error.to_dict()}
        )
