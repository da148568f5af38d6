"""
Post-run withdrawal of published vehicles the run did not confirm.

A vehicle missing from the paginated fetch is not archived on absence
alone: it is looked up directly in the catalog first. Only a confirmed
absence, a failed recheck, or a failed lookup withdraws it. Nothing is
withdrawn when the run confirmed nothing at all.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import enum
import logging

from core.config import settings
from core.exceptions import CatalogError, DatabaseError, DatabaseConnectionError
from ingestion.extractors.catalog_client import CatalogClient
from ingestion.reconciler import Reconciler
from ingestion.tracker import ValidSetTracker
from models.base import VehicleStatus
from models.vehicle import Vehicle
from schemas.catalog import CatalogVehicle
from schemas.sync import CleanupStats
from schemas.vehicle import VehicleExtra

logger = logging.getLogger(__name__)


class CleanupReason(str, enum.Enum):
    FILTERED_ON_RECHECK = "filtered_on_recheck"
    ABSENT_FROM_FEED = "absent_from_feed"
    RECHECK_FAILED = "recheck_failed"
    NO_LOOKUP_KEY = "no_lookup_key"


CLEANUP_REASONS = tuple(reason.value for reason in CleanupReason)


def lookup_key(vehicle: Vehicle) -> Optional[Tuple[str, str]]:
    """License plate when present, otherwise the origin code from extra."""
    plate = (vehicle.license_plate or "").strip()
    if plate:
        return "license_plate", plate
    origin = (VehicleExtra.from_document(vehicle.extra).origin or "").strip()
    if origin:
        return "origin", origin
    return None


class CleanupVerifier:
    """
    Re-verify published vehicles absent from the valid set.

    Every kept vehicle is added to the tracker it was given, so a caller
    that runs more passes afterwards sees them as confirmed.
    """

    def __init__(
        self,
        client: CatalogClient,
        reconciler: Reconciler,
        grace_hours: Optional[float] = None,
        lookup_delay: Optional[float] = None,
    ):
        self.client = client
        self.reconciler = reconciler
        self.store = reconciler.store
        self.grace_hours = grace_hours if grace_hours is not None else settings.CLEANUP_GRACE_HOURS
        self.lookup_delay = lookup_delay if lookup_delay is not None else settings.CLEANUP_LOOKUP_DELAY
        self.failures: List[Tuple[str, str]] = []

    async def lookup(self, vehicle: Vehicle) -> Optional[CatalogVehicle]:
        key = lookup_key(vehicle)
        if key is None:
            return None
        key_type, value = key
        if key_type == "license_plate":
            return await self.client.find_by_license_plate(value)
        return await self.client.find_by_origin(value)

    async def run(
        self,
        tracker: ValidSetTracker,
        stats: Optional[CleanupStats] = None,
        now: Optional[datetime] = None,
    ) -> CleanupStats:
        stats = stats if stats is not None else CleanupStats()

        if tracker.is_empty:
            stats.skipped = True
            stats.skip_reason = "valid set is empty"
            logger.warning("[Cleanup] Valid set is empty; skipping cleanup to avoid mass archival")
            return stats

        cutoff = (now or datetime.utcnow()) - timedelta(hours=self.grace_hours)
        candidates = await self.store.cleanup_candidates(tracker.snapshot(), cutoff)
        stats.candidates = len(candidates)
        logger.info(
            f"[Cleanup] {len(candidates)} published vehicles not confirmed this run "
            f"(valid set {len(tracker)}, grace {self.grace_hours}h)"
        )

        for index, vehicle in enumerate(candidates):
            try:
                await self.verify(vehicle, tracker, stats)
            except DatabaseConnectionError:
                raise
            except DatabaseError as e:
                stats.errors += 1
                self.failures.append((vehicle.external_id, e.message))
                logger.error(f"[Cleanup] Could not update vehicle {vehicle.external_id}: {e.message}")

            if self.lookup_delay and index < len(candidates) - 1:
                await asyncio.sleep(self.lookup_delay)

        logger.info(
            f"[Cleanup] Done: {stats.kept} kept ({stats.kept_by_flag} by flag), "
            f"{stats.reactivated} reactivated, {stats.archived} archived {stats.archive_reasons}, "
            f"{stats.errors} errors"
        )
        return stats

    async def verify(self, vehicle: Vehicle, tracker: ValidSetTracker, stats: CleanupStats):
        external_id = vehicle.external_id
        extra = VehicleExtra.from_document(vehicle.extra)

        if extra.keep_published:
            tracker.add(external_id)
            stats.kept += 1
            stats.kept_by_flag += 1
            logger.info(f"[Cleanup] Vehicle {external_id} kept: keep_published is set")
            return

        key = lookup_key(vehicle)
        if key is None:
            await self._withdraw(vehicle, CleanupReason.NO_LOOKUP_KEY, "no license plate or origin code", stats)
            return

        key_type, value = key
        try:
            record = await self.lookup(vehicle)
        except CatalogError as e:
            await self._withdraw(vehicle, CleanupReason.RECHECK_FAILED, f"{key_type} {value}: {e.message}", stats)
            return

        if record is None or record.external_id != external_id:
            found = "" if record is None else f" (matched record {record.external_id})"
            await self._withdraw(
                vehicle, CleanupReason.ABSENT_FROM_FEED, f"{key_type} {value} not found{found}", stats
            )
            return

        verdict = self.reconciler.evaluate(record)
        if not verdict.admit:
            await self._withdraw(
                vehicle,
                CleanupReason.FILTERED_ON_RECHECK,
                f"{verdict.reason.value}: {verdict.detail}",
                stats,
            )
            return

        if vehicle.status == VehicleStatus.ARCHIVED:
            await self.reconciler.reactivate_vehicle(vehicle)
            stats.reactivated += 1
        tracker.add(external_id)
        stats.kept += 1
        logger.info(f"[Cleanup] Vehicle {external_id} confirmed by {key_type} lookup; kept")

    async def _withdraw(self, vehicle: Vehicle, reason: CleanupReason, verification: str, stats: CleanupStats):
        await self.reconciler.archive_vehicle(vehicle, reason.value, verification)
        stats.archived += 1
        stats.archive_reasons[reason.value] = stats.archive_reasons.get(reason.value, 0) + 1
        logger.warning(f"[Cleanup] Vehicle {vehicle.external_id} archived ({reason.value}): {verification}")

    async def reactivation_sweep(
        self,
        tracker: ValidSetTracker,
        stats: CleanupStats,
        limit: Optional[int] = None,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Look up vehicles a previous cleanup withdrew and restore the ones the
        catalog lists again. A failed lookup leaves the vehicle archived.
        """
        limit = limit or settings.REACTIVATION_SWEEP_LIMIT
        window_days = window_days or settings.REACTIVATION_WINDOW_DAYS
        since = (now or datetime.utcnow()) - timedelta(days=window_days)

        candidates = await self.store.reactivation_candidates(tracker.snapshot(), CLEANUP_REASONS, since, limit)
        logger.info(f"[Reactivation] Checking {len(candidates)} archived vehicles (window {window_days}d)")

        reactivated = 0
        for index, vehicle in enumerate(candidates):
            stats.sweep_checked += 1
            try:
                record = await self.lookup(vehicle)
            except CatalogError as e:
                logger.warning(f"[Reactivation] Lookup for {vehicle.external_id} failed: {e.message}")
                continue

            if record is not None and record.external_id == vehicle.external_id:
                verdict = self.reconciler.evaluate(record)
                if verdict.admit:
                    result = await self.reconciler.reconcile(record, incremental=False, verdict=verdict)
                    tracker.add(result.external_id)
                    reactivated += 1
                    logger.info(f"[Reactivation] Vehicle {vehicle.external_id} is listed again; reactivated")

            if self.lookup_delay and index < len(candidates) - 1:
                await asyncio.sleep(self.lookup_delay)

        stats.sweep_reactivated += reactivated
        logger.info(f"[Reactivation] {reactivated} of {len(candidates)} vehicles reactivated")
        return reactivated
