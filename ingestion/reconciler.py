"""
Per-record state machine between the catalog feed and the local store.

For one catalog record and whatever row exists for it locally:

    absent   + rejected  -> nothing
    existing + rejected  -> archive (filter_reason recorded, nothing else touched)
    archived + admitted  -> reactivate, then continue as admitted
    any      + admitted  -> unchanged fingerprint in incremental mode: refresh
                            last_synced_at only; otherwise upsert fields,
                            taxonomies and the image set

Each call is one transaction. The reconciler is the only writer of
Vehicle.status; the cleanup pass goes through `archive_vehicle` and
`reactivate_vehicle`.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import enum
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import SyncException, RecordValidationError
from ingestion.loaders.vehicle_store import VehicleStore, wrap_store_error
from ingestion.transformers.filters import VehicleFilter, FilterResult, FilterReason
from ingestion.transformers.fingerprint import compute_fingerprint
from ingestion.transformers.normalizer import VehicleNormalizer
from models.base import VehicleStatus
from models.vehicle import Vehicle
from schemas.catalog import CatalogVehicle
from schemas.vehicle import NormalizedVehicle, VehicleExtra

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    ARCHIVED = "archived"
    SKIPPED = "skipped"  # rejected and never stored


@dataclass
class ReconcileResult:
    external_id: str
    outcome: ReconcileOutcome
    admitted: bool
    reason: Optional[FilterReason] = None
    reactivated: bool = False
    vehicle_id: Optional[int] = None
    images_enqueued: int = 0
    images_removed: int = 0
    changed: bool = True


class Reconciler:
    """
    Apply one catalog record to the local store.

    Attributes:
        vehicle_filter: Admission rules (defaults to the configured filter)
        normalizer: Maps records to column values
    """

    def __init__(
        self,
        db_session: AsyncSession,
        vehicle_filter: Optional[VehicleFilter] = None,
        normalizer: Optional[VehicleNormalizer] = None,
    ):
        self.db = db_session
        self.store = VehicleStore(db_session)
        self.filter = vehicle_filter or VehicleFilter.from_settings()
        self.normalizer = normalizer or VehicleNormalizer()

    def evaluate(self, record: CatalogVehicle) -> FilterResult:
        return self.filter.evaluate(record)

    async def reconcile(
        self,
        record: CatalogVehicle,
        incremental: bool = False,
        verdict: Optional[FilterResult] = None,
    ) -> ReconcileResult:
        """
        Reconcile one record and commit.

        Args:
            record: The catalog record
            incremental: Skip the write path when the fingerprint is unchanged
            verdict: A filter result computed earlier in the run, reused so
                retries do not re-evaluate

        Raises:
            RecordValidationError: the record has no identifier
            DatabaseError (or a retryable subclass): the write failed; the
                session has been rolled back
        """
        if not record.external_id:
            raise RecordValidationError("Catalog record has no identifier", context={"field_name": "id"})

        verdict = verdict or self.evaluate(record)

        try:
            result = await self._apply(record, incremental, verdict)
            await self.db.commit()
            return result
        except SyncException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise wrap_store_error(e, "reconcile", record.external_id)

    async def _apply(self, record: CatalogVehicle, incremental: bool, verdict: FilterResult) -> ReconcileResult:
        external_id = record.external_id
        vehicle = await self.store.get_by_external_id(external_id)

        # ----- Rejected -----
        if not verdict.admit:
            if vehicle is None:
                logger.debug(f"Skipping {external_id}: {verdict.reason.value} ({verdict.detail})")
                return ReconcileResult(external_id, ReconcileOutcome.SKIPPED, False, verdict.reason)

            current_reason = (vehicle.extra or {}).get("filter_reason")
            if vehicle.status == VehicleStatus.ARCHIVED and current_reason == verdict.reason.value:
                return ReconcileResult(
                    external_id, ReconcileOutcome.ARCHIVED, False, verdict.reason, vehicle_id=vehicle.id, changed=False
                )

            self._archive(vehicle, verdict.reason.value)
            logger.warning(f"Vehicle {external_id} archived by filter: {verdict.detail}")
            return ReconcileResult(external_id, ReconcileOutcome.ARCHIVED, False, verdict.reason, vehicle_id=vehicle.id)

        # ----- Admitted -----
        reactivated = False
        if vehicle is not None and vehicle.status == VehicleStatus.ARCHIVED:
            self._reactivate(vehicle)
            reactivated = True
            logger.info(f"Vehicle {external_id} reactivated (passes filters again)")

        fingerprint = compute_fingerprint(record, self.filter.active_statuses)
        now = datetime.utcnow()

        # A reactivated vehicle always takes the write path
        if incremental and not reactivated and vehicle is not None and vehicle.version_fingerprint == fingerprint:
            vehicle.last_synced_at = now
            await self.db.flush()
            return ReconcileResult(
                external_id, ReconcileOutcome.UNCHANGED, True, reactivated=reactivated, vehicle_id=vehicle.id
            )

        normalized = self.normalizer.normalize(record)

        if vehicle is None:
            vehicle = await self._create(normalized, fingerprint, now)
            await self.store.replace_taxonomies(vehicle.id, normalized.taxonomies)
            enqueued = await self.store.enqueue_images(vehicle.id, normalized.image_urls)
            logger.info(f"Created vehicle {external_id} (id {vehicle.id}), {enqueued} images queued")
            return ReconcileResult(
                external_id, ReconcileOutcome.CREATED, True, vehicle_id=vehicle.id, images_enqueued=enqueued
            )

        self._update(vehicle, normalized, fingerprint, now)
        await self.db.flush()
        await self.store.replace_taxonomies(vehicle.id, normalized.taxonomies)
        removed, enqueued = await self._reconcile_images(vehicle, normalized.image_urls)
        logger.debug(f"Updated vehicle {external_id}: -{removed} images, {enqueued} queued")
        return ReconcileResult(
            external_id,
            ReconcileOutcome.UPDATED,
            True,
            reactivated=reactivated,
            vehicle_id=vehicle.id,
            images_enqueued=enqueued,
            images_removed=removed,
        )

    async def _create(self, normalized: NormalizedVehicle, fingerprint: str, now: datetime) -> Vehicle:
        vehicle = Vehicle(
            external_id=normalized.external_id,
            title=normalized.title,
            description=normalized.description,
            status=VehicleStatus.PUBLISHED,
            year=normalized.year,
            kilometres=normalized.kilometres,
            license_plate=normalized.license_plate,
            price_usd=normalized.price_usd,
            price_ars=normalized.price_ars,
            version_fingerprint=fingerprint,
            last_synced_at=now,
            external_updated_at=now,
            extra=normalized.extra.to_document(),
            created_at=now,
            updated_at=now,
        )
        return await self.store.add(vehicle)

    @staticmethod
    def _update(vehicle: Vehicle, normalized: NormalizedVehicle, fingerprint: str, now: datetime):
        vehicle.title = normalized.title
        vehicle.description = normalized.description
        vehicle.status = VehicleStatus.PUBLISHED
        vehicle.year = normalized.year
        vehicle.kilometres = normalized.kilometres
        vehicle.license_plate = normalized.license_plate
        vehicle.price_usd = normalized.price_usd
        vehicle.price_ars = normalized.price_ars
        vehicle.version_fingerprint = fingerprint
        vehicle.last_synced_at = now
        vehicle.external_updated_at = now
        vehicle.updated_at = now
        current = VehicleExtra.from_document(vehicle.extra)
        vehicle.extra = current.cleared().with_snapshot(normalized.extra).to_document()

    async def _reconcile_images(self, vehicle: Vehicle, new_urls):
        """Drop images the feed no longer lists; queue only URLs never stored."""
        existing = await self.store.image_urls(vehicle.id)
        new_set = set(new_urls)
        existing_set = set(existing)

        obsolete = [url for url in existing if url not in new_set]
        fresh = [url for url in new_urls if url not in existing_set]

        removed = await self.store.delete_images(vehicle, obsolete)
        if removed:
            logger.info(f"Removed {removed} obsolete images from vehicle {vehicle.id}")
        enqueued = await self.store.replace_pending(vehicle.id, fresh)
        return removed, enqueued

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    @staticmethod
    def _archive(vehicle: Vehicle, reason: str, verification: Optional[str] = None):
        extra = VehicleExtra.from_document(vehicle.extra)
        vehicle.status = VehicleStatus.ARCHIVED
        vehicle.extra = extra.archived(reason, verification).to_document()
        vehicle.updated_at = datetime.utcnow()

    @staticmethod
    def _reactivate(vehicle: Vehicle):
        extra = VehicleExtra.from_document(vehicle.extra)
        vehicle.status = VehicleStatus.PUBLISHED
        vehicle.extra = extra.cleared().to_document()
        vehicle.updated_at = datetime.utcnow()

    async def archive_vehicle(self, vehicle: Vehicle, reason: str, verification: Optional[str] = None):
        """Withdraw a vehicle outside the per-record path (cleanup) and commit."""
        try:
            self._archive(vehicle, reason, verification)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise wrap_store_error(e, "archive", vehicle.external_id)

    async def reactivate_vehicle(self, vehicle: Vehicle):
        """Publish an archived vehicle again (cleanup recheck) and commit."""
        try:
            self._reactivate(vehicle)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise wrap_store_error(e, "reactivate", vehicle.external_id)
