"""
Data access for the local vehicle catalog.

Statements only: nothing here commits. The reconciler and the image
pipeline own the transaction boundaries.
"""

from typing import Dict, Iterable, List, Optional, Set
from datetime import datetime
import re
import unicodedata

from sqlalchemy import select, delete, func, or_, and_
from sqlalchemy.exc import SQLAlchemyError, OperationalError, DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DatabaseError, DatabaseConnectionError, DeadlockError

from models.base import VehicleStatus, TaxonomyCategory
from models.vehicle import Vehicle, VehicleImage, PendingImage
from models.taxonomy import TaxonomyTerm, VehicleTaxonomyAssignment
import logging

logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^\w\s-]", "", value).strip().lower()
    return re.sub(r"[-\s]+", "-", value)[:255]


def wrap_store_error(e: SQLAlchemyError, operation: str, external_id: Optional[str] = None) -> DatabaseError:
    """Translate a SQLAlchemy error into the sync error hierarchy"""
    context = {"operation": operation, "external_id": external_id}
    message = str(e).lower()
    if "deadlock" in message or "could not serialize" in message or "database is locked" in message:
        return DeadlockError(f"Transaction conflict during {operation}", context=context, original_exception=e)
    if isinstance(e, OperationalError) or (isinstance(e, DBAPIError) and e.connection_invalidated):
        return DatabaseConnectionError(f"Store unreachable during {operation}", context=context, original_exception=e)
    return DatabaseError(f"Store error during {operation}", context=context, original_exception=e)


class VehicleStore:
    """
    Queries and writes used by the sync engine.

    Ensures:
    - One TaxonomyTerm per (taxonomy, name)
    - One assignment per (vehicle, taxonomy)
    - One VehicleImage per (vehicle, URL)
    - The featured reference always points at an existing image or is empty
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    async def get_by_external_id(self, external_id: str) -> Optional[Vehicle]:
        result = await self.db.execute(select(Vehicle).where(Vehicle.external_id == external_id))
        return result.scalar_one_or_none()

    async def get(self, vehicle_id: int) -> Optional[Vehicle]:
        return await self.db.get(Vehicle, vehicle_id)

    async def add(self, vehicle: Vehicle) -> Vehicle:
        self.db.add(vehicle)
        await self.db.flush()
        return vehicle

    async def cleanup_candidates(self, valid_ids: Set[str], updated_before: datetime) -> List[Vehicle]:
        """
        Published vehicles that were not confirmed this run and have not
        been touched since `updated_before`.
        """
        result = await self.db.execute(
            select(Vehicle)
            .where(
                Vehicle.status == VehicleStatus.PUBLISHED,
                or_(Vehicle.updated_at < updated_before, Vehicle.updated_at.is_(None)),
            )
            .order_by(Vehicle.id)
        )
        # Filtered here rather than with NOT IN: the valid set can be thousands of ids
        return [v for v in result.scalars().all() if v.external_id not in valid_ids]

    async def reactivation_candidates(
        self,
        valid_ids: Set[str],
        withdrawn_reasons: Iterable[str],
        updated_after: datetime,
        limit: int,
    ) -> List[Vehicle]:
        """
        Archived vehicles that may have been withdrawn by mistake: recent
        ones, or ones withdrawn by the cleanup pass.
        """
        result = await self.db.execute(
            select(Vehicle)
            .where(
                Vehicle.status == VehicleStatus.ARCHIVED,
                Vehicle.updated_at >= updated_after,
            )
            .order_by(Vehicle.updated_at.desc())
        )
        reasons = set(withdrawn_reasons)
        candidates = []
        for vehicle in result.scalars().all():
            if vehicle.external_id in valid_ids:
                continue
            extra = vehicle.extra or {}
            if extra.get("filter_reason") in reasons or extra.get("cleanup_verification"):
                candidates.append(vehicle)
            if len(candidates) >= limit:
                break
        return candidates

    # ------------------------------------------------------------------
    # Taxonomies
    # ------------------------------------------------------------------

    async def get_or_create_term(self, taxonomy: str, name: str) -> int:
        name = name.strip()
        result = await self.db.execute(
            select(TaxonomyTerm.id).where(TaxonomyTerm.taxonomy == taxonomy, TaxonomyTerm.name == name)
        )
        term_id = result.scalar_one_or_none()
        if term_id is not None:
            return term_id

        term = TaxonomyTerm(taxonomy=taxonomy, name=name, slug=slugify(name) or taxonomy)
        self.db.add(term)
        await self.db.flush()
        return term.id

    async def replace_taxonomies(self, vehicle_id: int, terms: Dict[str, str]):
        """Delete + insert per category. Categories absent from `terms` end up unassigned."""
        for category in TaxonomyCategory:
            await self.db.execute(
                delete(VehicleTaxonomyAssignment).where(
                    VehicleTaxonomyAssignment.vehicle_id == vehicle_id,
                    VehicleTaxonomyAssignment.taxonomy == category.value,
                )
            )
            name = terms.get(category.value)
            if not name:
                continue
            term_id = await self.get_or_create_term(category.value, name)
            self.db.add(VehicleTaxonomyAssignment(vehicle_id=vehicle_id, taxonomy=category.value, term_id=term_id))
        await self.db.flush()

    async def taxonomy_names(self, vehicle_id: int) -> Dict[str, str]:
        result = await self.db.execute(
            select(VehicleTaxonomyAssignment.taxonomy, TaxonomyTerm.name)
            .join(TaxonomyTerm, TaxonomyTerm.id == VehicleTaxonomyAssignment.term_id)
            .where(VehicleTaxonomyAssignment.vehicle_id == vehicle_id)
        )
        return {taxonomy: name for taxonomy, name in result.all()}

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def image_urls(self, vehicle_id: int) -> List[str]:
        result = await self.db.execute(
            select(VehicleImage.image_url).where(VehicleImage.vehicle_id == vehicle_id).order_by(VehicleImage.sort_order)
        )
        return list(result.scalars().all())

    async def find_image(self, vehicle_id: int, image_url: str) -> Optional[VehicleImage]:
        result = await self.db.execute(
            select(VehicleImage).where(VehicleImage.vehicle_id == vehicle_id, VehicleImage.image_url == image_url).limit(1)
        )
        return result.scalar_one_or_none()

    async def next_sort_order(self, vehicle_id: int) -> int:
        result = await self.db.execute(
            select(func.max(VehicleImage.sort_order)).where(VehicleImage.vehicle_id == vehicle_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def delete_images(self, vehicle: Vehicle, urls: Iterable[str]) -> int:
        """Remove images by URL and repair the featured reference if it was among them."""
        urls = list(urls)
        if not urls:
            return 0

        result = await self.db.execute(
            delete(VehicleImage).where(VehicleImage.vehicle_id == vehicle.id, VehicleImage.image_url.in_(urls))
        )
        await self.db.flush()

        if vehicle.featured_image_id is not None:
            still_there = await self.db.execute(
                select(VehicleImage.id).where(VehicleImage.id == vehicle.featured_image_id)
            )
            if still_there.scalar_one_or_none() is None:
                await self.promote_featured(vehicle)

        return result.rowcount or 0

    async def promote_featured(self, vehicle: Vehicle) -> Optional[VehicleImage]:
        """Make the first remaining image featured, or clear the reference."""
        result = await self.db.execute(
            select(VehicleImage).where(VehicleImage.vehicle_id == vehicle.id).order_by(VehicleImage.sort_order, VehicleImage.id).limit(1)
        )
        image = result.scalar_one_or_none()
        vehicle.featured_image_id = image.id if image else None
        if image is not None:
            image.is_featured = True
        await self.db.flush()
        return image

    # ------------------------------------------------------------------
    # Pending image queue
    # ------------------------------------------------------------------

    async def pending_urls(self, vehicle_id: int) -> List[str]:
        result = await self.db.execute(
            select(PendingImage.image_url).where(PendingImage.vehicle_id == vehicle_id).order_by(PendingImage.id)
        )
        return list(result.scalars().all())

    async def enqueue_images(self, vehicle_id: int, urls: Iterable[str]) -> int:
        """Queue URLs not already queued for this vehicle."""
        queued = set(await self.pending_urls(vehicle_id))
        added = 0
        for url in urls:
            if url in queued:
                continue
            self.db.add(PendingImage(vehicle_id=vehicle_id, image_url=url))
            queued.add(url)
            added += 1
        await self.db.flush()
        return added

    async def replace_pending(self, vehicle_id: int, urls: Iterable[str]) -> int:
        """Make the queue for this vehicle exactly `urls`."""
        urls = list(urls)
        stale = delete(PendingImage).where(PendingImage.vehicle_id == vehicle_id)
        if urls:
            stale = stale.where(PendingImage.image_url.notin_(urls))
        await self.db.execute(stale)
        return await self.enqueue_images(vehicle_id, urls)

    async def pending_queue(self) -> List[PendingImage]:
        result = await self.db.execute(select(PendingImage).order_by(PendingImage.id))
        return list(result.scalars().all())

    async def delete_pending(self, vehicle_id: int, image_url: str):
        await self.db.execute(
            delete(PendingImage).where(
                and_(PendingImage.vehicle_id == vehicle_id, PendingImage.image_url == image_url)
            )
        )
