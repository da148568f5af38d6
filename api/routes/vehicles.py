"""
Read-only vehicle listing.

Re-applies a subset of the admission rules on top of status='published':
a non-empty license plate, at least one stored image, and no blocked
location substring anywhere in the extra document. The location check is a
plain substring match over the serialized JSON; it is a second line of
defence only, the Reconciler decides what is published.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, exists, cast, String
from api.dependencies import get_db
from core.config import settings
from ingestion.loaders.vehicle_store import VehicleStore
from models.base import VehicleStatus
from models.vehicle import Vehicle, VehicleImage
from schemas.api import VehicleResponse, VehicleListResponse, PaginationMetadata
from typing import List, Optional
import time
import math
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


def listable_filters(blocked_locations: Optional[List[str]] = None) -> list:
    blocked_locations = settings.BLOCKED_LOCATIONS if blocked_locations is None else blocked_locations
    filters = [
        Vehicle.status == VehicleStatus.PUBLISHED,
        Vehicle.license_plate.isnot(None),
        func.trim(Vehicle.license_plate) != "",
        exists().where(VehicleImage.vehicle_id == Vehicle.id),
    ]
    for location in blocked_locations:
        if location.strip():
            filters.append(~cast(Vehicle.extra, String).ilike(f"%{location.strip()}%"))
    return filters


async def _to_response(store: VehicleStore, vehicle: Vehicle) -> VehicleResponse:
    return VehicleResponse(
        id=vehicle.id,
        external_id=vehicle.external_id,
        title=vehicle.title,
        description=vehicle.description,
        status=vehicle.status,
        year=vehicle.year,
        kilometres=vehicle.kilometres,
        license_plate=vehicle.license_plate,
        price_usd=vehicle.price_usd,
        price_ars=vehicle.price_ars,
        featured_image_id=vehicle.featured_image_id,
        taxonomies=await store.taxonomy_names(vehicle.id),
        images=await store.image_urls(vehicle.id),
        last_synced_at=vehicle.last_synced_at,
        updated_at=vehicle.updated_at,
    )


@router.get("", response_model=VehicleListResponse)
async def list_vehicles(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in title"),
    db: AsyncSession = Depends(get_db)
):
    """Published vehicles that pass the read-side checks, newest first."""
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "-")

    filters = listable_filters()
    if search:
        filters.append(Vehicle.title.ilike(f"%{search}%"))

    count_result = await db.execute(select(func.count()).select_from(Vehicle).where(and_(*filters)))
    total_items = count_result.scalar() or 0
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0

    result = await db.execute(
        select(Vehicle)
        .where(and_(*filters))
        .order_by(Vehicle.updated_at.desc(), Vehicle.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    store = VehicleStore(db)
    items = [await _to_response(store, vehicle) for vehicle in result.scalars().all()]

    logger.info(
        f"[{request_id}] GET /vehicles returned {len(items)} of {total_items} "
        f"({(time.time() - start_time) * 1000:.2f}ms)"
    )

    return VehicleListResponse(
        items=items,
        pagination=PaginationMetadata(
            current_page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1
        )
    )


@router.get("/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(vehicle_id: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Vehicle).where(Vehicle.id == vehicle_id, *listable_filters()))
    vehicle = result.scalar_one_or_none()
    if vehicle is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return await _to_response(VehicleStore(db), vehicle)
