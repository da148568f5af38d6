"""
Integration tests for the per-record reconciler (SQLite store)
"""

import pytest
from sqlalchemy import select, func
from core.exceptions import RecordValidationError
from ingestion.reconciler import Reconciler, ReconcileOutcome
from ingestion.transformers.filters import FilterReason
from models.base import VehicleStatus
from models.taxonomy import TaxonomyTerm, VehicleTaxonomyAssignment
from models.vehicle import Vehicle, VehicleImage, PendingImage


async def count(session, model, *where):
    result = await session.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar()


async def pending_urls(session, vehicle_id):
    result = await session.execute(
        select(PendingImage.image_url).where(PendingImage.vehicle_id == vehicle_id).order_by(PendingImage.id)
    )
    return list(result.scalars().all())


async def store_image(session, vehicle, url, featured=False, sort_order=0):
    image = VehicleImage(vehicle_id=vehicle.id, image_url=url, file_path=f"/tmp/{sort_order}.jpg", sort_order=sort_order)
    session.add(image)
    await session.flush()
    if featured:
        image.is_featured = True
        vehicle.featured_image_id = image.id
    await session.commit()
    return image


@pytest.mark.asyncio
async def test_admitted_record_creates_vehicle_and_queues_images(db_session, vehicle_filter, record_factory):
    """Active stock at Central Branch, price 5000, plate ABC123, two images"""
    reconciler = Reconciler(db_session, vehicle_filter)
    record = record_factory(stocks=[{"status": "active", "location_name": "Central Branch"}])

    result = await reconciler.reconcile(record)

    assert result.outcome == ReconcileOutcome.CREATED
    assert result.admitted is True
    assert result.images_enqueued == 2

    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.status == VehicleStatus.PUBLISHED
    assert vehicle.title == "Toyota Corolla XEI 2.0"
    assert vehicle.license_plate == "ABC123"
    assert vehicle.price_usd == 5000
    assert vehicle.version_fingerprint is not None
    assert vehicle.extra["origin"] == "ORG-1001"
    assert "filter_reason" not in vehicle.extra

    assert await pending_urls(db_session, vehicle.id) == [
        "https://cdn.example.com/cars/th-1001-a.jpg",
        "https://cdn.example.com/cars/th-1001-b.jpg",
    ]
    assert await reconciler.store.taxonomy_names(vehicle.id) == {
        "brand": "Toyota",
        "model": "Corolla",
        "condition": "Used",
        "transmission": "Manual",
        "fuel_type": "Nafta",
        "color": "Blanco",
        "segment": "Sedan",
    }


@pytest.mark.asyncio
async def test_rejected_unknown_record_is_a_noop(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)

    result = await reconciler.reconcile(record_factory(stocks=[]))

    assert result.outcome == ReconcileOutcome.SKIPPED
    assert result.reason == FilterReason.NO_ACTIVE_STOCK
    assert await count(db_session, Vehicle) == 0
    assert await count(db_session, PendingImage) == 0


@pytest.mark.asyncio
async def test_blocked_status_archives_and_keeps_images(db_session, vehicle_filter, record_factory):
    """Next run the active offer is RESERVED: archived, nothing else touched"""
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())
    vehicle = await reconciler.store.get_by_external_id("1001")
    await store_image(db_session, vehicle, "https://cdn.example.com/cars/th-1001-a.jpg", featured=True)
    title_before = vehicle.title
    fingerprint_before = vehicle.version_fingerprint

    reserved = record_factory(
        stocks=[{"status": "RESERVED", "location_name": "Central Branch"}],
        description="changed while reserved",
    )
    result = await reconciler.reconcile(reserved, incremental=True)

    assert result.outcome == ReconcileOutcome.ARCHIVED
    assert result.reason == FilterReason.BLOCKED_STATUS

    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.status == VehicleStatus.ARCHIVED
    assert vehicle.extra["filter_reason"] == "blocked_status"
    assert "archived_at" in vehicle.extra
    assert vehicle.title == title_before
    assert vehicle.version_fingerprint == fingerprint_before
    assert vehicle.description != "changed while reserved"
    assert await count(db_session, VehicleImage, VehicleImage.vehicle_id == vehicle.id) == 1
    assert vehicle.featured_image_id is not None


@pytest.mark.asyncio
async def test_archiving_again_for_the_same_reason_changes_nothing(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())
    rejected = record_factory(images=[])

    first = await reconciler.reconcile(rejected)
    archived_at = (await reconciler.store.get_by_external_id("1001")).extra["archived_at"]
    second = await reconciler.reconcile(rejected)

    assert first.changed is True
    assert second.outcome == ReconcileOutcome.ARCHIVED
    assert second.changed is False
    assert (await reconciler.store.get_by_external_id("1001")).extra["archived_at"] == archived_at


@pytest.mark.asyncio
async def test_reactivation_round_trip(db_session, vehicle_filter, record_factory):
    """Archived for its location, then re-synced from an allowed location"""
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())

    blocked = record_factory(stocks=[{"status": "ACTIVE", "location_name": "Deposito Norte"}])
    result = await reconciler.reconcile(blocked)
    assert result.reason == FilterReason.BLOCKED_LOCATION
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.status == VehicleStatus.ARCHIVED
    assert vehicle.extra["filter_reason"] == "blocked_location"

    moved = record_factory(stocks=[{"status": "ACTIVE", "location_name": "Sucursal Oeste"}])
    result = await reconciler.reconcile(moved, incremental=True)

    assert result.reactivated is True
    assert result.outcome == ReconcileOutcome.UPDATED
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.status == VehicleStatus.PUBLISHED
    assert "filter_reason" not in vehicle.extra
    assert "archived_at" not in vehicle.extra
    assert vehicle.extra["stock_info"][0]["location_name"] == "Sucursal Oeste"


@pytest.mark.asyncio
async def test_unchanged_record_only_refreshes_last_synced(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())
    vehicle = await reconciler.store.get_by_external_id("1001")
    updated_at = vehicle.updated_at
    synced_at = vehicle.last_synced_at
    extra = dict(vehicle.extra)
    pending = await count(db_session, PendingImage)
    assignments = await count(db_session, VehicleTaxonomyAssignment)

    shuffled = record_factory(images=list(reversed(record_factory().model_dump()["images"])))
    result = await reconciler.reconcile(shuffled, incremental=True)

    assert result.outcome == ReconcileOutcome.UNCHANGED
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.updated_at == updated_at
    assert vehicle.last_synced_at >= synced_at
    assert vehicle.extra == extra
    assert await count(db_session, PendingImage) == pending
    assert await count(db_session, VehicleTaxonomyAssignment) == assignments


@pytest.mark.asyncio
async def test_full_mode_rewrites_unchanged_record(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())

    result = await reconciler.reconcile(record_factory(), incremental=False)

    assert result.outcome == ReconcileOutcome.UPDATED


@pytest.mark.asyncio
async def test_image_set_reconciliation(db_session, vehicle_filter, record_factory):
    """Obsolete images are deleted, only never-stored URLs are queued"""
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory(images=[{"url": "https://x/a.jpg"}, {"url": "https://x/b.jpg"}]))
    vehicle = await reconciler.store.get_by_external_id("1001")
    image_a = await store_image(db_session, vehicle, "https://x/a.jpg", featured=True, sort_order=0)
    image_b = await store_image(db_session, vehicle, "https://x/b.jpg", sort_order=1)
    await reconciler.store.replace_pending(vehicle.id, [])
    await db_session.commit()

    result = await reconciler.reconcile(
        record_factory(images=[{"url": "https://x/b.jpg"}, {"url": "https://x/c.jpg"}]),
        incremental=True,
    )

    assert result.outcome == ReconcileOutcome.UPDATED
    assert result.images_removed == 1
    assert result.images_enqueued == 1
    assert await reconciler.store.image_urls(vehicle.id) == ["https://x/b.jpg"]
    assert await pending_urls(db_session, vehicle.id) == ["https://x/c.jpg"]

    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.featured_image_id == image_b.id
    assert vehicle.featured_image_id != image_a.id


@pytest.mark.asyncio
async def test_taxonomies_are_replaced_without_duplicates(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())
    await reconciler.reconcile(record_factory(car_transmission="Automatica", car_segment=None))
    await reconciler.reconcile(record_factory(car_transmission="Automatica", car_segment=None))

    vehicle = await reconciler.store.get_by_external_id("1001")
    names = await reconciler.store.taxonomy_names(vehicle.id)

    assert names["transmission"] == "Automatica"
    assert "segment" not in names
    assert await count(db_session, VehicleTaxonomyAssignment) == len(names)
    assert await count(db_session, TaxonomyTerm, TaxonomyTerm.taxonomy == "brand") == 1


@pytest.mark.asyncio
async def test_keep_published_flag_survives_updates(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)
    await reconciler.reconcile(record_factory())
    vehicle = await reconciler.store.get_by_external_id("1001")
    vehicle.extra = {**vehicle.extra, "keep_published": True, "dealer_note": "manual"}
    await db_session.commit()

    await reconciler.reconcile(record_factory(kilometres=47000))

    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.extra["keep_published"] is True
    assert vehicle.extra["dealer_note"] == "manual"
    assert vehicle.kilometres == 47000


@pytest.mark.asyncio
async def test_record_without_identifier(db_session, vehicle_filter, record_factory):
    reconciler = Reconciler(db_session, vehicle_filter)

    with pytest.raises(RecordValidationError):
        await reconciler.reconcile(record_factory(id=None))
