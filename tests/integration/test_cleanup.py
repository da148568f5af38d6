"""
Integration tests for the post-run cleanup verification
"""

import httpx
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from core.exceptions import CatalogLookupError
from ingestion.extractors.catalog_client import CatalogClient
from ingestion.cleanup import CleanupVerifier, lookup_key
from ingestion.reconciler import Reconciler
from ingestion.tracker import ValidSetTracker
from models.base import VehicleStatus
from models.vehicle import Vehicle
from schemas.sync import CleanupStats

LATER = datetime.utcnow() + timedelta(hours=72)


def mock_client(by_plate=None, by_origin=None):
    client = MagicMock()
    client.find_by_license_plate = AsyncMock(return_value=by_plate)
    client.find_by_origin = AsyncMock(return_value=by_origin)
    return client


@pytest.fixture
def reconciler(db_session, vehicle_filter):
    return Reconciler(db_session, vehicle_filter)


@pytest_asyncio.fixture
async def published(reconciler, record_factory):
    """Vehicle 1001 published by an earlier run; vehicle 2002 confirmed this run"""
    await reconciler.reconcile(record_factory())
    await reconciler.reconcile(record_factory(id=2002, license_plate="ZZZ999", origin="ORG-2002"))
    return ValidSetTracker(["2002"])


def verifier(client, reconciler):
    return CleanupVerifier(client, reconciler, grace_hours=48, lookup_delay=0)


async def status_of(reconciler, external_id):
    return (await reconciler.store.get_by_external_id(external_id)).status


@pytest.mark.asyncio
async def test_empty_valid_set_skips_cleanup(reconciler, published):
    client = mock_client()

    stats = await verifier(client, reconciler).run(ValidSetTracker(), now=LATER)

    assert stats.skipped is True
    assert stats.skip_reason == "valid set is empty"
    assert stats.archived == 0
    client.find_by_license_plate.assert_not_called()
    assert await status_of(reconciler, "1001") == VehicleStatus.PUBLISHED


@pytest.mark.asyncio
async def test_vehicle_found_by_lookup_is_kept(reconciler, published, record_factory):
    client = mock_client(by_plate=record_factory())

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.candidates == 1
    assert stats.kept == 1
    assert stats.archived == 0
    assert "1001" in published
    client.find_by_license_plate.assert_awaited_once_with("ABC123")
    assert await status_of(reconciler, "1001") == VehicleStatus.PUBLISHED


@pytest.mark.asyncio
async def test_absent_vehicle_is_archived(reconciler, published):
    stats = await verifier(mock_client(by_plate=None), reconciler).run(published, now=LATER)

    assert stats.archived == 1
    assert stats.archive_reasons == {"absent_from_feed": 1}
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.status == VehicleStatus.ARCHIVED
    assert vehicle.extra["filter_reason"] == "absent_from_feed"
    assert "ABC123" in vehicle.extra["cleanup_verification"]
    assert await status_of(reconciler, "2002") == VehicleStatus.PUBLISHED


@pytest.mark.asyncio
async def test_lookup_matching_another_record_counts_as_absent(reconciler, published, record_factory):
    client = mock_client(by_plate=record_factory(id=3003))

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.archive_reasons == {"absent_from_feed": 1}
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert "3003" in vehicle.extra["cleanup_verification"]


@pytest.mark.asyncio
async def test_vehicle_failing_filters_on_recheck_is_archived(reconciler, published, record_factory):
    client = mock_client(by_plate=record_factory(stocks=[{"status": "ACTIVE", "location_name": "Deposito Norte"}]))

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.archive_reasons == {"filtered_on_recheck": 1}
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.extra["filter_reason"] == "filtered_on_recheck"
    assert vehicle.extra["cleanup_verification"].startswith("blocked_location")


@pytest.mark.asyncio
async def test_failed_lookup_archives_as_recheck_failed(reconciler, published):
    client = mock_client()
    client.find_by_license_plate = AsyncMock(side_effect=CatalogLookupError("3 consecutive page errors"))

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.archive_reasons == {"recheck_failed": 1}
    assert await status_of(reconciler, "1001") == VehicleStatus.ARCHIVED


@pytest.mark.asyncio
async def test_lookup_with_unreadable_page_archives_as_recheck_failed(reconciler, published, payload_factory):
    client = CatalogClient(api_url="https://catalog.example.com/api", api_key="k", retry_delay=0, page_delay=0)
    other = httpx.Response(
        200,
        json={"data": [payload_factory(id=3003, license_plate="QQQ111")], "meta": {"current_page": 2, "total_pages": 2}},
    )

    with patch("httpx.AsyncClient") as mock_http:
        mock_http.return_value.__aenter__.return_value.get = AsyncMock(side_effect=[
            httpx.RemoteProtocolError("Server disconnected without sending a response."),
            other,
        ])
        stats = await verifier(client, reconciler).run(published, now=LATER)

    # Page 1 was never read, so the absence is not confirmed
    assert stats.archive_reasons == {"recheck_failed": 1}
    assert await status_of(reconciler, "1001") == VehicleStatus.ARCHIVED


@pytest.mark.asyncio
async def test_vehicle_without_lookup_key_is_archived(db_session, reconciler, published):
    vehicle = await reconciler.store.get_by_external_id("1001")
    vehicle.license_plate = None
    vehicle.extra = {key: value for key, value in vehicle.extra.items() if key != "origin"}
    await db_session.commit()
    client = mock_client()

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.archive_reasons == {"no_lookup_key": 1}
    client.find_by_license_plate.assert_not_called()
    client.find_by_origin.assert_not_called()


@pytest.mark.asyncio
async def test_origin_is_used_without_plate(db_session, reconciler, published, record_factory):
    vehicle = await reconciler.store.get_by_external_id("1001")
    vehicle.license_plate = "  "
    await db_session.commit()
    client = mock_client(by_origin=record_factory())

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.kept == 1
    client.find_by_origin.assert_awaited_once_with("ORG-1001")
    client.find_by_license_plate.assert_not_called()


@pytest.mark.asyncio
async def test_keep_published_flag_exempts_vehicle(db_session, reconciler, published):
    vehicle = await reconciler.store.get_by_external_id("1001")
    vehicle.extra = {**vehicle.extra, "keep_published": True}
    await db_session.commit()
    client = mock_client()

    stats = await verifier(client, reconciler).run(published, now=LATER)

    assert stats.kept_by_flag == 1
    assert stats.archived == 0
    assert "1001" in published
    client.find_by_license_plate.assert_not_called()


@pytest.mark.asyncio
async def test_recently_updated_vehicles_are_not_candidates(reconciler, published):
    client = mock_client()

    stats = await verifier(client, reconciler).run(published)

    assert stats.candidates == 0
    assert await status_of(reconciler, "1001") == VehicleStatus.PUBLISHED


@pytest.mark.asyncio
async def test_reactivation_sweep_restores_listed_vehicle(reconciler, published, record_factory):
    await verifier(mock_client(by_plate=None), reconciler).run(published, now=LATER)
    assert await status_of(reconciler, "1001") == VehicleStatus.ARCHIVED

    cleanup = verifier(mock_client(by_plate=record_factory()), reconciler)
    tracker = ValidSetTracker(["2002"])
    stats = CleanupStats()

    reactivated = await cleanup.reactivation_sweep(tracker, stats, limit=10, window_days=7)

    assert reactivated == 1
    assert stats.sweep_checked == 1
    assert stats.sweep_reactivated == 1
    assert "1001" in tracker
    vehicle = await reconciler.store.get_by_external_id("1001")
    assert vehicle.status == VehicleStatus.PUBLISHED
    assert "filter_reason" not in vehicle.extra


@pytest.mark.asyncio
async def test_reactivation_sweep_leaves_vehicle_archived_on_lookup_failure(reconciler, published):
    await verifier(mock_client(by_plate=None), reconciler).run(published, now=LATER)
    client = mock_client()
    client.find_by_license_plate = AsyncMock(side_effect=CatalogLookupError("down"))
    cleanup = verifier(client, reconciler)
    stats = CleanupStats()

    reactivated = await cleanup.reactivation_sweep(ValidSetTracker(), stats, limit=10, window_days=7)

    assert reactivated == 0
    assert stats.sweep_checked == 1
    assert await status_of(reconciler, "1001") == VehicleStatus.ARCHIVED


def test_lookup_key_prefers_plate():
    assert lookup_key(Vehicle(license_plate="AB123", extra={"origin": "O-1"})) == ("license_plate", "AB123")
    assert lookup_key(Vehicle(license_plate="", extra={"origin": "O-1"})) == ("origin", "O-1")
    assert lookup_key(Vehicle(license_plate=None, extra={})) is None
