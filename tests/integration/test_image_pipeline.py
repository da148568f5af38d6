"""
Integration tests for the pending-image pipeline
"""

import httpx
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, patch
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, OperationalError
from core.exceptions import DatabaseConnectionError, ImageDownloadError, ImageStorageError
from ingestion.loaders.image_pipeline import ImageDownloader, ImagePipeline
from models.vehicle import Vehicle, VehicleImage, PendingImage


async def make_vehicle(session, external_id="1001"):
    vehicle = Vehicle(external_id=external_id, title=f"Vehicle {external_id}", extra={})
    session.add(vehicle)
    await session.flush()
    return vehicle


async def queue(session, vehicle, *urls):
    for url in urls:
        session.add(PendingImage(vehicle_id=vehicle.id, image_url=url))
    await session.commit()


async def images_of(session, vehicle_id):
    result = await session.execute(
        select(VehicleImage).where(VehicleImage.vehicle_id == vehicle_id).order_by(VehicleImage.sort_order)
    )
    return list(result.scalars().all())


async def pending_count(session):
    result = await session.execute(select(func.count()).select_from(PendingImage))
    return result.scalar()


@pytest.fixture
def downloader(tmp_path):
    downloader = ImageDownloader(images_path=str(tmp_path), timeout=5)
    downloader.fetch = AsyncMock(return_value=b"\xff\xd8jpeg")
    return downloader


@pytest.mark.asyncio
async def test_drain_stores_images_and_features_the_first(db_session, downloader, tmp_path):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/th-a.jpg", "https://x/th-b.jpg")
    pipeline = ImagePipeline(db_session, downloader=downloader, delay=0)

    stats = await pipeline.drain()

    assert stats.processed == 2
    assert stats.created == 2
    assert stats.errors == 0

    images = await images_of(db_session, vehicle.id)
    assert [image.image_url for image in images] == ["https://x/th-a.jpg", "https://x/th-b.jpg"]
    assert [image.sort_order for image in images] == [0, 1]
    assert [image.is_featured for image in images] == [True, False]

    vehicle = await db_session.get(Vehicle, vehicle.id, populate_existing=True)
    assert vehicle.featured_image_id == images[0].id
    assert await pending_count(db_session) == 0

    stored = Path(images[0].file_path)
    assert stored.exists()
    assert stored.read_bytes() == b"\xff\xd8jpeg"
    assert tmp_path in stored.parents


@pytest.mark.asyncio
async def test_duplicate_queue_rows_download_once(db_session, downloader):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/a.jpg", "https://x/a.jpg")
    pipeline = ImagePipeline(db_session, downloader=downloader, delay=0)

    stats = await pipeline.drain()

    assert downloader.fetch.await_count == 1
    assert stats.created == 1
    assert stats.already_present == 1
    assert len(await images_of(db_session, vehicle.id)) == 1


@pytest.mark.asyncio
async def test_second_drain_is_a_noop(db_session, downloader):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/a.jpg")
    pipeline = ImagePipeline(db_session, downloader=downloader, delay=0)
    await pipeline.drain()

    # The same URL queued again by a later sync
    await queue(db_session, vehicle, "https://x/a.jpg")
    stats = await pipeline.drain()

    assert downloader.fetch.await_count == 1
    assert stats.created == 0
    assert stats.already_present == 1
    assert len(await images_of(db_session, vehicle.id)) == 1
    assert await pending_count(db_session) == 0


@pytest.mark.asyncio
async def test_failed_download_removes_pending_row(db_session, downloader):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/broken.jpg", "https://x/ok.jpg")
    downloader.fetch = AsyncMock(side_effect=[
        ImageDownloadError("Download failed with status 404", context={"url": "https://x/broken.jpg"}),
        b"bytes",
    ])
    pipeline = ImagePipeline(db_session, downloader=downloader, delay=0)

    stats = await pipeline.drain()

    assert stats.errors == 1
    assert stats.created == 1
    assert await pending_count(db_session) == 0

    images = await images_of(db_session, vehicle.id)
    assert [image.image_url for image in images] == ["https://x/ok.jpg"]
    assert images[0].is_featured is True


@pytest.mark.asyncio
async def test_malformed_url_fails_alone(db_session, tmp_path):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "http://[::1/bad.jpg", "https://ok.example/a.jpg")
    pipeline = ImagePipeline(db_session, downloader=ImageDownloader(images_path=str(tmp_path), timeout=5), delay=0)

    with patch("httpx.AsyncClient") as mock_http:
        mock_get = AsyncMock(return_value=httpx.Response(200, content=b"jpeg"))
        mock_http.return_value.__aenter__.return_value.get = mock_get
        stats = await pipeline.drain()

    assert stats.errors == 1
    assert stats.created == 1
    assert mock_get.await_count == 1
    assert await pending_count(db_session) == 0
    images = await images_of(db_session, vehicle.id)
    assert [image.image_url for image in images] == ["https://ok.example/a.jpg"]


@pytest.mark.asyncio
async def test_failed_insert_does_not_stop_the_drain(db_session, downloader):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/a.jpg", "https://x/b.jpg")
    vehicle_id = vehicle.id
    pipeline = ImagePipeline(db_session, downloader=downloader, delay=0)
    next_sort_order = pipeline.store.next_sort_order
    calls = []

    async def flaky_sort_order(owner_id):
        calls.append(owner_id)
        if len(calls) == 1:
            raise IntegrityError("INSERT INTO vehicle_images", {}, Exception("constraint failed"))
        return await next_sort_order(owner_id)

    pipeline.store.next_sort_order = flaky_sort_order

    stats = await pipeline.drain()

    assert stats.processed == 2
    assert stats.errors == 1
    assert stats.created == 1
    assert await pending_count(db_session) == 0
    images = await images_of(db_session, vehicle_id)
    assert [image.image_url for image in images] == ["https://x/b.jpg"]
    assert images[0].is_featured is True


@pytest.mark.asyncio
async def test_lost_connection_stops_the_drain_with_progress(db_session, downloader):
    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/a.jpg", "https://x/b.jpg")
    pipeline = ImagePipeline(db_session, downloader=downloader, delay=0)
    pipeline.store.next_sort_order = AsyncMock(
        side_effect=OperationalError("SELECT", {}, Exception("server closed the connection"))
    )

    with pytest.raises(DatabaseConnectionError):
        await pipeline.drain()

    assert pipeline.stats.processed == 1
    assert pipeline.stats.created == 0


@pytest.mark.asyncio
async def test_existing_featured_image_is_kept(db_session, downloader):
    vehicle = await make_vehicle(db_session)
    first = VehicleImage(vehicle_id=vehicle.id, image_url="https://x/a.jpg", file_path="/tmp/a.jpg", is_featured=True)
    db_session.add(first)
    await db_session.flush()
    vehicle.featured_image_id = first.id
    await queue(db_session, vehicle, "https://x/b.jpg")

    await ImagePipeline(db_session, downloader=downloader, delay=0).drain()

    images = await images_of(db_session, vehicle.id)
    assert [image.sort_order for image in images] == [0, 1]
    assert images[1].is_featured is False
    vehicle = await db_session.get(Vehicle, vehicle.id, populate_existing=True)
    assert vehicle.featured_image_id == first.id


@pytest.mark.asyncio
async def test_cancelled_drain_leaves_queue(db_session, downloader):
    import asyncio

    vehicle = await make_vehicle(db_session)
    await queue(db_session, vehicle, "https://x/a.jpg")
    cancel = asyncio.Event()
    cancel.set()

    stats = await ImagePipeline(db_session, downloader=downloader, delay=0).drain(cancel)

    assert stats.processed == 0
    assert await pending_count(db_session) == 1
    downloader.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_queue(db_session, downloader):
    stats = await ImagePipeline(db_session, downloader=downloader, delay=0).drain()
    assert stats.processed == 0


class TestImageDownloader:

    @pytest.mark.asyncio
    async def test_fetch_requests_full_resolution(self, tmp_path):
        downloader = ImageDownloader(images_path=str(tmp_path), timeout=5)
        client = AsyncMock()
        client.get = AsyncMock(return_value=httpx.Response(200, content=b"data"))

        content = await downloader.fetch(client, "https://cdn.example.com/cars/th-1001-a.jpg", 1)

        assert content == b"data"
        assert client.get.call_args.args[0] == "https://cdn.example.com/cars/1001-a.jpg"
        assert "User-Agent" in client.get.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_fetch_error_status(self, tmp_path):
        downloader = ImageDownloader(images_path=str(tmp_path), timeout=5)
        client = AsyncMock()
        client.get = AsyncMock(return_value=httpx.Response(404, content=b""))

        with pytest.raises(ImageDownloadError) as exc_info:
            await downloader.fetch(client, "https://x/a.jpg", 1)

        assert exc_info.value.context["status_code"] == 404

    @pytest.mark.asyncio
    async def test_fetch_transport_error(self, tmp_path):
        downloader = ImageDownloader(images_path=str(tmp_path), timeout=5)
        client = AsyncMock()
        client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ImageDownloadError):
            await downloader.fetch(client, "https://x/a.jpg", 1)

    def test_local_path_is_per_vehicle(self, tmp_path):
        downloader = ImageDownloader(images_path=str(tmp_path))

        first = downloader.local_path(7, "https://x/one/photo.jpg")
        second = downloader.local_path(7, "https://x/two/photo.jpg")

        assert first.parent == tmp_path / "vehicles" / "7"
        assert first.name.endswith("-photo.jpg")
        assert first != second

    @pytest.mark.asyncio
    async def test_fetch_malformed_url(self, tmp_path):
        downloader = ImageDownloader(images_path=str(tmp_path), timeout=5)
        client = AsyncMock()

        with pytest.raises(ImageDownloadError) as exc_info:
            await downloader.fetch(client, "http://[::1/bad.jpg", 1)

        assert exc_info.value.context["url"] == "http://[::1/bad.jpg"
        client.get.assert_not_called()

    def test_local_path_rejects_unparseable_url(self, tmp_path):
        downloader = ImageDownloader(images_path=str(tmp_path))

        with pytest.raises(ImageStorageError):
            downloader.local_path(7, "http://[::1/bad.jpg")
