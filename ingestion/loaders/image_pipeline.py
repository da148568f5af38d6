"""
Drain the pending-image queue into stored VehicleImage rows.

Images are stored in a directory per vehicle:
    {IMAGES_PATH}/vehicles/{vehicle_id}/{url-hash}-{filename}

A pending row is satisfied without a download when the same (vehicle, URL)
is already stored, so reruns and duplicate queue rows never fetch twice.
The pending row is removed whether the download succeeds or fails; a
failed URL comes back on the next sync that lists it as new.
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
import logging

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    ImageError,
    ImageDownloadError,
    ImageStorageError,
)
from ingestion.loaders.vehicle_store import VehicleStore, wrap_store_error
from ingestion.transformers.normalizer import full_resolution_url
from models.vehicle import Vehicle, VehicleImage
from schemas.sync import ImageStats

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; catalog-sync/1.0)"


class ImageDownloader:
    """Fetches image bytes and writes them under the vehicle's directory."""

    def __init__(self, images_path: Optional[str] = None, timeout: Optional[float] = None):
        self.images_dir = Path(images_path or settings.IMAGES_PATH) / "vehicles"
        self.timeout = timeout or settings.IMAGE_DOWNLOAD_TIMEOUT

    def local_path(self, vehicle_id: int, url: str) -> Path:
        try:
            name = Path(urlparse(url).path).name or "image.jpg"
        except ValueError as e:
            raise ImageStorageError(
                "Cannot derive a file name from the image URL",
                context={"url": url, "vehicle_id": vehicle_id},
                original_exception=e
            )
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]
        return self.images_dir / str(vehicle_id) / f"{digest}-{name}"

    async def fetch(self, client: httpx.AsyncClient, url: str, vehicle_id: int) -> bytes:
        download_url = full_resolution_url(url)
        try:
            # Parse first so a malformed feed URL fails the same way for any client
            httpx.URL(download_url)
            response = await client.get(download_url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise ImageDownloadError(
                f"Download failed: {type(e).__name__}",
                context={"url": download_url, "vehicle_id": vehicle_id},
                original_exception=e
            )

        if response.status_code >= 400:
            raise ImageDownloadError(
                f"Download failed with status {response.status_code}",
                context={"url": download_url, "vehicle_id": vehicle_id, "status_code": response.status_code}
            )
        return response.content

    def save(self, vehicle_id: int, url: str, content: bytes) -> str:
        path = self.local_path(vehicle_id, url)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(content)
        except OSError as e:
            raise ImageStorageError(
                "Could not write image",
                context={"path": str(path), "vehicle_id": vehicle_id, "url": url},
                original_exception=e
            )
        return str(path)


class ImagePipeline:
    """
    Process every PendingImage once, in queue order.

    Ensures:
    - At most one download per (vehicle, URL)
    - The first stored image of a vehicle becomes its featured image
    - The queue row is gone after processing, success or not
    """

    def __init__(
        self,
        db_session: AsyncSession,
        downloader: Optional[ImageDownloader] = None,
        delay: Optional[float] = None,
    ):
        self.db = db_session
        self.store = VehicleStore(db_session)
        self.downloader = downloader or ImageDownloader()
        self.delay = delay if delay is not None else settings.SYNC_IMAGE_DELAY
        # Progress of the current drain, readable after it raises
        self.stats = ImageStats()

    async def drain(self, cancel_event: Optional[asyncio.Event] = None) -> ImageStats:
        stats = self.stats = ImageStats()
        queue = await self.store.pending_queue()
        if not queue:
            logger.info("No pending images")
            return stats

        logger.info(f"Downloading {len(queue)} pending images")
        jobs = [(job.vehicle_id, job.image_url) for job in queue]

        async with httpx.AsyncClient(timeout=self.downloader.timeout, follow_redirects=True) as client:
            for index, (vehicle_id, image_url) in enumerate(jobs):
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(f"Image download cancelled after {index} of {len(jobs)}")
                    break

                stats.processed += 1
                try:
                    created = await self.process(client, vehicle_id, image_url)
                    if created:
                        stats.created += 1
                        if self.delay:
                            await asyncio.sleep(self.delay)
                    else:
                        stats.already_present += 1
                except ImageError as e:
                    stats.errors += 1
                    logger.error(f"Image {image_url} for vehicle {vehicle_id} failed: {e.message}")
                    await self._drop_pending(vehicle_id, image_url)
                except DatabaseConnectionError:
                    raise
                except DatabaseError as e:
                    stats.errors += 1
                    logger.error(f"Image {image_url} for vehicle {vehicle_id} not recorded: {e.message}")
                    await self._drop_pending(vehicle_id, image_url)

                if (index + 1) % 50 == 0:
                    logger.info(f"Images: {index + 1}/{len(jobs)} processed, {stats.created} stored")

        logger.info(
            f"Image pipeline finished: {stats.processed} processed, {stats.created} stored, "
            f"{stats.already_present} already present, {stats.errors} errors"
        )
        return stats

    async def process(self, client: httpx.AsyncClient, vehicle_id: int, image_url: str) -> bool:
        """
        Satisfy one queue entry. Returns True if a new image was stored,
        False if it was already present.
        """
        try:
            if await self.store.find_image(vehicle_id, image_url) is not None:
                await self.store.delete_pending(vehicle_id, image_url)
                await self.db.commit()
                return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise wrap_store_error(e, "image lookup")

        content = await self.downloader.fetch(client, image_url, vehicle_id)
        file_path = self.downloader.save(vehicle_id, image_url, content)

        try:
            image = VehicleImage(
                vehicle_id=vehicle_id,
                image_url=image_url,
                file_path=file_path,
                sort_order=await self.store.next_sort_order(vehicle_id),
            )
            self.db.add(image)
            await self.db.flush()

            vehicle = await self.db.get(Vehicle, vehicle_id, populate_existing=True)
            if vehicle is not None and vehicle.featured_image_id is None:
                image.is_featured = True
                vehicle.featured_image_id = image.id

            await self.store.delete_pending(vehicle_id, image_url)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise wrap_store_error(e, "image insert")

        logger.debug(f"Stored image {image.id} for vehicle {vehicle_id}")
        return True

    async def _drop_pending(self, vehicle_id: int, image_url: str):
        try:
            await self.store.delete_pending(vehicle_id, image_url)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Could not remove pending image {image_url} for vehicle {vehicle_id}: {e}")
