"""
Sync trigger endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, get_catalog_client, get_session_factory, verify_sync_token
from core.exceptions import StoreUnavailableError
from ingestion.extractors.catalog_client import CatalogClient
from ingestion.runner import SyncOrchestrator
from ingestion.scheduler import SYNC_RUN_LOCK
from models.base import SyncType
from schemas.api import SyncTriggerResponse, ErrorResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])

CONFLICT = {409: {"model": ErrorResponse, "description": "A sync is already running"}}


async def _run(
    sync_type: SyncType,
    request: Request,
    db: AsyncSession,
    client: CatalogClient,
    session_factory,
) -> SyncTriggerResponse:
    request_id = getattr(request.state, "request_id", "-")

    if SYNC_RUN_LOCK.locked():
        logger.warning(f"[{request_id}] {sync_type.value} sync rejected: another run is in progress")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A sync is already running")

    async with SYNC_RUN_LOCK:
        logger.info(f"[{request_id}] {sync_type.value} sync triggered through the API")
        try:
            summary = await SyncOrchestrator(db, client=client, session_factory=session_factory).run(sync_type)
        except StoreUnavailableError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return SyncTriggerResponse.from_summary(summary)


@router.post("/full", response_model=SyncTriggerResponse, responses=CONFLICT)
async def sync_full(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: CatalogClient = Depends(get_catalog_client),
    session_factory=Depends(get_session_factory),
):
    """Rewrite every admitted vehicle regardless of fingerprint."""
    return await _run(SyncType.FULL, request, db, client, session_factory)


@router.post("/incremental", response_model=SyncTriggerResponse, responses=CONFLICT)
async def sync_incremental(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: CatalogClient = Depends(get_catalog_client),
    session_factory=Depends(get_session_factory),
):
    """Skip vehicles whose fingerprint is unchanged."""
    return await _run(SyncType.INCREMENTAL, request, db, client, session_factory)


@router.post(
    "/manual",
    response_model=SyncTriggerResponse,
    responses=CONFLICT,
    dependencies=[Depends(verify_sync_token)],
)
async def sync_manual(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: CatalogClient = Depends(get_catalog_client),
    session_factory=Depends(get_session_factory),
):
    """Operator-triggered incremental sync, guarded by X-Sync-Token when configured."""
    return await _run(SyncType.MANUAL, request, db, client, session_factory)
