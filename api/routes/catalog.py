"""
Direct catalog lookups (no database access)
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from api.dependencies import get_catalog_client
from core.exceptions import CatalogError
from ingestion.extractors.catalog_client import CatalogClient
from ingestion.transformers.filters import VehicleFilter
from schemas.api import CatalogLookupResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/catalog", tags=["Catalog"])


async def _lookup(request: Request, client: CatalogClient, key_type: str, key: str) -> CatalogLookupResponse:
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] Catalog lookup by {key_type}: {key}")

    try:
        if key_type == "license_plate":
            record = await client.find_by_license_plate(key)
        else:
            record = await client.find_by_origin(key)
    except CatalogError as e:
        logger.error(f"[{request_id}] Catalog lookup failed: {e.message}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    if record is None:
        return CatalogLookupResponse(found=False, key_type=key_type, key=key)

    verdict = VehicleFilter.from_settings().evaluate(record)
    return CatalogLookupResponse(
        found=True,
        key_type=key_type,
        key=key,
        admitted=verdict.admit,
        filter_reason=verdict.reason.value if verdict.reason else None,
        filter_detail=verdict.detail,
        record=record.model_dump(mode="json"),
    )


@router.get("/vehicle/origin/{origin}", response_model=CatalogLookupResponse)
async def lookup_by_origin(origin: str, request: Request, client: CatalogClient = Depends(get_catalog_client)):
    return await _lookup(request, client, "origin", origin)


@router.get("/vehicle/{license_plate}", response_model=CatalogLookupResponse)
async def lookup_by_license_plate(license_plate: str, request: Request, client: CatalogClient = Depends(get_catalog_client)):
    return await _lookup(request, client, "license_plate", license_plate)
