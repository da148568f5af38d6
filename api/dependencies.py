"""
FastAPI dependencies shared by the routers
"""

from typing import AsyncGenerator, Optional
from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.database import async_session_maker
from ingestion.extractors.catalog_client import CatalogClient


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


def get_catalog_client() -> CatalogClient:
    return CatalogClient()


def get_session_factory():
    """Session factory for the SyncRun audit rows of API-triggered runs"""
    return async_session_maker


async def verify_sync_token(x_sync_token: Optional[str] = Header(None)):
    """Reject manual triggers without the configured token. No token configured means open."""
    if settings.SYNC_TRIGGER_TOKEN and x_sync_token != settings.SYNC_TRIGGER_TOKEN:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing X-Sync-Token")
