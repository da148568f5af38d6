"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import VehicleStatus, SyncRunStatus, SyncType

# ============================================================================
# Health Check Schemas
# ============================================================================

class LastSyncInfo(BaseModel):
    """Most recent completed sync, for the health check"""
    run_id: str
    sync_type: SyncType
    completed_at: Optional[datetime]
    age_hours: Optional[float] = None
    vehicles_processed: int = 0
    errors_count: int = 0

    class Config:
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    sync_stale: bool = False
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    last_successful_sync: Optional[LastSyncInfo] = None
    sync_running: bool = False
    scheduler_running: bool = False

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Unhealthy without a database, degraded when no recent successful sync"""
        if not values.get("database_connected", False):
            return "unhealthy"
        if values.get("sync_stale", False):
            return "degraded"
        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "sync_stale": False,
                "last_successful_sync": {
                    "run_id": "550e8400-e29b-41d4-a716-446655440000",
                    "sync_type": "incremental",
                    "completed_at": "2024-01-15T10:00:00Z",
                    "age_hours": 0.5,
                    "vehicles_processed": 412,
                    "errors_count": 0
                },
                "sync_running": False,
                "scheduler_running": True
            }
        }

# ============================================================================
# Sync Trigger Schemas
# ============================================================================

class SyncTriggerResponse(BaseModel):
    """Result of a sync started through the API"""
    run_id: Optional[str] = None
    sync_type: SyncType
    status: SyncRunStatus
    duration_seconds: Optional[float] = None
    cancelled: bool = False
    records_fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    filtered: int = 0
    archived: int = 0
    images_created: int = 0
    errors_count: int = 0
    cleanup_skipped: bool = False
    cleanup_skip_reason: Optional[str] = None

    class Config:
        use_enum_values = True

    @classmethod
    def from_summary(cls, summary) -> "SyncTriggerResponse":
        return cls(
            run_id=summary.run_id,
            sync_type=summary.sync_type,
            status=summary.status,
            duration_seconds=summary.duration_seconds,
            cancelled=summary.cancelled,
            records_fetched=summary.fetch.records_fetched,
            created=summary.reconcile.created,
            updated=summary.reconcile.updated,
            unchanged=summary.reconcile.unchanged,
            filtered=summary.reconcile.filtered,
            archived=summary.reconcile.archived + summary.cleanup.archived,
            images_created=summary.images.created,
            errors_count=summary.error_count,
            cleanup_skipped=summary.cleanup.skipped,
            cleanup_skip_reason=summary.cleanup.skip_reason,
        )

# ============================================================================
# Catalog Lookup Schemas
# ============================================================================

class CatalogLookupResponse(BaseModel):
    """A record found by a direct catalog lookup, with the filter verdict"""
    found: bool
    key_type: str
    key: str
    admitted: Optional[bool] = None
    filter_reason: Optional[str] = None
    filter_detail: Optional[str] = None
    record: Optional[Dict[str, Any]] = None

# ============================================================================
# Vehicle Listing Schemas
# ============================================================================

class VehicleResponse(BaseModel):
    """Published vehicle as exposed to readers"""
    id: int
    external_id: str
    title: str
    description: Optional[str]
    status: VehicleStatus
    year: Optional[int]
    kilometres: Optional[int]
    license_plate: Optional[str]
    price_usd: Optional[float]
    price_ars: Optional[float]
    featured_image_id: Optional[int]
    taxonomies: Dict[str, str] = Field(default_factory=dict)
    images: List[str] = Field(default_factory=list)
    last_synced_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True
        use_enum_values = True


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool


class VehicleListResponse(BaseModel):
    """Paginated vehicle listing"""
    items: List[VehicleResponse]
    pagination: PaginationMetadata

# ============================================================================
# Statistics Schemas
# ============================================================================

class SyncRunSummary(BaseModel):
    run_id: str
    sync_type: SyncType
    status: SyncRunStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    vehicles_processed: int = 0
    vehicles_created: int = 0
    vehicles_updated: int = 0
    vehicles_archived: int = 0
    images_created: int = 0
    errors_count: int = 0

    class Config:
        from_attributes = True
        use_enum_values = True


class StatsResponse(BaseModel):
    """Statistics response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    total_vehicles: int
    vehicles_by_status: Dict[str, int]
    archived_by_reason: Dict[str, int] = Field(default_factory=dict)
    pending_images: int = 0
    total_images: int = 0

    recent_runs: List[SyncRunSummary] = Field(default_factory=list)

    last_sync_success: Optional[datetime] = None
    last_sync_failure: Optional[datetime] = None
    avg_sync_duration_seconds: Optional[float] = None

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Sync already running",
                "detail": "Another sync run holds the run lock",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
