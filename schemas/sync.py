"""
Run summary schemas emitted by the sync orchestrator
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import SyncType, SyncRunStatus

# Keep the persisted summary bounded
MAX_RECORDED_ERRORS = 50


class FetchStats(BaseModel):
    pages_fetched: int = 0
    records_fetched: int = 0
    invalid_records: int = 0
    total_count: Optional[int] = None
    limit_reached: bool = False
    fetch_error: Optional[str] = None
    fetch_aborted: bool = False  # first page failed


class ReconcileStats(BaseModel):
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    filtered: int = 0  # admit=false, whether or not a row existed
    archived: int = 0
    reactivated: int = 0
    skipped: int = 0
    retries: int = 0
    errors: int = 0
    filter_reasons: Dict[str, int] = Field(default_factory=dict)


class CleanupStats(BaseModel):
    skipped: bool = False
    skip_reason: Optional[str] = None
    candidates: int = 0
    kept: int = 0
    kept_by_flag: int = 0
    reactivated: int = 0
    archived: int = 0
    archive_reasons: Dict[str, int] = Field(default_factory=dict)
    errors: int = 0
    sweep_checked: int = 0
    sweep_reactivated: int = 0


class ImageStats(BaseModel):
    processed: int = 0
    created: int = 0
    already_present: int = 0
    errors: int = 0


class SyncSummary(BaseModel):
    """Everything a caller needs to know about one run"""
    run_id: Optional[str] = None
    sync_type: SyncType
    status: SyncRunStatus = SyncRunStatus.RUNNING
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    cancelled: bool = False
    valid_set_size: int = 0

    fetch: FetchStats = Field(default_factory=FetchStats)
    reconcile: ReconcileStats = Field(default_factory=ReconcileStats)
    cleanup: CleanupStats = Field(default_factory=CleanupStats)
    images: ImageStats = Field(default_factory=ImageStats)

    errors: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return self.reconcile.errors + self.cleanup.errors + self.images.errors + (1 if self.fetch.fetch_error else 0)

    def record_error(self, stage: str, message: str, **context):
        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append({"stage": stage, "message": message[:1000], **context})

    def error_digest(self) -> Optional[str]:
        """Short text for SyncRun.error_message"""
        if not self.error_count and not self.cancelled and not self.errors:
            return None
        parts = ["run cancelled"] if self.cancelled else []
        if self.error_count:
            parts.append(f"{self.error_count} error(s)")
        for error in self.errors[:5]:
            parts.append(f"[{error['stage']}] {error['message']}")
        return "; ".join(parts)[:1000]
