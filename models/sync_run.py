from sqlalchemy import Column, Integer, DateTime, Float, Text, Index, Uuid
from datetime import datetime
import uuid
from models.base import Base, JSONDocument, SyncRunStatus, SyncType, enum_column


class SyncRun(Base):
    """
    Audit row for one orchestrator execution.

    Purpose:
    - Audit trail of every sync run
    - "Last successful sync" for the health endpoint
    - Error summary for failed runs

    Created when the run starts and finalized exactly once. Writes to this
    table are best-effort and never block the sync.
    """
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    sync_type = Column(enum_column(SyncType, "sync_type"), nullable=False)
    status = Column(
        enum_column(SyncRunStatus, "sync_run_status"),
        default=SyncRunStatus.RUNNING,
        nullable=False,
        index=True,
    )

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    vehicles_processed = Column(Integer, default=0)
    vehicles_created = Column(Integer, default=0)
    vehicles_updated = Column(Integer, default=0)
    vehicles_unchanged = Column(Integer, default=0)
    vehicles_filtered = Column(Integer, default=0)
    vehicles_archived = Column(Integer, default=0)
    images_processed = Column(Integer, default=0)
    images_created = Column(Integer, default=0)
    errors_count = Column(Integer, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)

    # Full run summary
    run_metadata = Column("metadata", JSONDocument, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_status_started", "status", "started_at"),
    )
