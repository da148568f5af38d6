"""
Catalog and sync statistics endpoint
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from api.dependencies import get_db
from schemas.api import StatsResponse, SyncRunSummary
from models.base import VehicleStatus, SyncRunStatus
from models.sync_run import SyncRun
from models.vehicle import Vehicle, VehicleImage, PendingImage
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    request: Request,
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """
    Get catalog and sync statistics.

    Returns:
    - Vehicle counts by status, and archived vehicles by withdrawal reason
    - Image and pending-image counts
    - Recent sync run history
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] GET /stats")

    # ========== Vehicles ==========

    status_result = await db.execute(select(Vehicle.status, func.count()).group_by(Vehicle.status))
    by_status = {status.value: 0 for status in VehicleStatus}
    for status, count in status_result.all():
        by_status[status.value] = count
    total_vehicles = sum(by_status.values())

    archived_result = await db.execute(select(Vehicle.extra).where(Vehicle.status == VehicleStatus.ARCHIVED))
    archived_by_reason = {}
    for extra in archived_result.scalars().all():
        reason = (extra or {}).get("filter_reason") or "unknown"
        archived_by_reason[reason] = archived_by_reason.get(reason, 0) + 1

    # ========== Images ==========

    pending_images = (await db.execute(select(func.count()).select_from(PendingImage))).scalar() or 0
    total_images = (await db.execute(select(func.count()).select_from(VehicleImage))).scalar() or 0

    # ========== Sync Runs ==========

    last_success = (await db.execute(
        select(func.max(SyncRun.completed_at)).where(SyncRun.status == SyncRunStatus.COMPLETED)
    )).scalar()
    last_failure = (await db.execute(
        select(func.max(SyncRun.completed_at)).where(SyncRun.status == SyncRunStatus.FAILED)
    )).scalar()
    avg_duration = (await db.execute(
        select(func.avg(SyncRun.duration_seconds)).where(
            and_(
                SyncRun.status == SyncRunStatus.COMPLETED,
                SyncRun.duration_seconds.isnot(None)
            )
        )
    )).scalar()

    recent_runs_result = await db.execute(
        select(SyncRun)
        .order_by(SyncRun.started_at.desc())
        .limit(limit)
    )
    recent_runs = [
        SyncRunSummary(
            run_id=str(run.run_id),
            sync_type=run.sync_type,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            vehicles_processed=run.vehicles_processed or 0,
            vehicles_created=run.vehicles_created or 0,
            vehicles_updated=run.vehicles_updated or 0,
            vehicles_archived=run.vehicles_archived or 0,
            images_created=run.images_created or 0,
            errors_count=run.errors_count or 0,
        )
        for run in recent_runs_result.scalars().all()
    ]

    logger.info(
        f"[{request_id}] Stats: {total_vehicles} vehicles, "
        f"{pending_images} pending images, {len(recent_runs)} recent runs"
    )

    return StatsResponse(
        timestamp=datetime.utcnow(),
        total_vehicles=total_vehicles,
        vehicles_by_status=by_status,
        archived_by_reason=archived_by_reason,
        pending_images=pending_images,
        total_images=total_images,
        recent_runs=recent_runs,
        last_sync_success=last_success,
        last_sync_failure=last_failure,
        avg_sync_duration_seconds=round(avg_duration, 2) if avg_duration else None,
    )
