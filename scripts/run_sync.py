"""
Script to run one catalog sync from the command line
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.exceptions import StoreUnavailableError
from core.logging import setup_logging
from ingestion.runner import SyncOrchestrator
from models.base import SyncRunStatus, SyncType

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronize the local vehicle catalog with the catalog API")
    parser.add_argument(
        "--type",
        dest="sync_type",
        choices=[t.value for t in SyncType],
        default=SyncType.INCREMENTAL.value,
        help="full rewrites every admitted vehicle; incremental and manual skip unchanged fingerprints",
    )
    parser.add_argument("--limit", type=int, default=None, help="Stop fetching after this many records")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


async def run_sync(sync_type: SyncType, limit=None) -> int:
    """Run one sync. Returns the process exit code."""
    try:
        async with async_session_maker() as session:
            summary = await SyncOrchestrator(session, limit=limit).run(sync_type)
    except StoreUnavailableError as e:
        logger.error(f"Sync aborted: {e.message}")
        return 2
    finally:
        await engine.dispose()

    logger.info(
        f"Sync {summary.status.value}: created={summary.reconcile.created}, "
        f"updated={summary.reconcile.updated}, unchanged={summary.reconcile.unchanged}, "
        f"archived={summary.reconcile.archived + summary.cleanup.archived}, "
        f"images={summary.images.created}, errors={summary.error_count}"
    )
    return 0 if summary.status == SyncRunStatus.COMPLETED else 1


if __name__ == "__main__":
    args = parse_args()
    setup_logging(args.log_level)
    sys.exit(asyncio.run(run_sync(SyncType(args.sync_type), args.limit)))
