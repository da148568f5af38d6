"""
Create the catalog store tables without running migrations.

Usage:
    python scripts/init_db.py           # create missing tables
    python scripts/init_db.py --reset   # drop everything first (development only)
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import create_async_engine
from core.config import settings
from core.logging import setup_logging
# Importing the package registers every model on Base.metadata
from models import Base

logger = logging.getLogger(__name__)


async def init_database(reset: bool = False):
    engine = create_async_engine(settings.DATABASE_URL, echo=False)

    try:
        async with engine.begin() as conn:
            if reset:
                if settings.ENVIRONMENT == "production":
                    raise RuntimeError("Refusing to drop tables with ENVIRONMENT=production")
                logger.warning("Dropping all catalog tables")
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the catalog store tables")
    parser.add_argument("--reset", action="store_true", help="Drop all tables before creating them")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(init_database(reset=args.reset))
