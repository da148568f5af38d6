"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, sync, catalog, vehicles, stats
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import SyncScheduler

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Vehicle Catalog Sync API",
    description="Catalog synchronization service: sync triggers, health, and the published vehicle listing",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

app.state.scheduler = None


# Include routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(catalog.router)
app.include_router(vehicles.router)
app.include_router(stats.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Vehicle Catalog Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.SYNC_CRON_ENABLED:
        app.state.scheduler = SyncScheduler()
        app.state.scheduler.start()
    else:
        logger.info("Periodic sync disabled (SYNC_CRON_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Vehicle Catalog Sync API")
    if app.state.scheduler is not None:
        app.state.scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Vehicle Catalog Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sync": ["/sync/full", "/sync/incremental", "/sync/manual"],
            "catalog": ["/catalog/vehicle/{license_plate}", "/catalog/vehicle/origin/{origin}"],
            "vehicles": "/vehicles",
            "stats": "/stats"
        }
    }
