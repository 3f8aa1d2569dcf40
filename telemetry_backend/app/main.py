"""
FastAPI Application Entry Point.

This is the main application file for the Vehicle Telemetry Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from telemetry_backend.app.core.config import settings
from telemetry_backend.app.api.v1.router import router as api_v1_router
from telemetry_backend.app.db.session import engine, Base
from telemetry_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from telemetry_backend.app.core.redis_client import ping_redis
from telemetry_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from telemetry_backend.app.services.archival import archival_service

# Import models to ensure they are registered with Base
from telemetry_backend.app.models.audit_log import AuditLog
from telemetry_backend.app.models.registered_device import RegisteredDevice
from telemetry_backend.app.models.vehicle_tracking import (
    VehicleTracking, TrackingSlot, TrackingLocationPoint, AdPlaybackEvent, QRScanEvent
)
from telemetry_backend.app.models.historical_day_record import HistoricalDayRecord
from telemetry_backend.app.models.archive_run import ArchiveRun


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Configures logging and creates database tables on startup. The daily
    archival run is scheduled by Celery beat, not by the API process.
    """
    configure_logging(settings.debug)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Telemetry tracking and daily archival for ad fleet tablets",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and cache reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "degraded",
        "archive_run_in_progress": archival_service.is_running,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Vehicle Telemetry Backend API",
        "docs": "/docs",
        "health": "/health",
    }
