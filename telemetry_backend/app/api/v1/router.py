"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from telemetry_backend.app.api.v1.endpoints import telemetry, tracking_query, archive_ops

router = APIRouter()

# Tablet telemetry ingestion
router.include_router(telemetry.router)

# Dashboard queries (vehicles, routes, history)
router.include_router(tracking_query.router)

# Archival trigger and status
router.include_router(archive_ops.router)
