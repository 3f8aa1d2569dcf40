"""
Archive Operations API Endpoints.

Manual trigger and operational status of the daily archival job.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from telemetry_backend.app.models.tracking_enums import ArchiveTrigger
from telemetry_backend.app.schemas.archive import ArchiveRunResponse, ArchiveStatusResponse
from telemetry_backend.app.services.archival import ArchivalService, get_archival_service

router = APIRouter(prefix="/tracking/archive", tags=["Tracking - Archive"])


@router.post("", response_model=ArchiveRunResponse)
async def trigger_archive(
    request: Request,
    target_date: Optional[date] = Query(None, alias="date", description="Archive this day only, today included"),
    service: ArchivalService = Depends(get_archival_service)
):
    """
    Run archival now.

    Idempotent per day: a day that already has history is skipped while it
    is still open and merged once it has closed. Returns 409 while another
    run is in progress in this process.
    """
    return await service.run_once(
        target_date=target_date,
        trigger=ArchiveTrigger.MANUAL,
        actor=request.headers.get("X-Operator", "operator"),
        ip_address=request.client.host if request.client else None,
    )


@router.get("/status", response_model=ArchiveStatusResponse)
async def archive_status(
    service: ArchivalService = Depends(get_archival_service)
):
    """Last run, whether a run is active, and the backlog of closed days."""
    return await service.status()
