"""
Telemetry Ingestion API Endpoints.

Tablets poll these endpoints with GPS fixes, status heartbeats, ad
playback events and QR scans. Every call is applied to the vehicle
group's record for the current tracking day.
"""

from fastapi import APIRouter, Depends

from telemetry_backend.app.core.dependencies import get_ingestion_service
from telemetry_backend.app.schemas.telemetry import (
    LocationUpdateRequest, LocationUpdateResponse,
    StatusUpdateRequest, StatusUpdateResponse,
    AdPlaybackRequest, AdPlaybackResponse,
    QRScanRequest, QRScanResponse,
)
from telemetry_backend.app.services.telemetry_ingestion import TelemetryIngestionService

router = APIRouter(prefix="/tracking", tags=["Tracking - Ingestion"])


@router.post("/location-update", response_model=LocationUpdateResponse)
async def location_update(
    payload: LocationUpdateRequest,
    service: TelemetryIngestionService = Depends(get_ingestion_service)
):
    """
    Record a GPS fix from a tablet.

    The reporting slot is always marked online. The fix itself is stored
    only when it passes the acceptance rule; `locationAccepted` tells the
    tablet which happened.
    """
    return await service.record_location(payload)


@router.post("/status-update", response_model=StatusUpdateResponse)
async def status_update(
    payload: StatusUpdateRequest,
    service: TelemetryIngestionService = Depends(get_ingestion_service)
):
    """Heartbeat with online flag, device info and network status."""
    return await service.record_status(payload)


@router.post("/ad-playback", response_model=AdPlaybackResponse)
async def ad_playback(
    payload: AdPlaybackRequest,
    service: TelemetryIngestionService = Depends(get_ingestion_service)
):
    return await service.record_ad_playback(payload)


@router.post("/qr-scan", response_model=QRScanResponse)
async def qr_scan(
    payload: QRScanRequest,
    service: TelemetryIngestionService = Depends(get_ingestion_service)
):
    return await service.record_qr_scan(payload)
