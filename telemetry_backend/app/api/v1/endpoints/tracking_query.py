"""
Tracking Query API Endpoints.

Read side for dashboards: today's consolidated vehicle list, multi-day
routes with metrics, and archived day summaries.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from telemetry_backend.app.core.dependencies import get_ingestion_service, get_route_service
from telemetry_backend.app.schemas.route import RouteResponse, HistoryResponse
from telemetry_backend.app.schemas.telemetry import VehicleStatusResponse
from telemetry_backend.app.services.route_service import RouteReconstructionService
from telemetry_backend.app.services.telemetry_ingestion import TelemetryIngestionService

router = APIRouter(prefix="/tracking", tags=["Tracking - Queries"])


@router.get("/vehicles", response_model=List[VehicleStatusResponse])
async def list_vehicles(
    date_: Optional[date] = Query(None, alias="date", description="Tracking day, defaults to today"),
    service: TelemetryIngestionService = Depends(get_ingestion_service)
):
    """
    One row per vehicle group, with both slots consolidated.

    Slots silent for longer than the offline threshold are shown offline.
    """
    return await service.list_vehicles(date_)


@router.get("/route/material/{material_id}", response_model=RouteResponse)
async def route_for_material(
    material_id: str = Path(..., description="Vehicle group / material ID"),
    date_: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    limit: Optional[int] = Query(None, ge=1, description="Keep the most recent N points"),
    service: RouteReconstructionService = Depends(get_route_service)
):
    return await service.reconstruct_for_material(material_id, date_, start_date, end_date, limit)


@router.get("/route/{device_id}", response_model=RouteResponse)
async def route_for_device(
    device_id: str = Path(..., description="Tablet device ID"),
    date_: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    limit: Optional[int] = Query(None, ge=1, description="Keep the most recent N points"),
    service: RouteReconstructionService = Depends(get_route_service)
):
    """
    Route of the vehicle group the device belongs to.

    `date` selects one day; `startDate`/`endDate` an inclusive range; with
    neither, every available day is returned. Metrics cover the full range
    even when `limit` truncates the points.
    """
    return await service.reconstruct_for_device(device_id, date_, start_date, end_date, limit)


@router.get("/history/{material_id}", response_model=HistoryResponse)
async def history(
    material_id: str = Path(..., description="Vehicle group / material ID"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    service: RouteReconstructionService = Depends(get_route_service)
):
    return await service.history(material_id, start_date, end_date)
