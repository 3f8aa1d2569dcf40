"""
Route reconstruction and history schemas.
"""

from pydantic import Field
from datetime import date, datetime
from typing import List, Optional

from telemetry_backend.app.schemas.telemetry import CamelModel


class RoutePoint(CamelModel):
    """Public route point; lat/lng order for map widgets."""
    lat: float
    lng: float
    timestamp: datetime
    speed: float = 0.0
    heading: float = 0.0
    accuracy: Optional[float] = None
    address: str = ""


class DateRange(CamelModel):
    start: Optional[date]
    end: Optional[date]


class RouteMetricsResponse(CamelModel):
    total_distance: float  # km
    total_duration: int  # seconds
    average_speed: float  # km/h
    point_count: int
    total_ad_plays: int
    total_qr_scans: int = Field(..., alias="totalQRScans")
    total_hours_online: float
    record_count: int
    date_range: DateRange
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class RouteResponse(CamelModel):
    device_id: Optional[str]
    material_id: str
    route: List[RoutePoint]
    metrics: RouteMetricsResponse


class HistoryDaySummary(CamelModel):
    date: date
    total_distance_traveled: float
    total_ad_plays: int
    total_qr_scans: int = Field(..., alias="totalQRScans")
    total_hours_online: float
    location_count: int
    compliance_status: Optional[str]
    archived_at: datetime


class HistoryResponse(CamelModel):
    material_id: str
    car_group_id: Optional[str]
    days: List[HistoryDaySummary]
