"""
Telemetry ingestion schemas.

Tablets speak camelCase JSON; fields are declared snake_case and aliased.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from typing import Any, Dict, List, Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationUpdateRequest(CamelModel):
    """GPS fix reported by a tablet."""
    device_id: str = Field(..., min_length=1)
    material_id: str = Field(..., min_length=1)
    device_slot: int = Field(..., ge=1, le=2)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    speed: float = Field(0.0, ge=0)
    heading: float = Field(0.0, ge=0, le=360)
    accuracy: Optional[float] = Field(None, ge=0)
    timestamp: Optional[datetime] = None
    car_group_id: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None
    address: Optional[str] = None


class StatusUpdateRequest(CamelModel):
    device_id: str = Field(..., min_length=1)
    device_slot: int = Field(..., ge=1, le=2)
    is_online: bool
    device_info: Optional[Dict[str, Any]] = None
    network_status: Optional[Dict[str, Any]] = None


class AdPlaybackRequest(CamelModel):
    device_id: str = Field(..., min_length=1)
    device_slot: int = Field(..., ge=1, le=2)
    ad_id: str = Field(..., min_length=1)
    ad_title: str = Field(..., min_length=1)
    ad_duration: float = Field(..., gt=0)  # seconds
    view_time: float = Field(0.0, ge=0)  # seconds


class QRScanRequest(CamelModel):
    device_id: str = Field(..., min_length=1)
    device_slot: int = Field(..., ge=1, le=2)
    qr_scan_data: Dict[str, Any]


class LocationPointResponse(CamelModel):
    """Stored GPS fix, GeoJSON order [lng, lat]."""
    coordinates: List[float]
    speed: float = 0.0
    heading: float = 0.0
    accuracy: Optional[float] = None
    timestamp: datetime
    address: str = ""


class SlotStatus(CamelModel):
    """Per-slot indicator for the dashboard's single vehicle row."""
    slot_number: int
    device_id: Optional[str]
    is_online: bool
    last_seen: Optional[datetime]


class LocationUpdateResponse(CamelModel):
    material_id: str
    device_id: str
    current_location: Optional[LocationPointResponse]
    total_distance_traveled: float
    last_seen: Optional[datetime]
    slot_status: List[SlotStatus]
    location_accepted: bool


class StatusUpdateResponse(CamelModel):
    device_id: str
    device_slot: int
    material_id: str
    is_online: bool
    last_seen: Optional[datetime]
    slot_status: List[SlotStatus]


class AdPlaybackResponse(CamelModel):
    device_id: str
    device_slot: int
    material_id: str
    total_ad_plays: int
    total_ad_play_time: float


class QRScanResponse(CamelModel):
    device_id: str
    device_slot: int
    material_id: str
    total_qr_scans: int = Field(..., alias="totalQRScans")


class VehicleStatusResponse(CamelModel):
    """Consolidated view of one vehicle group for today."""
    material_id: str
    car_group_id: Optional[str]
    date: date
    is_online: bool
    last_seen: Optional[datetime]
    slots: List[SlotStatus]
    current_location: Optional[LocationPointResponse]
    total_distance_traveled: float
    total_hours_online: float
    target_hours: float
    compliance_status: str
