"""
Telemetry Ingestion Service.

Entry point for the four tablet event kinds (location, status, ad
playback, QR scan). Each call resolves the device, finds today's record
for its vehicle group, upserts the reporting slot, applies the event,
and commits on its own; a rejected fix after a successful slot update
is a normal outcome.
"""

import logging
import re
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_backend.app.core.clock import Clock, ensure_utc, tracking_day, utc_now
from telemetry_backend.app.core.config import settings
from telemetry_backend.app.core.exceptions import PersistenceError, ValidationError
from telemetry_backend.app.domain.tracking.location_resolver import AcceptancePolicy, LocationFix
from telemetry_backend.app.domain.tracking.retention import RetentionPolicy
from telemetry_backend.app.models.vehicle_tracking import VehicleTracking
from telemetry_backend.app.schemas.telemetry import (
    LocationUpdateRequest, LocationUpdateResponse, LocationPointResponse,
    StatusUpdateRequest, StatusUpdateResponse,
    AdPlaybackRequest, AdPlaybackResponse,
    QRScanRequest, QRScanResponse,
    VehicleStatusResponse,
)
from telemetry_backend.app.services import vehicle_tracking
from telemetry_backend.app.services.audit import log_event, AuditAction
from telemetry_backend.app.services.device_registry import DeviceAssignment, DeviceRegistry

logger = logging.getLogger("telemetry.ingestion")


def looks_like_device_id(material_id: str, device_id: Optional[str] = None, pattern: str = None) -> bool:
    """True when a materialId is really a tablet identifier."""
    if device_id is not None and material_id == device_id:
        return True
    return re.match(pattern or settings.device_id_pattern, material_id, re.IGNORECASE) is not None


class TelemetryIngestionService:

    def __init__(
        self,
        db: AsyncSession,
        registry: DeviceRegistry,
        clock: Clock = utc_now,
        config=settings,
        acceptance: AcceptancePolicy = None,
        retention: RetentionPolicy = None
    ):
        self.db = db
        self.registry = registry
        self.clock = clock
        self.config = config
        self.acceptance = acceptance or AcceptancePolicy.from_settings(config)
        self.retention = retention or RetentionPolicy.from_settings(config)

    async def record_location(self, payload: LocationUpdateRequest) -> LocationUpdateResponse:
        if looks_like_device_id(payload.material_id, payload.device_id, self.config.device_id_pattern):
            raise ValidationError(
                f"materialId '{payload.material_id}' looks like a device identifier",
                field="materialId"
            )

        now = self.clock()
        fix = LocationFix(
            lat=payload.lat,
            lng=payload.lng,
            timestamp=ensure_utc(payload.timestamp) if payload.timestamp else now,
            speed=payload.speed,
            heading=payload.heading,
            accuracy=payload.accuracy,
            address=payload.address or "",
        )

        assignment = await self._resolve(payload.device_id, payload.device_slot, payload.material_id)
        try:
            record = await self._open_record(assignment, now)
            await vehicle_tracking.touch_slot(
                self.db, record, assignment.slot_number, assignment.device_id, now,
                is_online=True,
                device_info=payload.device_info,
                online_gap_seconds=self.config.online_gap_seconds,
            )
            accepted = await vehicle_tracking.append_location(
                self.db, record, assignment.slot_number, fix, now, self.acceptance
            )
            await self.db.commit()
            await self.db.refresh(record)
            slots = await vehicle_tracking.get_slots(self.db, record.id)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Location update failed for %s: %s", payload.device_id, exc)
            raise PersistenceError("location-update", exc)

        return LocationUpdateResponse(
            material_id=record.material_id,
            device_id=assignment.device_id,
            current_location=_location_response(record),
            total_distance_traveled=record.total_distance_traveled,
            last_seen=_aware(record.last_seen),
            slot_status=vehicle_tracking.slot_statuses(slots),
            location_accepted=accepted,
        )

    async def record_status(self, payload: StatusUpdateRequest) -> StatusUpdateResponse:
        now = self.clock()
        assignment = await self._resolve(payload.device_id, payload.device_slot)
        try:
            record = await self._open_record(assignment, now)
            await vehicle_tracking.touch_slot(
                self.db, record, assignment.slot_number, assignment.device_id, now,
                is_online=payload.is_online,
                device_info=payload.device_info,
                network_status=payload.network_status,
                online_gap_seconds=self.config.online_gap_seconds,
            )
            await self.db.commit()
            await self.db.refresh(record)
            slots = await vehicle_tracking.get_slots(self.db, record.id)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Status update failed for %s: %s", payload.device_id, exc)
            raise PersistenceError("status-update", exc)

        return StatusUpdateResponse(
            device_id=assignment.device_id,
            device_slot=assignment.slot_number,
            material_id=record.material_id,
            is_online=record.is_online,
            last_seen=_aware(record.last_seen),
            slot_status=vehicle_tracking.slot_statuses(slots),
        )

    async def record_ad_playback(self, payload: AdPlaybackRequest) -> AdPlaybackResponse:
        now = self.clock()
        assignment = await self._resolve(payload.device_id, payload.device_slot)
        try:
            record = await self._open_record(assignment, now)
            await vehicle_tracking.touch_slot(
                self.db, record, assignment.slot_number, assignment.device_id, now,
                online_gap_seconds=self.config.online_gap_seconds,
            )
            await vehicle_tracking.append_ad_playback(
                self.db, record, assignment.slot_number,
                ad_id=payload.ad_id,
                ad_title=payload.ad_title,
                ad_duration=payload.ad_duration,
                view_time=payload.view_time,
                now=now,
                cap=self.retention.ad_playback_cap,
            )
            await self.db.commit()
            await self.db.refresh(record)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Ad playback failed for %s: %s", payload.device_id, exc)
            raise PersistenceError("ad-playback", exc)

        return AdPlaybackResponse(
            device_id=assignment.device_id,
            device_slot=assignment.slot_number,
            material_id=record.material_id,
            total_ad_plays=record.total_ad_plays,
            total_ad_play_time=record.total_ad_play_time,
        )

    async def record_qr_scan(self, payload: QRScanRequest) -> QRScanResponse:
        now = self.clock()
        assignment = await self._resolve(payload.device_id, payload.device_slot)
        try:
            record = await self._open_record(assignment, now)
            await vehicle_tracking.touch_slot(
                self.db, record, assignment.slot_number, assignment.device_id, now,
                online_gap_seconds=self.config.online_gap_seconds,
            )
            await vehicle_tracking.append_qr_scan(
                self.db, record, assignment.slot_number, payload.qr_scan_data, now,
                cap=self.retention.qr_scan_cap,
            )
            await self.db.commit()
            await self.db.refresh(record)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("QR scan failed for %s: %s", payload.device_id, exc)
            raise PersistenceError("qr-scan", exc)

        return QRScanResponse(
            device_id=assignment.device_id,
            device_slot=assignment.slot_number,
            material_id=record.material_id,
            total_qr_scans=record.total_qr_scans,
        )

    async def list_vehicles(self, day: Optional[date] = None) -> list[VehicleStatusResponse]:
        """
        Consolidated status of every vehicle group for a tracking day.

        A slot that has been silent longer than `offline_after_seconds` is
        shown offline; the vehicle is online while any slot is.
        """
        now = self.clock()
        day = day or tracking_day(now, self.config.tracking_timezone)
        result = await self.db.execute(
            select(VehicleTracking)
            .where(VehicleTracking.date == day)
            .order_by(VehicleTracking.material_id)
        )
        vehicles = []
        for record in result.scalars().all():
            slots = vehicle_tracking.slot_statuses(
                await vehicle_tracking.get_slots(self.db, record.id),
                now=now,
                offline_after_seconds=self.config.offline_after_seconds,
            )
            vehicles.append(VehicleStatusResponse(
                material_id=record.material_id,
                car_group_id=record.car_group_id,
                date=record.date,
                is_online=any(slot.is_online for slot in slots),
                last_seen=_aware(record.last_seen),
                slots=slots,
                current_location=_location_response(record),
                total_distance_traveled=round(record.total_distance_traveled, 3),
                total_hours_online=round(record.session_total_hours_online, 2),
                target_hours=record.session_target_hours,
                compliance_status=record.compliance_status.value,
            ))
        return vehicles

    async def _resolve(
        self,
        device_id: str,
        claimed_slot: int,
        claimed_material_id: Optional[str] = None
    ) -> DeviceAssignment:
        """Registry is authoritative; mismatching claims are only logged."""
        assignment = await self.registry.resolve(device_id)

        if looks_like_device_id(assignment.material_id, device_id, self.config.device_id_pattern):
            raise ValidationError(
                f"Device {device_id} is registered under malformed materialId '{assignment.material_id}'",
                field="materialId"
            )
        if claimed_material_id and claimed_material_id != assignment.material_id:
            logger.warning(
                "Device %s claims material %s but is registered to %s",
                device_id, claimed_material_id, assignment.material_id
            )
        if claimed_slot != assignment.slot_number:
            logger.warning(
                "Device %s claims slot %s but is registered to slot %s",
                device_id, claimed_slot, assignment.slot_number
            )
        return assignment

    async def _open_record(self, assignment: DeviceAssignment, now: datetime) -> VehicleTracking:
        day = tracking_day(now, self.config.tracking_timezone)
        record, how = await vehicle_tracking.get_or_create_today(
            self.db, assignment, day, now, self.config.target_hours_online
        )
        if how == "recovered":
            await log_event(
                self.db,
                action=AuditAction.TRACKING_RECORD_RECOVERED,
                actor="system",
                target_type="vehicle_tracking",
                target_id=assignment.material_id,
                metadata={"device_id": assignment.device_id, "date": day.isoformat(), "tracking_id": record.id},
                commit=False,
            )
        return record


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _location_response(record: VehicleTracking) -> Optional[LocationPointResponse]:
    fix = vehicle_tracking.current_fix(record)
    if fix is None:
        return None
    return LocationPointResponse(
        coordinates=fix.coordinates,
        speed=fix.speed,
        heading=fix.heading,
        accuracy=fix.accuracy,
        timestamp=fix.timestamp,
        address=fix.address,
    )
