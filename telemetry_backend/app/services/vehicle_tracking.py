"""
Vehicle Tracking aggregate service.

Locates, recovers, or creates a vehicle group's record for the current
tracking day and applies telemetry mutations to it. Counters are
updated with per-column increments and array data is appended as rows,
so both tablets of a vehicle can write concurrently without losing
updates.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_backend.app.core.clock import ensure_utc
from telemetry_backend.app.domain.tracking.geo import haversine_distance
from telemetry_backend.app.domain.tracking.location_resolver import (
    AcceptancePolicy, LocationFix, accept
)
from telemetry_backend.app.domain.tracking.retention import overflow
from telemetry_backend.app.models.tracking_enums import ComplianceStatus
from telemetry_backend.app.models.vehicle_tracking import (
    VehicleTracking, TrackingSlot, TrackingLocationPoint, AdPlaybackEvent, QRScanEvent
)
from telemetry_backend.app.schemas.telemetry import SlotStatus
from telemetry_backend.app.services.device_registry import DeviceAssignment, is_registered_material

logger = logging.getLogger("telemetry.tracking")

SLOT_NUMBERS = (1, 2)


async def find_tracking_record(
    db: AsyncSession,
    material_id: str,
    day: date
) -> Optional[VehicleTracking]:
    """Get the open record of a vehicle group for a tracking day."""
    result = await db.execute(
        select(VehicleTracking).where(
            VehicleTracking.material_id == material_id,
            VehicleTracking.date == day
        )
    )
    return result.scalar_one_or_none()


async def find_record_by_device(
    db: AsyncSession,
    device_id: str,
    day: date
) -> Optional[VehicleTracking]:
    """
    Find a record for `day` that already holds `device_id` in one of its
    slots. Used when the tablet's record was created under another key.
    """
    result = await db.execute(
        select(VehicleTracking)
        .join(TrackingSlot, TrackingSlot.tracking_id == VehicleTracking.id)
        .where(
            TrackingSlot.device_id == device_id,
            VehicleTracking.date == day
        )
        .order_by(VehicleTracking.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_tracking_record(
    db: AsyncSession,
    assignment: DeviceAssignment,
    day: date,
    now: datetime,
    target_hours: float
) -> VehicleTracking:
    """
    Create today's record with both slots.

    Raises:
        IntegrityError: If another request created the record first
    """
    record = VehicleTracking(
        material_id=assignment.material_id,
        car_group_id=assignment.car_group_id,
        date=day,
        is_online=False,
        last_seen=None,
        session_start_time=now,
        session_target_hours=target_hours,
        compliance_status=ComplianceStatus.NON_COMPLIANT,
    )
    db.add(record)
    await db.flush()  # Will raise IntegrityError if unique constraint violated

    db.add_all([
        TrackingSlot(tracking_id=record.id, slot_number=slot_number, is_online=False)
        for slot_number in SLOT_NUMBERS
    ])
    await db.flush()

    return record


async def get_or_create_today(
    db: AsyncSession,
    assignment: DeviceAssignment,
    day: date,
    now: datetime,
    target_hours: float
) -> tuple[VehicleTracking, str]:
    """
    Locate the record for (material_id, day), recovering or creating it.

    Recovery re-keys a same-day record that holds this device only when
    its key is not a registered material (a stale or malformed key).

    Returns:
        (record, how) where how is "found", "recovered" or "created"
    """
    record = await find_tracking_record(db, assignment.material_id, day)
    if record is not None:
        return record, "found"

    record = await find_record_by_device(db, assignment.device_id, day)
    if record is not None and await is_registered_material(db, record.material_id):
        # The tablet was moved from another registered vehicle; that day stays with it
        logger.info(
            "Device %s already reported today for %s, opening a separate record for %s",
            assignment.device_id, record.material_id, assignment.material_id
        )
        record = None
    if record is not None:
        previous_key = record.material_id
        await db.execute(
            update(VehicleTracking)
            .where(VehicleTracking.id == record.id)
            .values(material_id=assignment.material_id, car_group_id=assignment.car_group_id)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(record)
        logger.info(
            "Re-keyed tracking record %s from %s to %s (device %s)",
            record.id, previous_key, assignment.material_id, assignment.device_id
        )
        return record, "recovered"

    try:
        record = await create_tracking_record(db, assignment, day, now, target_hours)
    except IntegrityError:
        # The vehicle's other tablet won the race
        await db.rollback()
        record = await find_tracking_record(db, assignment.material_id, day)
        if record is None:
            raise
        return record, "found"

    logger.info("Created tracking record for %s on %s", assignment.material_id, day)
    return record, "created"


async def get_slots(db: AsyncSession, tracking_id: int) -> list[TrackingSlot]:
    result = await db.execute(
        select(TrackingSlot)
        .where(TrackingSlot.tracking_id == tracking_id)
        .order_by(TrackingSlot.slot_number)
    )
    return list(result.scalars().all())


async def touch_slot(
    db: AsyncSession,
    record: VehicleTracking,
    slot_number: int,
    device_id: str,
    now: datetime,
    is_online: bool = True,
    device_info: Optional[dict] = None,
    network_status: Optional[dict] = None,
    online_gap_seconds: int = 120
) -> None:
    """
    Upsert the reporting slot and refresh the record's derived status.

    Time since the record's previous activity counts toward today's
    online hours when the vehicle was online and the gap is short
    enough to be continuous polling.
    """
    slot_result = await db.execute(
        select(TrackingSlot).where(
            TrackingSlot.tracking_id == record.id,
            TrackingSlot.slot_number == slot_number
        )
    )
    slot = slot_result.scalar_one_or_none()

    values = {"device_id": device_id, "is_online": is_online, "last_seen": now}
    if device_info is not None:
        values["device_info"] = {**((slot.device_info if slot else None) or {}), **device_info}
    if network_status is not None:
        values["network_status"] = {
            **((slot.network_status if slot else None) or {}),
            **network_status,
            "lastSeen": now.isoformat(),
        }

    if slot is None:
        db.add(TrackingSlot(tracking_id=record.id, slot_number=slot_number, **values))
    else:
        await db.execute(
            update(TrackingSlot)
            .where(TrackingSlot.id == slot.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    await db.flush()

    online_result = await db.execute(
        select(func.count(TrackingSlot.id)).where(
            TrackingSlot.tracking_id == record.id,
            TrackingSlot.is_online == True
        )
    )
    any_online = (online_result.scalar() or 0) > 0

    hours_delta = 0.0
    if record.is_online and record.last_seen is not None:
        gap = (ensure_utc(now) - ensure_utc(record.last_seen)).total_seconds()
        if 0 < gap <= online_gap_seconds:
            hours_delta = gap / 3600

    hours_total = (record.session_total_hours_online or 0.0) + hours_delta
    compliance = (
        ComplianceStatus.COMPLIANT
        if hours_total >= record.session_target_hours
        else ComplianceStatus.NON_COMPLIANT
    )

    last_seen = now
    if record.last_seen is not None and ensure_utc(record.last_seen) > ensure_utc(now):
        last_seen = record.last_seen

    await db.execute(
        update(VehicleTracking)
        .where(VehicleTracking.id == record.id)
        .values(
            is_online=any_online,
            last_seen=last_seen,
            session_total_hours_online=VehicleTracking.session_total_hours_online + hours_delta,
            compliance_status=compliance,
        )
        .execution_options(synchronize_session=False)
    )


def current_fix(record: VehicleTracking) -> Optional[LocationFix]:
    if not record.current_location:
        return None
    return LocationFix.from_document(record.current_location)


async def append_location(
    db: AsyncSession,
    record: VehicleTracking,
    slot_number: int,
    fix: LocationFix,
    now: datetime,
    policy: AcceptancePolicy
) -> bool:
    """
    Run the acceptance rule and, if the fix passes, append it to the
    day's history and advance the distance counter.

    Returns:
        True if the fix was stored
    """
    current = current_fix(record)
    if not accept(current, fix, policy):
        logger.debug("Rejected fix for %s slot %s", record.material_id, slot_number)
        return False

    distance_km = 0.0
    if current is not None:
        distance_km = haversine_distance(current.lat, current.lng, fix.lat, fix.lng)

    db.add(TrackingLocationPoint(
        tracking_id=record.id,
        slot_number=slot_number,
        latitude=fix.lat,
        longitude=fix.lng,
        speed=fix.speed,
        heading=fix.heading,
        accuracy=fix.accuracy,
        address=fix.address,
        recorded_at=fix.timestamp,
        accepted_at=now,
    ))
    await db.flush()

    await db.execute(
        update(VehicleTracking)
        .where(VehicleTracking.id == record.id)
        .values(
            current_location=fix.to_document(),
            total_distance_traveled=VehicleTracking.total_distance_traveled + distance_km,
        )
        .execution_options(synchronize_session=False)
    )
    return True


async def enforce_log_cap(db: AsyncSession, model, tracking_id: int, cap: int) -> int:
    """
    Evict the oldest rows of an event log beyond `cap`.

    Returns:
        Number of rows evicted
    """
    count_result = await db.execute(
        select(func.count(model.id)).where(model.tracking_id == tracking_id)
    )
    excess = overflow(count_result.scalar() or 0, cap)
    if not excess:
        return 0

    oldest_result = await db.execute(
        select(model.id)
        .where(model.tracking_id == tracking_id)
        .order_by(model.id)
        .limit(excess)
    )
    oldest_ids = list(oldest_result.scalars().all())
    await db.execute(
        delete(model).where(model.id.in_(oldest_ids)).execution_options(synchronize_session=False)
    )
    return len(oldest_ids)


async def append_ad_playback(
    db: AsyncSession,
    record: VehicleTracking,
    slot_number: int,
    ad_id: str,
    ad_title: str,
    ad_duration: float,
    view_time: float,
    now: datetime,
    cap: int
) -> AdPlaybackEvent:
    completion_rate = min(100.0, view_time / ad_duration * 100) if ad_duration > 0 else 0.0
    event = AdPlaybackEvent(
        tracking_id=record.id,
        ad_id=ad_id,
        ad_title=ad_title,
        material_id=record.material_id,
        slot_number=slot_number,
        ad_duration=ad_duration,
        start_time=now,
        end_time=now + timedelta(seconds=view_time),
        view_time=view_time,
        completion_rate=round(completion_rate, 2),
        impressions=1,
    )
    db.add(event)
    await db.flush()

    await enforce_log_cap(db, AdPlaybackEvent, record.id, cap)

    await db.execute(
        update(VehicleTracking)
        .where(VehicleTracking.id == record.id)
        .values(
            total_ad_plays=VehicleTracking.total_ad_plays + 1,
            total_ad_impressions=VehicleTracking.total_ad_impressions + 1,
            total_ad_play_time=VehicleTracking.total_ad_play_time + view_time,
        )
        .execution_options(synchronize_session=False)
    )
    return event


async def append_qr_scan(
    db: AsyncSession,
    record: VehicleTracking,
    slot_number: int,
    scan_data: dict,
    now: datetime,
    cap: int
) -> QRScanEvent:
    event = QRScanEvent(
        tracking_id=record.id,
        slot_number=slot_number,
        ad_id=scan_data.get("adId"),
        scan_data={**scan_data, "slotNumber": slot_number},
        scanned_at=now,
    )
    db.add(event)
    await db.flush()

    await enforce_log_cap(db, QRScanEvent, record.id, cap)

    await db.execute(
        update(VehicleTracking)
        .where(VehicleTracking.id == record.id)
        .values(total_qr_scans=VehicleTracking.total_qr_scans + 1)
        .execution_options(synchronize_session=False)
    )
    return event


async def get_location_points(db: AsyncSession, tracking_id: int) -> list[TrackingLocationPoint]:
    """Accepted fixes in acceptance order."""
    result = await db.execute(
        select(TrackingLocationPoint)
        .where(TrackingLocationPoint.tracking_id == tracking_id)
        .order_by(TrackingLocationPoint.id)
    )
    return list(result.scalars().all())


def point_to_fix(point: TrackingLocationPoint) -> LocationFix:
    return LocationFix(
        lat=point.latitude,
        lng=point.longitude,
        timestamp=ensure_utc(point.recorded_at),
        speed=point.speed or 0.0,
        heading=point.heading or 0.0,
        accuracy=point.accuracy,
        address=point.address or "",
    )


def slot_statuses(
    slots: list[TrackingSlot],
    now: Optional[datetime] = None,
    offline_after_seconds: Optional[int] = None
) -> list[SlotStatus]:
    """
    Per-slot online indicators. When `now` is given, a slot that has not
    reported within `offline_after_seconds` is shown offline even if its
    last status said online.
    """
    statuses = []
    for slot in sorted(slots, key=lambda s: s.slot_number):
        online = bool(slot.is_online)
        if online and now is not None and offline_after_seconds is not None:
            if slot.last_seen is None:
                online = False
            else:
                silence = (ensure_utc(now) - ensure_utc(slot.last_seen)).total_seconds()
                online = silence <= offline_after_seconds
        statuses.append(SlotStatus(
            slot_number=slot.slot_number,
            device_id=slot.device_id,
            is_online=online,
            last_seen=ensure_utc(slot.last_seen) if slot.last_seen else None,
        ))
    return statuses
