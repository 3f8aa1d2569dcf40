"""
Event log ring buffer tests.
"""

import pytest
from datetime import date
from sqlalchemy import select, func

from telemetry_backend.app.domain.tracking.retention import RetentionPolicy, overflow, keep_newest
from telemetry_backend.app.models.vehicle_tracking import AdPlaybackEvent, QRScanEvent
from telemetry_backend.app.services import vehicle_tracking
from telemetry_backend.app.services.device_registry import DeviceAssignment

ASSIGNMENT = DeviceAssignment(device_id="TABLET-A1", material_id="MAT-1", car_group_id="CG-1", slot_number=1)


def test_overflow():
    assert overflow(0, 800) == 0
    assert overflow(800, 800) == 0
    assert overflow(801, 800) == 1


def test_keep_newest_drops_oldest():
    assert keep_newest([1, 2, 3, 4, 5], 3) == [3, 4, 5]
    assert keep_newest([1, 2], 3) == [1, 2]


def test_policy_rejects_non_positive_caps():
    with pytest.raises(ValueError):
        RetentionPolicy(ad_playback_cap=0)


@pytest.mark.asyncio
async def test_801st_playback_evicts_the_oldest(db_session, clock):
    record, _ = await vehicle_tracking.get_or_create_today(
        db_session, ASSIGNMENT, date(2024, 3, 15), clock(), 8.0
    )

    for i in range(801):
        await vehicle_tracking.append_ad_playback(
            db_session, record, 1,
            ad_id=f"AD-{i}", ad_title="Promo", ad_duration=30.0, view_time=30.0,
            now=clock(), cap=800,
        )
    await db_session.commit()

    count = (await db_session.execute(
        select(func.count(AdPlaybackEvent.id)).where(AdPlaybackEvent.tracking_id == record.id)
    )).scalar()
    oldest = (await db_session.execute(
        select(AdPlaybackEvent.ad_id)
        .where(AdPlaybackEvent.tracking_id == record.id)
        .order_by(AdPlaybackEvent.id)
        .limit(1)
    )).scalar()
    await db_session.refresh(record)

    assert count == 800
    assert oldest == "AD-1"
    # Counters keep counting past the cap
    assert record.total_ad_plays == 801


@pytest.mark.asyncio
async def test_qr_scans_have_their_own_cap(db_session, clock):
    record, _ = await vehicle_tracking.get_or_create_today(
        db_session, ASSIGNMENT, date(2024, 3, 15), clock(), 8.0
    )

    for i in range(5):
        await vehicle_tracking.append_qr_scan(
            db_session, record, 1, {"adId": "AD-1", "scan": i}, clock(), cap=3
        )
    await db_session.commit()

    result = await db_session.execute(
        select(QRScanEvent.scan_data)
        .where(QRScanEvent.tracking_id == record.id)
        .order_by(QRScanEvent.id)
    )
    scans = list(result.scalars().all())
    await db_session.refresh(record)

    assert [scan["scan"] for scan in scans] == [2, 3, 4]
    assert all(scan["slotNumber"] == 1 for scan in scans)
    assert record.total_qr_scans == 5
