"""
Route Reconstruction Tests.
"""

import pytest
from datetime import date, datetime, timedelta, timezone

from telemetry_backend.app.domain.tracking.location_resolver import LocationFix
from telemetry_backend.app.models.historical_day_record import HistoricalDayRecord

ARCHIVED_AT = datetime(2024, 3, 15, 0, 5, tzinfo=timezone.utc)


def history_day(day: date, distance: float, fixes: list, ad_plays=0, qr_scans=0, hours=0.0):
    return HistoricalDayRecord(
        material_id="MAT-1",
        car_group_id="CG-1",
        date=day,
        slots=[],
        current_location=fixes[-1].to_document() if fixes else None,
        location_history=[fix.to_document() for fix in fixes],
        ad_playbacks=[],
        qr_scans=[],
        current_session={"complianceStatus": "NON_COMPLIANT"},
        daily_summary={},
        total_distance_traveled=distance,
        total_ad_plays=ad_plays,
        total_qr_scans=qr_scans,
        total_hours_online=hours,
        archived_at=ARCHIVED_AT,
    )


def fix_at(when: datetime, lat=14.6, lng=121.0):
    return LocationFix(lat=lat, lng=lng, timestamp=when)


@pytest.fixture
async def two_archived_days(db_session):
    day1 = datetime(2024, 3, 13, 1, 0, tzinfo=timezone.utc)
    day2 = datetime(2024, 3, 14, 1, 0, tzinfo=timezone.utc)
    db_session.add_all([
        # Stored out of order on purpose
        history_day(date(2024, 3, 13), 5.5, [fix_at(day1 + timedelta(hours=1)), fix_at(day1)], ad_plays=3, hours=2.0),
        history_day(date(2024, 3, 14), 7.25, [fix_at(day2), fix_at(day2 + timedelta(minutes=30))], qr_scans=2, hours=1.5),
    ])
    await db_session.commit()


@pytest.mark.asyncio
async def test_route_across_history_and_open_day(client, registered_devices, two_archived_days, location_payload):
    await client.post("/v1/tracking/location-update", json=location_payload(timestamp="2024-03-15T02:00:00Z"))

    response = await client.get("/v1/tracking/route/TABLET-A1")
    assert response.status_code == 200
    body = response.json()

    timestamps = [point["timestamp"] for point in body["route"]]
    assert timestamps == sorted(timestamps)
    assert len(body["route"]) == 5
    assert body["route"][-1]["lat"] == pytest.approx(14.5995)
    assert body["route"][-1]["lng"] == pytest.approx(120.9842)

    metrics = body["metrics"]
    assert body["deviceId"] == "TABLET-A1"
    assert body["materialId"] == "MAT-1"
    assert metrics["totalDistance"] == pytest.approx(5.5 + 7.25)
    assert metrics["pointCount"] == 5
    assert metrics["recordCount"] == 3
    assert metrics["totalAdPlays"] == 3
    assert metrics["totalQRScans"] == 2
    assert metrics["totalHoursOnline"] == 3.5
    assert metrics["dateRange"] == {"start": "2024-03-13", "end": "2024-03-15"}
    # 2024-03-13T01:00 to 2024-03-15T02:00
    assert metrics["totalDuration"] == 49 * 3600
    assert metrics["averageSpeed"] == round(12.75 / 49, 2)


@pytest.mark.asyncio
async def test_route_for_single_date(client, registered_devices, two_archived_days):
    response = await client.get("/v1/tracking/route/TABLET-A2", params={"date": "2024-03-14"})
    body = response.json()

    assert response.status_code == 200
    assert body["metrics"]["recordCount"] == 1
    assert body["metrics"]["totalDistance"] == 7.25
    assert body["metrics"]["totalDuration"] == 1800


@pytest.mark.asyncio
async def test_route_date_range_and_limit(client, registered_devices, two_archived_days):
    response = await client.get("/v1/tracking/route/material/MAT-1", params={
        "startDate": "2024-03-13", "endDate": "2024-03-14", "limit": 1,
    })
    body = response.json()

    assert response.status_code == 200
    assert body["deviceId"] is None
    assert len(body["route"]) == 1
    assert body["route"][0]["timestamp"].startswith("2024-03-14T01:30:00")
    # Metrics cover the whole range, not just the returned points
    assert body["metrics"]["pointCount"] == 4
    assert body["metrics"]["totalDistance"] == 12.75


@pytest.mark.asyncio
async def test_route_with_no_data_is_404(client, registered_devices):
    response = await client.get("/v1/tracking/route/TABLET-B1")

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_route_for_unknown_device_is_404(client, registered_devices):
    response = await client.get("/v1/tracking/route/TABLET-NOPE")

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_DEVICE_NOT_REGISTERED"


@pytest.mark.asyncio
async def test_inverted_range_is_400(client, registered_devices, two_archived_days):
    response = await client.get("/v1/tracking/route/material/MAT-1", params={
        "startDate": "2024-03-14", "endDate": "2024-03-13",
    })
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_history_listing(client, registered_devices, two_archived_days):
    response = await client.get("/v1/tracking/history/MAT-1")
    body = response.json()

    assert response.status_code == 200
    assert body["carGroupId"] == "CG-1"
    assert [day["date"] for day in body["days"]] == ["2024-03-14", "2024-03-13"]
    assert body["days"][0]["locationCount"] == 2
    assert body["days"][0]["totalQRScans"] == 2
    assert body["days"][1]["complianceStatus"] == "NON_COMPLIANT"


@pytest.mark.asyncio
async def test_history_for_unknown_material_is_404(client):
    response = await client.get("/v1/tracking/history/MAT-404")
    assert response.status_code == 404
