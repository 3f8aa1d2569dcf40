"""
Route Reconstruction & Metrics Service.

Rebuilds a vehicle's route across days from archived history and the
still-open tracking record, and derives the metrics shown next to the
map.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_backend.app.core.clock import Clock, ensure_utc, utc_now
from telemetry_backend.app.core.config import settings
from telemetry_backend.app.core.exceptions import ResourceNotFoundError, ValidationError
from telemetry_backend.app.domain.tracking.geo import compute_route_metrics
from telemetry_backend.app.domain.tracking.location_resolver import LocationFix
from telemetry_backend.app.models.historical_day_record import HistoricalDayRecord
from telemetry_backend.app.models.vehicle_tracking import VehicleTracking
from telemetry_backend.app.schemas.route import (
    RoutePoint, DateRange, RouteMetricsResponse, RouteResponse,
    HistoryDaySummary, HistoryResponse,
)
from telemetry_backend.app.services import vehicle_tracking
from telemetry_backend.app.services.device_registry import DeviceRegistry

logger = logging.getLogger("telemetry.route")


def _date_filter(column, day: Optional[date], start_date: Optional[date], end_date: Optional[date]) -> list:
    if day is not None:
        return [column == day]
    conditions = []
    if start_date is not None:
        conditions.append(column >= start_date)
    if end_date is not None:
        conditions.append(column <= end_date)
    return conditions


class RouteReconstructionService:

    def __init__(self, db: AsyncSession, registry: DeviceRegistry, clock: Clock = utc_now, config=settings):
        self.db = db
        self.registry = registry
        self.clock = clock
        self.config = config

    async def reconstruct_for_device(
        self,
        device_id: str,
        day: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None
    ) -> RouteResponse:
        """
        Route of the vehicle group a tablet belongs to.

        Raises:
            NotRegisteredError: If the device is unknown
            ResourceNotFoundError: If no record exists in the range
        """
        assignment = await self.registry.resolve(device_id)
        return await self._reconstruct(assignment.material_id, device_id, day, start_date, end_date, limit)

    async def reconstruct_for_material(
        self,
        material_id: str,
        day: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None
    ) -> RouteResponse:
        return await self._reconstruct(material_id, None, day, start_date, end_date, limit)

    async def _reconstruct(self, material_id, device_id, day, start_date, end_date, limit) -> RouteResponse:
        if day is None and start_date and end_date and start_date > end_date:
            raise ValidationError("startDate must not be after endDate", field="startDate")
        limit = limit or self.config.route_default_limit

        history_result = await self.db.execute(
            select(HistoricalDayRecord)
            .where(
                HistoricalDayRecord.material_id == material_id,
                *_date_filter(HistoricalDayRecord.date, day, start_date, end_date)
            )
            .order_by(HistoricalDayRecord.date)
        )
        history = list(history_result.scalars().all())

        open_result = await self.db.execute(
            select(VehicleTracking)
            .where(
                VehicleTracking.material_id == material_id,
                *_date_filter(VehicleTracking.date, day, start_date, end_date)
            )
            .order_by(VehicleTracking.date)
        )
        open_records = list(open_result.scalars().all())

        if not history and not open_records:
            raise ResourceNotFoundError("Route data", material_id)

        fixes = [LocationFix.from_document(doc) for row in history for doc in (row.location_history or [])]
        for record in open_records:
            points = await vehicle_tracking.get_location_points(self.db, record.id)
            fixes.extend(vehicle_tracking.point_to_fix(point) for point in points)
        fixes.sort(key=lambda fix: fix.timestamp)

        total_distance = (
            sum(row.total_distance_traveled or 0.0 for row in history)
            + sum(record.total_distance_traveled or 0.0 for record in open_records)
        )
        metrics = compute_route_metrics([fix.timestamp for fix in fixes], total_distance)
        dates = [row.date for row in history] + [record.date for record in open_records]

        logger.debug(
            "Reconstructed %d point(s) for %s over %d record(s)",
            metrics.point_count, material_id, len(dates)
        )

        return RouteResponse(
            device_id=device_id,
            material_id=material_id,
            route=[
                RoutePoint(
                    lat=fix.lat,
                    lng=fix.lng,
                    timestamp=fix.timestamp,
                    speed=fix.speed,
                    heading=fix.heading,
                    accuracy=fix.accuracy,
                    address=fix.address,
                )
                for fix in fixes[-limit:]
            ],
            metrics=RouteMetricsResponse(
                total_distance=metrics.total_distance,
                total_duration=metrics.total_duration,
                average_speed=metrics.average_speed,
                point_count=metrics.point_count,
                total_ad_plays=(
                    sum(row.total_ad_plays for row in history)
                    + sum(record.total_ad_plays for record in open_records)
                ),
                total_qr_scans=(
                    sum(row.total_qr_scans for row in history)
                    + sum(record.total_qr_scans for record in open_records)
                ),
                total_hours_online=round(
                    sum(row.total_hours_online for row in history)
                    + sum(record.session_total_hours_online for record in open_records),
                    2
                ),
                record_count=len(dates),
                date_range=DateRange(start=min(dates), end=max(dates)),
                start_time=metrics.start_time,
                end_time=metrics.end_time,
            ),
        )

    async def history(
        self,
        material_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> HistoryResponse:
        """Per-day summaries of a vehicle group's archived days, newest first."""
        result = await self.db.execute(
            select(HistoricalDayRecord)
            .where(
                HistoricalDayRecord.material_id == material_id,
                *_date_filter(HistoricalDayRecord.date, None, start_date, end_date)
            )
            .order_by(HistoricalDayRecord.date.desc())
        )
        rows = list(result.scalars().all())
        if not rows:
            raise ResourceNotFoundError("History", material_id)

        return HistoryResponse(
            material_id=material_id,
            car_group_id=rows[0].car_group_id,
            days=[
                HistoryDaySummary(
                    date=row.date,
                    total_distance_traveled=row.total_distance_traveled,
                    total_ad_plays=row.total_ad_plays,
                    total_qr_scans=row.total_qr_scans,
                    total_hours_online=row.total_hours_online,
                    location_count=len(row.location_history or []),
                    compliance_status=(row.current_session or {}).get("complianceStatus"),
                    archived_at=ensure_utc(row.archived_at),
                )
                for row in rows
            ],
        )
