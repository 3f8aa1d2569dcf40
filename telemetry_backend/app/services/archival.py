"""
Daily Archival Service.

Moves closed tracking days into immutable history. Each open record is
copied into a HistoricalDayRecord keyed by (material_id, date) and then
deleted, in its own transaction, so one bad record never blocks the rest
of the run. The unique key on history makes concurrent runs from several
server processes safe: the loser's insert fails and is counted as skipped.

The daily run is triggered by Celery beat (see `telemetry_backend.app.worker`).
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, delete, func, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from telemetry_backend.app.core.clock import Clock, ensure_utc, tracking_day, utc_now
from telemetry_backend.app.core.config import settings
from telemetry_backend.app.core.exceptions import ArchiveInProgressError, PersistenceError
from telemetry_backend.app.db.session import AsyncSessionLocal
from telemetry_backend.app.domain.tracking.retention import RetentionPolicy, keep_newest
from telemetry_backend.app.models.archive_run import ArchiveRun
from telemetry_backend.app.models.historical_day_record import HistoricalDayRecord
from telemetry_backend.app.models.tracking_enums import ArchiveTrigger, ArchiveRunStatus
from telemetry_backend.app.models.vehicle_tracking import (
    VehicleTracking, TrackingSlot, TrackingLocationPoint, AdPlaybackEvent, QRScanEvent
)
from telemetry_backend.app.schemas.archive import ArchiveRunResponse, ArchiveStatusResponse
from telemetry_backend.app.services import vehicle_tracking
from telemetry_backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("telemetry.archival")

ARCHIVED = "archived"
SKIPPED = "skipped"
FAILED = "failed"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value is not None else None


def build_daily_summary(location_history: list, ad_playbacks: list, qr_scans: list) -> dict:
    """
    Per-day figures shown when browsing history.

    Args:
        location_history: Snapshot location documents
        ad_playbacks: Snapshot playback documents
        qr_scans: Snapshot scan documents

    Returns:
        dict with averageSpeed, maxSpeed, adCompletionRate, adPerformance
        and qrScansByAd
    """
    speeds = [point.get("speed") or 0.0 for point in location_history]

    ad_performance = {}
    for playback in ad_playbacks:
        entry = ad_performance.setdefault(playback["adId"], {
            "adTitle": playback["adTitle"],
            "playCount": 0,
            "totalViewTime": 0.0,
            "impressions": 0,
        })
        entry["playCount"] += 1
        entry["totalViewTime"] += playback["viewTime"]
        entry["impressions"] += playback["impressions"]

    completion_rates = [playback["completionRate"] for playback in ad_playbacks]

    qr_scans_by_ad = defaultdict(int)
    for scan in qr_scans:
        qr_scans_by_ad[scan.get("adId") or "unknown"] += 1

    return {
        "averageSpeed": round(sum(speeds) / len(speeds), 2) if speeds else 0.0,
        "maxSpeed": max(speeds) if speeds else 0.0,
        "adCompletionRate": round(sum(completion_rates) / len(completion_rates), 2) if completion_rates else 0.0,
        "adPerformance": ad_performance,
        "qrScansByAd": dict(qr_scans_by_ad),
    }


async def build_snapshot(
    db,
    record: VehicleTracking,
    archived_at: datetime,
    retention: RetentionPolicy
) -> HistoricalDayRecord:
    """Copy an open record and its child rows into a history row."""
    slots = await vehicle_tracking.get_slots(db, record.id)
    points = await vehicle_tracking.get_location_points(db, record.id)

    ads_result = await db.execute(
        select(AdPlaybackEvent)
        .where(AdPlaybackEvent.tracking_id == record.id)
        .order_by(AdPlaybackEvent.id)
    )
    scans_result = await db.execute(
        select(QRScanEvent)
        .where(QRScanEvent.tracking_id == record.id)
        .order_by(QRScanEvent.id)
    )

    location_history = [
        {**vehicle_tracking.point_to_fix(point).to_document(), "slotNumber": point.slot_number}
        for point in points
    ]
    ad_playbacks = keep_newest([
        {
            "adId": ad.ad_id,
            "adTitle": ad.ad_title,
            "materialId": ad.material_id,
            "slotNumber": ad.slot_number,
            "adDuration": ad.ad_duration,
            "startTime": _iso(ad.start_time),
            "endTime": _iso(ad.end_time),
            "viewTime": ad.view_time,
            "completionRate": ad.completion_rate,
            "impressions": ad.impressions,
        }
        for ad in ads_result.scalars().all()
    ], retention.ad_playback_cap)
    qr_scans = keep_newest([
        {**(scan.scan_data or {}), "slotNumber": scan.slot_number, "adId": scan.ad_id,
         "scannedAt": _iso(scan.scanned_at)}
        for scan in scans_result.scalars().all()
    ], retention.qr_scan_cap)

    slot_documents = [
        {
            "slotNumber": slot.slot_number,
            "deviceId": slot.device_id,
            "isOnline": slot.is_online,
            "lastSeen": _iso(slot.last_seen),
            "deviceInfo": slot.device_info,
            "networkStatus": slot.network_status,
        }
        for slot in slots
    ]

    compliance = record.compliance_status
    current_session = {
        "startTime": _iso(record.session_start_time),
        "lastActivity": _iso(record.last_seen),
        "totalHoursOnline": record.session_total_hours_online,
        "targetHours": record.session_target_hours,
        "complianceStatus": compliance.value if compliance is not None else None,
        "isActive": False,
    }

    return HistoricalDayRecord(
        material_id=record.material_id,
        car_group_id=record.car_group_id,
        date=record.date,
        slots=slot_documents,
        current_location=record.current_location,
        location_history=location_history,
        ad_playbacks=ad_playbacks,
        qr_scans=qr_scans,
        current_session=current_session,
        daily_summary=build_daily_summary(location_history, ad_playbacks, qr_scans),
        total_distance_traveled=record.total_distance_traveled,
        total_ad_plays=record.total_ad_plays,
        total_ad_play_time=record.total_ad_play_time,
        total_ad_impressions=record.total_ad_impressions,
        total_qr_scans=record.total_qr_scans,
        total_hours_online=record.session_total_hours_online,
        archived_at=archived_at,
    )

def _location_key(doc: dict) -> tuple:
    return doc.get("timestamp"), doc.get("slotNumber")


def _ad_key(doc: dict) -> tuple:
    return doc.get("adId"), doc.get("slotNumber"), doc.get("startTime")


def _qr_key(doc: dict) -> tuple:
    return doc.get("scannedAt"), doc.get("slotNumber"), doc.get("adId")


def _union(existing: list, incoming: list, key) -> list:
    seen = {key(doc) for doc in existing}
    merged = list(existing)
    for doc in incoming:
        if key(doc) not in seen:
            seen.add(key(doc))
            merged.append(doc)
    return merged


def merge_into_history(
    history: HistoricalDayRecord,
    late: HistoricalDayRecord,
    retention: RetentionPolicy
) -> None:
    """
    Fold a late snapshot of a closed day into its existing history row.

    This is the only update a history row ever receives. It happens when
    a day was archived manually while still open and the vehicle kept
    reporting afterwards. Arrays are unioned without duplicates and the
    counters of the late record are added on top.
    """
    location_history = _union(history.location_history or [], late.location_history, _location_key)
    ad_playbacks = keep_newest(_union(history.ad_playbacks or [], late.ad_playbacks, _ad_key), retention.ad_playback_cap)
    qr_scans = keep_newest(_union(history.qr_scans or [], late.qr_scans, _qr_key), retention.qr_scan_cap)

    slots = {slot["slotNumber"]: slot for slot in history.slots or []}
    for slot in late.slots:
        if slot.get("deviceId") or slot["slotNumber"] not in slots:
            slots[slot["slotNumber"]] = slot

    total_hours = (history.total_hours_online or 0.0) + (late.total_hours_online or 0.0)

    history.slots = [slots[number] for number in sorted(slots)]
    history.current_location = late.current_location or history.current_location
    history.location_history = location_history
    history.ad_playbacks = ad_playbacks
    history.qr_scans = qr_scans
    history.current_session = {**late.current_session, "totalHoursOnline": total_hours}
    history.daily_summary = build_daily_summary(location_history, ad_playbacks, qr_scans)
    history.total_distance_traveled = (history.total_distance_traveled or 0.0) + late.total_distance_traveled
    history.total_ad_plays = (history.total_ad_plays or 0) + late.total_ad_plays
    history.total_ad_play_time = (history.total_ad_play_time or 0.0) + late.total_ad_play_time
    history.total_ad_impressions = (history.total_ad_impressions or 0) + late.total_ad_impressions
    history.total_qr_scans = (history.total_qr_scans or 0) + late.total_qr_scans
    history.total_hours_online = total_hours
    history.archived_at = late.archived_at


def run_to_response(run: ArchiveRun) -> ArchiveRunResponse:
    return ArchiveRunResponse(
        run_id=run.id,
        trigger=run.trigger.value,
        target_date=run.target_date,
        status=run.status.value,
        archived=run.archived_count,
        skipped=run.skipped_count,
        failed=run.failed_count,
        started_at=ensure_utc(run.started_at),
        finished_at=ensure_utc(run.finished_at) if run.finished_at else None,
        error_message=run.error_message,
    )


class ArchivalService:
    """
    Executes archival runs, scheduled (from the Celery beat task in
    `telemetry_backend.app.tasks`) or manual (from the API).

    Only one run executes per instance at a time; a second request while
    a run is in flight raises ArchiveInProgressError.
    """

    def __init__(self, session_factory=AsyncSessionLocal, clock: Clock = utc_now, config=settings):
        self.session_factory = session_factory
        self.clock = clock
        self.config = config
        self.retention = RetentionPolicy.from_settings(config)
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(
        self,
        target_date: Optional[date] = None,
        trigger: ArchiveTrigger = ArchiveTrigger.SCHEDULED,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> ArchiveRunResponse:
        """
        Archive open records.

        Args:
            target_date: Archive records of this day only (today included).
                When None, archive every record dated before today.
            trigger: SCHEDULED or MANUAL
            actor: Caller identity recorded in the audit log for manual runs
            ip_address: Caller address recorded in the audit log

        Returns:
            Summary of the finished run

        Raises:
            ArchiveInProgressError: If a run is already executing on this instance
            PersistenceError: If the run itself could not be recorded
        """
        if self._running:
            raise ArchiveInProgressError()
        self._running = True
        try:
            return await self._execute(target_date, trigger, actor, ip_address)
        finally:
            self._running = False

    async def _execute(self, target_date, trigger, actor, ip_address) -> ArchiveRunResponse:
        started_at = self.clock()
        today = tracking_day(started_at, self.config.tracking_timezone)

        try:
            async with self.session_factory() as db:
                run = ArchiveRun(
                    trigger=trigger,
                    target_date=target_date,
                    status=ArchiveRunStatus.RUNNING,
                    started_at=started_at,
                )
                db.add(run)
                await db.commit()
                run_id = run.id

                if trigger == ArchiveTrigger.MANUAL:
                    await log_event(
                        db,
                        action=AuditAction.ARCHIVE_TRIGGERED,
                        actor=actor,
                        target_type="archive_run",
                        target_id=str(run_id),
                        metadata={"target_date": target_date.isoformat() if target_date else None},
                        ip_address=ip_address,
                    )

                if target_date is not None:
                    condition = VehicleTracking.date == target_date
                else:
                    condition = VehicleTracking.date < today
                result = await db.execute(
                    select(VehicleTracking.id).where(condition).order_by(VehicleTracking.date, VehicleTracking.id)
                )
                record_ids = list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Archival run could not start")
            raise PersistenceError("archive-run", exc)

        logger.info("Archival run %s (%s) found %d record(s)", run_id, trigger.value, len(record_ids))

        counts = {ARCHIVED: 0, SKIPPED: 0, FAILED: 0}
        error_message = None
        try:
            for record_id in record_ids:
                outcome = await self.archive_record(record_id, today)
                counts[outcome] += 1
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            logger.exception("Archival run %s aborted", run_id)

        async with self.session_factory() as db:
            run = await db.get(ArchiveRun, run_id)
            run.archived_count = counts[ARCHIVED]
            run.skipped_count = counts[SKIPPED]
            run.failed_count = counts[FAILED]
            run.status = ArchiveRunStatus.FAILED if error_message else ArchiveRunStatus.COMPLETED
            run.error_message = error_message
            run.finished_at = self.clock()
            await db.commit()
            await db.refresh(run)
            response = run_to_response(run)

        logger.info(
            "Archival run %s finished: archived=%d skipped=%d failed=%d",
            run_id, counts[ARCHIVED], counts[SKIPPED], counts[FAILED]
        )
        return response

    async def archive_record(self, record_id: int, today: Optional[date] = None) -> str:
        """
        Archive one open record in its own transaction.

        When history for the record's day already exists, a closed day is
        folded into it and the open record removed. A day that is still
        open keeps its record until it closes.

        Returns:
            "archived", "skipped" or "failed"
        """
        if today is None:
            today = tracking_day(self.clock(), self.config.tracking_timezone)

        async with self.session_factory() as db:
            try:
                record = await db.get(VehicleTracking, record_id)
                if record is None:
                    # Another instance archived it between listing and now
                    return SKIPPED

                history = (await db.execute(
                    select(HistoricalDayRecord).where(
                        HistoricalDayRecord.material_id == record.material_id,
                        HistoricalDayRecord.date == record.date
                    )
                )).scalar_one_or_none()

                if history is not None and record.date >= today:
                    logger.warning(
                        "History already exists for %s on %s; open record %s is kept until the day closes",
                        record.material_id, record.date, record.id
                    )
                    return SKIPPED

                snapshot = await build_snapshot(db, record, self.clock(), self.retention)
                if history is None:
                    db.add(snapshot)
                    await db.flush()
                else:
                    merge_into_history(history, snapshot, self.retention)
                    logger.warning(
                        "Merged late record %s into existing history for %s on %s",
                        record.id, record.material_id, record.date
                    )

                for child in (TrackingLocationPoint, AdPlaybackEvent, QRScanEvent, TrackingSlot):
                    await db.execute(delete(child).where(child.tracking_id == record.id))
                deleted = await db.execute(delete(VehicleTracking).where(VehicleTracking.id == record.id))
                if deleted.rowcount == 0:
                    # Another instance removed the record first
                    await db.rollback()
                    return SKIPPED
                await db.commit()

            except IntegrityError:
                await db.rollback()
                logger.warning("History for tracking record %s was written concurrently, skipping", record_id)
                return SKIPPED
            except SQLAlchemyError:
                await db.rollback()
                logger.exception("Failed to archive tracking record %s", record_id)
                return FAILED

        logger.info("Archived %s for %s", snapshot.material_id, snapshot.date)
        return ARCHIVED

    async def status(self) -> ArchiveStatusResponse:
        today = tracking_day(self.clock(), self.config.tracking_timezone)
        async with self.session_factory() as db:
            last_run = (await db.execute(
                select(ArchiveRun).order_by(desc(ArchiveRun.started_at), desc(ArchiveRun.id)).limit(1)
            )).scalar_one_or_none()
            pending = (await db.execute(
                select(func.count(VehicleTracking.id)).where(VehicleTracking.date < today)
            )).scalar() or 0
            open_records = (await db.execute(select(func.count(VehicleTracking.id)))).scalar() or 0
            historical = (await db.execute(select(func.count(HistoricalDayRecord.id)))).scalar() or 0

        return ArchiveStatusResponse(
            is_running=self._running,
            last_run=run_to_response(last_run) if last_run else None,
            pending_count=pending,
            open_record_count=open_records,
            historical_record_count=historical,
        )


archival_service = ArchivalService()


def get_archival_service() -> ArchivalService:
    """FastAPI dependency returning the API process's archival service."""
    return archival_service
