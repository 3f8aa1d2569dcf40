"""
Vehicle Tracking database models.

One VehicleTracking row per vehicle group per tracking day, shared by the
two tablets mounted in the vehicle. Repeated data (slots, accepted fixes,
ad playbacks, QR scans) lives in child tables so that every append is a
single INSERT.
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Date, DateTime, JSON, Enum,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.sql import func
from telemetry_backend.app.db.session import Base
from telemetry_backend.app.models.tracking_enums import ComplianceStatus


class VehicleTracking(Base):
    """
    Open ("today") tracking aggregate for a vehicle group.

    Deleted by the archival job once copied into HistoricalDayRecord.
    """
    __tablename__ = "vehicle_tracking"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Identity
    material_id = Column(String(100), nullable=False, index=True)
    car_group_id = Column(String(100), nullable=True, index=True)
    date = Column(Date, nullable=False, index=True)

    # Current status
    current_location = Column(JSON, nullable=True)  # LocationFix document
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=True)

    # Daily counters (atomic increments only)
    total_distance_traveled = Column(Float, default=0.0, nullable=False)  # km
    total_ad_plays = Column(Integer, default=0, nullable=False)
    total_ad_play_time = Column(Float, default=0.0, nullable=False)  # seconds
    total_ad_impressions = Column(Integer, default=0, nullable=False)
    total_qr_scans = Column(Integer, default=0, nullable=False)

    # Daily session
    session_start_time = Column(DateTime(timezone=True), nullable=False)
    session_total_hours_online = Column(Float, default=0.0, nullable=False)
    session_target_hours = Column(Float, default=8.0, nullable=False)
    compliance_status = Column(Enum(ComplianceStatus), default=ComplianceStatus.NON_COMPLIANT, nullable=False)
    session_is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Atomic create-if-absent key
    __table_args__ = (
        UniqueConstraint('material_id', 'date', name='uq_vehicle_tracking_material_date'),
    )

    def __repr__(self):
        return f"<VehicleTracking(material_id={self.material_id}, date={self.date}, online={self.is_online})>"


class TrackingSlot(Base):
    """One of the two tablet positions within a vehicle group."""
    __tablename__ = "tracking_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_id = Column(Integer, ForeignKey('vehicle_tracking.id', ondelete="CASCADE"), nullable=False, index=True)

    slot_number = Column(Integer, nullable=False)  # 1 or 2
    device_id = Column(String(150), nullable=True, index=True)
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=True)
    device_info = Column(JSON, nullable=True)
    network_status = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint('tracking_id', 'slot_number', name='uq_tracking_slots_slot'),
    )

    def __repr__(self):
        return f"<TrackingSlot(tracking_id={self.tracking_id}, slot={self.slot_number}, device_id={self.device_id})>"


class TrackingLocationPoint(Base):
    """Accepted GPS fix. Append-only; id order is acceptance order."""
    __tablename__ = "tracking_location_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_id = Column(Integer, ForeignKey('vehicle_tracking.id', ondelete="CASCADE"), nullable=False, index=True)
    slot_number = Column(Integer, nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, default=0.0, nullable=False)
    heading = Column(Float, default=0.0, nullable=False)
    accuracy = Column(Float, nullable=True)  # meters
    address = Column(String(500), nullable=True)

    recorded_at = Column(DateTime(timezone=True), nullable=False)  # device timestamp
    accepted_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<TrackingLocationPoint(tracking_id={self.tracking_id}, lat={self.latitude}, lng={self.longitude})>"


class AdPlaybackEvent(Base):
    """Ad playback log entry. Capped per tracking record (ring buffer)."""
    __tablename__ = "ad_playback_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_id = Column(Integer, ForeignKey('vehicle_tracking.id', ondelete="CASCADE"), nullable=False)

    ad_id = Column(String(100), nullable=False, index=True)
    ad_title = Column(String(255), nullable=False)
    material_id = Column(String(100), nullable=False)
    slot_number = Column(Integer, nullable=False)

    ad_duration = Column(Float, nullable=False)  # seconds
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    view_time = Column(Float, default=0.0, nullable=False)  # seconds
    completion_rate = Column(Float, default=0.0, nullable=False)  # percentage
    impressions = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index('ix_ad_playback_events_tracking_id_id', 'tracking_id', 'id'),
    )


class QRScanEvent(Base):
    """QR scan log entry. Capped per tracking record (ring buffer)."""
    __tablename__ = "qr_scan_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_id = Column(Integer, ForeignKey('vehicle_tracking.id', ondelete="CASCADE"), nullable=False)

    slot_number = Column(Integer, nullable=False)
    ad_id = Column(String(100), nullable=True, index=True)
    scan_data = Column(JSON, nullable=False)
    scanned_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('ix_qr_scan_events_tracking_id_id', 'tracking_id', 'id'),
    )
