"""
Historical Day Record Model.

Immutable snapshot of a closed tracking day, written by the archival job.
The one exception: a record reopened by a manual archive of a still-open
day is folded in once that day closes (see services/archival.py).
"""

from sqlalchemy import Column, Integer, Float, String, Date, DateTime, JSON, UniqueConstraint
from telemetry_backend.app.db.session import Base


class HistoricalDayRecord(Base):
    """
    Closed-day copy of a VehicleTracking aggregate.

    The unique (material_id, date) key is what keeps concurrent archival
    runs from producing duplicates.
    """
    __tablename__ = "historical_day_records"

    id = Column(Integer, primary_key=True, autoincrement=True)

    material_id = Column(String(100), nullable=False, index=True)
    car_group_id = Column(String(100), nullable=True)
    date = Column(Date, nullable=False, index=True)

    slots = Column(JSON, nullable=False)
    current_location = Column(JSON, nullable=True)
    location_history = Column(JSON, nullable=False)
    ad_playbacks = Column(JSON, nullable=False)
    qr_scans = Column(JSON, nullable=False)
    current_session = Column(JSON, nullable=False)
    daily_summary = Column(JSON, nullable=False)

    total_distance_traveled = Column(Float, default=0.0, nullable=False)
    total_ad_plays = Column(Integer, default=0, nullable=False)
    total_ad_play_time = Column(Float, default=0.0, nullable=False)
    total_ad_impressions = Column(Integer, default=0, nullable=False)
    total_qr_scans = Column(Integer, default=0, nullable=False)
    total_hours_online = Column(Float, default=0.0, nullable=False)

    archived_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('material_id', 'date', name='uq_historical_day_records_material_date'),
    )

    def __repr__(self):
        return f"<HistoricalDayRecord(material_id={self.material_id}, date={self.date})>"
