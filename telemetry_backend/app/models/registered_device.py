"""
Registered Device database model.

Backing table of the device registry. Owned by the registration flow;
the telemetry service only reads it.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from telemetry_backend.app.db.session import Base


class RegisteredDevice(Base):
    """Maps a tablet to its vehicle group and slot."""
    __tablename__ = "registered_devices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    device_id = Column(String(150), unique=True, index=True, nullable=False)
    material_id = Column(String(100), nullable=False, index=True)
    car_group_id = Column(String(100), nullable=True)
    slot_number = Column(Integer, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    registered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<RegisteredDevice(device_id={self.device_id}, material_id={self.material_id}, slot={self.slot_number})>"
