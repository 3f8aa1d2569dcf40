"""
Audit Log Database Model.

Tracks operator actions and structural changes to tracking data.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from telemetry_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking operator actions.

    Events logged:
    - ARCHIVE_TRIGGERED (manual archival run)
    - TRACKING_RECORD_RECOVERED (aggregate re-keyed to its material)
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What the action was applied to
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(150), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # IP address of the caller, if any
    ip_address = Column(String(50), nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', target={self.target_type}:{self.target_id})>"
