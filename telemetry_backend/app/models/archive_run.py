"""
Archive Run Model.

One row per execution of the daily archival job, scheduled or manual.
Shared by every server process, so status reflects the whole deployment.
"""

from sqlalchemy import Column, Integer, Date, DateTime, Text, Enum
from telemetry_backend.app.db.session import Base
from telemetry_backend.app.models.tracking_enums import ArchiveTrigger, ArchiveRunStatus


class ArchiveRun(Base):
    __tablename__ = "archive_runs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trigger = Column(Enum(ArchiveTrigger), nullable=False)
    target_date = Column(Date, nullable=True)  # None = everything before today
    status = Column(Enum(ArchiveRunStatus), default=ArchiveRunStatus.RUNNING, nullable=False, index=True)

    archived_count = Column(Integer, default=0, nullable=False)
    skipped_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ArchiveRun(id={self.id}, trigger='{self.trigger}', status='{self.status}')>"
