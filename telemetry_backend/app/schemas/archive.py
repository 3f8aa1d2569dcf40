"""
Archival job schemas.
"""

from datetime import date, datetime
from typing import Optional

from telemetry_backend.app.schemas.telemetry import CamelModel


class ArchiveRunResponse(CamelModel):
    run_id: int
    trigger: str
    target_date: Optional[date]
    status: str
    archived: int
    skipped: int
    failed: int
    started_at: datetime
    finished_at: Optional[datetime]
    error_message: Optional[str] = None


class ArchiveStatusResponse(CamelModel):
    is_running: bool
    last_run: Optional[ArchiveRunResponse]
    pending_count: int  # open records dated before today
    open_record_count: int
    historical_record_count: int
