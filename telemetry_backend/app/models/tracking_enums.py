"""
Tracking-related enumerations.
"""

import enum


class ComplianceStatus(str, enum.Enum):
    """Whether today's online hours meet the vehicle's target."""
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"


class ArchiveTrigger(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class ArchiveRunStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
