"""
Event Log Retention.

Per-vehicle event logs are ring buffers: appends are unconditional and
the oldest entries are evicted once a log grows past its cap.
"""

from dataclasses import dataclass
from typing import List, Sequence, TypeVar

from telemetry_backend.app.core.config import settings

T = TypeVar("T")


@dataclass(frozen=True)
class RetentionPolicy:
    ad_playback_cap: int = 800
    qr_scan_cap: int = 800

    def __post_init__(self):
        if self.ad_playback_cap < 1 or self.qr_scan_cap < 1:
            raise ValueError("Retention caps must be positive")

    @classmethod
    def from_settings(cls, config=settings) -> "RetentionPolicy":
        return cls(
            ad_playback_cap=config.ad_playback_log_cap,
            qr_scan_cap=config.qr_scan_log_cap,
        )


def overflow(length: int, cap: int) -> int:
    """Number of oldest entries to evict so that `length` fits in `cap`."""
    return max(0, length - cap)


def keep_newest(log: Sequence[T], cap: int) -> List[T]:
    """Drop the oldest entries of `log` until at most `cap` remain."""
    entries = list(log)
    return entries[overflow(len(entries), cap):]
