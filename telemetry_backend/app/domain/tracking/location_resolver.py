"""
Location Update Resolver.

Decides whether an incoming GPS fix should replace the current one.
A fix is kept when it is more precise, meaningfully newer, or
meaningfully far away; everything else is treated as jitter.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from telemetry_backend.app.core.clock import ensure_utc
from telemetry_backend.app.core.config import settings
from telemetry_backend.app.domain.tracking.geo import haversine_distance


@dataclass(frozen=True)
class LocationFix:
    """A single GPS reading. Stored as GeoJSON-ordered [lng, lat]."""
    lat: float
    lng: float
    timestamp: datetime
    speed: float = 0.0
    heading: float = 0.0
    accuracy: Optional[float] = None
    address: str = ""

    @property
    def coordinates(self) -> list:
        return [self.lng, self.lat]

    def to_document(self) -> Dict[str, Any]:
        return {
            "coordinates": self.coordinates,
            "speed": self.speed,
            "heading": self.heading,
            "accuracy": self.accuracy,
            "timestamp": ensure_utc(self.timestamp).isoformat(),
            "address": self.address,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "LocationFix":
        lng, lat = doc["coordinates"][0], doc["coordinates"][1]
        timestamp = doc["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            lat=lat,
            lng=lng,
            timestamp=ensure_utc(timestamp),
            speed=doc.get("speed") or 0.0,
            heading=doc.get("heading") or 0.0,
            accuracy=doc.get("accuracy"),
            address=doc.get("address") or "",
        )


@dataclass(frozen=True)
class AcceptancePolicy:
    min_interval_seconds: float = 30.0
    min_distance_meters: float = 10.0

    @classmethod
    def from_settings(cls, config=settings) -> "AcceptancePolicy":
        return cls(
            min_interval_seconds=config.location_min_interval_seconds,
            min_distance_meters=config.location_min_distance_meters,
        )


DEFAULT_ACCEPTANCE_POLICY = AcceptancePolicy()


def _precision(fix: LocationFix) -> float:
    # Unknown accuracy never beats a known one
    return fix.accuracy if fix.accuracy is not None else float("inf")


def accept(
    current: Optional[LocationFix],
    incoming: LocationFix,
    policy: AcceptancePolicy = DEFAULT_ACCEPTANCE_POLICY,
) -> bool:
    """
    Return True when `incoming` should be persisted.

    Rules, in order:
    1. No current fix yet (first fix of the day).
    2. Strictly better accuracy.
    3. More than `min_interval_seconds` since the current fix.
    4. More than `min_distance_meters` away from the current fix.
    """
    if current is None:
        return True

    if _precision(incoming) < _precision(current):
        return True

    elapsed = abs((ensure_utc(incoming.timestamp) - ensure_utc(current.timestamp)).total_seconds())
    if elapsed > policy.min_interval_seconds:
        return True

    distance_m = haversine_distance(current.lat, current.lng, incoming.lat, incoming.lng) * 1000
    if distance_m > policy.min_distance_meters:
        return True

    return False
