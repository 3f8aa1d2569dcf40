"""
Distance and Speed Calculator.

Great-circle distance between GPS fixes and the derived route metrics
(distance, duration, average speed) shown on route maps.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

# Radius of Earth in kilometers
EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lng1: First point coordinates (degrees)
        lat2, lng2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)

    dlat = lat2_rad - lat1_rad
    dlng = math.radians(lng2 - lng1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    # Clamp against float drift for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def average_speed_kmh(distance_km: float, duration_seconds: float) -> float:
    """km/h over a duration; zero when no time has elapsed."""
    if duration_seconds <= 0:
        return 0.0
    return distance_km / duration_seconds * 3600


@dataclass(frozen=True)
class RouteMetrics:
    total_distance: float
    total_duration: float
    average_speed: float
    point_count: int
    start_time: Optional[datetime]
    end_time: Optional[datetime]


def compute_route_metrics(timestamps: Sequence[datetime], total_distance_km: float) -> RouteMetrics:
    """
    Derive duration and average speed for a time-ordered route.

    Distance is supplied by the caller (sum of the per-day cumulative
    distances) rather than re-measured from the points, so that the
    route map agrees with the daily counters.
    """
    if len(timestamps) < 2:
        return RouteMetrics(
            total_distance=round(total_distance_km, 3),
            total_duration=0,
            average_speed=0.0,
            point_count=len(timestamps),
            start_time=timestamps[0] if timestamps else None,
            end_time=timestamps[-1] if timestamps else None,
        )

    duration = (timestamps[-1] - timestamps[0]).total_seconds()
    return RouteMetrics(
        total_distance=round(total_distance_km, 3),
        total_duration=round(duration),
        average_speed=round(average_speed_kmh(total_distance_km, duration), 2),
        point_count=len(timestamps),
        start_time=timestamps[0],
        end_time=timestamps[-1],
    )
