"""
Distance and route metric tests.
"""

import pytest
from datetime import datetime, timedelta, timezone

from telemetry_backend.app.domain.tracking.geo import (
    haversine_distance, average_speed_kmh, compute_route_metrics
)

MANILA = (14.5995, 120.9842)
QUEZON_CITY = (14.6760, 121.0437)


def test_distance_to_self_is_zero():
    assert haversine_distance(*MANILA, *MANILA) == 0


def test_distance_is_symmetric():
    assert haversine_distance(*MANILA, *QUEZON_CITY) == pytest.approx(haversine_distance(*QUEZON_CITY, *MANILA))


def test_known_distance():
    # One degree of latitude is ~111.19 km with R = 6371
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111.195, abs=0.01)


def test_antipodal_points_do_not_fail():
    assert haversine_distance(0, 0, 0, 180) == pytest.approx(20015.09, abs=0.1)


def test_average_speed():
    assert average_speed_kmh(10.0, 1800) == pytest.approx(20.0)
    assert average_speed_kmh(10.0, 0) == 0.0


def test_route_metrics_with_fewer_than_two_points():
    t0 = datetime(2024, 3, 15, tzinfo=timezone.utc)

    empty = compute_route_metrics([], 0.0)
    assert empty.total_duration == 0
    assert empty.average_speed == 0.0
    assert empty.start_time is None

    single = compute_route_metrics([t0], 1.23456)
    assert single.total_distance == 1.235
    assert single.total_duration == 0
    assert single.point_count == 1


def test_route_metrics_over_an_hour():
    t0 = datetime(2024, 3, 15, tzinfo=timezone.utc)
    metrics = compute_route_metrics([t0, t0 + timedelta(minutes=30), t0 + timedelta(hours=1)], 42.0)

    assert metrics.total_distance == 42.0
    assert metrics.total_duration == 3600
    assert metrics.average_speed == 42.0
    assert metrics.point_count == 3
    assert metrics.end_time == t0 + timedelta(hours=1)
