"""
Location acceptance rule tests.
"""

import pytest
from datetime import datetime, timedelta, timezone

from telemetry_backend.app.domain.tracking.location_resolver import (
    AcceptancePolicy, LocationFix, accept
)

T0 = datetime(2024, 3, 15, 2, 0, tzinfo=timezone.utc)


def fix(lat=14.5995, lng=120.9842, seconds=0, accuracy=10.0):
    return LocationFix(lat=lat, lng=lng, timestamp=T0 + timedelta(seconds=seconds), accuracy=accuracy)


def test_first_fix_is_always_accepted():
    assert accept(None, fix()) is True
    assert accept(None, fix(accuracy=None)) is True


def test_better_accuracy_is_accepted_even_when_close_and_recent():
    assert accept(fix(accuracy=20.0), fix(seconds=1, accuracy=5.0)) is True


def test_equal_accuracy_close_and_recent_is_rejected():
    current = fix(accuracy=10.0)
    incoming = fix(lat=14.59951, seconds=30, accuracy=10.0)  # ~1 m away, exactly 30 s
    assert accept(current, incoming) is False


def test_worse_accuracy_close_and_recent_is_rejected():
    assert accept(fix(accuracy=5.0), fix(seconds=10, accuracy=50.0)) is False


def test_far_away_with_no_elapsed_time_is_accepted():
    # 0.001 deg latitude is ~111 m
    assert accept(fix(), fix(lat=14.6005, seconds=0)) is True


def test_more_than_interval_elapsed_is_accepted():
    assert accept(fix(), fix(seconds=31)) is True


def test_device_clock_going_backwards_counts_as_elapsed():
    assert accept(fix(seconds=120), fix(seconds=0)) is True


def test_unknown_accuracy_never_beats_known():
    assert accept(fix(accuracy=10.0), fix(seconds=1, accuracy=None)) is False
    assert accept(fix(accuracy=None), fix(seconds=1, accuracy=500.0)) is True


def test_policy_thresholds_are_configurable():
    strict = AcceptancePolicy(min_interval_seconds=5, min_distance_meters=1000)
    assert accept(fix(), fix(seconds=6), strict) is True
    assert accept(fix(), fix(lat=14.6005, seconds=1), strict) is False


def test_document_round_trip_keeps_geojson_order():
    original = fix(lat=14.1, lng=121.2)
    doc = original.to_document()

    assert doc["coordinates"] == [121.2, 14.1]
    restored = LocationFix.from_document(doc)
    assert restored.lat == pytest.approx(14.1)
    assert restored.lng == pytest.approx(121.2)
    assert restored.timestamp == original.timestamp
