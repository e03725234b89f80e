"""
Distance and ETA tests.
"""

import math

import pytest

from dispatch_backend.app.domain.dispatch.geo import (
    EARTH_RADIUS_KM, distance_km, estimate_eta_minutes, is_valid_point
)
from dispatch_backend.app.schemas.dispatch import GeoPoint

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180


def test_same_point_is_zero():
    p = GeoPoint(lat=40.7128, lng=-74.0060)
    assert distance_km(p, p) == 0.0


def test_one_degree_of_latitude():
    a = GeoPoint(lat=10.0, lng=20.0)
    b = GeoPoint(lat=11.0, lng=20.0)
    assert distance_km(a, b) == pytest.approx(KM_PER_DEGREE, rel=1e-9)


def test_distance_is_symmetric():
    a = GeoPoint(lat=40.7128, lng=-74.0060)
    b = GeoPoint(lat=40.7306, lng=-73.9352)
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))
    assert 5.5 < distance_km(a, b) < 6.5


@pytest.mark.parametrize("bad", [
    GeoPoint(lat=95.0, lng=0.0),
    GeoPoint(lat=0.0, lng=-181.0),
    GeoPoint(lat=float("nan"), lng=0.0),
    GeoPoint(lat=0.0, lng=float("inf")),
    None,
])
def test_malformed_coordinates_measure_zero(bad):
    good = GeoPoint(lat=40.0, lng=-74.0)
    assert not is_valid_point(bad)
    assert distance_km(good, bad) == 0.0
    assert distance_km(bad, good) == 0.0


def test_boundary_coordinates_are_valid():
    assert is_valid_point(GeoPoint(lat=90.0, lng=180.0))
    assert is_valid_point(GeoPoint(lat=-90.0, lng=-180.0))


def test_eta_rounds_up_to_whole_minutes():
    assert estimate_eta_minutes(15.0) == 30
    assert estimate_eta_minutes(0.0) == 0
    assert estimate_eta_minutes(0.1) == 1
    assert estimate_eta_minutes(10.0, avg_speed_kmh=60.0) == 10
