"""
Courier scoring tests.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from dispatch_backend.app.domain.dispatch.geo import EARTH_RADIUS_KM
from dispatch_backend.app.domain.dispatch.scoring import CourierScorer, is_dispatchable
from dispatch_backend.app.models.dispatch_enums import CourierStatus
from dispatch_backend.app.schemas.dispatch import CourierSnapshot, GeoPoint

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180
PICKUP = GeoPoint(lat=40.7128, lng=-74.0060)
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _north(km):
    return GeoPoint(lat=PICKUP.lat + km / KM_PER_DEGREE, lng=PICKUP.lng)


def _courier(courier_id="c1", km=0.0, **overrides):
    fields = dict(
        id=courier_id,
        store_id="store-1",
        location=_north(km),
        location_updated_at=NOW,
        battery_level=100,
        status=CourierStatus.ONLINE,
    )
    fields.update(overrides)
    return CourierSnapshot(**fields)


@pytest.fixture
def scorer():
    return CourierScorer()


def test_low_battery_nearby_loses_to_healthy_far(scorer):
    near_dying = scorer.score(_courier("near", km=0.5, battery_level=10), PICKUP, now=NOW)
    far_healthy = scorer.score(_courier("far", km=3.0, battery_level=90), PICKUP, now=NOW)

    assert near_dying.score == 50.5
    assert far_healthy.score == 3.0
    assert near_dying.distance_km == 0.5


def test_idle_courier_at_pickup_scores_zero(scorer):
    scored = scorer.score(_courier(), PICKUP, now=NOW)
    assert scored.score == 0.0
    assert scored.reasons == ["0.0km away"]


def test_score_grows_with_distance(scorer):
    scores = [scorer.score(_courier(km=km), PICKUP, now=NOW).score for km in (0.5, 1.0, 2.0, 4.0)]
    assert scores == sorted(scores)
    assert len(set(scores)) == 4


def test_workload_adds_per_active_order(scorer):
    scored = scorer.score(_courier(active_order_count=2), PICKUP, now=NOW)
    assert scored.score == 10.0
    assert "2 active order(s)" in scored.reasons


def test_battery_bands(scorer):
    assert scorer.score(_courier(battery_level=14), PICKUP, now=NOW).score == 50.0
    # 15% is the first non-critical level
    assert scorer.score(_courier(battery_level=15), PICKUP, now=NOW).score == 10.0
    assert scorer.score(_courier(battery_level=29), PICKUP, now=NOW).score == 10.0
    assert scorer.score(_courier(battery_level=30), PICKUP, now=NOW).score == 0.0


def test_status_adjustments(scorer):
    busy = scorer.score(_courier(status=CourierStatus.BUSY), PICKUP, now=NOW)
    returning = scorer.score(_courier(status=CourierStatus.RETURNING), PICKUP, now=NOW)
    assert busy.score == 20.0
    assert returning.score == -3.0


def test_stale_location_is_penalized(scorer):
    fresh = scorer.score(_courier(location_updated_at=NOW - timedelta(minutes=5)), PICKUP, now=NOW)
    stale = scorer.score(_courier(location_updated_at=NOW - timedelta(minutes=6)), PICKUP, now=NOW)
    assert fresh.score == 0.0
    assert stale.score == 100.0
    assert "Stale GPS" in stale.reasons


def test_missing_location_counts_as_stale(scorer):
    scored = scorer.score(_courier(location=None), PICKUP, now=NOW)
    assert scored.distance_km == 0.0
    assert scored.score == 100.0


def test_unknown_location_age_counts_as_stale(scorer):
    scored = scorer.score(_courier(location_updated_at=None), PICKUP, now=NOW)
    assert scored.score == 100.0


def test_custom_weights_override_defaults():
    scorer = CourierScorer(weights={"busy_status": 0.0})
    assert scorer.score(_courier(status=CourierStatus.BUSY), PICKUP, now=NOW).score == 0.0


def test_offline_is_not_dispatchable():
    assert not is_dispatchable(_courier(status=CourierStatus.OFFLINE))
    assert is_dispatchable(_courier(status=CourierStatus.BUSY))
