"""
Courier scoring for dispatch.

Weighted penalty model: every factor adds (or subtracts) points and the
courier with the lowest total is the best candidate. The model never
excludes on distance, battery or staleness; it only penalizes, so a ranking
always degrades to "least bad" instead of coming back empty.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from dispatch_backend.app.domain.dispatch.geo import distance_km, is_valid_point
from dispatch_backend.app.models.dispatch_enums import CourierStatus
from dispatch_backend.app.schemas.dispatch import CourierSnapshot, GeoPoint, ScoredCourier

logger = logging.getLogger("dispatch.scoring")


# Policy weights. These encode business priority; tune with care.
SCORING_WEIGHTS: Dict[str, float] = {
    "distance_per_km": 1.0,  # Primary driver of ETA
    "active_order": 5.0,  # Per order already assigned, discourages overload
    "critical_battery": 50.0,  # Battery < 15%: near-certain failure mid-route
    "low_battery": 10.0,  # Battery < 30%: soft risk
    "busy_status": 20.0,  # Deprioritize couriers mid-delivery, never exclude
    "returning_bonus": -3.0,  # Already heading back to the store
    "stale_location": 100.0,  # Effectively disqualifying: stale GPS is untrustworthy
}

CRITICAL_BATTERY_THRESHOLD = 15
LOW_BATTERY_THRESHOLD = 30
STALE_LOCATION_MINUTES = 5


def is_dispatchable(courier: CourierSnapshot) -> bool:
    """Offline couriers are never scored or returned."""
    return courier.status != CourierStatus.OFFLINE


class CourierScorer:
    """Scores one courier against one pickup point."""

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        stale_after_minutes: int = STALE_LOCATION_MINUTES,
    ):
        self.weights = {**SCORING_WEIGHTS, **(weights or {})}
        self.stale_after = timedelta(minutes=stale_after_minutes)

    def score(
        self,
        courier: CourierSnapshot,
        pickup: GeoPoint,
        now: Optional[datetime] = None,
    ) -> ScoredCourier:
        now = now or datetime.now(timezone.utc)
        w = self.weights
        reasons: List[str] = []

        # Distance
        has_location = is_valid_point(courier.location)
        if has_location:
            distance = distance_km(courier.location, pickup)
            reasons.append(f"{distance:.1f}km away")
        else:
            logger.warning(
                "Courier has no usable location",
                extra={"courier_id": courier.id, "location": repr(courier.location)},
            )
            distance = 0.0
        total = distance * w["distance_per_km"]

        # Workload
        if courier.active_order_count > 0:
            total += courier.active_order_count * w["active_order"]
            reasons.append(f"{courier.active_order_count} active order(s)")

        # Battery
        if courier.battery_level < CRITICAL_BATTERY_THRESHOLD:
            total += w["critical_battery"]
            reasons.append(f"Critical battery ({courier.battery_level:g}%)")
        elif courier.battery_level < LOW_BATTERY_THRESHOLD:
            total += w["low_battery"]
            reasons.append(f"Low battery ({courier.battery_level:g}%)")

        # Status
        if courier.status == CourierStatus.BUSY:
            total += w["busy_status"]
            reasons.append("On a delivery")
        elif courier.status == CourierStatus.RETURNING:
            total += w["returning_bonus"]
            reasons.append("Returning to store")

        # Location freshness; unknown freshness counts as stale
        if self._is_stale(courier, has_location, now):
            total += w["stale_location"]
            reasons.append("Stale GPS")

        return ScoredCourier(
            courier=courier,
            score=round(total, 2),
            distance_km=round(distance, 2),
            reasons=reasons,
        )

    def _is_stale(self, courier: CourierSnapshot, has_location: bool, now: datetime) -> bool:
        if not has_location or courier.location_updated_at is None:
            return True
        return now - courier.location_updated_at > self.stale_after
