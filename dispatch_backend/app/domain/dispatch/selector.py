"""
Courier selection for a pickup point.

Ranks every dispatchable courier, picks the best one and judges whether the
order is likely to be late with that courier.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from dispatch_backend.app.domain.dispatch.geo import (
    DEFAULT_AVERAGE_SPEED_KMH, estimate_eta_minutes
)
from dispatch_backend.app.domain.dispatch.scoring import CourierScorer, is_dispatchable
from dispatch_backend.app.schemas.dispatch import (
    CourierSnapshot, CourierSuggestion, DelayRisk, GeoPoint, OrderSnapshot, ScoredCourier
)

DEFAULT_MAX_ACCEPTABLE_MINUTES = 45

# Suggestion confidence bands on the penalty score
HIGH_CONFIDENCE_SCORE = 5
MEDIUM_CONFIDENCE_SCORE = 15


class DispatchSelector:
    """Ranks couriers with a CourierScorer."""

    def __init__(
        self,
        scorer: Optional[CourierScorer] = None,
        avg_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
    ):
        self.scorer = scorer or CourierScorer()
        self.avg_speed_kmh = avg_speed_kmh

    def rank(
        self,
        couriers: Iterable[CourierSnapshot],
        pickup: GeoPoint,
        now: Optional[datetime] = None,
    ) -> List[ScoredCourier]:
        """All non-offline couriers, best first. Ties resolve by courier id."""
        now = now or datetime.now(timezone.utc)
        scored = [
            self.scorer.score(courier, pickup, now=now)
            for courier in couriers or []
            if is_dispatchable(courier)
        ]
        return sorted(scored, key=lambda s: (s.score, s.courier.id))

    def select_best(
        self,
        couriers: Iterable[CourierSnapshot],
        pickup: GeoPoint,
        now: Optional[datetime] = None,
    ) -> Optional[ScoredCourier]:
        """Lowest-score courier, or None when nobody is eligible."""
        ranked = self.rank(couriers, pickup, now=now)
        return ranked[0] if ranked else None

    def assess_delay_risk(
        self,
        order: OrderSnapshot,
        scored: ScoredCourier,
        max_acceptable_minutes: int = DEFAULT_MAX_ACCEPTABLE_MINUTES,
        now: Optional[datetime] = None,
    ) -> DelayRisk:
        """
        Advisory delay check. Dispatch may proceed with a flagged risk.

        At risk when the estimated arrival lands after the order deadline,
        or when the ETA alone exceeds `max_acceptable_minutes`.
        """
        now = now or datetime.now(timezone.utc)
        eta = estimate_eta_minutes(scored.distance_km, self.avg_speed_kmh)

        if order.deadline is not None and now + timedelta(minutes=eta) > order.deadline:
            return DelayRisk(
                at_risk=True,
                eta_minutes=eta,
                message=f"Delay risk: ETA {eta}min lands after the deadline",
            )

        if eta > max_acceptable_minutes:
            return DelayRisk(
                at_risk=True,
                eta_minutes=eta,
                message=f"High ETA: {eta} minutes. Consider another courier.",
            )

        return DelayRisk(at_risk=False, eta_minutes=eta, message=f"ETA: {eta} minutes")

    def suggest(
        self,
        couriers: Iterable[CourierSnapshot],
        pickup: GeoPoint,
        order: Optional[OrderSnapshot] = None,
        max_acceptable_minutes: int = DEFAULT_MAX_ACCEPTABLE_MINUTES,
        now: Optional[datetime] = None,
    ) -> Optional[CourierSuggestion]:
        """Best courier with ETA, delay risk and a confidence band for the UI."""
        now = now or datetime.now(timezone.utc)
        best = self.select_best(couriers, pickup, now=now)
        if best is None:
            return None

        if order is None:
            # Ad-hoc pickup with no deadline: only the ETA ceiling applies
            order = OrderSnapshot(id="adhoc", store_id=best.courier.store_id, pickup=pickup)
        delay_risk = self.assess_delay_risk(order, best, max_acceptable_minutes, now=now)

        if best.score < HIGH_CONFIDENCE_SCORE:
            confidence = "high"
        elif best.score < MEDIUM_CONFIDENCE_SCORE:
            confidence = "medium"
        else:
            confidence = "low"

        display_message = (
            f"Suggested courier: {best.courier.name or best.courier.id} "
            f"({best.distance_km:.1f}km, {delay_risk.eta_minutes}min). "
            f"Battery: {best.courier.battery_level:g}%"
        )

        return CourierSuggestion(
            courier=best,
            eta_minutes=delay_risk.eta_minutes,
            delay_risk=delay_risk,
            confidence=confidence,
            display_message=display_message,
        )
