"""
Batch clustering: pair a newly-ready order with a nearby unclaimed one.

Only pairs are formed. Batching more than two orders turns nearest-neighbour
pairing into a stop-ordering problem and is not attempted here.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from dispatch_backend.app.domain.dispatch.geo import distance_km, is_valid_point
from dispatch_backend.app.models.dispatch_enums import OrderStatus
from dispatch_backend.app.schemas.dispatch import OrderSnapshot

logger = logging.getLogger("dispatch.clustering")

DEFAULT_BATCH_RADIUS_KM = 1.0
MAX_BATCH_SIZE = 2

_NEVER = datetime.max.replace(tzinfo=timezone.utc)


def is_batch_candidate(new_order: OrderSnapshot, candidate: OrderSnapshot) -> bool:
    """Same store, ready, unclaimed and not the new order itself."""
    return (
        candidate.id != new_order.id
        and candidate.store_id == new_order.store_id
        and candidate.status == OrderStatus.READY_FOR_PICKUP
        and candidate.batch_id is None
    )


class BatchClusterer:
    """Nearest drop-off pairing within a fixed radius."""

    def __init__(self, radius_km: float = DEFAULT_BATCH_RADIUS_KM, max_batch_size: int = MAX_BATCH_SIZE):
        if max_batch_size != MAX_BATCH_SIZE:
            raise ValueError(f"Only batches of {MAX_BATCH_SIZE} orders are supported, got {max_batch_size}")
        self.radius_km = radius_km
        self.max_batch_size = max_batch_size

    def find_partner(
        self,
        new_order: OrderSnapshot,
        candidate_pool: Iterable[OrderSnapshot],
        radius_km: Optional[float] = None,
    ) -> Optional[OrderSnapshot]:
        """
        Pick the best partner for `new_order`, or None for solo dispatch.

        Candidates within `radius_km` (inclusive) of the new order's drop-off
        survive; the nearest wins, then the earliest `ready_at`, then the id.
        """
        radius = self.radius_km if radius_km is None else radius_km

        if not is_valid_point(new_order.dropoff):
            logger.warning(
                "Order has no usable drop-off, skipping clustering",
                extra={"order_id": new_order.id},
            )
            return None

        survivors: List[Tuple[float, datetime, str, OrderSnapshot]] = []
        for candidate in candidate_pool or []:
            if not is_batch_candidate(new_order, candidate):
                continue
            if not is_valid_point(candidate.dropoff):
                logger.warning(
                    "Candidate has no usable drop-off, skipping",
                    extra={"order_id": candidate.id},
                )
                continue

            gap = distance_km(new_order.dropoff, candidate.dropoff)
            if gap <= radius:
                survivors.append((gap, candidate.ready_at or _NEVER, candidate.id, candidate))

        if not survivors:
            return None

        survivors.sort(key=lambda s: s[:3])
        return survivors[0][3]

    @staticmethod
    def plan_stops(new_order: OrderSnapshot, partner: OrderSnapshot) -> Tuple[OrderSnapshot, OrderSnapshot]:
        """Stop sequence: the partner was ready first, so it goes first."""
        return partner, new_order
