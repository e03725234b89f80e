"""
Route commit coordinator.

Owns every write to DispatchOrder.batch_id. A route claim reads and writes
both orders' batch_id in one transaction: either both orders point at the new
route and the route row exists, or nothing changed at all.
"""

import logging
import uuid
from typing import List, Optional, Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch_backend.app.core.config import settings
from dispatch_backend.app.core.exceptions import (
    InvalidRouteTransitionError, ResourceNotFoundError
)
from dispatch_backend.app.domain.dispatch.geo import distance_km
from dispatch_backend.app.models.delivery_route import DeliveryRoute
from dispatch_backend.app.models.dispatch_enums import (
    OrderStatus, RouteStatus, TERMINAL_ROUTE_STATUSES
)
from dispatch_backend.app.models.order import DispatchOrder
from dispatch_backend.app.schemas.dispatch import OrderSnapshot, RouteConflict, RouteSnapshot
from dispatch_backend.app.services.dispatch_store import (
    route_to_snapshot, run_with_lock_retries, utcnow
)

logger = logging.getLogger("dispatch.route_commit")


class _ClaimLost(Exception):
    """Internal: an order was claimed by someone else mid-transaction."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(order_id)


def new_route_id() -> str:
    return f"BATCH-{uuid.uuid4().hex[:16]}"


def solo_batch_id(order_id: str) -> str:
    """Synthetic single-order batch id."""
    return f"SOLO-{order_id}"


def route_savings(solo_fee: float, batch_fee: float, stops: int = 2) -> float:
    """What the store saves by sending `stops` orders as one route."""
    return round(stops * solo_fee - batch_fee, 2)


class RouteCommitCoordinator:
    """Exactly-once claims of orders into routes."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        solo_fee: float = settings.solo_delivery_fee,
        batch_fee: float = settings.batch_delivery_fee,
        lock_retries: int = settings.store_lock_retries,
    ):
        self.session_factory = session_factory
        self.solo_fee = solo_fee
        self.batch_fee = batch_fee
        self.lock_retries = lock_retries

    async def try_create_route(
        self,
        order_a: OrderSnapshot,
        order_b: OrderSnapshot,
    ) -> Union[RouteSnapshot, RouteConflict]:
        """
        Atomically claim two orders and create their route.

        Stops follow argument order. Each order is claimed with a conditional
        update (`batch_id IS NULL`); if either update misses, the transaction
        rolls back and a RouteConflict is returned.

        Raises:
            ValueError: For a self-pair or orders from different stores
            StoreUnavailableError: If the backend cannot complete the transaction
        """
        if order_a.id == order_b.id:
            raise ValueError("Cannot batch an order with itself")
        if order_a.store_id != order_b.store_id:
            raise ValueError("Cannot batch orders from different stores")

        stops = [order_a.id, order_b.id]

        async def _commit():
            route_id = new_route_id()
            created_at = utcnow()
            async with self.session_factory() as session:
                async with session.begin():
                    # Fixed lock order so two claims on overlapping pairs cannot deadlock
                    for order_id in sorted(stops):
                        await self._claim(session, order_id, order_a.store_id, route_id,
                                          position=stops.index(order_id) + 1)

                    route = DeliveryRoute(
                        id=route_id,
                        store_id=order_a.store_id,
                        stop_order_ids=stops,
                        status=RouteStatus.PENDING_DRIVER,
                        total_fee=self.batch_fee,
                        estimated_savings=route_savings(self.solo_fee, self.batch_fee, len(stops)),
                        stop_distance_km=round(distance_km(order_a.dropoff, order_b.dropoff), 3),
                        created_at=created_at,
                        updated_at=created_at,
                    )
                    session.add(route)
                    await session.flush()
                    return route_to_snapshot(route)

        try:
            route = await run_with_lock_retries("create_route", _commit, self.lock_retries)
        except _ClaimLost as lost:
            logger.info(
                "Route claim lost",
                extra={"order_ids": stops, "claimed_order_id": lost.order_id},
            )
            return RouteConflict(
                order_ids=stops,
                reason=f"Order {lost.order_id} is no longer unclaimed",
            )

        logger.info(
            "Route created",
            extra={"route_id": route.id, "store_id": route.store_id, "order_ids": stops},
        )
        return route

    async def claim_solo(self, order_id: str) -> Optional[str]:
        """
        Give an unclaimed order its synthetic solo batch id.

        Returns:
            The solo batch id, or None if the order was already claimed or
            is not ready for pickup
        """
        batch_id = solo_batch_id(order_id)

        async def _commit():
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(DispatchOrder)
                        .where(
                            DispatchOrder.id == order_id,
                            DispatchOrder.status == OrderStatus.READY_FOR_PICKUP,
                            DispatchOrder.batch_id.is_(None),
                        )
                        .values(
                            batch_id=batch_id,
                            batch_position=1,
                            version=DispatchOrder.version + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    return result.rowcount == 1

        claimed = await run_with_lock_retries("claim_solo", _commit, self.lock_retries)
        if not claimed:
            logger.info("Solo claim skipped, order claimed or not ready", extra={"order_id": order_id})
            return None
        return batch_id

    async def cancel_route(self, route_id: str) -> RouteSnapshot:
        """
        Cancel a route and release its orders back to the batching pool.

        Raises:
            ResourceNotFoundError: If the route does not exist
            InvalidRouteTransitionError: If the route is already completed or cancelled
        """
        async def _commit():
            async with self.session_factory() as session:
                async with session.begin():
                    route = await session.get(DeliveryRoute, route_id)
                    if route is None:
                        raise ResourceNotFoundError("Route", route_id)

                    result = await session.execute(
                        update(DeliveryRoute)
                        .where(
                            DeliveryRoute.id == route_id,
                            DeliveryRoute.status.not_in(list(TERMINAL_ROUTE_STATUSES)),
                        )
                        .values(status=RouteStatus.CANCELLED)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise InvalidRouteTransitionError(
                            route_id, route.status.value, RouteStatus.CANCELLED.value
                        )

                    released = await self._release(session, route_id, list(route.stop_order_ids))
                    return route_to_snapshot(route).model_copy(
                        update={"status": RouteStatus.CANCELLED}
                    ), released

        route, released = await run_with_lock_retries("cancel_route", _commit, self.lock_retries)
        logger.info("Route cancelled", extra={"route_id": route_id, "released_order_ids": released})
        return route

    @staticmethod
    async def _claim(session, order_id: str, store_id: str, route_id: str, position: int) -> None:
        result = await session.execute(
            update(DispatchOrder)
            .where(
                DispatchOrder.id == order_id,
                DispatchOrder.store_id == store_id,
                DispatchOrder.status == OrderStatus.READY_FOR_PICKUP,
                DispatchOrder.batch_id.is_(None),
            )
            .values(
                batch_id=route_id,
                batch_position=position,
                version=DispatchOrder.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _ClaimLost(order_id)

    @staticmethod
    async def _release(session, route_id: str, stop_order_ids: List[str]) -> List[str]:
        await session.execute(
            update(DispatchOrder)
            .where(DispatchOrder.batch_id == route_id)
            .values(
                batch_id=None,
                batch_position=None,
                status=OrderStatus.READY_FOR_PICKUP,
                version=DispatchOrder.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return sorted(stop_order_ids)
