"""
Order, courier and route stores for dispatch.

Thin SQLAlchemy adapters that hand immutable snapshots to the dispatch
domain code. Every backend failure surfaces as StoreUnavailableError.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch_backend.app.core.config import settings
from dispatch_backend.app.core.exceptions import (
    InvalidRouteTransitionError, ResourceNotFoundError, RouteAlreadyAcceptedError,
    StoreUnavailableError
)
from dispatch_backend.app.models.courier import Courier
from dispatch_backend.app.models.delivery_route import DeliveryRoute
from dispatch_backend.app.models.dispatch_enums import (
    CourierStatus, OrderStatus, RouteStatus, ROUTE_STATUS_ORDER, TERMINAL_ROUTE_STATUSES
)
from dispatch_backend.app.models.order import DispatchOrder
from dispatch_backend.app.schemas.dispatch import (
    CourierSnapshot, GeoPoint, OrderSnapshot, RouteSnapshot
)

logger = logging.getLogger("dispatch.store")

T = TypeVar("T")

# Serialization failure, deadlock detected, lock not available (PostgreSQL)
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}
LOCK_RETRY_BACKOFF_SECONDS = 0.05


def is_transient_lock_error(exc: DBAPIError) -> bool:
    """Lock contention the caller should retry rather than report."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


async def run_with_lock_retries(
    operation: str,
    func: Callable[[], Awaitable[T]],
    retries: int = settings.store_lock_retries,
) -> T:
    """
    Run a transactional callable, retrying transient lock errors.

    Raises:
        StoreUnavailableError: On any other backend failure, or when retries run out
    """
    attempt = 0
    while True:
        try:
            return await func()
        except DBAPIError as exc:
            if is_transient_lock_error(exc) and attempt < retries:
                attempt += 1
                logger.warning(
                    "Transient lock error, retrying",
                    extra={"operation": operation, "attempt": attempt},
                )
                await asyncio.sleep(LOCK_RETRY_BACKOFF_SECONDS * attempt)
                continue
            raise StoreUnavailableError(operation, str(exc)) from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(operation, str(exc)) from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _point(lat: Optional[float], lng: Optional[float]) -> Optional[GeoPoint]:
    if lat is None or lng is None:
        return None
    return GeoPoint(lat=lat, lng=lng)


def order_to_snapshot(row: DispatchOrder) -> OrderSnapshot:
    return OrderSnapshot(
        id=row.id,
        store_id=row.store_id,
        pickup=GeoPoint(lat=row.pickup_lat, lng=row.pickup_lng),
        dropoff=_point(row.dropoff_lat, row.dropoff_lng),
        status=row.status,
        priority=row.priority,
        ready_at=row.ready_at,
        deadline=row.deadline,
        batch_id=row.batch_id,
        batch_position=row.batch_position,
        version=row.version,
    )


def courier_to_snapshot(row: Courier) -> CourierSnapshot:
    return CourierSnapshot(
        id=row.id,
        store_id=row.store_id,
        name=row.name,
        location=_point(row.location_lat, row.location_lng),
        location_updated_at=row.location_updated_at,
        active_order_count=row.active_order_count,
        battery_level=row.battery_level,
        status=row.status,
    )


def route_to_snapshot(row: DeliveryRoute) -> RouteSnapshot:
    return RouteSnapshot(
        id=row.id,
        store_id=row.store_id,
        stop_order_ids=list(row.stop_order_ids),
        status=row.status,
        total_fee=row.total_fee,
        estimated_savings=row.estimated_savings,
        stop_distance_km=row.stop_distance_km,
        courier_id=row.courier_id,
        assigned_at=row.assigned_at,
        created_at=row.created_at,
    )


class OrderStore:
    """Reads orders and performs the ready-for-pickup transition."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        async def _read():
            async with self.session_factory() as session:
                row = await session.get(DispatchOrder, order_id)
                return order_to_snapshot(row) if row else None

        return await run_with_lock_retries("get_order", _read)

    async def list_unclaimed_ready_orders(self, store_id: str) -> List[OrderSnapshot]:
        """Batching pool: ready orders of one store that no route has claimed."""
        async def _read():
            async with self.session_factory() as session:
                result = await session.execute(
                    select(DispatchOrder).where(
                        DispatchOrder.store_id == store_id,
                        DispatchOrder.status == OrderStatus.READY_FOR_PICKUP,
                        DispatchOrder.batch_id.is_(None),
                    )
                )
                return [order_to_snapshot(row) for row in result.scalars().all()]

        return await run_with_lock_retries("list_unclaimed_ready_orders", _read)

    async def mark_ready(self, order_id: str) -> tuple[bool, OrderSnapshot]:
        """
        Move a preparing order to ready-for-pickup.

        Returns:
            (transitioned, order). `transitioned` is False when the order was
            not in PREPARING, so repeated triggers do not re-dispatch.

        Raises:
            ResourceNotFoundError: If the order does not exist
        """
        async def _transition():
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(DispatchOrder)
                        .where(
                            DispatchOrder.id == order_id,
                            DispatchOrder.status == OrderStatus.PREPARING,
                        )
                        .values(status=OrderStatus.READY_FOR_PICKUP, ready_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    transitioned = result.rowcount == 1

                    row = (await session.execute(
                        select(DispatchOrder).where(DispatchOrder.id == order_id)
                    )).scalar_one_or_none()
                    if row is None:
                        raise ResourceNotFoundError("Order", order_id)
                    return transitioned, order_to_snapshot(row)

        return await run_with_lock_retries("mark_ready", _transition)


class CourierDirectory:
    """Read-only courier lookups. Dispatch never writes courier rows."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def list_couriers(
        self,
        store_id: str,
        statuses: Optional[Iterable[CourierStatus]] = None,
    ) -> List[CourierSnapshot]:
        async def _read():
            async with self.session_factory() as session:
                query = select(Courier).where(Courier.store_id == store_id)
                if statuses:
                    query = query.where(Courier.status.in_(list(statuses)))
                result = await session.execute(query.order_by(Courier.id))
                return [courier_to_snapshot(row) for row in result.scalars().all()]

        return await run_with_lock_retries("list_couriers", _read)


class RouteStore:
    """Route reads, courier acceptance and forward status moves."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_route(self, route_id: str) -> RouteSnapshot:
        async def _read():
            async with self.session_factory() as session:
                row = await session.get(DeliveryRoute, route_id)
                if row is None:
                    raise ResourceNotFoundError("Route", route_id)
                return route_to_snapshot(row)

        return await run_with_lock_retries("get_route", _read)

    async def list_available(self, limit: int = settings.available_routes_limit) -> List[RouteSnapshot]:
        """Routes waiting for a courier, newest first."""
        async def _read():
            async with self.session_factory() as session:
                result = await session.execute(
                    select(DeliveryRoute)
                    .where(DeliveryRoute.status == RouteStatus.PENDING_DRIVER)
                    .order_by(DeliveryRoute.created_at.desc(), DeliveryRoute.id)
                    .limit(limit)
                )
                return [route_to_snapshot(row) for row in result.scalars().all()]

        return await run_with_lock_retries("list_available_routes", _read)

    async def accept(self, route_id: str, courier_id: str) -> RouteSnapshot:
        """
        Courier accepts a pending route.

        Route and member orders change together; a second acceptance of the
        same route fails instead of reassigning it.

        Raises:
            ResourceNotFoundError: If the route does not exist
            RouteAlreadyAcceptedError: If the route is no longer pending
        """
        async def _accept():
            async with self.session_factory() as session:
                async with session.begin():
                    route = await session.get(DeliveryRoute, route_id)
                    if route is None:
                        raise ResourceNotFoundError("Route", route_id)

                    assigned_at = utcnow()
                    result = await session.execute(
                        update(DeliveryRoute)
                        .where(
                            DeliveryRoute.id == route_id,
                            DeliveryRoute.status == RouteStatus.PENDING_DRIVER,
                        )
                        .values(
                            status=RouteStatus.ASSIGNED,
                            courier_id=courier_id,
                            assigned_at=assigned_at,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise RouteAlreadyAcceptedError(route_id, route.status.value)

                    await session.execute(
                        update(DispatchOrder)
                        .where(
                            DispatchOrder.id.in_(list(route.stop_order_ids)),
                            DispatchOrder.batch_id == route_id,
                        )
                        .values(status=OrderStatus.OUT_FOR_DELIVERY)
                        .execution_options(synchronize_session=False)
                    )

                    return route_to_snapshot(route).model_copy(update={
                        "status": RouteStatus.ASSIGNED,
                        "courier_id": courier_id,
                        "assigned_at": assigned_at,
                    })

        route = await run_with_lock_retries("accept_route", _accept)
        logger.info("Route accepted", extra={"route_id": route_id, "courier_id": courier_id})
        return route

    async def advance_status(self, route_id: str, new_status: RouteStatus) -> RouteSnapshot:
        """
        Move an accepted route forward (assigned -> in progress -> completed).

        Only `accept` moves a route out of pending_driver, since it records
        the courier. Cancellation releases member orders and goes through the
        route commit coordinator instead.

        Raises:
            ResourceNotFoundError: If the route does not exist
            InvalidRouteTransitionError: If the move skips acceptance, goes
                backwards or leaves a terminal state
        """
        if new_status == RouteStatus.CANCELLED:
            raise ValueError("Use RouteCommitCoordinator.cancel_route to cancel a route")

        async def _advance():
            async with self.session_factory() as session:
                async with session.begin():
                    route = await session.get(DeliveryRoute, route_id)
                    if route is None:
                        raise ResourceNotFoundError("Route", route_id)

                    current = route.status
                    skips_acceptance = (
                        current == RouteStatus.PENDING_DRIVER or new_status == RouteStatus.ASSIGNED
                    )
                    if skips_acceptance or not is_forward_transition(current, new_status):
                        raise InvalidRouteTransitionError(route_id, current.value, new_status.value)

                    result = await session.execute(
                        update(DeliveryRoute)
                        .where(DeliveryRoute.id == route_id, DeliveryRoute.status == current)
                        .values(status=new_status)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        # Someone else moved it between our read and write
                        raise InvalidRouteTransitionError(route_id, current.value, new_status.value)

                    if new_status == RouteStatus.COMPLETED:
                        await session.execute(
                            update(DispatchOrder)
                            .where(DispatchOrder.batch_id == route_id)
                            .values(status=OrderStatus.DELIVERED)
                            .execution_options(synchronize_session=False)
                        )

                    return route_to_snapshot(route).model_copy(update={"status": new_status})

        return await run_with_lock_retries("advance_route", _advance)


def is_forward_transition(current: RouteStatus, requested: RouteStatus) -> bool:
    """Route status only moves forward and never leaves a terminal state."""
    if current in TERMINAL_ROUTE_STATUSES:
        return False
    if requested == RouteStatus.CANCELLED:
        return True
    return ROUTE_STATUS_ORDER.index(requested) > ROUTE_STATUS_ORDER.index(current)
