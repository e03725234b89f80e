"""
Dispatch Service (orchestrator).

Entry point for order-ready events and courier suggestions. Clustering is a
best-effort optimisation layered over solo dispatch: anything that goes wrong
while batching downgrades to a solo batch, and only a failed solo write is
reported as a dispatch failure.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch_backend.app.core.config import settings
from dispatch_backend.app.core.exceptions import (
    DispatchFailedError, ResourceNotFoundError, StoreUnavailableError
)
from dispatch_backend.app.domain.dispatch.clustering import BatchClusterer
from dispatch_backend.app.domain.dispatch.scoring import CourierScorer
from dispatch_backend.app.domain.dispatch.selector import DispatchSelector
from dispatch_backend.app.models.dispatch_enums import OrderStatus, RouteStatus
from dispatch_backend.app.schemas.dispatch import (
    CourierSnapshot, CourierSuggestion, DispatchAction, DispatchOutcome, GeoPoint,
    OrderSnapshot, RouteSnapshot, ScoredCourier
)
from dispatch_backend.app.services.dispatch_store import CourierDirectory, OrderStore, RouteStore
from dispatch_backend.app.services.notification_service import NotificationChannel, publish_safely
from dispatch_backend.app.services.route_commit import RouteCommitCoordinator

logger = logging.getLogger("dispatch.service")

_NO_DEADLINE = datetime.max.replace(tzinfo=timezone.utc)


class DispatchService:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: NotificationChannel,
        coordinator: Optional[RouteCommitCoordinator] = None,
        clusterer: Optional[BatchClusterer] = None,
        selector: Optional[DispatchSelector] = None,
        conflict_retries: int = settings.route_conflict_retries,
    ):
        self.orders = OrderStore(session_factory)
        self.couriers = CourierDirectory(session_factory)
        self.routes = RouteStore(session_factory)
        self.coordinator = coordinator or RouteCommitCoordinator(session_factory)
        self.clusterer = clusterer or BatchClusterer(settings.batch_radius_km, settings.max_batch_size)
        self.selector = selector or DispatchSelector(
            CourierScorer(stale_after_minutes=settings.stale_location_minutes),
            avg_speed_kmh=settings.average_speed_kmh,
        )
        self.notifier = notifier
        self.conflict_retries = conflict_retries

    # Order-ready events

    async def mark_order_ready(self, order_id: str) -> tuple[bool, Optional[DispatchOutcome]]:
        """
        Trigger entry: move the order to ready-for-pickup and dispatch it.

        Dispatch only runs when the status actually changed, so a repeated
        trigger for the same order does nothing.
        """
        transitioned, _ = await self.orders.mark_ready(order_id)
        if not transitioned:
            logger.info("Order already past preparing, no dispatch", extra={"order_id": order_id})
            return False, None
        return True, await self.on_order_ready(order_id)

    async def on_order_ready(self, order_id: str) -> DispatchOutcome:
        """
        Batch the order with a nearby partner, or dispatch it solo.

        Idempotent: an order that already has a batch id is left untouched.

        Raises:
            ResourceNotFoundError: If the order does not exist
            DispatchFailedError: If the solo fallback could not be written
        """
        try:
            order = await self.orders.get_order(order_id)
        except StoreUnavailableError as exc:
            logger.warning(
                "Order read failed, dispatching solo",
                extra={"order_id": order_id, "error": exc.message},
            )
            return await self._dispatch_solo(order_id, None, conflicts=0, degraded=True)

        if order is None:
            raise ResourceNotFoundError("Order", order_id)
        if order.batch_id is not None:
            logger.info("Order already batched", extra={"order_id": order_id, "batch_id": order.batch_id})
            return DispatchOutcome(
                order_id=order_id,
                action=DispatchAction.ALREADY_BATCHED,
                batch_id=order.batch_id,
            )
        if order.status != OrderStatus.READY_FOR_PICKUP:
            logger.info(
                "Order not ready for pickup, no dispatch",
                extra={"order_id": order_id, "status": order.status.value},
            )
            return DispatchOutcome(order_id=order_id, action=DispatchAction.NOT_READY)

        conflicts = 0
        partner = route = None
        try:
            for _ in range(self.conflict_retries + 1):
                partner = await self._find_partner(order)
                if partner is None:
                    break

                result = await self.coordinator.try_create_route(
                    *self.clusterer.plan_stops(order, partner)
                )
                if isinstance(result, RouteSnapshot):
                    route = result
                    break

                conflicts += 1
                logger.info(
                    "Route conflict, re-evaluating",
                    extra={"order_id": order_id, "partner_id": partner.id, "conflicts": conflicts},
                )
                # The order itself may be the one another trigger just claimed
                order = await self.orders.get_order(order_id)
                if order is None or order.batch_id is not None:
                    return DispatchOutcome(
                        order_id=order_id,
                        action=DispatchAction.ALREADY_BATCHED,
                        batch_id=order.batch_id if order else None,
                        conflicts=conflicts,
                    )
        except Exception as exc:
            logger.warning(
                "Batching failed, dispatching solo",
                extra={"order_id": order_id, "error": f"{type(exc).__name__}: {exc}"},
            )
            return await self._dispatch_solo(order_id, order, conflicts, degraded=True)

        if route is not None:
            return await self._dispatch_batched(order, partner, route, conflicts)
        return await self._dispatch_solo(order_id, order, conflicts)

    async def _find_partner(self, order: OrderSnapshot) -> Optional[OrderSnapshot]:
        pool = await self.orders.list_unclaimed_ready_orders(order.store_id)
        return self.clusterer.find_partner(order, pool)

    async def _dispatch_batched(
        self,
        order: OrderSnapshot,
        partner: OrderSnapshot,
        route: RouteSnapshot,
        conflicts: int,
    ) -> DispatchOutcome:
        await publish_safely("route_created", self.notifier.route_created, route)

        # Delay risk is judged against the member with the tightest deadline
        tightest = min((partner, order), key=lambda o: o.deadline or _NO_DEADLINE)
        suggestion = await self._suggest_best_effort(tightest)

        return DispatchOutcome(
            order_id=order.id,
            action=DispatchAction.BATCHED,
            batch_id=route.id,
            route=route,
            partner_order_id=partner.id,
            savings=route.estimated_savings,
            conflicts=conflicts,
            suggestion=suggestion,
        )

    async def _dispatch_solo(
        self,
        order_id: str,
        order: Optional[OrderSnapshot],
        conflicts: int,
        degraded: bool = False,
    ) -> DispatchOutcome:
        try:
            batch_id = await self.coordinator.claim_solo(order_id)
        except StoreUnavailableError as exc:
            logger.error(
                "Solo dispatch failed",
                extra={"order_id": order_id, "error": exc.message},
            )
            raise DispatchFailedError(order_id, exc.message) from exc

        if batch_id is None:
            return DispatchOutcome(
                order_id=order_id,
                action=DispatchAction.ALREADY_BATCHED,
                conflicts=conflicts,
                degraded=degraded,
            )

        logger.info("Order dispatched solo", extra={"order_id": order_id, "batch_id": batch_id})
        suggestion = await self._suggest_best_effort(order) if order is not None else None
        return DispatchOutcome(
            order_id=order_id,
            action=DispatchAction.SOLO,
            batch_id=batch_id,
            conflicts=conflicts,
            degraded=degraded,
            suggestion=suggestion,
        )

    async def _suggest_best_effort(self, order: OrderSnapshot) -> Optional[CourierSuggestion]:
        try:
            return await self.suggest_courier_for_order(order)
        except StoreUnavailableError as exc:
            logger.warning(
                "Courier suggestion skipped",
                extra={"order_id": order.id, "error": exc.message},
            )
            return None

    # Courier selection

    def select_courier(
        self,
        pickup: GeoPoint,
        eligible_couriers: List[CourierSnapshot],
        order: Optional[OrderSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> Optional[CourierSuggestion]:
        """Best courier with delay-risk annotation; None when nobody is eligible."""
        return self.selector.suggest(
            eligible_couriers,
            pickup,
            order=order,
            max_acceptable_minutes=settings.max_acceptable_eta_minutes,
            now=now,
        )

    async def rank_couriers(self, store_id: str, pickup: GeoPoint) -> List[ScoredCourier]:
        """Full ranking for the manual-override UI."""
        couriers = await self.couriers.list_couriers(store_id)
        return self.selector.rank(couriers, pickup)

    async def suggest_courier_for_order(
        self,
        order: OrderSnapshot,
        publish: bool = True,
    ) -> Optional[CourierSuggestion]:
        """Best courier for an order. Read-only lookups pass `publish=False`."""
        couriers = await self.couriers.list_couriers(order.store_id)
        suggestion = self.select_courier(order.pickup, couriers, order=order)
        if suggestion is not None and publish:
            await publish_safely(
                "courier_suggested", self.notifier.courier_suggested,
                order.store_id, order.id, suggestion,
            )
        return suggestion

    async def suggest_courier_for_store(
        self,
        store_id: str,
        pickup: GeoPoint,
        order_id: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> Optional[CourierSuggestion]:
        """Suggestion for an explicit pickup point (manual dispatch)."""
        order = None
        if order_id is not None:
            order = await self.orders.get_order(order_id)
            if order is None:
                raise ResourceNotFoundError("Order", order_id)
        elif deadline is not None:
            order = OrderSnapshot(id="adhoc", store_id=store_id, pickup=pickup, deadline=deadline)

        couriers = await self.couriers.list_couriers(store_id)
        suggestion = self.select_courier(pickup, couriers, order=order)
        if suggestion is not None:
            await publish_safely(
                "courier_suggested", self.notifier.courier_suggested,
                store_id, order_id, suggestion,
            )
        return suggestion

    # Routes

    async def list_available_routes(self) -> List[RouteSnapshot]:
        return await self.routes.list_available(settings.available_routes_limit)

    async def get_route(self, route_id: str) -> RouteSnapshot:
        return await self.routes.get_route(route_id)

    async def accept_route(self, route_id: str, courier_id: str) -> RouteSnapshot:
        return await self.routes.accept(route_id, courier_id)

    async def advance_route(self, route_id: str, status: RouteStatus) -> RouteSnapshot:
        """Forward status move; cancellation releases the route's orders."""
        if status == RouteStatus.CANCELLED:
            return await self.coordinator.cancel_route(route_id)
        return await self.routes.advance_status(route_id, status)
