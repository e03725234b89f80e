"""
Dispatch API Endpoints.

Order-ready trigger, courier suggestions for manual and automatic dispatch,
and the route lifecycle used by the courier app.
"""

from fastapi import APIRouter, Depends, Path, Query

from dispatch_backend.app.core.dependencies import get_dispatch_service
from dispatch_backend.app.schemas.dispatch import (
    CourierRankingResponse, CourierSuggestionResponse, DispatchOutcome, GeoPoint,
    OrderReadyResponse, PickupRequest, RouteAcceptRequest, RouteListResponse,
    RouteSnapshot, RouteStatusUpdate
)
from dispatch_backend.app.core.exceptions import ResourceNotFoundError
from dispatch_backend.app.services.dispatch_service import DispatchService

router = APIRouter(prefix="/dispatch", tags=["Dispatch"])


@router.post("/orders/{order_id}/ready", response_model=OrderReadyResponse)
async def order_ready(
    order_id: str = Path(..., description="Order ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    """
    Kitchen marks an order ready for pickup.

    Batching runs only on the transition into ready; repeating the call is
    a no-op.
    """
    transitioned, outcome = await service.mark_order_ready(order_id)
    return OrderReadyResponse(order_id=order_id, transitioned=transitioned, outcome=outcome)


@router.post("/orders/{order_id}/dispatch", response_model=DispatchOutcome)
async def dispatch_order(
    order_id: str = Path(..., description="Order ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    """Re-run batching for a ready order. Already-batched orders are left alone."""
    return await service.on_order_ready(order_id)


@router.get("/orders/{order_id}/courier-suggestion", response_model=CourierSuggestionResponse)
async def order_courier_suggestion(
    order_id: str = Path(..., description="Order ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    """Best courier for an order's pickup, with delay risk against its deadline."""
    order = await service.orders.get_order(order_id)
    if order is None:
        raise ResourceNotFoundError("Order", order_id)
    suggestion = await service.suggest_courier_for_order(order, publish=False)
    return CourierSuggestionResponse(store_id=order.store_id, suggestion=suggestion)


@router.post("/stores/{store_id}/courier-suggestion", response_model=CourierSuggestionResponse)
async def store_courier_suggestion(
    pickup: PickupRequest,
    store_id: str = Path(..., description="Store ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    """
    Suggest a courier for an explicit pickup point.

    `suggestion` is null when the store has no eligible courier.
    """
    suggestion = await service.suggest_courier_for_store(
        store_id,
        GeoPoint(lat=pickup.latitude, lng=pickup.longitude),
        order_id=pickup.order_id,
        deadline=pickup.deadline,
    )
    return CourierSuggestionResponse(store_id=store_id, suggestion=suggestion)


@router.get("/stores/{store_id}/couriers/ranking", response_model=CourierRankingResponse)
async def courier_ranking(
    store_id: str = Path(..., description="Store ID"),
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    service: DispatchService = Depends(get_dispatch_service),
):
    """All non-offline couriers of a store, best first, for manual override."""
    ranked = await service.rank_couriers(store_id, GeoPoint(lat=lat, lng=lng))
    return CourierRankingResponse(store_id=store_id, couriers=ranked)


@router.get("/routes/available", response_model=RouteListResponse)
async def available_routes(service: DispatchService = Depends(get_dispatch_service)):
    """Routes waiting for a courier, newest first."""
    routes = await service.list_available_routes()
    return RouteListResponse(routes=routes, total=len(routes))


@router.get("/routes/{route_id}", response_model=RouteSnapshot)
async def get_route(
    route_id: str = Path(..., description="Route ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    return await service.get_route(route_id)


@router.post("/routes/{route_id}/accept", response_model=RouteSnapshot)
async def accept_route(
    body: RouteAcceptRequest,
    route_id: str = Path(..., description="Route ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    """Courier accepts a pending route. Returns 409 if someone was faster."""
    return await service.accept_route(route_id, body.courier_id)


@router.patch("/routes/{route_id}/status", response_model=RouteSnapshot)
async def update_route_status(
    body: RouteStatusUpdate,
    route_id: str = Path(..., description="Route ID"),
    service: DispatchService = Depends(get_dispatch_service),
):
    """
    Move an accepted route forward. Cancelling releases its orders for
    re-batching. A pending route only leaves pending_driver through accept.
    """
    return await service.advance_route(route_id, body.status)
