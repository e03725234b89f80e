"""
Dispatch API tests.
"""

import math

import pytest

from dispatch_backend.app.domain.dispatch.geo import EARTH_RADIUS_KM
from dispatch_backend.app.models.dispatch_enums import OrderStatus
from dispatch_backend.app.schemas.dispatch import GeoPoint

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180
HOME = GeoPoint(lat=40.7200, lng=-74.0000)
NEAR_HOME = GeoPoint(lat=HOME.lat + 0.4 / KM_PER_DEGREE, lng=HOME.lng)


async def _batched_route(client, make_order):
    await make_order("A", dropoff=HOME)
    await make_order("B", dropoff=NEAR_HOME, status=OrderStatus.PREPARING)
    response = await client.post("/v1/dispatch/orders/B/ready")
    return response.json()["outcome"]["route"]


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_order_ready_batches_once(client, make_order):
    await make_order("A", dropoff=HOME)
    await make_order("B", dropoff=NEAR_HOME, status=OrderStatus.PREPARING)

    response = await client.post("/v1/dispatch/orders/B/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["transitioned"] is True
    assert data["outcome"]["action"] == "batched"
    assert data["outcome"]["route"]["stop_order_ids"] == ["A", "B"]

    response = await client.post("/v1/dispatch/orders/B/ready")
    assert response.status_code == 200
    assert response.json() == {"order_id": "B", "transitioned": False, "outcome": None}


@pytest.mark.asyncio
async def test_unknown_order_is_404(client):
    response = await client.post("/v1/dispatch/orders/missing/ready")
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_dispatch_endpoint_is_idempotent(client, make_order):
    await make_order("A", dropoff=HOME)

    first = await client.post("/v1/dispatch/orders/A/dispatch")
    second = await client.post("/v1/dispatch/orders/A/dispatch")

    assert first.json()["action"] == "solo"
    assert first.json()["batch_id"] == "SOLO-A"
    assert second.json()["action"] == "already_batched"


@pytest.mark.asyncio
async def test_dispatch_endpoint_leaves_preparing_order_alone(client, make_order):
    await make_order("A", dropoff=HOME)
    await make_order("P", dropoff=NEAR_HOME, status=OrderStatus.PREPARING)

    response = await client.post("/v1/dispatch/orders/P/dispatch")

    assert response.status_code == 200
    assert response.json()["action"] == "not_ready"
    assert response.json()["batch_id"] is None


@pytest.mark.asyncio
async def test_store_suggestion(client, make_courier):
    await make_courier("c1")

    response = await client.post(
        "/v1/dispatch/stores/store-1/courier-suggestion",
        json={"latitude": HOME.lat, "longitude": HOME.lng},
    )

    assert response.status_code == 200
    suggestion = response.json()["suggestion"]
    assert suggestion["courier"]["courier"]["id"] == "c1"
    assert suggestion["confidence"] == "high"


@pytest.mark.asyncio
async def test_store_suggestion_without_couriers(client):
    response = await client.post(
        "/v1/dispatch/stores/store-1/courier-suggestion",
        json={"latitude": HOME.lat, "longitude": HOME.lng},
    )
    assert response.status_code == 200
    assert response.json()["suggestion"] is None


@pytest.mark.asyncio
async def test_store_suggestion_rejects_bad_latitude(client):
    response = await client.post(
        "/v1/dispatch/stores/store-1/courier-suggestion",
        json={"latitude": 120.0, "longitude": HOME.lng},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_order_suggestion(client, notifier, make_order, make_courier):
    await make_order("A", dropoff=HOME)
    await make_courier("c1")

    response = await client.get("/v1/dispatch/orders/A/courier-suggestion")

    assert response.status_code == 200
    assert response.json()["store_id"] == "store-1"
    assert response.json()["suggestion"]["courier"]["courier"]["id"] == "c1"
    assert notifier.suggestions == []


@pytest.mark.asyncio
async def test_courier_ranking(client, make_courier):
    await make_courier("c1")
    await make_courier("c2", battery_level=10)

    response = await client.get(
        "/v1/dispatch/stores/store-1/couriers/ranking",
        params={"lat": HOME.lat, "lng": HOME.lng},
    )

    assert response.status_code == 200
    assert [c["courier"]["id"] for c in response.json()["couriers"]] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_route_lifecycle(client, make_order):
    route = await _batched_route(client, make_order)

    response = await client.get("/v1/dispatch/routes/available")
    assert response.json()["total"] == 1

    response = await client.post(
        f"/v1/dispatch/routes/{route['id']}/accept", json={"courier_id": "c1"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "assigned"

    response = await client.post(
        f"/v1/dispatch/routes/{route['id']}/accept", json={"courier_id": "c2"}
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ROUTE_002"

    response = await client.patch(
        f"/v1/dispatch/routes/{route['id']}/status", json={"status": "pending_driver"}
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ROUTE_001"

    response = await client.patch(
        f"/v1/dispatch/routes/{route['id']}/status", json={"status": "completed"}
    )
    assert response.status_code == 200

    response = await client.get(f"/v1/dispatch/routes/{route['id']}")
    assert response.json()["status"] == "completed"
    assert response.json()["courier_id"] == "c1"


@pytest.mark.asyncio
async def test_pending_route_cannot_be_marked_assigned(client, make_order):
    route = await _batched_route(client, make_order)

    response = await client.patch(
        f"/v1/dispatch/routes/{route['id']}/status", json={"status": "assigned"}
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_ROUTE_001"

    response = await client.get(f"/v1/dispatch/routes/{route['id']}")
    assert response.json()["status"] == "pending_driver"
    assert response.json()["courier_id"] is None


@pytest.mark.asyncio
async def test_cancel_route_via_status(client, make_order):
    route = await _batched_route(client, make_order)

    response = await client.patch(
        f"/v1/dispatch/routes/{route['id']}/status", json={"status": "cancelled"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert (await client.get("/v1/dispatch/routes/available")).json()["total"] == 0


@pytest.mark.asyncio
async def test_missing_route_is_404(client):
    response = await client.get("/v1/dispatch/routes/BATCH-missing")
    assert response.status_code == 404
