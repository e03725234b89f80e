"""
Centralized Test Configuration.

Each test gets its own SQLite file. Every session opens a fresh connection
(NullPool), so concurrent claims really race through SQLite's locking
instead of sharing one connection and one transaction.
"""

import pytest
from datetime import datetime, timedelta, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from dispatch_backend.app.main import app
from dispatch_backend.app.db.session import Base
from dispatch_backend.app.core.dependencies import get_dispatch_service
from dispatch_backend.app.models.courier import Courier
from dispatch_backend.app.models.delivery_route import DeliveryRoute
from dispatch_backend.app.models.dispatch_enums import CourierStatus, OrderPriority, OrderStatus
from dispatch_backend.app.models.order import DispatchOrder
from dispatch_backend.app.schemas.dispatch import GeoPoint
from dispatch_backend.app.services.dispatch_service import DispatchService
from dispatch_backend.app.services.dispatch_store import courier_to_snapshot, order_to_snapshot

STORE_ID = "store-1"
STORE_LOCATION = GeoPoint(lat=40.7128, lng=-74.0060)


class RecordingNotifier:
    """Notification channel stub that remembers what dispatch published."""

    def __init__(self):
        self.routes = []
        self.suggestions = []
        self.fail = False

    async def route_created(self, route):
        if self.fail:
            raise ConnectionError("notification channel down")
        self.routes.append(route)

    async def courier_suggested(self, store_id, order_id, suggestion):
        if self.fail:
            raise ConnectionError("notification channel down")
        self.suggestions.append((store_id, order_id, suggestion))


@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 15},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatch_service(session_factory, notifier):
    return DispatchService(session_factory=session_factory, notifier=notifier)


@pytest.fixture
async def client(dispatch_service):
    """Async client for testing, bound to the per-test database."""
    app.dependency_overrides[get_dispatch_service] = lambda: dispatch_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}


@pytest.fixture
def make_order(session_factory):
    """Insert an order and return its snapshot."""

    async def _make(
        order_id,
        dropoff=None,
        store_id=STORE_ID,
        status=OrderStatus.READY_FOR_PICKUP,
        ready_at=None,
        deadline=None,
        batch_id=None,
        priority=OrderPriority.NORMAL,
    ):
        if ready_at is None and status != OrderStatus.PREPARING:
            ready_at = datetime.now(timezone.utc)
        row = DispatchOrder(
            id=order_id,
            store_id=store_id,
            pickup_lat=STORE_LOCATION.lat,
            pickup_lng=STORE_LOCATION.lng,
            dropoff_lat=dropoff.lat if dropoff else None,
            dropoff_lng=dropoff.lng if dropoff else None,
            status=status,
            priority=priority,
            batch_id=batch_id,
            batch_position=1 if batch_id else None,
            version=0,
            ready_at=ready_at,
            deadline=deadline,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(row)
        return order_to_snapshot(row)

    return _make


@pytest.fixture
def make_courier(session_factory):
    """Insert a courier with a fresh location and return its snapshot."""

    async def _make(
        courier_id,
        location=STORE_LOCATION,
        store_id=STORE_ID,
        battery_level=100,
        active_order_count=0,
        status=CourierStatus.ONLINE,
        location_age=timedelta(0),
    ):
        row = Courier(
            id=courier_id,
            store_id=store_id,
            name=f"Courier {courier_id}",
            location_lat=location.lat if location else None,
            location_lng=location.lng if location else None,
            location_updated_at=datetime.now(timezone.utc) - location_age,
            active_order_count=active_order_count,
            battery_level=battery_level,
            status=status,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(row)
        return courier_to_snapshot(row)

    return _make


@pytest.fixture
def routes_for_order(session_factory):
    """Ids of every route whose stop list names the order."""

    async def _routes(order_id):
        async with session_factory() as session:
            result = await session.execute(select(DeliveryRoute))
            return [route.id for route in result.scalars().all() if order_id in route.stop_order_ids]

    return _routes
