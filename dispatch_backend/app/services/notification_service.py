"""
Notification Service.

Dispatch emits "route created" and "courier suggested" events through an
injected NotificationChannel. Delivery is fire-and-forget: a failing channel
is logged and never turns into a dispatch failure.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_backend.app.core.reliability import CircuitBreaker, notification_circuit_breaker
from dispatch_backend.app.models.notification import Notification, NotificationType
from dispatch_backend.app.schemas.dispatch import CourierSuggestion, RouteSnapshot

logger = logging.getLogger("dispatch.notifications")


class NotificationChannel(Protocol):
    async def route_created(self, route: RouteSnapshot) -> None:
        ...

    async def courier_suggested(
        self, store_id: str, order_id: Optional[str], suggestion: CourierSuggestion
    ) -> None:
        ...


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        store_id: str,
        title: str,
        message: str,
        type: NotificationType,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            store_id=store_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def list_for_store(db: AsyncSession, store_id: str) -> List[Notification]:
        result = await db.execute(
            select(Notification)
            .where(Notification.store_id == store_id)
            .order_by(Notification.id)
        )
        return list(result.scalars().all())


class DatabaseNotificationChannel:
    """Persists dispatch events as in-app notifications for the store."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        breaker: CircuitBreaker = notification_circuit_breaker,
    ):
        self.session_factory = session_factory
        self.breaker = breaker

    async def route_created(self, route: RouteSnapshot) -> None:
        await self.breaker.call(
            self._write,
            store_id=route.store_id,
            type=NotificationType.ROUTE_CREATED,
            title="Batched route available",
            message=(
                f"{len(route.stop_order_ids)} nearby orders grouped. "
                f"Savings of {route.estimated_savings:.2f}"
            ),
            metadata={"route_id": route.id, "order_ids": route.stop_order_ids},
        )

    async def courier_suggested(
        self, store_id: str, order_id: Optional[str], suggestion: CourierSuggestion
    ) -> None:
        await self.breaker.call(
            self._write,
            store_id=store_id,
            type=NotificationType.COURIER_SUGGESTED,
            title="Courier suggestion",
            message=suggestion.display_message,
            metadata={
                "order_id": order_id,
                "courier_id": suggestion.courier.courier_id,
                "confidence": suggestion.confidence,
                "at_risk": suggestion.delay_risk.at_risk,
            },
        )

    async def _write(self, **fields) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await NotificationService.create_notification(session, **fields)


async def publish_safely(event: str, func, *args, **kwargs) -> bool:
    """
    Fire a notification and swallow its failure.

    Returns:
        True if the channel accepted the event
    """
    try:
        await func(*args, **kwargs)
        return True
    except Exception as exc:
        logger.warning(
            "Notification failed",
            extra={"event": event, "error": f"{type(exc).__name__}: {exc}"},
        )
        return False
