"""
Service dependencies for FastAPI.

Tests override `get_dispatch_service` to inject a recording notifier and a
test database.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch_backend.app.db.session import get_session_factory
from dispatch_backend.app.services.dispatch_service import DispatchService
from dispatch_backend.app.services.notification_service import DatabaseNotificationChannel


def get_dispatch_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> DispatchService:
    """Dispatch service wired to the database and in-app notifications."""
    return DispatchService(
        session_factory=session_factory,
        notifier=DatabaseNotificationChannel(session_factory),
    )
