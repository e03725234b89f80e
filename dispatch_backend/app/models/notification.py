"""
Notification Database Model.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from dispatch_backend.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    ROUTE_CREATED = "ROUTE_CREATED"
    COURIER_SUGGESTED = "COURIER_SUGGESTED"


class Notification(Base):
    """
    In-App Notification.
    Stores dispatch messages for a store's operators.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient
    store_id = Column(String(64), nullable=False, index=True)

    # Content
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    metadata_payload = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, store={self.store_id}, title='{self.title}')>"
