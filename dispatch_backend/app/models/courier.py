"""
Courier database model.

Location, battery and status are written by the courier's own client;
the dispatch engine only reads this table.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum
from sqlalchemy.sql import func
from dispatch_backend.app.db.session import Base
from dispatch_backend.app.models.dispatch_enums import CourierStatus


class Courier(Base):
    """Courier model."""
    __tablename__ = "couriers"

    id = Column(String(64), primary_key=True)

    # Home store affiliation
    store_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    # Last reported location
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)

    active_order_count = Column(Integer, default=0, nullable=False)
    battery_level = Column(Float, default=100, nullable=False)  # 0-100%
    status = Column(Enum(CourierStatus), default=CourierStatus.OFFLINE, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Courier(id={self.id}, store_id={self.store_id}, status='{self.status.value}')>"
