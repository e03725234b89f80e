"""
Delivery Route (batch) database model.

Routes are created atomically by the route commit coordinator together with
the claim of their member orders.
"""

from sqlalchemy import Column, String, Float, DateTime, Enum, JSON
from sqlalchemy.sql import func
from dispatch_backend.app.db.session import Base
from dispatch_backend.app.models.dispatch_enums import RouteStatus


class DeliveryRoute(Base):
    """
    Delivery Route model.

    `stop_order_ids` is fixed at creation. Every listed order carries this
    route's id as its batch_id until the route is cancelled.
    """
    __tablename__ = "delivery_routes"

    id = Column(String(64), primary_key=True)

    store_id = Column(String(64), nullable=False, index=True)
    stop_order_ids = Column(JSON, nullable=False)

    status = Column(Enum(RouteStatus), default=RouteStatus.PENDING_DRIVER, nullable=False, index=True)

    # Fees
    total_fee = Column(Float, nullable=False)
    estimated_savings = Column(Float, nullable=False)
    stop_distance_km = Column(Float, nullable=True)  # Drop-off to drop-off

    # Courier assignment
    courier_id = Column(String(64), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<DeliveryRoute(id={self.id}, stops={self.stop_order_ids}, status='{self.status.value}')>"
