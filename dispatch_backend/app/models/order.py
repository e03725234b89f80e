"""
Dispatchable order database model.

Orders become eligible for batching when the kitchen marks them ready.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, Index
from sqlalchemy.sql import func
from dispatch_backend.app.db.session import Base
from dispatch_backend.app.models.dispatch_enums import OrderStatus, OrderPriority


class DispatchOrder(Base):
    """
    Dispatchable order model.

    `batch_id` is null while the order is unclaimed. It is written exactly once,
    either with a route id or a synthetic solo batch id, and only by the
    route commit coordinator. `version` is bumped on every batch_id write.
    """
    __tablename__ = "dispatch_orders"

    id = Column(String(64), primary_key=True)

    store_id = Column(String(64), nullable=False, index=True)

    # Pickup (store) and drop-off (customer) coordinates
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.PREPARING, nullable=False, index=True)
    priority = Column(Enum(OrderPriority), default=OrderPriority.NORMAL, nullable=False)

    # Batching
    batch_id = Column(String(64), nullable=True, index=True)
    batch_position = Column(Integer, nullable=True)  # 1-based stop index within the route
    version = Column(Integer, default=0, nullable=False)

    # Timestamps
    ready_at = Column(DateTime(timezone=True), nullable=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_dispatch_orders_pool", "store_id", "status", "batch_id"),
    )

    def __repr__(self):
        return f"<DispatchOrder(id={self.id}, store_id={self.store_id}, batch_id={self.batch_id})>"
