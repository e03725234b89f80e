"""
Dispatch-related enumerations.
"""

import enum


class CourierStatus(str, enum.Enum):
    """Courier status enumeration (reported by the courier's own client)."""
    ONLINE = "online"
    BUSY = "busy"  # Currently delivering
    RETURNING = "returning"  # Heading back to the store
    OFFLINE = "offline"


class OrderStatus(str, enum.Enum):
    """Order lifecycle status as seen by dispatch."""
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderPriority(str, enum.Enum):
    """Order priority enumeration."""
    NORMAL = "normal"
    URGENT = "urgent"
    VIP = "vip"


class RouteStatus(str, enum.Enum):
    """Delivery route (batch) status enumeration."""
    PENDING_DRIVER = "pending_driver"  # Created, waiting for a courier to accept
    ASSIGNED = "assigned"  # Courier accepted
    IN_PROGRESS = "in_progress"  # Courier picked up
    COMPLETED = "completed"  # All stops delivered
    CANCELLED = "cancelled"  # Members released back to unclaimed


# Forward-only progression; CANCELLED is reachable from any non-terminal status.
ROUTE_STATUS_ORDER = [
    RouteStatus.PENDING_DRIVER,
    RouteStatus.ASSIGNED,
    RouteStatus.IN_PROGRESS,
    RouteStatus.COMPLETED,
]

TERMINAL_ROUTE_STATUSES = {RouteStatus.COMPLETED, RouteStatus.CANCELLED}
