"""
Dispatch schemas.

Immutable value records consumed by the scoring and clustering code, plus
request/response schemas for the dispatch API.
"""

import enum
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dispatch_backend.app.models.dispatch_enums import (
    CourierStatus, OrderPriority, OrderStatus, RouteStatus
)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GeoPoint(BaseModel):
    """A WGS84 coordinate. Range checks happen in geo.is_valid_point, not here."""
    lat: float
    lng: float

    model_config = ConfigDict(frozen=True)


class CourierSnapshot(BaseModel):
    """Read-only view of a courier at dispatch time."""
    id: str
    store_id: str
    name: str = ""
    location: Optional[GeoPoint] = None
    location_updated_at: Optional[datetime] = None
    active_order_count: int = Field(0, ge=0)
    battery_level: float = Field(100, ge=0, le=100)
    status: CourierStatus = CourierStatus.ONLINE

    model_config = ConfigDict(frozen=True)

    @field_validator("location_updated_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class OrderSnapshot(BaseModel):
    """Read-only view of a dispatchable order."""
    id: str
    store_id: str
    pickup: GeoPoint
    dropoff: Optional[GeoPoint] = None
    status: OrderStatus = OrderStatus.READY_FOR_PICKUP
    priority: OrderPriority = OrderPriority.NORMAL
    ready_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    batch_id: Optional[str] = None
    batch_position: Optional[int] = None
    version: int = 0

    model_config = ConfigDict(frozen=True)

    @field_validator("ready_at", "deadline")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class RouteSnapshot(BaseModel):
    """A persisted delivery route."""
    id: str
    store_id: str
    stop_order_ids: List[str]
    status: RouteStatus
    total_fee: float
    estimated_savings: float
    stop_distance_km: Optional[float] = None
    courier_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("assigned_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, value):
        return ensure_utc(value)


class RouteConflict(BaseModel):
    """Returned when an atomic route claim loses a race."""
    order_ids: List[str]
    reason: str

    model_config = ConfigDict(frozen=True)


class ScoredCourier(BaseModel):
    """A courier with its dispatch penalty score (lower is better)."""
    courier: CourierSnapshot
    score: float
    distance_km: float
    reasons: List[str] = []

    model_config = ConfigDict(frozen=True)

    @property
    def courier_id(self) -> str:
        return self.courier.id


class DelayRisk(BaseModel):
    """Advisory delay verdict for a courier/order pair."""
    at_risk: bool
    eta_minutes: int
    message: str


class CourierSuggestion(BaseModel):
    """Best courier for a pickup, annotated for the operator."""
    courier: ScoredCourier
    eta_minutes: int
    delay_risk: DelayRisk
    confidence: Literal["high", "medium", "low"]
    display_message: str


class DispatchAction(str, enum.Enum):
    BATCHED = "batched"
    SOLO = "solo"
    ALREADY_BATCHED = "already_batched"
    NOT_READY = "not_ready"


class DispatchOutcome(BaseModel):
    """Result of handling an order-ready event."""
    order_id: str
    action: DispatchAction
    batch_id: Optional[str] = None
    route: Optional[RouteSnapshot] = None
    partner_order_id: Optional[str] = None
    savings: Optional[float] = None
    conflicts: int = 0
    degraded: bool = False  # Clustering failed and solo dispatch was used
    suggestion: Optional[CourierSuggestion] = None


# API schemas

class PickupRequest(BaseModel):
    """Pickup point for a courier suggestion."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    order_id: Optional[str] = None
    deadline: Optional[datetime] = None


class CourierSuggestionResponse(BaseModel):
    """Null suggestion means no eligible courier."""
    store_id: str
    suggestion: Optional[CourierSuggestion]


class CourierRankingResponse(BaseModel):
    store_id: str
    couriers: List[ScoredCourier]


class RouteAcceptRequest(BaseModel):
    courier_id: str


class RouteStatusUpdate(BaseModel):
    status: RouteStatus


class RouteListResponse(BaseModel):
    routes: List[RouteSnapshot]
    total: int


class OrderReadyResponse(BaseModel):
    """Trigger response; outcome is null when the order was already ready."""
    order_id: str
    transitioned: bool
    outcome: Optional[DispatchOutcome]
