from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from ordertrack.core.errors import ApiError, ApiErrorType, TransportError, create_api_error

Role = Literal["CUSTOMER", "COURIER", "ADMIN"]

T = TypeVar("T")


class User(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    role: Optional[Role] = None
    phone_number: Optional[str] = None


class OrderSummary(BaseModel):
    """Order as returned by the list endpoint."""
    id: int
    # kept as a plain string so an unknown status from a newer backend still parses
    status: Optional[str] = None
    pickup_address: str
    delivery_address: str
    distance_km: float = Field(ge=0)
    price: Decimal = Field(ge=0)
    created_at: datetime
    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    in_transit_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    assigned_courier_name: Optional[str] = None


class Order(OrderSummary):
    customer: Optional[User] = None
    assigned_courier: Optional[User] = None
    special_instructions: Optional[str] = None


class PricingConfig(BaseModel):
    base_fee: Decimal
    per_km_rate: Decimal


class CreateOrderRequest(BaseModel):
    pickup_address: str = Field(min_length=5, max_length=200)
    delivery_address: str = Field(min_length=5, max_length=200)
    distance_km: float = Field(ge=0)
    special_instructions: Optional[str] = Field(default=None, max_length=500)

    @field_validator("pickup_address", "delivery_address", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class Notification(BaseModel):
    id: int
    title: str
    message: str
    is_read: bool = False
    created_at: datetime


class TrackingStep(BaseModel):
    status: str
    label: str
    completed: bool
    timestamp: Optional[datetime] = None
    progress: int
    description: Optional[str] = None


class TrackingSnapshot(BaseModel):
    order: Order
    progress_percentage: int = Field(default=0, ge=0, le=100)
    tracking_steps: List[TrackingStep] = []
    recent_notifications: List[Notification] = []
    estimated_delivery: Optional[datetime] = None
    last_updated: datetime


class RealTimeUpdatePayload(BaseModel):
    """What every subscriber receives for one poll cycle."""
    orders: List[OrderSummary]
    changed_order_ids: List[int] = []
    removed_order_ids: List[int] = []
    timestamp: datetime

    @property
    def has_updates(self) -> bool:
        return bool(self.changed_order_ids or self.removed_order_ids)


class ServerUpdates(BaseModel):
    """Body of the backend's real_time_updates endpoint."""
    orders: List[OrderSummary] = []
    notifications: List[Notification] = []
    timestamp: datetime
    has_updates: bool = False


class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None
    status: int
    error_type: Optional[ApiErrorType] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return `data`, raising TransportError if this is an error envelope."""
        if self.error is not None:
            type_ = self.error_type or create_api_error(self.status).type
            raise TransportError(ApiError(type=type_, message=self.error, status=self.status))
        return self.data

    @classmethod
    def failure(
        cls,
        status: int,
        message: str | None = None,
        details: Any = None,
        error_type: ApiErrorType | None = None,
    ) -> "ApiResponse":
        err = create_api_error(status, message, details)
        if error_type is not None:
            err = err.model_copy(update={"type": error_type, "message": message or err.message})
        return cls(error=err.message, status=status, error_type=err.type)
