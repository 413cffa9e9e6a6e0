"""
Derives the render-ready tracking view of an order: the checklist of steps,
the progress percentage and the per-step descriptions.

The order's status is authoritative. Timestamps are informational only; the
backend may omit intermediate ones, so a step the status has passed counts as
completed even without its timestamp. Orders whose status is CANCELLED, or a
value this client does not know, fall back to the timestamps that are present.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from ordertrack.core.errors import InvalidTransitionError, MalformedOrderError
from ordertrack.core.states import (
    ORDER_STATES,
    TIMESTAMP_FIELDS,
    OrderStatus,
    can_transition,
    coerce_status,
    status_rank,
)
from ordertrack.models.schemas import (
    Notification,
    Order,
    OrderSummary,
    TrackingSnapshot,
    TrackingStep,
)

STEP_PROGRESS = {
    OrderStatus.CREATED:    0,
    OrderStatus.ASSIGNED:   25,
    OrderStatus.PICKED_UP:  50,
    OrderStatus.IN_TRANSIT: 75,
    OrderStatus.DELIVERED:  100,
}

STEP_LABELS = {
    OrderStatus.CREATED:    "Order Created",
    OrderStatus.ASSIGNED:   "Courier Assigned",
    OrderStatus.PICKED_UP:  "Order Picked Up",
    OrderStatus.IN_TRANSIT: "In Transit",
    OrderStatus.DELIVERED:  "Delivered",
}

STATUS_DESCRIPTIONS = {
    OrderStatus.CREATED:    "Your order has been created and is waiting for courier assignment.",
    OrderStatus.ASSIGNED:   "A courier has been assigned and is heading to the pickup location.",
    OrderStatus.PICKED_UP:  "Your order has been picked up and is ready for delivery.",
    OrderStatus.IN_TRANSIT: "Your order is on the way to the delivery location.",
    OrderStatus.DELIVERED:  "Your order has been successfully delivered!",
    OrderStatus.CANCELLED:  "This order has been cancelled.",
}

DEFAULT_DESCRIPTION = "Order status is being updated."


def _utcnow():
    return datetime.now(timezone.utc)


def step_description(status) -> str:
    return STATUS_DESCRIPTIONS.get(coerce_status(status), DEFAULT_DESCRIPTION)


def _require_status(order) -> str:
    status = getattr(order, "status", None)
    if status is None or (isinstance(status, str) and not status.strip()):
        raise MalformedOrderError("Order has no status")
    return status


def _highest_completed(order) -> int:
    """Index into ORDER_STATES of the furthest step the order has reached."""
    rank = status_rank(_require_status(order))
    if rank is not None:
        return rank
    # cancelled or unknown: progress is frozen at the last timestamp present
    highest = 0
    for i, s in enumerate(ORDER_STATES):
        if getattr(order, TIMESTAMP_FIELDS[s], None) is not None:
            highest = i
    return highest


def derive_tracking_steps(order) -> list[TrackingStep]:
    highest = _highest_completed(order)
    steps = []
    for i, s in enumerate(ORDER_STATES):
        completed = i <= highest
        steps.append(TrackingStep(
            status=s.value,
            label=STEP_LABELS[s],
            completed=completed,
            timestamp=getattr(order, TIMESTAMP_FIELDS[s], None) if completed else None,
            progress=STEP_PROGRESS[s],
            description=step_description(s),
        ))
    return steps


def progress_percentage(order) -> int:
    return STEP_PROGRESS[ORDER_STATES[_highest_completed(order)]]


def build_tracking_snapshot(
    order: OrderSummary,
    notifications: Iterable[Notification] = (),
    now: datetime | None = None,
    estimated_delivery: datetime | None = None,
) -> TrackingSnapshot:
    """Recompute the whole snapshot for `order`; nothing is carried over."""
    if not isinstance(order, Order):
        order = Order.model_validate(order.model_dump())
    steps = derive_tracking_steps(order)
    recent = sorted(notifications, key=lambda n: n.created_at, reverse=True)
    return TrackingSnapshot(
        order=order,
        progress_percentage=progress_percentage(order),
        tracking_steps=steps,
        recent_notifications=recent,
        estimated_delivery=estimated_delivery,
        last_updated=now or _utcnow(),
    )


def apply_optimistic_status(order, status, now: datetime | None = None, user_roles=None):
    """
    Return a copy of `order` moved to `status` for display while the server
    confirms the change. The next poll replaces it with server data.
    """
    src = _require_status(order)
    dst = coerce_status(status)
    if dst is None or not can_transition(src, dst, user_roles):
        raise InvalidTransitionError(str(src), str(status))
    update = {"status": dst.value}
    field = TIMESTAMP_FIELDS.get(dst)
    if field and getattr(order, field, None) is None:
        update[field] = now or _utcnow()
    return order.model_copy(update=update)
