from enum import Enum
from typing import Iterable, Optional


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Canonical progression; CANCELLED sits outside it.
ORDER_STATES = [
    OrderStatus.CREATED, OrderStatus.ASSIGNED, OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED,
]

TERMINAL_STATES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

# Timestamp field set when the order reaches each status.
TIMESTAMP_FIELDS = {
    OrderStatus.CREATED:    "created_at",
    OrderStatus.ASSIGNED:   "assigned_at",
    OrderStatus.PICKED_UP:  "picked_up_at",
    OrderStatus.IN_TRANSIT: "in_transit_at",
    OrderStatus.DELIVERED:  "delivered_at",
}

TRANSITIONS = {
    ("CREATED",    "ASSIGNED"):   {"roles": ["COURIER", "ADMIN"]},
    ("ASSIGNED",   "PICKED_UP"):  {"roles": ["COURIER", "ADMIN"]},
    ("PICKED_UP",  "IN_TRANSIT"): {"roles": ["COURIER", "ADMIN"]},
    ("IN_TRANSIT", "DELIVERED"):  {"roles": ["COURIER", "ADMIN"]},

    ("CREATED",    "CANCELLED"):  {"roles": ["CUSTOMER", "ADMIN"]},
    ("ASSIGNED",   "CANCELLED"):  {"roles": ["ADMIN"]},
    ("PICKED_UP",  "CANCELLED"):  {"roles": ["ADMIN"]},
    ("IN_TRANSIT", "CANCELLED"):  {"roles": ["ADMIN"]},
}


def coerce_status(value) -> Optional[OrderStatus]:
    """Return the enum member for `value`, or None for anything unrecognized."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        return None


def status_rank(status) -> Optional[int]:
    s = coerce_status(status)
    if s is None or s not in ORDER_STATES:
        return None
    return ORDER_STATES.index(s)


def is_terminal(status) -> bool:
    return coerce_status(status) in TERMINAL_STATES


def can_transition(src, dst, user_roles: Iterable[str] | None = None) -> bool:
    s, d = coerce_status(src), coerce_status(dst)
    if s is None or d is None:
        return False
    rule = TRANSITIONS.get((s.value, d.value))
    if not rule:
        return False
    if user_roles is None:
        return True
    return bool(set(rule["roles"]) & {r.upper() for r in user_roles})
