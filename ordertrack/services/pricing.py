# ordertrack/services/pricing.py
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pydantic import ValidationError

from ordertrack.core.config import settings
from ordertrack.core.errors import InvalidInputError
from ordertrack.models.schemas import PricingConfig

CENTS = Decimal("0.01")

def default_pricing() -> PricingConfig:
    return PricingConfig(base_fee=settings.base_fee, per_km_rate=settings.per_km_rate)

def _to_decimal(value, name: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite")
    try:
        # str() keeps 0.1 as 0.1 instead of its binary expansion
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{name} must be a number")
    if not d.is_finite():
        raise InvalidInputError(f"{name} must be finite")
    if d < 0:
        raise InvalidInputError(f"{name} must not be negative")
    return d

def compute_price(distance_km, config: PricingConfig | None = None) -> Decimal:
    """
    price = base_fee + distance_km * per_km_rate, rounded half-up to cents.
    Raises InvalidInputError for negative or non-numeric input.
    """
    if config is None:
        config = default_pricing()
    elif isinstance(config, dict):
        try:
            config = PricingConfig(**config)
        except ValidationError as exc:
            fields = ", ".join(str(e["loc"][0]) for e in exc.errors() if e["loc"])
            raise InvalidInputError(f"invalid pricing config: {fields or exc}") from exc
    distance = _to_decimal(distance_km, "distance_km")
    base_fee = _to_decimal(config.base_fee, "base_fee")
    rate = _to_decimal(config.per_km_rate, "per_km_rate")
    return (base_fee + distance * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
