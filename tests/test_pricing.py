from decimal import Decimal

import pytest

from ordertrack.core.errors import InvalidInputError
from ordertrack.models.schemas import PricingConfig
from ordertrack.services.pricing import compute_price, default_pricing

CFG = PricingConfig(base_fee=50, per_km_rate=20)

def test_example_price():
    assert compute_price(5, CFG) == Decimal("150.00")

def test_zero_distance_is_base_fee():
    assert compute_price(0, CFG) == Decimal("50.00")

def test_rounds_half_up_to_cents():
    cfg = PricingConfig(base_fee=Decimal("0"), per_km_rate=Decimal("0.125"))
    # 0.1 km * 0.125 = 0.0125 -> 0.01 ; 0.2 km * 0.125 = 0.025 -> 0.03
    assert compute_price(0.1, cfg) == Decimal("0.01")
    assert compute_price(0.2, cfg) == Decimal("0.03")

def test_float_inputs_do_not_leak_binary_noise():
    cfg = PricingConfig(base_fee=Decimal("0.1"), per_km_rate=Decimal("0.2"))
    assert compute_price(1, cfg) == Decimal("0.30")

def test_accepts_plain_dict_config():
    assert compute_price(2.5, {"base_fee": 50, "per_km_rate": 20}) == Decimal("100.00")

@pytest.mark.parametrize("cfg", [
    {"base_fee": "abc", "per_km_rate": 20},
    {"base_fee": 50},
    {"base_fee": 50, "per_km_rate": [20]},
])
def test_bad_dict_config_is_invalid_input(cfg):
    with pytest.raises(InvalidInputError) as exc_info:
        compute_price(5, cfg)
    assert "pricing config" in str(exc_info.value)

def test_defaults_from_settings():
    cfg = default_pricing()
    assert compute_price(1) == compute_price(1, cfg)

@pytest.mark.parametrize("distance,cfg", [
    (-0.01, CFG),
    (1, PricingConfig(base_fee=-1, per_km_rate=20)),
    (1, PricingConfig(base_fee=50, per_km_rate=-0.5)),
    (float("nan"), CFG),
    (float("inf"), CFG),
    ("far", CFG),
    (True, CFG),
])
def test_rejects_bad_input(distance, cfg):
    with pytest.raises(InvalidInputError):
        compute_price(distance, cfg)

def test_deterministic_and_monotonic_in_distance():
    distances = [0, 0.3, 1, 1.05, 2.5, 7, 7.01, 40, 250]
    prices = [compute_price(d, CFG) for d in distances]
    assert prices == [compute_price(d, CFG) for d in distances]
    assert prices == sorted(prices)
