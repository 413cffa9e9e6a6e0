import logging
from decimal import Decimal

from ordertrack.core.config import Settings
from ordertrack.core.logging import configure_logging

def test_defaults():
    s = Settings(_env_file=None)
    assert s.poll_interval_s == 30
    assert s.base_fee == Decimal("50")
    assert s.per_km_rate == Decimal("20")
    assert s.poll_immediately is True

def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("POLL_INTERVAL_S", "5")
    monkeypatch.setenv("API_BASE_URL", "https://api.example.test")
    monkeypatch.setenv("PER_KM_RATE", "12.5")
    s = Settings(_env_file=None)
    assert s.poll_interval_s == 5.0
    assert s.api_base_url == "https://api.example.test"
    assert s.per_km_rate == Decimal("12.5")

def test_configure_logging(monkeypatch):
    seen = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: seen.update(kw))
    configure_logging("debug")
    assert seen["level"] == "DEBUG"
