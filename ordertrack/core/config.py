from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    api_base_url: str = "http://localhost:8000"

    # transport
    request_timeout_s: float = 30.0
    request_max_retries: int = 3
    request_retry_delay_s: float = 1.0

    # real-time tracker
    poll_interval_s: float = 30.0
    poll_timeout_s: float = 10.0
    poll_backoff_max_s: float = 300.0
    poll_immediately: bool = True

    # default pricing
    base_fee: Decimal = Decimal("50")
    per_km_rate: Decimal = Decimal("20")

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
