"""Application configuration loaded from the environment."""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Server settings. Every field can be overridden with an APP_ env var."""

    model_config = ConfigDict(env_prefix="APP_")

    # Server
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # FRED data provider
    fred_api_key: str | None = None
    fred_api_base_url: str = "https://api.stlouisfed.org/fred/series/observations"
    fred_timeout_seconds: float = 10.0
    fred_observation_limit: int = 10

    # Idempotency store
    idempotency_ttl_seconds: int = 86400  # 24 hours
    idempotency_sweep_interval_seconds: int = 3600  # hourly sweep

    # Order validation
    curve_date_max_age_years: int = 10
    max_amount_in_cents: int = 1_000_000_000_000  # $10 billion

    # Order history pagination
    orders_default_limit: int = 10
    orders_max_limit: int = 100


settings = Settings()
