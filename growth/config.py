"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"
    allowed_origins: str = ""  # Comma-separated CORS origins (auto-includes localhost in dev)

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (rate limiting on public tracking endpoints)
    redis_url: str = "redis://localhost:6379/0"

    # Auth
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"

    # Sentry
    sentry_dsn: str = ""

    # Promoter program
    # Calendar month boundaries for monthly issue limits are computed in this zone,
    # never the host's local zone.
    quota_timezone: str = "UTC"
    code_max_attempts: int = 10
    default_phone_region: str = "TW"
    default_trial_plan_code: str = "FREE_TRIAL"

    # Public tracking endpoint limits (per IP)
    track_ref_rate_limit: int = 30
    track_ref_rate_window: int = 60

    # Workers
    trial_expiry_interval_seconds: int = 900

    # Billing callback signature
    billing_webhook_secret: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
