"""Application configuration from environment variables."""

from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "StudioBook"
    debug: bool = True
    api_prefix: str = "/api/v1"
    admin_api_key: str = "dev-admin-key-change-in-production"

    # Database
    database_url: str = "postgresql+asyncpg://studiobook:studiobook@db:5432/studiobook"
    database_echo: bool = False

    # Redis (Celery broker for the reset scheduler)
    redis_url: str = "redis://redis:6379/0"

    # Studio
    studio_timezone: str = "Europe/London"
    slot_minutes: int = 30
    open_hour: int = 9  # availability grid only
    close_hour: int = 21

    # Wallet defaults for new members
    default_monthly_points_max: int = 40
    default_weekend_slots_max: int = 12  # half-hour cells = 6 hours

    # Cancellation refunds
    full_refund_notice_hours: int = 24
    late_cancel_refund_fraction: float = 0.5

    # Transient store contention
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.05

    model_config = {"env_prefix": "SB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()

STUDIO_TZ = ZoneInfo(settings.studio_timezone)
