"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Planify Backend"
    debug: bool = False
    log_level: str = "INFO"
    access_log_enabled: bool = True
    database_url: str = "postgresql+psycopg2://planify@localhost:5432/planify"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "planify"

    # AI provider
    ai_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 20.0

    # Tier limits
    default_timezone: str = "UTC"
    free_daily_ai_limit: int = 3
    basic_pro_daily_spillover: int = 3
    basic_pro_monthly_ai_limit: int = 100
    advanced_pro_daily_ai_limit: int = 200
    frozen_credits_cap: int = 100
    usage_increment_attempts: int = 3

    # Billing
    stripe_webhook_secret: str | None = None
    razorpay_webhook_secret: str | None = None
    stripe_price_tiers: dict[str, str] = {}
    razorpay_plan_tiers: dict[str, str] = {}
    subscription_grace_hours: int = 24

    # Admin overrides
    admin_api_token: str | None = None

    # Scheduler worker
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    expiry_sweep_hour: int = 3
    expiry_sweep_minute: int = 0
    jobs_run_on_startup: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
