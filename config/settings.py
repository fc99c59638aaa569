"""
Configuration settings for the application
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Normalized plan and tier IDs
PLAN_MONTHLY = "monthly"
PLAN_ANNUALLY = "annually"
PLAN_TRIAL = "trial"

TIER_FREE = "free"
TIER_PREMIUM = "premium"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_monthly: Optional[str] = Field(default=None, alias="STRIPE_PRICE_MONTHLY")
    stripe_price_annually: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ANNUALLY")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")
    render_external_url: Optional[str] = Field(default=None, alias="RENDER_EXTERNAL_URL")
    render_service_name: Optional[str] = Field(default=None, alias="RENDER_SERVICE_NAME")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    # Subscription lifecycle
    premium_trial_days: int = Field(default=7, alias="PREMIUM_TRIAL_DAYS")
    subscription_cron_minutes: int = Field(default=30, alias="SUBSCRIPTION_CRON_MINUTES")

    # Background jobs
    background_queue_concurrency: int = Field(default=3, alias="BACKGROUND_QUEUE_CONCURRENCY")
    enable_scheduler: bool = Field(default=True, alias="ENABLE_SCHEDULER")

    # Personalization analysis
    personalization_analysis_interval_days: int = Field(default=7, alias="PERSONALIZATION_ANALYSIS_INTERVAL_DAYS")
    min_days_since_analysis: float = Field(default=3, alias="MIN_DAYS_SINCE_ANALYSIS")
    personalization_job_interval_hours: int = Field(default=24, alias="PERSONALIZATION_JOB_INTERVAL_HOURS")
    personalization_job_run_on_startup: bool = Field(default=False, alias="PERSONALIZATION_JOB_RUN_ON_STARTUP")

    # Rate limiting (window in milliseconds, max requests per window)
    general_rate_window_ms: int = Field(default=60_000, alias="GENERAL_RATE_WINDOW_MS")
    general_rate_max: int = Field(default=30, alias="GENERAL_RATE_MAX")
    ai_chat_rate_window_ms: int = Field(default=60_000, alias="AI_CHAT_RATE_WINDOW_MS")
    ai_chat_rate_max: int = Field(default=10, alias="AI_CHAT_RATE_MAX")
    auth_rate_window_ms: int = Field(default=900_000, alias="AUTH_RATE_WINDOW_MS")
    auth_rate_max: int = Field(default=5, alias="AUTH_RATE_MAX")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
