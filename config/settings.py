"""
Configuration settings for the application
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Trial defaults
DEFAULT_TRIAL_LENGTH_DAYS = 7
DEFAULT_PLAN_PRICE_LABEL = "RM59.99/month"

# Product catalog used by the seeding scripts
PLAN_PRODUCT_NAME = "CRM Professional"
PLAN_UNIT_AMOUNT = 5999  # RM59.99
PLAN_CURRENCY = "myr"


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
    stripe_publishable_key: Optional[str] = Field(default=None, alias="STRIPE_PUBLISHABLE_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")

    # Trial gate
    trial_length_days: int = Field(default=DEFAULT_TRIAL_LENGTH_DAYS, alias="TRIAL_LENGTH_DAYS")
    plan_price_label: str = Field(default=DEFAULT_PLAN_PRICE_LABEL, alias="PLAN_PRICE_LABEL")
    # Off by default: expired tenants still see the product, only the banner changes
    enforce_trial_gate: bool = Field(default=False, alias="ENFORCE_TRIAL_GATE")

    # Outbound email
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    resend_from: Optional[str] = Field(default=None, alias="RESEND_FROM")
    connectors_hostname: Optional[str] = Field(default=None, alias="CONNECTORS_HOSTNAME")
    connectors_token: Optional[str] = Field(default=None, alias="CONNECTORS_TOKEN")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    rate_limit_per_minute: int = Field(default=30, alias="RATE_LIMIT_PER_MINUTE")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
