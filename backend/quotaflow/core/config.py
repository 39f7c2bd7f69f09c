# Service settings, read from environment variables or a .env file.

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # SQLAlchemy URL; SQLite for tests and local runs, PostgreSQL in production.
    DATABASE_URL: str

    # Echo SQL statements.
    DB_ECHO: bool = False

    # Shared key the document pipeline sends in X-API-Key when reporting
    # usage. Ingestion is refused with 500 if this is not configured.
    USAGE_API_KEY: Optional[str] = None

    # Operator key (X-Admin-Key) for tenant, quota and scenario actions.
    ADMIN_API_KEY: Optional[str] = None

    # Workflow platform (Make.com). The EU2 zone is where all customer
    # organizations live today.
    MAKE_API_BASE_URL: str = "https://eu2.make.com/api/v2"
    MAKE_DEFAULT_FOLDER_ID: Optional[str] = "449625"
    MAKE_LOOKUP_TIMEOUT_SECONDS: float = Field(default=8.0, gt=0, lt=10)
    MAKE_ACTION_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0, lt=10)
    MAKE_SCENARIO_PAGE_LIMIT: int = Field(default=200, gt=0)
    MAKE_SYNC_DAYS: int = Field(default=30, gt=0)

    # Billing periods start on this day of every month at midnight UTC.
    BILLING_ANCHOR_DAY: int = Field(default=5, ge=1, le=28)

    # Plan applied to freshly registered tenants.
    DEFAULT_PLAN_KEY: str = "trial"

    # Shared secret for X-HMAC-Signature on pipeline events (Make.com, Azure
    # OCR and OpenAI steps). Event ingestion is refused with 500 without it.
    HMAC_SECRET: Optional[str] = None

    # Currency the per-source cost summary is reported in.
    USAGE_CURRENCY: str = "EUR"

    # Stripe webhook verification for add-on purchases.
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Workflow API keys are stored encrypted (base64 Fernet key recommended).
    INTEGRATION_ENCRYPTION_KEY: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    @field_validator("MAKE_API_BASE_URL", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value):
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("MAKE_DEFAULT_FOLDER_ID", mode="before")
    @classmethod
    def _blank_folder_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


settings = Settings()
