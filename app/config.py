"""Application Configuration"""

from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "OrgBilling Backend"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Shared secrets for machine callers (scheduler, platform admin tooling)
    CRON_SECRET: str = ""
    ADMIN_API_KEY: str = ""

    # CORS (5173 = Vite default dev server)
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001,http://localhost:5173"
    ALLOWED_METHODS: str = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
    ALLOWED_HEADERS: str = "*"

    # Rate Limiting
    # memory:// keeps counters in-process; use redis://host:port/db when running several instances
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_STANDARD: str = "100/15 minutes"
    RATE_LIMIT_STRICT: str = "20/15 minutes"
    RATE_LIMIT_UPLOAD: str = "10/60 minutes"

    # Billing
    PAYMENT_GRACE_PERIOD_DAYS: int = 7
    PRICE_PER_UNIT_P: int = 200
    # Dunning: past-due invoices are retried every N days; admins are warned on the Nth retry
    PAYMENT_RETRY_INTERVAL_DAYS: int = 3
    PAYMENT_RETRY_WARNING_AT: int = 3

    # Stripe (platform account)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PRICE_ID: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_TIMEOUT_SECONDS: float = 30.0
    STRIPE_MAX_NETWORK_RETRIES: int = 2

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "OrgBilling <billing@resend.dev>"
    FRONTEND_BILLING_URL: str = "https://app.orgbilling.com/settings/billing"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("ALLOWED_ORIGINS")
    @classmethod
    def parse_origins(cls, v: str) -> List[str]:
        """Parse comma-separated origins into a list"""
        return [origin.strip() for origin in v.split(",")]

    @field_validator("ALLOWED_METHODS")
    @classmethod
    def parse_methods(cls, v: str) -> List[str]:
        """Parse comma-separated methods into a list"""
        return [method.strip() for method in v.split(",")]

    @field_validator("PAYMENT_GRACE_PERIOD_DAYS")
    @classmethod
    def check_grace_period(cls, v: int) -> int:
        if v < 0:
            raise ValueError("PAYMENT_GRACE_PERIOD_DAYS must not be negative")
        return v

    @field_validator("PAYMENT_RETRY_INTERVAL_DAYS", "PAYMENT_RETRY_WARNING_AT")
    @classmethod
    def check_retry_settings(cls, v: int) -> int:
        if v < 1:
            raise ValueError("payment retry settings must be at least 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()
