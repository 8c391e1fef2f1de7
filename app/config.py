from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Peptide Back Office"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]

    # Email/SMTP Settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""  # Sender email (defaults to SMTP_USER)
    SMTP_FROM_NAME: str = "Peptide Store"

    # Frontend URL for email links
    FRONTEND_URL: str = "http://localhost:3000"

    # Order notification recipients
    SHIPPING_MANAGER_EMAIL: str = ""
    STORE_ALERT_EMAILS: list[str] = []

    # Background scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "America/Los_Angeles"
    STOCK_ALERT_HOUR: int = 9  # Local hour for the daily stock digest
    PROMOTION_EXPIRY_INTERVAL_MINUTES: int = 15
    JOB_LOCK_TTL_SECONDS: int = 900  # A crashed run releases its lock after this

    # Inventory
    DEFAULT_LOW_STOCK_ALERT: int = 10

    # ERP sync outbox
    ERP_SYNC_ENABLED: bool = True

    @field_validator('CORS_ORIGINS', 'STORE_ALERT_EMAILS', mode='before')
    @classmethod
    def parse_string_list(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return []
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',') if item.strip()]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
