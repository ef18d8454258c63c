"""Application configuration with environment variables."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"

    # Database
    DATABASE_URL: str = "postgresql+psycopg://localhost/papwa"

    # Token Encryption (Fernet key for OAuth/API tokens at rest)
    FERNET_KEY: str = ""

    # Local wall clock used for sync horizons and lead appointment times
    TIMEZONE: str = "UTC"

    # Outbound HTTP (must stay finite)
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # Google Calendar OAuth
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_CALENDAR_NAME: str = "Joy"

    # Zoho Bigin OAuth
    ZOHO_CLIENT_ID: str = ""
    ZOHO_CLIENT_SECRET: str = ""
    ZOHO_ACCOUNTS_URL: str = "https://accounts.zoho.com"
    ZOHO_API_URL: str = "https://www.zohoapis.com"

    # SalesRabbit (API token auth)
    SALESRABBIT_API_URL: str = "https://api.salesrabbit.com"

    # Worker
    WORKER_POLL_INTERVAL_SECONDS: float = 10.0
    WORKER_BATCH_SIZE: int = 10
    SYNC_QUEUE_CONCURRENCY: int = 3
    NOTIFICATION_QUEUE_CONCURRENCY: int = 5
    WORKER_QUEUES: str = ""  # comma-separated; empty = all queues

    # Shared secret for the integration management endpoints (X-Internal-Secret)
    INTERNAL_SECRET: str = ""

    # Error tracking
    SENTRY_DSN: str = ""

    @property
    def is_dev(self) -> bool:
        return self.ENV.lower() in ("dev", "development", "test")

    @property
    def zoho_api_base(self) -> str:
        return f"{self.ZOHO_API_URL.rstrip('/')}/bigin/v2"


@lru_cache
def get_settings() -> Settings:
    return Settings()
