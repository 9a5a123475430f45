"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Agency Portal API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    # WHY: Local SQLite keeps development zero-config; production sets a
    # postgresql:// URL which is rewritten to the asyncpg driver below.
    DATABASE_URL: str = "sqlite+aiosqlite:///./agency_portal.db"

    # URLs
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    # Email
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: Optional[str] = None  # e.g. "Studio <billing@studio.example>"
    ADMIN_NOTIFICATION_EMAIL: Optional[str] = None  # staff inbox for approvals/declines

    # Proposal lifecycle
    DEFAULT_CURRENCY: str = "CAD"
    PROPOSAL_VALIDITY_DAYS: int = 30  # expires_at = sent_at + validity
    INVOICE_DEFAULT_DUE_DAYS: int = 7  # due date of the pending invoice created with a proposal
    PROPOSAL_EXPIRY_REMINDER_DAYS: int = 3  # "expiring soon" window for reminder emails

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    PROPOSAL_EXPIRY_CRON_HOUR: int = 0  # daily sweep at HH:00 UTC

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def is_sqlite(self) -> bool:
        """
        Check whether the configured database is SQLite.

        WHY: SQLite engines reject the connection pool sizing options used
        for PostgreSQL.
        """
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
