"""
Application configuration using pydantic-settings.
Loads configuration from environment variables and .env file.
"""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supports loading from .env file for local development.
    """

    # Microsoft Graph app registration (client credentials flow)
    GRAPH_CLIENT_ID: str = Field(
        default="",
        description="Application (client) ID of the directory app registration"
    )
    GRAPH_CLIENT_SECRET: str = Field(
        default="",
        description="Client secret of the directory app registration"
    )
    GRAPH_AUTHORITY_HOST: str = Field(
        default="https://login.microsoftonline.com",
        description="OAuth authority host used to acquire app-only tokens"
    )
    GRAPH_API_BASE_URL: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Base URL of the Microsoft Graph API"
    )
    GRAPH_REQUEST_TIMEOUT_SECONDS: float = Field(
        default=120.0,
        description="Timeout for a single Graph page request"
    )

    # Database Configuration
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./signin_sync.db",
        description="Database URL (postgresql+asyncpg:// or sqlite+aiosqlite://)"
    )

    # Sign-in sync defaults
    SIGNIN_BACKFILL_HOURS: int = Field(
        default=7 * 24,
        description="Lookback window for tenants that have never synced"
    )
    SIGNIN_MIN_SYNC_INTERVAL_MINUTES: int = Field(
        default=360,
        description="Non-forced syncs are skipped if the last sync is newer than this (0 disables)"
    )
    SIGNIN_MAX_PAGES: int = Field(
        default=5,
        description="Default page cap for a single sync invocation (1-10)"
    )
    SIGNIN_PAGE_SIZE: int = Field(
        default=100,
        description="Default records requested per page (1-100)"
    )

    # Sync status / deadline
    SYNC_REQUEST_DEADLINE_SECONDS: float = Field(
        default=180.0,
        description="How long an attended sync request waits before reporting a timeout"
    )
    SYNC_STATUS_RETENTION_SECONDS: float = Field(
        default=30.0,
        description="How long finished sync entries remain visible to pollers"
    )
    SYNC_STALE_AFTER_SECONDS: float = Field(
        default=600.0,
        description="Active entries without updates for this long are reported stale"
    )

    # Background sync
    BACKGROUND_SYNC_ENABLED: bool = Field(
        default=True,
        description="Run the periodic sign-in sync for all enabled tenants"
    )
    BACKGROUND_SYNC_INTERVAL_MINUTES: int = Field(default=30)
    BACKGROUND_SYNC_INITIAL_DELAY_SECONDS: int = Field(default=120)
    BACKGROUND_SYNC_BATCH_SIZE: int = Field(default=3)
    BACKGROUND_SYNC_TIMEOUT_SECONDS: float = Field(default=120.0)
    BACKGROUND_SYNC_MAX_PAGES: int = Field(default=3)
    BACKGROUND_SYNC_BACKFILL_HOURS: int = Field(default=24)
    BACKGROUND_SYNC_MAX_RETRIES: int = Field(default=3)

    # Environment
    ENVIRONMENT: str = Field(
        default="development",
        description="Application environment: development, staging, production"
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def graph_configured(self) -> bool:
        """Whether app credentials for the directory service are present."""
        return bool(self.GRAPH_CLIENT_ID and self.GRAPH_CLIENT_SECRET)

    @property
    def database_url_sync(self) -> str:
        """Get synchronous database URL for Alembic migrations."""
        return (
            self.DATABASE_URL
            .replace("postgresql+asyncpg://", "postgresql://")
            .replace("sqlite+aiosqlite://", "sqlite://")
        )

    def __repr__(self) -> str:
        """
        Custom repr that masks sensitive values.

        Prevents accidental exposure of credentials in logs.
        """
        sensitive_fields = {
            "GRAPH_CLIENT_SECRET",
            "DATABASE_URL",
        }

        fields = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if field_name in sensitive_fields and value:
                # Mask sensitive values
                if isinstance(value, str) and len(value) > 8:
                    masked = value[:4] + "***" + value[-4:]
                else:
                    masked = "***"
                fields.append(f"{field_name}={masked!r}")
            else:
                fields.append(f"{field_name}={value!r}")

        return f"Settings({', '.join(fields)})"


# Create singleton settings instance
settings = Settings()
