"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="order-reconciler", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum accepted request body in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Square
    square_access_token: str = Field(default="", description="Square API access token")
    square_environment: str = Field(default="sandbox", description="Square environment (sandbox/production)")
    square_location_id: str = Field(default="", description="Square location used by order sync jobs")
    square_api_version: str = Field(default="2024-01-18", description="Square-Version header value")
    square_webhook_signature_key: str = Field(default="", description="Square webhook signature key")
    square_webhook_notification_url: str = Field(
        default="",
        description="Notification URL registered with Square; included in the signed payload when set",
    )
    square_request_timeout_seconds: float = Field(default=5.0, description="Timeout for Square API calls")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Orders <orders@example.com>",
        description="From address for transactional emails",
    )
    store_name: str = Field(default="Our Store", description="Store name used in customer emails")

    # Alerts
    slack_webhook_url: str = Field(default="", description="Slack incoming webhook for operational alerts")
    alert_timeout_seconds: float = Field(default=5.0, description="Timeout for alert delivery")

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:5173",
        description="Frontend application URL for email links",
    )

    # Admin jobs
    admin_api_key: str = Field(default="", description="Bearer key required by admin job endpoints")
    order_sync_lookback_hours: int = Field(default=24, description="Window used by the recent order sync job")
    reconciliation_lookback_days: int = Field(default=7, description="Window used by the reconciliation check")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def square_base_url(self) -> str:
        """Square REST API base URL for the configured environment."""
        if self.square_environment.strip().lower() == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
