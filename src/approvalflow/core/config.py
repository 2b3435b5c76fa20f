"""Application configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="approvalflow", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # API
    api_v1_prefix: str = Field(default="/api/v1", description="API v1 prefix")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="CORS allowed origins",
    )

    # Workflow
    flow_definition_path: str | None = Field(
        default=None,
        description="Path to a JSON flow definition (built-in flow if unset)",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log output format"
    )

    # Notifications - Slack
    slack_webhook_url: str | None = Field(
        default=None, description="Slack incoming webhook URL"
    )
    slack_channel: str | None = Field(
        default=None, description="Slack channel override (optional)"
    )
    notification_timeout_seconds: float = Field(
        default=10.0, gt=0, description="HTTP timeout for notification delivery"
    )

    @computed_field
    @property
    def webhook_notifications_enabled(self) -> bool:
        """Whether notifications go to the Slack webhook instead of the log."""
        return bool(self.slack_webhook_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
