"""Configuration management for taskloop."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    sqlite_db_path: str = Field(default="data/taskloop.db", description="SQLite database file path")

    # Calendar mapping
    default_cal_id: str = Field(default="", description="Calendar polled for users without their own mapping")
    user_calendar_map: str = Field(
        default="",
        description="Per-user calendar mapping, either 'user:cal,user:cal' or JSON object/array",
    )

    # Verification
    global_verifiers: str = Field(
        default="", description="Comma-separated user ids allowed to verify any task"
    )

    # WeCom Configuration
    wecom_base_url: str = Field(default="https://qyapi.weixin.qq.com/cgi-bin", description="WeCom API base URL")
    wecom_corp_id: str | None = Field(default=None, description="WeCom corporation id")
    wecom_corp_secret: str | None = Field(default=None, description="WeCom application secret")
    wecom_agent_id: str | None = Field(default=None, description="WeCom application agent id")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Sync / reminders
    sync_interval_minutes: int = Field(default=10, description="Minutes between scheduled calendar sync runs")
    reminder_cooldown_hours: int = Field(
        default=12, description="Hours before a reminder of the same kind may be sent again"
    )
    enable_scheduler: bool = Field(default=True, description="Start the background sync scheduler on startup")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # WeCom access tokens are refreshed this long before they actually expire
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 300
    SCHEDULE_LIST_PAGE_LIMIT: int = 500

    # Lifecycle
    DUE_SOON_WINDOW_HOURS: int = 24
    DEFAULT_TASK_TITLE: str = "Untitled task"
    DEFAULT_REJECT_REASON: str = "Rejected by manager"
    MANUAL_SCHEDULE_ID_PREFIX: str = "manual"

    # Scheduler
    SYNC_JOB_ID: str = "calendar_sync"


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
