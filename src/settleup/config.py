"""Configuration management for SettleUp."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SETTLEUP_",
        case_sensitive=False,
        extra="ignore",
    )

    # Display settings (amounts are always integer smallest units)
    currency_code: str = "JPY"

    # Acting user for CLI commands when --user is not given
    default_user_id: str | None = None

    # Logging
    log_level: str = "INFO"

    # Database path
    database_path: Path = Path.home() / ".settleup" / "settleup.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the SETTLEUP_* environment "
            f"variables or your .env file.\n"
            f"Error: {e}"
        ) from e
