"""
Centralized Configuration Management

Loads and validates the bot configuration from environment variables and
.env files. Settings are grouped into nested sections, each with its own
environment prefix.
"""

from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "oxybot"


class MatrixConfig(BaseSettings):
    """Matrix account configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MATRIX_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    homeserver: Optional[str] = None
    user_id: Optional[str] = None
    password: Optional[str] = None
    device_name: str = APP_NAME

    # Timed out requests nio retries internally before raising
    max_timeouts: Optional[int] = 3


class BotConfig(BaseSettings):
    """Message handling behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="BOT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    command_prefix: str = "!oxy"
    greeting: str = "Well hello there "
    fallback_display_name: str = "Stranger"

    # Log our own messages alongside everybody else's
    log_own_messages: bool = True

    # Account that gets a random quote for every message it sends; unset disables it
    fool_quote_user_id: Optional[str] = None

    # Fall back to a fresh login when the session file cannot be restored
    relogin_on_session_error: bool = False


class SyncConfig(BaseSettings):
    """Sync loop configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    timeout_ms: int = 30000
    lazy_load_members: bool = True

    # Catch-up backoff: min(retry_base_delay * 2 ** attempt, retry_max_delay)
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0

    @field_validator("retry_base_delay", "retry_max_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("retry delays must not be negative")
        return value


class AppConfig(BaseSettings):
    """
    Application configuration with nested sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    data_dir: Path = Field(default_factory=lambda: Path(user_data_dir(APP_NAME)))
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    matrix: MatrixConfig = Field(default_factory=MatrixConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @property
    def session_file(self) -> Path:
        """The file where the session is persisted."""
        return self.data_dir / "session"

    @property
    def store_path(self) -> Path:
        """Directory for the encryption store."""
        return self.data_dir / "store"


def create_settings(**overrides) -> AppConfig:
    """Create a settings instance from environment variables and .env files."""
    return AppConfig(**overrides)
