"""
Configuration management for WeRead Sync Service.

Application wiring (database, endpoints, logging) comes from environment
variables. User-editable sync settings and credentials live in the state
store and are read through the repository.
"""

import os
import secrets
import time
from enum import Enum
from typing import Optional, TYPE_CHECKING
from pydantic import BaseModel, Field
from dotenv import load_dotenv

if TYPE_CHECKING:
    from weread_sync.storage.repository import StateRepository

load_dotenv()

DAY_MS = 24 * 60 * 60 * 1000
SESSION_LIFETIME_DAYS = 29


class TimeWindow(str, Enum):
    """How far back a sync looks when a book has no checkpoint."""
    LAST_1_DAY = "1d"
    LAST_7_DAYS = "7d"
    LAST_14_DAYS = "14d"
    LAST_30_DAYS = "30d"
    ALL = "all"

    @property
    def duration_ms(self) -> Optional[int]:
        """Window length in milliseconds, None for ``all``."""
        days = {
            TimeWindow.LAST_1_DAY: 1,
            TimeWindow.LAST_7_DAYS: 7,
            TimeWindow.LAST_14_DAYS: 14,
            TimeWindow.LAST_30_DAYS: 30,
        }.get(self)
        return days * DAY_MS if days else None


class SyncSettings(BaseModel):
    """User sync settings, persisted in the state store."""

    time_window: TimeWindow = Field(default=TimeWindow.ALL, description="Look-back window for books without a checkpoint")
    poll_interval_minutes: int = Field(default=15, gt=0, description="Auto sync interval in minutes")
    merge_notes_and_highlights: bool = Field(default=False, description="One card per book instead of one per item")
    auto_sync_enabled: bool = Field(default=False, description="Run background syncs on an interval")
    last_global_sync_at: int = Field(default=0, ge=0, description="Last completed full sync (epoch millis)")
    inter_request_delay_ms: int = Field(default=100, ge=0, description="Delay before each WeRead request")


class DestinationCredentials(BaseModel):
    """Writeathon API credentials."""

    api_token: str = Field(default="", description="Writeathon API token")
    user_id: str = Field(default="", description="Writeathon user id")
    username: Optional[str] = Field(default=None, description="Writeathon username")

    @property
    def is_complete(self) -> bool:
        return bool(self.api_token and self.user_id)


class SourceSession(BaseModel):
    """WeRead session cookie."""

    value: str
    expires_at: int = Field(description="Expiry (epoch millis)")

    @classmethod
    def create(cls, cookie: str, expires_in_days: int = SESSION_LIFETIME_DAYS) -> "SourceSession":
        expires_at = int(time.time() * 1000) + expires_in_days * DAY_MS
        return cls(value=cookie, expires_at=expires_at)

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at < now_ms


class AppConfig(BaseModel):
    """Configuration for the service process."""

    database_url: str = Field(
        default="sqlite:///data/weread-sync.db",
        description="Database connection URL"
    )
    weread_base_url: str = Field(default="https://i.weread.qq.com", description="WeRead API URL")
    writeathon_base_url: str = Field(default="https://api.writeathon.cn", description="Writeathon API URL")
    request_timeout: int = Field(default=30, description="HTTP timeout in seconds")
    port: int = Field(default=5000, description="Web server port")
    secret_key: str = Field(
        default_factory=lambda: os.getenv("SECRET_KEY", secrets.token_hex(32)),
        description="Secret key for Flask sessions"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="console or json")


def get_config_from_env() -> AppConfig:
    """Load configuration from environment variables."""
    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/weread-sync.db"),
        weread_base_url=os.getenv("WEREAD_BASE_URL", "https://i.weread.qq.com"),
        writeathon_base_url=os.getenv("WRITEATHON_BASE_URL", "https://api.writeathon.cn"),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30")),
        port=int(os.getenv("PORT", "5000")),
        secret_key=os.getenv("SECRET_KEY", secrets.token_hex(32)),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "console"),
    )


class ConfigManager:
    """
    Reads and writes user settings through the state repository.
    """

    def __init__(self, repository: "StateRepository"):
        self.repository = repository

    def get_settings(self) -> SyncSettings:
        return self.repository.get_sync_settings()

    def update_settings(self, **changes) -> SyncSettings:
        """
        Apply partial changes to the stored sync settings.

        Raises:
            pydantic.ValidationError: If a value is out of range
        """
        current = self.repository.get_sync_settings()
        updated = SyncSettings.model_validate({**current.model_dump(), **changes})
        self.repository.save_sync_settings(updated)
        return updated

    def is_configured(self) -> bool:
        """Check that both Writeathon credentials and a WeRead session are present."""
        credentials = self.repository.get_credentials()
        session = self.repository.get_session()
        return credentials.is_complete and session is not None
