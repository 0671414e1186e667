"""
Application settings and configuration.
All secrets are loaded from environment variables.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Dashboard Configuration
    dashboard_base_url: str  # Format: http://203.0.113.10
    dashboard_data_path: str = "/ints/client/res/data_smscdr.php"
    dashboard_login_path: str = "/ints/signin"
    dashboard_referer_path: str = "/ints/client/SMSCDRStats"
    dashboard_timezone: str = "UTC"

    # Dashboard Credentials
    login_username: str
    login_password: str
    login_success_markers: List[str] = ["Dashboard", "SMSDashboard"]

    # Session cookie seed (Format: PHPSESSID=abc123)
    session_cookie: Optional[str] = None
    session_cookie_name: str = "PHPSESSID"

    # Session cookie and /config changes are written back here
    persist_env_changes: bool = True
    env_file_path: str = ".env"

    # Telegram Configuration
    telegram_bot_token: str
    telegram_webhook_secret: Optional[str] = None
    telegram_webhook_url: Optional[str] = None  # Format: https://relay.example.com/webhook/telegram
    admin_id: Optional[int] = None  # Telegram user allowed to use /config

    # Notification layout
    footer_text: str = "⚡ DEV"
    footer_link: str = "https://t.me/"
    number_button_text: str = "♻️ Number"
    number_button_url: str = "https://t.me/"
    backup_button_text: str = "‼️ Backup"
    backup_button_url: str = "https://t.me/"

    # Polling
    poll_interval_seconds: float = 5.0
    fetch_window_minutes: int = 60
    clock_skew_tolerance_seconds: int = 60
    page_length: int = 100

    # Dedupe cache
    cache_retention_seconds: int = 3600
    max_cache_size: int = 1000

    # Network
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    request_timeout_seconds: float = 30.0
    max_login_attempts: int = 3
    max_redirects: int = 5

    # Storage - Use DATA_DIR for persistent volumes
    data_dir: str = "."
    state_file: str = "state.json"

    @property
    def database_url(self) -> str:
        """Database URL for the subscriber list."""
        return f"sqlite+aiosqlite:///{self.data_dir}/subscribers.db"

    @property
    def state_path(self) -> str:
        """Location of the durable poll state record."""
        return f"{self.data_dir}/{self.state_file}"

    @property
    def dashboard_origin(self) -> str:
        return self.dashboard_base_url.rstrip("/")

    # Application Settings
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
