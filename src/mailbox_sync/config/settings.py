"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailbox_sync.core.exceptions import ConfigurationError


class MailboxSyncSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MAILSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # IMAP connection
    imap_host: str = ""
    imap_port: int = 993
    imap_user: str = ""
    imap_password: SecretStr = SecretStr("")
    imap_use_ssl: bool = True
    connect_timeout_seconds: float = 30.0

    # Folders synced by the scheduler and the refresh trigger
    folders: list[str] = ["INBOX", "Sent Items"]

    # Database
    database_path: Path = Path("data/mailbox_sync.db")

    # Fetch sizing
    batch_size: int = 50
    backfill_limit: int = 50

    # Body download timeouts & retry
    backfill_download_timeout_seconds: float = 60.0
    incremental_download_timeout_seconds: float = 10.0
    download_attempts: int = 3
    download_retry_delay_seconds: float = 1.0

    # Triggers
    refresh_min_interval_seconds: float = 30.0
    schedule_interval_seconds: float = 300.0

    # Reporting
    max_reported_errors: int = 20

    # Order matching
    order_number_padding: int = 4

    # Logging
    log_level: str = "INFO"

    @property
    def mailbox_key(self) -> str:
        """Identity of the mailbox, used for single-flight locking and rate limiting."""
        return f"{self.imap_user.strip()}@{self.imap_host.strip()}"

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless host, user and password are all set."""
        missing = [
            name
            for name, value in (
                ("imap_host", self.imap_host.strip()),
                ("imap_user", self.imap_user.strip()),
                ("imap_password", self.imap_password.get_secret_value().strip()),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"IMAP credentials not configured: missing {', '.join(missing)}"
            )

    def ensure_directories(self) -> None:
        """Create the database directory if it doesn't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
