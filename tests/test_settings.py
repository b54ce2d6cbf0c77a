"""Tests for MailboxSyncSettings."""

from __future__ import annotations

from pathlib import Path

import pytest

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.exceptions import ConfigurationError


class TestDefaults:
    def test_defaults(self) -> None:
        settings = MailboxSyncSettings(_env_file=None)
        assert settings.imap_port == 993
        assert settings.imap_use_ssl is True
        assert settings.folders == ["INBOX", "Sent Items"]
        assert settings.backfill_limit == 50
        assert settings.backfill_download_timeout_seconds == 60.0
        assert settings.incremental_download_timeout_seconds == 10.0
        assert settings.download_attempts == 3
        assert settings.refresh_min_interval_seconds == 30.0

    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAILSYNC_IMAP_HOST", "imap.shop.test")
        monkeypatch.setenv("MAILSYNC_BACKFILL_LIMIT", "200")
        monkeypatch.setenv("MAILSYNC_FOLDERS", '["INBOX"]')

        settings = MailboxSyncSettings(_env_file=None)

        assert settings.imap_host == "imap.shop.test"
        assert settings.backfill_limit == 200
        assert settings.folders == ["INBOX"]

    def test_password_hidden_in_repr(self) -> None:
        settings = MailboxSyncSettings(_env_file=None, imap_password="hunter2")
        assert "hunter2" not in repr(settings)
        assert settings.imap_password.get_secret_value() == "hunter2"


class TestCredentials:
    def test_complete_credentials(self, tmp_settings: MailboxSyncSettings) -> None:
        tmp_settings.require_credentials()

    def test_missing_fields_listed(self) -> None:
        settings = MailboxSyncSettings(_env_file=None, imap_host="imap.example.com")
        with pytest.raises(ConfigurationError, match="imap_user, imap_password"):
            settings.require_credentials()

    def test_blank_values_count_as_missing(self) -> None:
        settings = MailboxSyncSettings(
            _env_file=None, imap_host="  ", imap_user="u", imap_password="p"
        )
        with pytest.raises(ConfigurationError, match="imap_host"):
            settings.require_credentials()

    def test_mailbox_key(self, tmp_settings: MailboxSyncSettings) -> None:
        assert tmp_settings.mailbox_key == "support@example.com@imap.example.com"


class TestDirectories:
    def test_ensure_directories(self, tmp_path: Path) -> None:
        settings = MailboxSyncSettings(
            _env_file=None, database_path=tmp_path / "nested" / "dir" / "mail.db"
        )
        settings.ensure_directories()
        assert (tmp_path / "nested" / "dir").is_dir()
