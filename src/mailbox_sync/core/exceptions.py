"""Custom exceptions for the mailbox sync engine."""


class MailboxSyncError(Exception):
    """Base exception for all mailbox sync errors."""


class ConfigurationError(MailboxSyncError):
    """Required configuration (e.g. IMAP credentials) is missing or invalid."""


class ImapConnectionError(MailboxSyncError):
    """The IMAP session failed at the connection level. Fatal for the current run."""


class AuthenticationError(ImapConnectionError):
    """IMAP login was rejected."""


class DownloadTimeoutError(MailboxSyncError):
    """A single body-part download exceeded its timeout."""


class DecodeError(MailboxSyncError):
    """Failed to decode MIME part content."""


class ParseError(MailboxSyncError):
    """Failed to convert IMAP fetch data into the message model."""


class DuplicateMessageError(MailboxSyncError):
    """The store already holds a message with the same remote identity."""


class RefreshRateLimitedError(MailboxSyncError):
    """A manual refresh was requested too soon after the previous one."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Refresh rate limited, retry after {retry_after:.0f}s")
        self.retry_after = retry_after


class SyncInProgressError(MailboxSyncError):
    """A sync is already running for this mailbox."""
