"""Shared fixtures for Mailbox Sync tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from imapclient.response_types import Address, Envelope

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.models import EmailAddress, ParsedEnvelope
from mailbox_sync.storage.store import MailStore

BASE_DATE = datetime(2025, 3, 10, 9, 0, 0, tzinfo=UTC)

# BODYSTRUCTURE tuples in the shape IMAPClient returns them
PLAIN_PART = (b"text", b"plain", (b"charset", b"utf-8"), None, None, b"7bit", 42, 3, None, None)
HTML_QP_PART = (
    b"text", b"html", (b"charset", b"utf-8"), None, None, b"quoted-printable", 120, 5, None, None
)
PDF_ATTACHMENT = (
    b"application", b"pdf", (b"name", b"invoice.pdf"), None, None, b"base64", 2048, None,
    (b"attachment", (b"filename", b"invoice.pdf")), None,
)
ALTERNATIVE = ([PLAIN_PART, HTML_QP_PART], b"alternative", (b"boundary", b"b1"), None, None)
MIXED = ([ALTERNATIVE, PDF_ATTACHMENT], b"mixed", (b"boundary", b"b0"), None, None)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "test.db"


@pytest.fixture
def store(tmp_db_path: Path) -> Iterator[MailStore]:
    """Connected MailStore backed by a temporary database."""
    with MailStore(tmp_db_path) as mail_store:
        yield mail_store


@pytest.fixture
def tmp_settings(tmp_path: Path) -> MailboxSyncSettings:
    """Settings with credentials set and the database in a temporary directory."""
    return MailboxSyncSettings(
        _env_file=None,
        imap_host="imap.example.com",
        imap_user="support@example.com",
        imap_password="secret",
        database_path=tmp_path / "data" / "mail.db",
        folders=["INBOX", "Sent Items"],
        batch_size=50,
        backfill_limit=50,
        download_retry_delay_seconds=0.0,
    )


@pytest.fixture
def make_envelope() -> Callable[..., ParsedEnvelope]:
    """Factory for ParsedEnvelope with sensible defaults."""

    def _make(
        subject: str = "Where is my order?",
        sender: str = "alice@example.com",
        date: datetime = BASE_DATE,
        *,
        to: tuple[str, ...] = ("support@example.com",),
        cc: tuple[str, ...] = (),
        message_id: str | None = "<m1@example.com>",
        in_reply_to: str | None = None,
        references: tuple[str, ...] = (),
        is_read: bool = False,
    ) -> ParsedEnvelope:
        return ParsedEnvelope(
            sender=EmailAddress(sender, "Alice") if sender else None,
            subject=subject,
            date=date,
            to=tuple(EmailAddress(addr) for addr in to),
            cc=tuple(EmailAddress(addr) for addr in cc),
            message_id=message_id,
            in_reply_to=in_reply_to,
            references=references,
            is_read=is_read,
        )

    return _make


@pytest.fixture
def make_fetch_data() -> Callable[..., dict[bytes, Any]]:
    """Factory for IMAPClient-shaped fetch data for one message."""

    def _make(
        uid: int = 1,
        *,
        subject: bytes | None = b"Where is my order?",
        sender: tuple[bytes, bytes] = (b"alice", b"example.com"),
        date: datetime | None = BASE_DATE,
        message_id: bytes | None = b"<m1@example.com>",
        in_reply_to: bytes | None = None,
        references: bytes = b"",
        flags: tuple[bytes, ...] = (),
        structure: Any = PLAIN_PART,
        internal_date: datetime | None = None,
    ) -> dict[bytes, Any]:
        envelope = Envelope(
            date=date,
            subject=subject,
            from_=(Address(b"Alice", None, sender[0], sender[1]),),
            sender=(Address(b"Alice", None, sender[0], sender[1]),),
            reply_to=None,
            to=(Address(None, None, b"support", b"example.com"),),
            cc=None,
            bcc=None,
            in_reply_to=in_reply_to,
            message_id=message_id,
        )
        header = f"References: {references.decode()}\r\n\r\n".encode() if references else b"\r\n"
        return {
            b"SEQ": uid,
            b"UID": uid,
            b"FLAGS": flags,
            b"INTERNALDATE": internal_date or date,
            b"ENVELOPE": envelope,
            b"BODYSTRUCTURE": structure,
            b"BODY[HEADER.FIELDS (REFERENCES)]": header,
        }

    return _make
