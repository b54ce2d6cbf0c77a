"""Frozen dataclasses for the mailbox sync domain model."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

MatchMethod = Literal["order_number", "email_fallback", "none"]


@dataclass(frozen=True)
class RemoteMessageRef:
    """Identity of a message as seen by the IMAP server.

    Used only for dedup and checkpoint comparison, never as business identity.
    """

    folder: str
    uid: int
    message_id: str | None = None


@dataclass(frozen=True)
class EmailAddress:
    """A single mailbox address from an envelope."""

    email: str
    name: str = ""


@dataclass(frozen=True)
class ParsedEnvelope:
    """Envelope metadata derived once from the IMAP fetch response."""

    sender: EmailAddress | None
    subject: str
    date: datetime
    to: tuple[EmailAddress, ...] = ()
    cc: tuple[EmailAddress, ...] = ()
    message_id: str | None = None
    in_reply_to: str | None = None
    references: tuple[str, ...] = ()
    is_read: bool = False

    @property
    def sender_email(self) -> str:
        return self.sender.email if self.sender else ""

    @property
    def participants(self) -> tuple[str, ...]:
        """Sender, To and Cc addresses, deduplicated in first-seen order."""
        seen: dict[str, None] = {}
        for addr in (self.sender, *self.to, *self.cc):
            if addr and addr.email:
                seen.setdefault(addr.email, None)
        return tuple(seen)


@dataclass(frozen=True)
class LeafPart:
    """A non-multipart node of the BODYSTRUCTURE tree (downloadable content)."""

    locator: str
    media_type: str
    subtype: str
    encoding: str = "7bit"
    parameters: dict[str, str] = field(default_factory=dict)
    disposition: str | None = None
    disposition_filename: str | None = None
    content_id: str | None = None
    size: int = 0

    @property
    def content_type(self) -> str:
        return f"{self.media_type}/{self.subtype}"

    @property
    def charset(self) -> str | None:
        return self.parameters.get("charset")


@dataclass(frozen=True)
class MultipartNode:
    """A multipart container. The root container of a message has an empty locator."""

    locator: str
    subtype: str
    children: tuple[BodyStructureNode, ...] = ()

    @property
    def content_type(self) -> str:
        return f"multipart/{self.subtype}"


BodyStructureNode = LeafPart | MultipartNode


def iter_leaves(node: BodyStructureNode) -> Iterator[LeafPart]:
    """Depth-first walk yielding every leaf part in document order."""
    if isinstance(node, LeafPart):
        yield node
        return
    for child in node.children:
        yield from iter_leaves(child)


@dataclass(frozen=True)
class BodyPartChoice:
    """The text part selected as a message's body, with what is needed to decode it."""

    locator: str
    content_type: str
    encoding: str
    charset: str | None = None

    @property
    def is_html(self) -> bool:
        return self.content_type == "text/html"


@dataclass(frozen=True)
class DecodedBody:
    """The single winning text representation of a message.

    ``unavailable`` is set when a body part existed but could not be fetched or decoded.
    A message with no text part at all has empty text and ``unavailable=False``.
    """

    text: str = ""
    is_html: bool = False
    unavailable: bool = False


@dataclass(frozen=True)
class AttachmentMeta:
    """Attachment metadata. Bytes are fetched later, on demand, via ``locator``."""

    filename: str
    content_type: str
    size: int
    locator: str
    content_id: str | None = None
    is_inline: bool = False


@dataclass(frozen=True)
class ThreadKey:
    """Resolved grouping identity for a conversation."""

    value: str
    source: Literal["in_reply_to", "references", "subject"]


@dataclass(frozen=True)
class ConversationThread:
    """A stored conversation thread."""

    id: int
    thread_key: str
    subject: str
    participants: tuple[str, ...] = ()
    last_activity: datetime | None = None
    is_unread: bool = False
    has_attachment: bool = False
    message_count: int = 0
    order_id: int | None = None
    order_match_method: str | None = None


@dataclass(frozen=True)
class Order:
    """A customer order known to the store."""

    id: int
    order_number: str
    customer_email: str
    order_date: datetime
    customer_name: str = ""
    status: str = ""


@dataclass(frozen=True)
class OrderMatch:
    """Outcome of order matching. ``order`` is the primary match, if any."""

    order: Order | None
    method: MatchMethod
    all_matches: tuple[Order, ...] = ()


@dataclass(frozen=True)
class FetchedMessage:
    """A message's metadata and structure as fetched from the server."""

    ref: RemoteMessageRef
    envelope: ParsedEnvelope
    structure: BodyStructureNode | None
    sequence: int | None = None


@dataclass(frozen=True)
class FolderStatus:
    """Result of selecting a folder."""

    folder: str
    exists: int
    uid_validity: int | None = None
    uid_next: int | None = None


@dataclass(frozen=True)
class SyncCheckpoint:
    """Last successfully processed UID for a folder."""

    folder: str
    last_uid: int
    uid_validity: int | None = None


@dataclass
class SyncSummary:
    """Mutable summary of a sync run, also used for progress reporting."""

    folder: str
    mode: str = "incremental"
    imported_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    body_unavailable_count: int = 0
    threads_created: int = 0
    orders_linked: int = 0
    last_uid: int | None = None
    errors: list[str] = field(default_factory=list)
    current_stage: str = "idle"
    max_errors: int = 20

    def add_error(self, message: str) -> None:
        """Record an error string, keeping the list bounded."""
        if len(self.errors) < self.max_errors:
            self.errors.append(message)
