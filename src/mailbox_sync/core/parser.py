"""IMAP fetch parser: envelope decoding, References extraction, BODYSTRUCTURE tree building."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.parser import BytesHeaderParser
from typing import Any
from urllib.parse import unquote

from mailbox_sync.core.exceptions import ParseError
from mailbox_sync.core.models import (
    BodyStructureNode,
    EmailAddress,
    FetchedMessage,
    LeafPart,
    MultipartNode,
    ParsedEnvelope,
    RemoteMessageRef,
)

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
SEEN_FLAG = b"\\Seen"

_MESSAGE_ID = re.compile(r"<[^<>\s]+>")
_RFC2231_KEY = re.compile(r"^([^*]+)(?:\*(\d+))?(\*)?$")


class ImapParser:
    """Parses IMAPClient fetch responses into FetchedMessage objects."""

    def parse(self, folder: str, uid: int, data: dict[bytes, Any]) -> FetchedMessage:
        """Parse one message's fetch data.

        Args:
            folder: Folder the message was fetched from.
            uid: Message UID.
            data: IMAPClient fetch dict (ENVELOPE, FLAGS, INTERNALDATE, BODYSTRUCTURE and
                the References header fields).

        Returns:
            Parsed FetchedMessage.

        Raises:
            ParseError: If the fetch data is unusable.
        """
        try:
            envelope = self._extract_envelope(data)
            raw_structure = data.get(b"BODYSTRUCTURE")
            structure = self.build_structure(raw_structure) if raw_structure else None

            return FetchedMessage(
                ref=RemoteMessageRef(folder=folder, uid=uid, message_id=envelope.message_id),
                envelope=envelope,
                structure=structure,
                sequence=data.get(b"SEQ"),
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Failed to parse UID {uid} in {folder}: {e}") from e

    # ------------------------------------------------------------------
    # Envelope
    # ------------------------------------------------------------------

    def _extract_envelope(self, data: dict[bytes, Any]) -> ParsedEnvelope:
        env = data.get(b"ENVELOPE")
        flags = data.get(b"FLAGS") or ()

        if env is None:
            raise ParseError("Fetch response has no ENVELOPE")

        senders = self._addresses(env.from_) or self._addresses(env.sender)
        subject = _decode_words(env.subject) or "(no subject)"

        return ParsedEnvelope(
            sender=senders[0] if senders else None,
            subject=subject,
            date=self._pick_date(env.date, data.get(b"INTERNALDATE")),
            to=tuple(self._addresses(env.to)),
            cc=tuple(self._addresses(env.cc)),
            message_id=_first_message_id(env.message_id),
            in_reply_to=_first_message_id(env.in_reply_to),
            references=self._extract_references(data),
            is_read=SEEN_FLAG in flags,
        )

    @staticmethod
    def _addresses(raw: Any) -> list[EmailAddress]:
        addresses: list[EmailAddress] = []
        for addr in raw or ():
            mailbox = _to_str(addr.mailbox)
            host = _to_str(addr.host)
            if not mailbox or not host:
                # Group syntax markers carry no host
                continue
            addresses.append(
                EmailAddress(email=f"{mailbox}@{host}".lower(), name=_decode_words(addr.name))
            )
        return addresses

    @staticmethod
    def _extract_references(data: dict[bytes, Any]) -> tuple[str, ...]:
        for key, value in data.items():
            if isinstance(key, bytes) and key.upper().startswith(b"BODY[HEADER.FIELDS"):
                headers = BytesHeaderParser().parsebytes(value or b"")
                return tuple(_MESSAGE_ID.findall(str(headers.get("References", ""))))
        return ()

    @staticmethod
    def _pick_date(envelope_date: datetime | None, internal_date: datetime | None) -> datetime:
        """Prefer the Date header, then INTERNALDATE, then the epoch. Always UTC-aware."""
        for value in (envelope_date, internal_date):
            if isinstance(value, datetime):
                if value.tzinfo is None:
                    return value.replace(tzinfo=UTC)
                return value.astimezone(UTC)
        logger.warning("Message has no usable date, using epoch")
        return EPOCH

    # ------------------------------------------------------------------
    # BODYSTRUCTURE
    # ------------------------------------------------------------------

    def build_structure(self, raw: Any) -> BodyStructureNode:
        """Convert an IMAP BODYSTRUCTURE into a tree with IMAP section locators.

        A single-part message's body is section ``1``. The root multipart container has an
        empty locator; its children are ``1..n`` and nested children ``p.1..p.n``.
        """
        if _is_multipart(raw):
            return self._build_multipart(raw, "")
        return self._build_leaf(raw, "1")

    def _build_node(self, raw: Any, locator: str) -> BodyStructureNode:
        if _is_multipart(raw):
            return self._build_multipart(raw, locator)
        return self._build_leaf(raw, locator)

    def _build_multipart(self, raw: Any, locator: str) -> MultipartNode:
        if isinstance(raw[0], list):
            parts, rest = list(raw[0]), list(raw[1:])
        else:
            idx = 0
            while idx < len(raw) and isinstance(raw[idx], (tuple, list)):
                idx += 1
            parts, rest = list(raw[:idx]), list(raw[idx:])

        subtype = _to_str(rest[0]).lower() if rest else "mixed"
        children = tuple(
            self._build_node(part, f"{locator}.{i}" if locator else str(i))
            for i, part in enumerate(parts, start=1)
        )
        return MultipartNode(locator=locator, subtype=subtype or "mixed", children=children)

    def _build_leaf(self, raw: Any, locator: str) -> LeafPart:
        fields = list(raw)
        media_type = _to_str(_at(fields, 0)).lower() or "application"
        subtype = _to_str(_at(fields, 1)).lower() or "octet-stream"
        parameters = _parse_params(_at(fields, 2))
        content_id = _to_str(_at(fields, 3)) or None
        encoding = _to_str(_at(fields, 5)).lower() or "7bit"
        size = _to_int(_at(fields, 6))

        # Extension data follows the type-specific fields: text has a line count,
        # message/rfc822 has envelope, body and line count.
        if media_type == "text":
            ext = 8
        elif (media_type, subtype) == ("message", "rfc822"):
            ext = 10
        else:
            ext = 7
        disposition, disposition_params = _parse_disposition(_at(fields, ext + 1))

        return LeafPart(
            locator=locator,
            media_type=media_type,
            subtype=subtype,
            encoding=encoding,
            parameters=parameters,
            disposition=disposition,
            disposition_filename=disposition_params.get("filename"),
            content_id=content_id,
            size=size,
        )


def _is_multipart(raw: Any) -> bool:
    return bool(raw) and isinstance(raw[0], (list, tuple))


def _at(fields: list[Any], index: int) -> Any:
    return fields[index] if index < len(fields) else None


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _to_int(value: Any) -> int:
    try:
        return int(_to_str(value) or 0)
    except ValueError:
        return 0


def _decode_words(value: Any) -> str:
    """Decode RFC 2047 encoded-words (=?utf-8?q?...?=) into text."""
    text = _to_str(value)
    if "=?" not in text:
        return text
    try:
        return str(make_header(decode_header(text)))
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        logger.debug("Could not decode header value %r", text)
        return text


def _first_message_id(value: Any) -> str | None:
    text = _to_str(value).strip()
    if not text:
        return None
    match = _MESSAGE_ID.search(text)
    return match.group(0) if match else text


def _parse_disposition(raw: Any) -> tuple[str | None, dict[str, str]]:
    if not raw:
        return None, {}
    if isinstance(raw, (bytes, str)):
        return _to_str(raw).lower() or None, {}
    kind = _to_str(raw[0]).lower() or None
    params = _parse_params(raw[1]) if len(raw) > 1 else {}
    return kind, params


def _parse_params(raw: Any) -> dict[str, str]:
    """Flatten a (key, value, key, value, ...) parameter list, decoding RFC 2231/2047 values."""
    if not raw or not isinstance(raw, (tuple, list)):
        return {}

    params: dict[str, str] = {}
    extended: dict[str, list[tuple[int, str, bool]]] = {}

    for key, value in zip(raw[::2], raw[1::2]):
        name = _to_str(key).lower()
        text = _to_str(value)
        match = _RFC2231_KEY.match(name)
        if match and (match.group(2) is not None or match.group(3)):
            segment = (int(match.group(2) or 0), text, bool(match.group(3)))
            extended.setdefault(match.group(1), []).append(segment)
        else:
            params[name] = _decode_words(text)

    for name, segments in extended.items():
        segments.sort()
        joined = "".join(text for _, text, _ in segments)
        if segments[0][2]:
            charset, _, rest = joined.partition("'")
            _language, _, encoded = rest.partition("'")
            try:
                joined = unquote(encoded, encoding=charset or "utf-8", errors="replace")
            except LookupError:
                joined = unquote(encoded, errors="replace")
        params[name] = joined

    return params
