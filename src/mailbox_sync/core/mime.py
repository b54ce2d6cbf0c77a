"""Mime body resolver: pick the preferred text part and decode its transfer encoding."""

from __future__ import annotations

import base64
import binascii
import codecs
import logging
import quopri
import time
from collections.abc import Callable

from mailbox_sync.core.exceptions import DecodeError, DownloadTimeoutError
from mailbox_sync.core.models import (
    BodyPartChoice,
    BodyStructureNode,
    DecodedBody,
    iter_leaves,
)
from mailbox_sync.core.retry import retry_call

logger = logging.getLogger(__name__)

PASSTHROUGH_ENCODINGS = frozenset({"7bit", "8bit", "binary"})
SUPPORTED_ENCODINGS = PASSTHROUGH_ENCODINGS | {"base64", "quoted-printable"}

DEFAULT_CHARSET = "utf-8"

# (uid, locator, timeout_seconds) -> raw part bytes
PartFetcher = Callable[[int, str, float], bytes]


def select_body_part(node: BodyStructureNode | None) -> BodyPartChoice | None:
    """Find the best text part in a structure tree.

    text/html wins over text/plain; within a type the first part in document order wins.
    Parts explicitly marked as attachments are never chosen.

    Returns:
        The chosen part, or None when the message has no text body.
    """
    if node is None:
        return None

    html = None
    plain = None
    for leaf in iter_leaves(node):
        if leaf.disposition == "attachment":
            continue
        if leaf.content_type == "text/html" and html is None:
            html = leaf
        elif leaf.content_type == "text/plain" and plain is None:
            plain = leaf

    chosen = html or plain
    if chosen is None:
        return None

    return BodyPartChoice(
        locator=chosen.locator,
        content_type=chosen.content_type,
        encoding=(chosen.encoding or "7bit").lower(),
        charset=chosen.charset,
    )


def is_supported_encoding(encoding: str | None) -> bool:
    return (encoding or "7bit").lower() in SUPPORTED_ENCODINGS


def decode_part(data: bytes, encoding: str | None, charset: str | None = None) -> str:
    """Decode raw part bytes according to their Content-Transfer-Encoding.

    Args:
        data: Raw bytes as returned by the server for the part.
        encoding: Transfer encoding (base64, quoted-printable, 7bit, 8bit, binary).
        charset: Declared charset; unknown or missing charsets fall back to UTF-8.

    Returns:
        Decoded text. Undecodable bytes are replaced, not raised.

    Raises:
        DecodeError: On an unsupported encoding or malformed base64.
    """
    enc = (encoding or "7bit").lower()

    if enc == "base64":
        try:
            raw = base64.b64decode(data)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Malformed base64 content: {e}") from e
    elif enc == "quoted-printable":
        # quopri drops "=\r\n" soft breaks before unescaping =XX sequences
        raw = quopri.decodestring(data)
    elif enc in PASSTHROUGH_ENCODINGS:
        raw = data
    else:
        raise DecodeError(f"Unsupported transfer encoding: {encoding}")

    return raw.decode(_codec_for(charset), errors="replace")


def _codec_for(charset: str | None) -> str:
    if not charset:
        return DEFAULT_CHARSET
    try:
        return codecs.lookup(charset).name
    except LookupError:
        logger.debug("Unknown charset %r, falling back to %s", charset, DEFAULT_CHARSET)
        return DEFAULT_CHARSET


class BodyResolver:
    """Downloads and decodes a message's preferred text part.

    Failure is local to the message: timeouts and decode errors are retried a bounded
    number of times, then the body is reported unavailable. Connection-level errors
    from ``fetch_part`` propagate.
    """

    def __init__(
        self,
        fetch_part: PartFetcher,
        *,
        attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._fetch_part = fetch_part
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._sleep = sleep

    def resolve(
        self, uid: int, structure: BodyStructureNode | None, timeout: float
    ) -> DecodedBody:
        """Return the decoded body for the message with the given UID."""
        choice = select_body_part(structure)
        if choice is None:
            logger.debug("UID %d has no text body", uid)
            return DecodedBody()

        if not is_supported_encoding(choice.encoding):
            # Retrying cannot fix an unknown encoding, so skip the download entirely
            logger.warning(
                "UID %d: unsupported transfer encoding %r on part %s, body unavailable",
                uid, choice.encoding, choice.locator,
            )
            return DecodedBody(is_html=choice.is_html, unavailable=True)

        def _download_and_decode() -> str:
            data = self._fetch_part(uid, choice.locator, timeout)
            return decode_part(data, choice.encoding, choice.charset)

        try:
            text = retry_call(
                _download_and_decode,
                attempts=self._attempts,
                delay=self._retry_delay,
                retry_on=(DownloadTimeoutError, DecodeError),
                context=f"Body part {choice.locator} of UID {uid}",
                sleep=self._sleep,
            )
        except (DownloadTimeoutError, DecodeError) as e:
            logger.warning("UID %d: body unavailable: %s", uid, e)
            return DecodedBody(is_html=choice.is_html, unavailable=True)

        return DecodedBody(text=text, is_html=choice.is_html)
