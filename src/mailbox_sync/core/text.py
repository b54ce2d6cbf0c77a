"""Plain-text rendering of a decoded body, used as input to order matching."""

from __future__ import annotations

import html
import logging
import re

import trafilatura

from mailbox_sync.core.models import DecodedBody

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")


def body_to_text(body: DecodedBody) -> str:
    """Return readable text for a body.

    Strategy:
    1. Plain-text bodies are returned as-is.
    2. HTML is extracted via trafilatura (favor_recall=True for email layouts).
    3. If trafilatura fails or finds nothing, tags are stripped instead.
    """
    if not body.text:
        return ""
    if not body.is_html:
        return body.text

    result: str | None = None
    try:
        result = trafilatura.extract(
            body.text,
            output_format="txt",
            favor_recall=True,
            include_links=False,
            include_tables=True,
        )
    except Exception as e:
        logger.warning("Trafilatura extraction failed: %s", e)
        result = None

    if not result:
        result = _strip_tags(body.text)
    return result


def _strip_tags(markup: str) -> str:
    text = html.unescape(_TAG.sub(" ", markup))
    return _WHITESPACE.sub(" ", text).strip()
