"""Attachment extractor: enumerate attachment and inline parts without downloading them."""

from __future__ import annotations

import mimetypes

from mailbox_sync.core.models import AttachmentMeta, BodyStructureNode, LeafPart, iter_leaves

DEFAULT_CONTENT_TYPE = "application/octet-stream"
BODY_TEXT_TYPES = frozenset({"text/plain", "text/html"})


def extract_attachments(node: BodyStructureNode | None) -> list[AttachmentMeta]:
    """Collect every part whose disposition is ``attachment`` or ``inline``.

    An inline text/plain or text/html part with no filename is message body, not an
    attachment, and is left out.
    """
    if node is None:
        return []
    return [_to_meta(leaf) for leaf in iter_leaves(node) if _is_attachment(leaf)]


def has_attachments(node: BodyStructureNode | None) -> bool:
    return bool(extract_attachments(node))


def _is_attachment(leaf: LeafPart) -> bool:
    if leaf.disposition == "attachment":
        return True
    if leaf.disposition == "inline":
        named = bool(leaf.disposition_filename or leaf.parameters.get("name"))
        return named or leaf.content_type not in BODY_TEXT_TYPES
    return False


def _to_meta(leaf: LeafPart) -> AttachmentMeta:
    filename = (
        leaf.disposition_filename
        or leaf.parameters.get("name")
        or _placeholder_name(leaf)
    )

    content_type = leaf.content_type if leaf.media_type else DEFAULT_CONTENT_TYPE
    if content_type == DEFAULT_CONTENT_TYPE:
        guessed, _ = mimetypes.guess_type(filename)
        content_type = guessed or DEFAULT_CONTENT_TYPE

    return AttachmentMeta(
        filename=filename,
        content_type=content_type,
        size=leaf.size,
        locator=leaf.locator,
        content_id=leaf.content_id,
        is_inline=leaf.disposition == "inline",
    )


def _placeholder_name(leaf: LeafPart) -> str:
    extension = mimetypes.guess_extension(leaf.content_type) or ""
    return f"part-{leaf.locator}{extension}"
