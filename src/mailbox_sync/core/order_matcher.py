"""Order matcher: link messages to customer orders by order number or sender address."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from mailbox_sync.core.models import Order, OrderMatch

if TYPE_CHECKING:
    from mailbox_sync.storage.store import MailStore

logger = logging.getLogger(__name__)

# Ordered by priority; candidates keep the position of the first pattern that found them.
ORDER_NUMBER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"#(\d{3,6})\b"),
    re.compile(r"\border\s*#?(\d{3,6})\b", re.IGNORECASE),
    re.compile(r"\breturn\s+request\s*#?(\d{3,6})\b", re.IGNORECASE),
    # Also matches years and postcodes
    re.compile(r"\b(\d{4,6})\b"),
)


def extract_order_numbers(text: str) -> list[str]:
    """Return candidate order numbers found in ``text``, deduplicated, in priority order."""
    if not text:
        return []

    candidates: dict[str, None] = {}
    for pattern in ORDER_NUMBER_PATTERNS:
        for match in pattern.finditer(text):
            number = match.group(1)
            if number and len(number) >= 3:
                candidates.setdefault(number, None)
    return list(candidates)


def _most_recent_first(orders: list[Order]) -> list[Order]:
    return sorted(orders, key=lambda order: order.order_date, reverse=True)


class OrderMatcher:
    """Best-effort order lookup. An unmatched message is a normal outcome."""

    def __init__(self, store: MailStore, *, padding: int = 4) -> None:
        self._store = store
        self._padding = padding

    def match(self, subject: str, body_text: str, sender_email: str) -> OrderMatch:
        """Match by order number in subject and body, falling back to the sender's orders.

        Args:
            subject: Message subject.
            body_text: Plain-text rendering of the message body.
            sender_email: Sender address for the fallback lookup.

        Returns:
            OrderMatch with method ``order_number``, ``email_fallback`` or ``none``.
        """
        full_text = f"{subject or ''} {body_text or ''}"

        by_number = self._match_by_order_number(full_text)
        if by_number:
            ranked = _most_recent_first(by_number)
            logger.info(
                "Order match via order number: %s (%d candidate orders)",
                ranked[0].order_number, len(ranked),
            )
            return OrderMatch(ranked[0], "order_number", tuple(ranked))

        by_email = self._match_by_email(sender_email)
        if by_email:
            ranked = _most_recent_first(by_email)
            logger.info(
                "Order match via sender %s: %s (%d orders)",
                sender_email, ranked[0].order_number, len(ranked),
            )
            return OrderMatch(ranked[0], "email_fallback", tuple(ranked))

        logger.debug("No order match for sender %s", sender_email)
        return OrderMatch(None, "none")

    def match_order(
        self, text: str, sender_email: str, subject: str | None = None
    ) -> Order | None:
        """Return just the primary match, or None."""
        return self.match(subject or "", text, sender_email).order

    def _match_by_order_number(self, text: str) -> list[Order]:
        numbers = extract_order_numbers(text)
        if numbers:
            logger.debug("Order number candidates: %s", ", ".join(numbers))

        matched: dict[int, Order] = {}
        for number in numbers:
            order = self._store.get_order_by_number(number)
            if order is None:
                padded = number.zfill(self._padding)
                if padded != number:
                    order = self._store.get_order_by_number(padded)
            if order is not None:
                matched.setdefault(order.id, order)
        return list(matched.values())

    def _match_by_email(self, sender_email: str) -> list[Order]:
        if not sender_email:
            return []
        return self._store.get_orders_by_customer_email(sender_email)
