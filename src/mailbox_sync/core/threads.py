"""Conversation threading: thread key resolution and find-or-create of threads."""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from mailbox_sync.core.models import ConversationThread, ParsedEnvelope, ThreadKey

if TYPE_CHECKING:
    from mailbox_sync.storage.store import MailStore

logger = logging.getLogger(__name__)

SUBJECT_KEY_PREFIX = "subject:"
SUBJECT_RECENCY_WINDOW = timedelta(seconds=60)

_REPLY_PREFIX = re.compile(r"^\s*(?:re|fwd?|aw)\s*:\s*", re.IGNORECASE)


def normalize_subject(subject: str) -> str:
    """Strip any number of leading Re:/Fwd:/Fw:/Aw: prefixes, trim and lowercase."""
    text = subject or ""
    while True:
        stripped = _REPLY_PREFIX.sub("", text, count=1)
        if stripped == text:
            break
        text = stripped
    return text.strip().lower()


def resolve_thread_key(envelope: ParsedEnvelope) -> ThreadKey:
    """Pick the grouping identity for a message.

    Priority: In-Reply-To, then the first References entry, then the normalized subject
    behind a fixed prefix so it can never collide with a real Message-ID.
    """
    in_reply_to = (envelope.in_reply_to or "").strip()
    if in_reply_to:
        return ThreadKey(in_reply_to, "in_reply_to")

    for ref in envelope.references:
        if ref.strip():
            return ThreadKey(ref.strip(), "references")

    return ThreadKey(SUBJECT_KEY_PREFIX + normalize_subject(envelope.subject), "subject")


def merge_thread(
    thread: ConversationThread, envelope: ParsedEnvelope, has_attachment: bool
) -> ConversationThread:
    """Fold one member message into a thread's aggregates.

    Participants are unioned, last activity is the max observed date, unread and
    attachment flags are ORed. Merging the same message twice is a no-op.
    """
    participants = dict.fromkeys(thread.participants)
    participants.update(dict.fromkeys(envelope.participants))

    last_activity = thread.last_activity
    if last_activity is None or envelope.date > last_activity:
        last_activity = envelope.date

    return dataclasses.replace(
        thread,
        participants=tuple(participants),
        last_activity=last_activity,
        is_unread=thread.is_unread or not envelope.is_read,
        has_attachment=thread.has_attachment or has_attachment,
    )


@dataclass(frozen=True)
class ThreadAssignment:
    """The thread a message belongs to, and whether it was created for it."""

    thread: ConversationThread
    key: ThreadKey
    created: bool = False


class ThreadResolver:
    """Owns every thread lookup and creation decision.

    Lookup order for a message:
    1. a thread already registered under the message's key
    2. for header keys, the thread holding the referenced message
    3. a thread registered under the message's own Message-ID (a reply arrived first)
    4. a thread with the same normalized subject active within 60 seconds of the message
    5. a new thread
    Whenever the thread was found by anything other than its own key, the key is
    registered as an alias so later messages with the same key land in the same thread.
    """

    def __init__(
        self,
        store: MailStore,
        *,
        recency_window: timedelta = SUBJECT_RECENCY_WINDOW,
    ) -> None:
        self._store = store
        self._recency_window = recency_window

    def resolve_key(self, envelope: ParsedEnvelope) -> ThreadKey:
        return resolve_thread_key(envelope)

    def assign(self, envelope: ParsedEnvelope, *, has_attachment: bool = False) -> ThreadAssignment:
        """Find or create the thread for a message. Does not fold the message in yet."""
        key = self.resolve_key(envelope)

        thread = self._store.find_thread_by_key(key.value)
        if thread is not None:
            return ThreadAssignment(thread, key)

        thread = self._find_related(envelope, key)
        if thread is not None:
            self._store.add_thread_key(thread.id, key.value)
            return ThreadAssignment(thread, key)

        thread, created = self._store.find_or_create_thread(
            key.value,
            subject=envelope.subject,
            subject_key=normalize_subject(envelope.subject),
            participants=envelope.participants,
            last_activity=envelope.date,
            is_unread=not envelope.is_read,
            has_attachment=has_attachment,
        )
        if created:
            logger.debug("Created thread %d for key %s", thread.id, key.value)
        return ThreadAssignment(thread, key, created=created)

    def record_message(
        self, thread: ConversationThread, envelope: ParsedEnvelope, *, has_attachment: bool
    ) -> ConversationThread:
        """Fold a persisted message into its thread and store the new aggregates."""
        merged = merge_thread(thread, envelope, has_attachment)
        return self._store.update_thread(merged)

    def _find_related(
        self, envelope: ParsedEnvelope, key: ThreadKey
    ) -> ConversationThread | None:
        if key.source != "subject":
            thread = self._store.find_thread_by_message_id(key.value)
            if thread is not None:
                return thread

        if envelope.message_id:
            thread = self._store.find_thread_by_key(envelope.message_id)
            if thread is not None:
                return thread

        thread = self._store.find_thread_by_subject_near(
            normalize_subject(envelope.subject), envelope.date, self._recency_window
        )
        if thread is not None:
            logger.info(
                "Absorbed message into thread %d by subject and recency (%r)",
                thread.id, envelope.subject,
            )
        return thread
