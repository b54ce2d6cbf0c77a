"""Tests for thread key resolution and ThreadResolver against a real store."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import pytest

from mailbox_sync.core.models import (
    ConversationThread,
    DecodedBody,
    ParsedEnvelope,
    RemoteMessageRef,
)
from mailbox_sync.core.threads import (
    ThreadResolver,
    merge_thread,
    normalize_subject,
    resolve_thread_key,
)
from mailbox_sync.storage.store import MailStore

from conftest import BASE_DATE

EnvelopeFactory = Callable[..., ParsedEnvelope]


def _store_message(store: MailStore, thread: ConversationThread, env: ParsedEnvelope, uid: int) -> None:
    store.create_message(
        RemoteMessageRef("INBOX", uid, env.message_id), env, DecodedBody("hi"), thread_id=thread.id
    )


# ---------------------------------------------------------------------------
# normalize_subject / resolve_thread_key
# ---------------------------------------------------------------------------


class TestNormalizeSubject:
    """Reply and forward prefixes are stripped repeatedly."""

    @pytest.mark.parametrize(
        ("subject", "expected"),
        [
            ("Re: Order status", "order status"),
            ("RE: Fwd: Re: Order status", "order status"),
            ("Fw: Order status", "order status"),
            ("AW: Order status", "order status"),
            ("re:re:Order status", "order status"),
            ("  Order status  ", "order status"),
            ("Regarding my order", "regarding my order"),
            ("", ""),
        ],
    )
    def test_normalize(self, subject: str, expected: str) -> None:
        assert normalize_subject(subject) == expected


class TestResolveThreadKey:
    """In-Reply-To beats References beats the subject."""

    def test_in_reply_to_wins(self, make_envelope: EnvelopeFactory) -> None:
        env = make_envelope(in_reply_to="<a@x>", references=("<root@x>", "<a@x>"))
        key = resolve_thread_key(env)
        assert key.value == "<a@x>"
        assert key.source == "in_reply_to"

    def test_first_reference_when_no_in_reply_to(self, make_envelope: EnvelopeFactory) -> None:
        env = make_envelope(references=("<root@x>", "<a@x>"))
        key = resolve_thread_key(env)
        assert key.value == "<root@x>"
        assert key.source == "references"

    def test_subject_fallback_is_prefixed(self, make_envelope: EnvelopeFactory) -> None:
        key = resolve_thread_key(make_envelope(subject="Re: Where is my ORDER?"))
        assert key.value == "subject:where is my order?"
        assert key.source == "subject"

    def test_reply_prefixes_share_key(self, make_envelope: EnvelopeFactory) -> None:
        first = resolve_thread_key(make_envelope(subject="Re: Re: Order #123"))
        second = resolve_thread_key(make_envelope(subject="order #123"))
        assert first == second

    def test_deterministic(self, make_envelope: EnvelopeFactory) -> None:
        env = make_envelope(references=("<root@x>",))
        assert resolve_thread_key(env) == resolve_thread_key(env)


class TestMergeThread:
    """Aggregates fold monotonically."""

    def _thread(self) -> ConversationThread:
        return ConversationThread(
            id=1,
            thread_key="k",
            subject="s",
            participants=("alice@example.com",),
            last_activity=BASE_DATE,
            is_unread=False,
            has_attachment=False,
        )

    def test_union_participants(self, make_envelope: EnvelopeFactory) -> None:
        merged = merge_thread(self._thread(), make_envelope(cc=("carol@example.com",)), False)
        assert merged.participants == (
            "alice@example.com",
            "support@example.com",
            "carol@example.com",
        )

    def test_last_activity_is_max(self, make_envelope: EnvelopeFactory) -> None:
        older = merge_thread(self._thread(), make_envelope(date=BASE_DATE - timedelta(days=1)), False)
        newer = merge_thread(self._thread(), make_envelope(date=BASE_DATE + timedelta(days=1)), False)
        assert older.last_activity == BASE_DATE
        assert newer.last_activity == BASE_DATE + timedelta(days=1)

    def test_unread_and_attachment_are_ored(self, make_envelope: EnvelopeFactory) -> None:
        merged = merge_thread(self._thread(), make_envelope(is_read=False), True)
        assert merged.is_unread is True
        assert merged.has_attachment is True
        again = merge_thread(merged, make_envelope(is_read=True), False)
        assert again.is_unread is True
        assert again.has_attachment is True

    def test_merge_is_idempotent(self, make_envelope: EnvelopeFactory) -> None:
        env = make_envelope()
        once = merge_thread(self._thread(), env, True)
        assert merge_thread(once, env, True) == once


# ---------------------------------------------------------------------------
# ThreadResolver
# ---------------------------------------------------------------------------


class TestThreadResolver:
    """Find-or-create decisions against a real SQLite store."""

    def test_creates_thread_for_new_conversation(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        assignment = ThreadResolver(store).assign(make_envelope(), has_attachment=True)
        assert assignment.created is True
        assert assignment.thread.thread_key == "subject:where is my order?"
        assert assignment.thread.has_attachment is True
        assert assignment.thread.is_unread is True

    def test_same_key_reuses_thread(self, store: MailStore, make_envelope: EnvelopeFactory) -> None:
        resolver = ThreadResolver(store)
        first = resolver.assign(make_envelope(message_id="<a@x>", references=("<root@x>",)))
        second = resolver.assign(
            make_envelope(
                message_id="<b@x>",
                references=("<root@x>",),
                date=BASE_DATE + timedelta(days=2),
            )
        )
        assert second.created is False
        assert second.thread.id == first.thread.id

    def test_reply_joins_thread_of_referenced_message(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        resolver = ThreadResolver(store)
        original = make_envelope(subject="Order 1234", message_id="<orig@x>")
        thread = resolver.assign(original).thread
        _store_message(store, thread, original, 1)

        reply = make_envelope(
            subject="Re: Order 1234",
            message_id="<reply@x>",
            in_reply_to="<orig@x>",
            references=("<orig@x>",),
            date=BASE_DATE + timedelta(hours=3),
        )
        assignment = resolver.assign(reply)
        assert assignment.created is False
        assert assignment.thread.id == thread.id
        # The reply's key now resolves directly
        assert store.find_thread_by_key("<orig@x>").id == thread.id

    def test_subject_and_recency_absorbs_message(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        resolver = ThreadResolver(store)
        first = make_envelope(subject="Refund", message_id="<a@x>", references=("<other@x>",))
        thread = resolver.assign(first).thread

        second = make_envelope(
            subject="Refund",
            message_id="<b@x>",
            in_reply_to="<unknown@x>",
            date=BASE_DATE + timedelta(seconds=30),
        )
        assert resolver.assign(second).thread.id == thread.id

    def test_reply_prefix_still_matches_recent_subject(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        resolver = ThreadResolver(store)
        thread = resolver.assign(
            make_envelope(subject="Refund", message_id="<a@x>", references=("<other@x>",))
        ).thread

        reply = make_envelope(
            subject="RE: Fwd: refund",
            message_id="<b@x>",
            in_reply_to="<unknown@x>",
            date=BASE_DATE + timedelta(seconds=45),
        )
        assignment = resolver.assign(reply)
        assert assignment.created is False
        assert assignment.thread.id == thread.id

    def test_subject_outside_window_creates_new_thread(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        resolver = ThreadResolver(store)
        thread = resolver.assign(
            make_envelope(subject="Refund", message_id="<a@x>", references=("<other@x>",))
        ).thread

        later = make_envelope(
            subject="Refund",
            message_id="<b@x>",
            in_reply_to="<unknown@x>",
            date=BASE_DATE + timedelta(minutes=5),
        )
        assignment = resolver.assign(later)
        assert assignment.created is True
        assert assignment.thread.id != thread.id

    def test_different_subjects_do_not_merge(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        resolver = ThreadResolver(store)
        a = resolver.assign(make_envelope(subject="Question A", message_id="<a@x>"))
        b = resolver.assign(make_envelope(subject="Question B", message_id="<b@x>"))
        assert a.thread.id != b.thread.id

    def test_record_message_updates_aggregates(
        self, store: MailStore, make_envelope: EnvelopeFactory
    ) -> None:
        resolver = ThreadResolver(store)
        env = make_envelope(cc=("carol@example.com",))
        thread = resolver.assign(env).thread
        _store_message(store, thread, env, 1)

        updated = resolver.record_message(thread, env, has_attachment=True)
        assert updated.message_count == 1
        assert updated.has_attachment is True
        assert "carol@example.com" in updated.participants
