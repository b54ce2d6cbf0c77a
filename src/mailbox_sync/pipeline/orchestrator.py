"""Sync orchestrator: checkpoint → search → fetch → resolve body → thread → match → persist."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from datetime import date

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.attachments import extract_attachments
from mailbox_sync.core.exceptions import (
    DuplicateMessageError,
    ImapConnectionError,
    ParseError,
)
from mailbox_sync.core.imap_client import ImapClient
from mailbox_sync.core.mime import BodyResolver
from mailbox_sync.core.models import (
    ConversationThread,
    DecodedBody,
    FolderStatus,
    OrderMatch,
    ParsedEnvelope,
    SyncCheckpoint,
    SyncSummary,
)
from mailbox_sync.core.order_matcher import OrderMatcher
from mailbox_sync.core.parser import ImapParser
from mailbox_sync.core.text import body_to_text
from mailbox_sync.core.threads import ThreadResolver
from mailbox_sync.storage.store import MailStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[MailboxSyncSettings], ImapClient]


class SyncOrchestrator:
    """Imports new messages from one mailbox into the store, one folder per run.

    Per message, in ascending UID order:
    1. Dedup:   skip anything already stored under the same UID or Message-ID
    2. Body:    download and decode the preferred text part, with bounded retry
    3. Thread:  resolve the thread key and find or create the conversation
    4. Order:   link an order when the thread has none yet
    5. Persist: message, attachment metadata, thread aggregates, then the checkpoint

    A failing message is recorded and skipped; its UID is still consumed by the
    checkpoint. A lost connection aborts the run without advancing past the message
    being processed.
    """

    def __init__(
        self,
        settings: MailboxSyncSettings | None = None,
        *,
        store: MailStore | None = None,
        client_factory: ClientFactory | None = None,
        matcher: OrderMatcher | None = None,
        on_progress: Callable[[SyncSummary], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or MailboxSyncSettings()
        self._client_factory = client_factory or ImapClient.from_settings
        self._on_progress = on_progress
        self._sleep = sleep
        self._parser = ImapParser()
        self._summary = SyncSummary(folder="")

        # Components initialized lazily
        self._store = store
        self._matcher = matcher
        self._threads: ThreadResolver | None = None

    @property
    def on_progress(self) -> Callable[[SyncSummary], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[SyncSummary], None] | None) -> None:
        self._on_progress = callback

    def _ensure_store(self) -> MailStore:
        """Open the store and build the store-backed components if not already done."""
        if self._store is None:
            self._settings.ensure_directories()
            self._store = MailStore(self._settings.database_path)
            self._store.connect()

        if self._matcher is None:
            self._matcher = OrderMatcher(
                self._store, padding=self._settings.order_number_padding
            )

        if self._threads is None:
            self._threads = ThreadResolver(self._store)

        return self._store

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_incremental_sync(
        self, folder: str | None = None, *, force_backfill: bool = False
    ) -> SyncSummary:
        """Import messages newer than the folder checkpoint.

        Falls back to a backfill of the most recent ``backfill_limit`` messages when the
        folder has never been synced, the server's UIDVALIDITY changed, or
        ``force_backfill`` is set.

        Args:
            folder: Folder to sync (defaults to the first configured folder).
            force_backfill: Ignore the checkpoint and run a backfill.

        Returns:
            SyncSummary with final counts.
        """
        folder = folder or self._settings.folders[0]
        summary = self._new_summary(folder, "incremental")

        def _work(client: ImapClient, store: MailStore) -> None:
            status = client.select_folder(folder)
            checkpoint = store.get_checkpoint(folder)
            reason = self._backfill_reason(checkpoint, status, force_backfill)

            if reason:
                logger.info("Backfilling %s: %s", folder, reason)
                if checkpoint is not None and self._validity_changed(checkpoint, status):
                    store.reset_checkpoint(folder, status.uid_validity)
                summary.mode = "backfill"
                uids = self._backfill_uids(client, status, self._settings.backfill_limit)
                timeout = self._settings.backfill_download_timeout_seconds
            else:
                assert checkpoint is not None
                summary.current_stage = "search"
                self._notify()
                uids = client.search_uids_after(checkpoint.last_uid)
                timeout = self._settings.incremental_download_timeout_seconds

            logger.info("%d messages to import from %s", len(uids), folder)
            self._process_uids(
                client, store, status, uids, timeout=timeout, advance_checkpoint=True
            )

        return self._execute(summary, _work)

    def run_backfill(
        self,
        folder: str | None = None,
        limit: int | None = None,
        *,
        since: date | None = None,
    ) -> SyncSummary:
        """Import the most recent ``limit`` messages of a folder.

        Args:
            folder: Folder to backfill (defaults to the first configured folder).
            limit: Number of messages, counted back from the newest (defaults to
                settings.backfill_limit).
            since: Only consider messages on or after this date.

        Returns:
            SyncSummary with final counts.
        """
        folder = folder or self._settings.folders[0]
        effective_limit = limit or self._settings.backfill_limit
        summary = self._new_summary(folder, "backfill")

        def _work(client: ImapClient, store: MailStore) -> None:
            status = client.select_folder(folder)
            checkpoint = store.get_checkpoint(folder)
            if checkpoint is not None and self._validity_changed(checkpoint, status):
                logger.warning("UIDVALIDITY of %s changed, resetting checkpoint", folder)
                store.reset_checkpoint(folder, status.uid_validity)

            uids = self._backfill_uids(client, status, effective_limit, since=since)
            logger.info("%d messages to backfill from %s", len(uids), folder)
            self._process_uids(
                client,
                store,
                status,
                uids,
                timeout=self._settings.backfill_download_timeout_seconds,
                advance_checkpoint=True,
            )

        return self._execute(summary, _work)

    def retry_failed(self, folder: str | None = None) -> SyncSummary:
        """Re-import every UID in the failure ledger for a folder.

        Those UIDs were already consumed by the checkpoint, so it is not touched.
        Successfully imported UIDs leave the ledger, and so do UIDs the server no longer
        returns.
        """
        folder = folder or self._settings.folders[0]
        summary = self._new_summary(folder, "retry")

        def _work(client: ImapClient, store: MailStore) -> None:
            status = client.select_folder(folder)
            uids = store.get_failed_uids(folder)
            logger.info("Retrying %d failed messages in %s", len(uids), folder)
            self._process_uids(
                client,
                store,
                status,
                uids,
                timeout=self._settings.backfill_download_timeout_seconds,
                advance_checkpoint=False,
                forget_missing=True,
            )

        return self._execute(summary, _work)

    def match_order(self, subject: str, body_text: str, sender_email: str) -> OrderMatch:
        """Run the order matcher against the store without importing anything."""
        self._ensure_store()
        assert self._matcher is not None
        return self._matcher.match(subject, body_text, sender_email)

    def get_status(self) -> dict[str, object]:
        """Store counts plus the checkpoint of every synced folder."""
        store = self._ensure_store()
        status: dict[str, object] = dict(store.count_summary())
        status["checkpoints"] = {cp.folder: cp.last_uid for cp in store.list_checkpoints()}
        return status

    def close(self) -> None:
        """Clean up resources."""
        if self._store:
            self._store.close()

    # ------------------------------------------------------------------
    # Run plumbing
    # ------------------------------------------------------------------

    def _new_summary(self, folder: str, mode: str) -> SyncSummary:
        return SyncSummary(
            folder=folder, mode=mode, max_errors=self._settings.max_reported_errors
        )

    def _execute(
        self,
        summary: SyncSummary,
        work: Callable[[ImapClient, MailStore], None],
    ) -> SyncSummary:
        """Run ``work`` inside an audited IMAP session that is always logged out."""
        self._settings.require_credentials()
        store = self._ensure_store()

        run_id = store.start_run(summary.folder, summary.mode)
        self._summary = summary
        summary.current_stage = "connect"
        self._notify()

        client: ImapClient | None = None
        try:
            client = self._client_factory(self._settings)
            client.connect()
            work(client, store)

            summary.current_stage = "complete"
            self._notify()
        except Exception as e:
            summary.current_stage = f"error: {e}"
            summary.add_error(str(e))
            self._notify()
            raise
        finally:
            if client is not None:
                self._close_session(client)
            store.complete_run(run_id, summary)

        logger.info(
            "Sync of %s (%s) complete: imported=%d skipped=%d failed=%d "
            "bodies_unavailable=%d threads_created=%d orders_linked=%d",
            summary.folder, summary.mode, summary.imported_count, summary.skipped_count,
            summary.failed_count, summary.body_unavailable_count, summary.threads_created,
            summary.orders_linked,
        )
        return summary

    @staticmethod
    def _close_session(client: ImapClient) -> None:
        try:
            client.logout()
        except Exception as e:
            logger.warning("Error closing IMAP session: %s", e)

    @staticmethod
    def _validity_changed(checkpoint: SyncCheckpoint, status: FolderStatus) -> bool:
        return (
            checkpoint.uid_validity is not None
            and status.uid_validity is not None
            and checkpoint.uid_validity != status.uid_validity
        )

    def _backfill_reason(
        self,
        checkpoint: SyncCheckpoint | None,
        status: FolderStatus,
        force_backfill: bool,
    ) -> str | None:
        if force_backfill:
            return "backfill requested"
        if checkpoint is None or checkpoint.last_uid <= 0:
            return "no checkpoint"
        if self._validity_changed(checkpoint, status):
            logger.warning(
                "UIDVALIDITY of %s changed (%s -> %s), resetting checkpoint",
                status.folder, checkpoint.uid_validity, status.uid_validity,
            )
            return "UIDVALIDITY changed"
        return None

    @staticmethod
    def _backfill_uids(
        client: ImapClient,
        status: FolderStatus,
        limit: int,
        *,
        since: date | None = None,
    ) -> list[int]:
        """UIDs of the last ``limit`` messages by sequence position."""
        if status.exists <= 0:
            return []
        start = max(1, status.exists - limit + 1)
        return client.search_sequence_range(start, status.exists, since=since)

    # ------------------------------------------------------------------
    # Per-message pipeline
    # ------------------------------------------------------------------

    def _process_uids(
        self,
        client: ImapClient,
        store: MailStore,
        status: FolderStatus,
        uids: list[int],
        *,
        timeout: float,
        advance_checkpoint: bool,
        forget_missing: bool = False,
    ) -> None:
        summary = self._summary
        folder = status.folder
        resolver = BodyResolver(
            client.download_part,
            attempts=self._settings.download_attempts,
            retry_delay=self._settings.download_retry_delay_seconds,
            sleep=self._sleep,
        )

        summary.current_stage = "import"
        self._notify()

        for batch in client.fetch_metadata(uids, batch_size=self._settings.batch_size):
            for uid, data in batch:
                if data is None and forget_missing:
                    logger.warning(
                        "UID %d no longer exists in %s, dropping it from the ledger", uid, folder
                    )
                    store.clear_failure(folder, uid)
                    continue
                try:
                    self._import_one(store, resolver, folder, uid, data, timeout)
                    store.clear_failure(folder, uid)
                except ImapConnectionError:
                    raise
                except Exception as e:
                    logger.error("Failed to import UID %d from %s: %s", uid, folder, e)
                    store.record_failure(folder, uid, str(e))
                    summary.failed_count += 1
                    summary.add_error(f"UID {uid}: {e}")

                if advance_checkpoint:
                    store.set_checkpoint(folder, uid, status.uid_validity)
                summary.last_uid = max(summary.last_uid or 0, uid)
                self._notify()

    def _import_one(
        self,
        store: MailStore,
        resolver: BodyResolver,
        folder: str,
        uid: int,
        data: dict | None,
        timeout: float,
    ) -> None:
        summary = self._summary
        assert self._threads is not None

        if data is None:
            raise ParseError("Not returned in fetch response")
        fetched = self._parser.parse(folder, uid, data)
        envelope = fetched.envelope

        if store.is_already_imported(fetched.ref):
            logger.debug("UID %d in %s already imported, skipping", uid, folder)
            summary.skipped_count += 1
            return

        body = resolver.resolve(uid, fetched.structure, timeout)
        if body.unavailable:
            summary.body_unavailable_count += 1

        attachments = extract_attachments(fetched.structure)
        has_attachment = bool(attachments)

        # Thread, order link, message, attachments and aggregates commit together or not at all
        try:
            with store.transaction():
                assignment = self._threads.assign(envelope, has_attachment=has_attachment)
                thread = assignment.thread
                order_linked = False
                if thread.order_id is None:
                    thread, order_linked = self._link_order(store, thread, envelope, body)

                message_row_id = store.create_message(
                    fetched.ref,
                    envelope,
                    body,
                    thread_id=thread.id,
                    has_attachment=has_attachment,
                )
                store.create_attachment_meta(message_row_id, attachments)
                self._threads.record_message(thread, envelope, has_attachment=has_attachment)
        except DuplicateMessageError as e:
            logger.info("UID %d in %s is a duplicate: %s", uid, folder, e)
            summary.skipped_count += 1
            return

        summary.imported_count += 1
        if assignment.created:
            summary.threads_created += 1
        if order_linked:
            summary.orders_linked += 1
            logger.info(
                "Linked thread %d to order via %s", thread.id, thread.order_match_method
            )
        logger.debug(
            "Imported UID %d from %s into thread %d (%d attachments)",
            uid, folder, thread.id, len(attachments),
        )

    def _link_order(
        self,
        store: MailStore,
        thread: ConversationThread,
        envelope: ParsedEnvelope,
        body: DecodedBody,
    ) -> tuple[ConversationThread, bool]:
        """Best effort: a failed lookup leaves the thread unlinked, never fails the import.

        Returns:
            ``(thread, linked)`` where ``linked`` is True if an order was attached.
        """
        assert self._matcher is not None
        try:
            match = self._matcher.match(
                envelope.subject, body_to_text(body), envelope.sender_email
            )
            if match.order is None:
                return thread, False
            linked = store.link_thread_order(thread.id, match.order.id, match.method)
        except sqlite3.Error as e:
            logger.warning("Order matching failed for thread %d: %s", thread.id, e)
            return thread, False

        if linked is None or linked.order_id != match.order.id:
            return linked or thread, False
        return linked, True

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._summary)
