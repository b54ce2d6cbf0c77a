"""SQLite-backed store for messages, threads, checkpoints, orders and sync state."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from mailbox_sync.core.exceptions import DuplicateMessageError
from mailbox_sync.core.models import (
    AttachmentMeta,
    ConversationThread,
    DecodedBody,
    Order,
    ParsedEnvelope,
    RemoteMessageRef,
    SyncCheckpoint,
    SyncSummary,
)
from mailbox_sync.core.threads import normalize_subject

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    """UTC ISO-8601 with fixed precision so stored timestamps sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class MailStore:
    """Persists synced mail state in SQLite.

    Tables:
    - threads / thread_keys: conversations and every key that resolves to them
    - messages: imported messages, unique per (folder, uid) and per Message-ID
    - attachments: attachment metadata (no bytes)
    - checkpoints: last processed UID per folder, never decreasing
    - orders: customer orders read by the order matcher
    - failed_messages: per-message failures eligible for retry
    - sync_runs: audit log of sync runs
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._in_transaction = False

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> MailStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into a single commit. Everything is rolled back if the block raises.

        Store methods called inside the block do not commit on their own. Nested blocks
        join the outer transaction.
        """
        if self._in_transaction:
            yield
            return

        self._in_transaction = True
        try:
            yield
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
        finally:
            self._in_transaction = False

    def _commit(self) -> None:
        if not self._in_transaction:
            self.conn.commit()

    def _rollback(self) -> None:
        # Inside a transaction only the failed statement is undone
        if not self._in_transaction:
            self.conn.rollback()

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS threads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                thread_key TEXT NOT NULL UNIQUE,
                subject TEXT NOT NULL DEFAULT '',
                subject_key TEXT NOT NULL DEFAULT '',
                participants TEXT NOT NULL DEFAULT '[]',
                last_activity TEXT,
                is_unread INTEGER NOT NULL DEFAULT 0,
                has_attachment INTEGER NOT NULL DEFAULT 0,
                message_count INTEGER NOT NULL DEFAULT 0,
                order_id INTEGER REFERENCES orders(id),
                order_match_method TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS thread_keys (
                thread_key TEXT PRIMARY KEY,
                thread_id INTEGER NOT NULL REFERENCES threads(id)
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                folder TEXT NOT NULL,
                uid INTEGER NOT NULL,
                message_id TEXT,
                thread_id INTEGER NOT NULL REFERENCES threads(id),
                subject TEXT NOT NULL DEFAULT '',
                sender_email TEXT NOT NULL DEFAULT '',
                sender_name TEXT NOT NULL DEFAULT '',
                recipients TEXT NOT NULL DEFAULT '[]',
                cc TEXT NOT NULL DEFAULT '[]',
                date TEXT NOT NULL,
                in_reply_to TEXT,
                message_references TEXT NOT NULL DEFAULT '[]',
                is_read INTEGER NOT NULL DEFAULT 0,
                body TEXT NOT NULL DEFAULT '',
                is_html INTEGER NOT NULL DEFAULT 0,
                body_unavailable INTEGER NOT NULL DEFAULT 0,
                has_attachment INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                UNIQUE (folder, uid)
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_message_id
                ON messages(message_id) WHERE message_id IS NOT NULL AND message_id != '';
            CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id);

            CREATE TABLE IF NOT EXISTS attachments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_row_id INTEGER NOT NULL REFERENCES messages(id),
                filename TEXT NOT NULL,
                content_type TEXT NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                locator TEXT NOT NULL,
                content_id TEXT,
                is_inline INTEGER NOT NULL DEFAULT 0,
                UNIQUE (message_row_id, locator)
            );

            CREATE TABLE IF NOT EXISTS checkpoints (
                folder TEXT PRIMARY KEY,
                last_uid INTEGER NOT NULL DEFAULT 0,
                uid_validity INTEGER,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_number TEXT NOT NULL UNIQUE,
                customer_email TEXT NOT NULL DEFAULT '',
                customer_name TEXT NOT NULL DEFAULT '',
                order_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT '',
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_orders_email ON orders(customer_email COLLATE NOCASE);

            CREATE TABLE IF NOT EXISTS failed_messages (
                folder TEXT NOT NULL,
                uid INTEGER NOT NULL,
                error_message TEXT NOT NULL DEFAULT '',
                attempts INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (folder, uid)
            );

            CREATE TABLE IF NOT EXISTS sync_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                folder TEXT NOT NULL,
                mode TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                messages_imported INTEGER DEFAULT 0,
                messages_skipped INTEGER DEFAULT 0,
                messages_failed INTEGER DEFAULT 0,
                bodies_unavailable INTEGER DEFAULT 0,
                last_uid INTEGER,
                final_stage TEXT
            );
        """)
        self._migrate()

    def _migrate(self) -> None:
        """Bring databases created by earlier versions up to the current schema."""
        columns = {row["name"] for row in self.conn.execute("PRAGMA table_info(threads)")}
        if "subject_key" not in columns:
            logger.info("Adding threads.subject_key column")
            self.conn.execute(
                "ALTER TABLE threads ADD COLUMN subject_key TEXT NOT NULL DEFAULT ''"
            )
            rows = self.conn.execute("SELECT id, subject FROM threads").fetchall()
            self.conn.executemany(
                "UPDATE threads SET subject_key = ? WHERE id = ?",
                [(normalize_subject(row["subject"]), row["id"]) for row in rows],
            )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_threads_subject_key "
            "ON threads(subject_key, last_activity)"
        )
        self.conn.commit()

    # ------------------------------------------------------------------
    # Messages (dedup guard)
    # ------------------------------------------------------------------

    def find_message_by_remote_id(self, ref: RemoteMessageRef) -> dict | None:
        """Find a stored message by (folder, uid), then by Message-ID."""
        row = self.conn.execute(
            "SELECT * FROM messages WHERE folder = ? AND uid = ?", (ref.folder, ref.uid)
        ).fetchone()
        if row is None and ref.message_id:
            row = self.conn.execute(
                "SELECT * FROM messages WHERE message_id = ?", (ref.message_id,)
            ).fetchone()
        return dict(row) if row else None

    def is_already_imported(self, ref: RemoteMessageRef) -> bool:
        return self.find_message_by_remote_id(ref) is not None

    def create_message(
        self,
        ref: RemoteMessageRef,
        envelope: ParsedEnvelope,
        body: DecodedBody,
        *,
        thread_id: int,
        has_attachment: bool = False,
    ) -> int:
        """Insert an imported message. Returns its row id.

        Raises:
            DuplicateMessageError: If the (folder, uid) or Message-ID is already stored.
        """
        try:
            cursor = self.conn.execute(
                """INSERT INTO messages
                   (folder, uid, message_id, thread_id, subject, sender_email, sender_name,
                    recipients, cc, date, in_reply_to, message_references, is_read,
                    body, is_html, body_unavailable, has_attachment, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    ref.folder,
                    ref.uid,
                    ref.message_id or None,
                    thread_id,
                    envelope.subject,
                    envelope.sender_email,
                    envelope.sender.name if envelope.sender else "",
                    json.dumps([addr.email for addr in envelope.to]),
                    json.dumps([addr.email for addr in envelope.cc]),
                    _iso(envelope.date),
                    envelope.in_reply_to,
                    json.dumps(list(envelope.references)),
                    int(envelope.is_read),
                    body.text,
                    int(body.is_html),
                    int(body.unavailable),
                    int(has_attachment),
                    _now(),
                ),
            )
            self._commit()
        except sqlite3.IntegrityError as e:
            self._rollback()
            raise DuplicateMessageError(
                f"Message {ref.folder}/{ref.uid} ({ref.message_id}) already stored"
            ) from e
        return cursor.lastrowid or 0

    def get_message(self, message_row_id: int) -> dict | None:
        """Get full message record by row id."""
        row = self.conn.execute(
            "SELECT * FROM messages WHERE id = ?", (message_row_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_thread_messages(self, thread_id: int) -> list[dict]:
        """Messages of a thread, oldest first."""
        rows = self.conn.execute(
            "SELECT * FROM messages WHERE thread_id = ? ORDER BY date, id", (thread_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def find_thread_by_key(self, thread_key: str) -> ConversationThread | None:
        """Find a thread by its own key or by any key registered as an alias."""
        row = self.conn.execute(
            "SELECT * FROM threads WHERE thread_key = ?", (thread_key,)
        ).fetchone()
        if row is None:
            row = self.conn.execute(
                """SELECT t.* FROM thread_keys k JOIN threads t ON t.id = k.thread_id
                   WHERE k.thread_key = ?""",
                (thread_key,),
            ).fetchone()
        return self._row_to_thread(row) if row else None

    def find_thread_by_message_id(self, message_id: str) -> ConversationThread | None:
        """Find the thread holding the stored message with this Message-ID."""
        row = self.conn.execute(
            """SELECT t.* FROM messages m JOIN threads t ON t.id = m.thread_id
               WHERE m.message_id = ?""",
            (message_id,),
        ).fetchone()
        return self._row_to_thread(row) if row else None

    def find_thread_by_subject_near(
        self, subject_key: str, when: datetime, window: timedelta
    ) -> ConversationThread | None:
        """Most recently active thread with this normalized subject, active within ``window``."""
        if not subject_key:
            return None
        row = self.conn.execute(
            """SELECT * FROM threads
               WHERE subject_key = ? AND last_activity BETWEEN ? AND ?
               ORDER BY last_activity DESC LIMIT 1""",
            (subject_key, _iso(when - window), _iso(when + window)),
        ).fetchone()
        return self._row_to_thread(row) if row else None

    def find_or_create_thread(
        self,
        thread_key: str,
        *,
        subject: str,
        subject_key: str = "",
        participants: tuple[str, ...] = (),
        last_activity: datetime | None = None,
        is_unread: bool = False,
        has_attachment: bool = False,
    ) -> tuple[ConversationThread, bool]:
        """Return the thread for ``thread_key``, creating it if absent.

        Returns:
            ``(thread, created)``.
        """
        now = _now()
        cursor = self.conn.execute(
            """INSERT OR IGNORE INTO threads
               (thread_key, subject, subject_key, participants, last_activity, is_unread,
                has_attachment, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                thread_key,
                subject,
                subject_key,
                json.dumps(list(participants)),
                _iso(last_activity),
                int(is_unread),
                int(has_attachment),
                now,
                now,
            ),
        )
        self._commit()
        thread = self.find_thread_by_key(thread_key)
        if thread is None:
            raise RuntimeError(f"Thread {thread_key!r} missing after insert")
        return thread, cursor.rowcount == 1

    def add_thread_key(self, thread_id: int, thread_key: str) -> None:
        """Register ``thread_key`` as another key resolving to ``thread_id``."""
        self.conn.execute(
            "INSERT OR IGNORE INTO thread_keys (thread_key, thread_id) VALUES (?, ?)",
            (thread_key, thread_id),
        )
        self._commit()

    def get_thread(self, thread_id: int) -> ConversationThread | None:
        row = self.conn.execute("SELECT * FROM threads WHERE id = ?", (thread_id,)).fetchone()
        return self._row_to_thread(row) if row else None

    def update_thread(self, thread: ConversationThread) -> ConversationThread:
        """Store a thread's aggregates and recount its messages."""
        self.conn.execute(
            """UPDATE threads SET
               participants = ?, last_activity = ?, is_unread = ?, has_attachment = ?,
               message_count = (SELECT COUNT(*) FROM messages WHERE thread_id = ?),
               updated_at = ?
               WHERE id = ?""",
            (
                json.dumps(list(thread.participants)),
                _iso(thread.last_activity),
                int(thread.is_unread),
                int(thread.has_attachment),
                thread.id,
                _now(),
                thread.id,
            ),
        )
        self._commit()
        return self.get_thread(thread.id) or thread

    def link_thread_order(
        self, thread_id: int, order_id: int, method: str
    ) -> ConversationThread | None:
        """Attach an order to a thread that has none yet. An existing link is kept."""
        self.conn.execute(
            """UPDATE threads SET order_id = ?, order_match_method = ?, updated_at = ?
               WHERE id = ? AND order_id IS NULL""",
            (order_id, method, _now(), thread_id),
        )
        self._commit()
        return self.get_thread(thread_id)

    @staticmethod
    def _row_to_thread(row: sqlite3.Row) -> ConversationThread:
        return ConversationThread(
            id=row["id"],
            thread_key=row["thread_key"],
            subject=row["subject"],
            participants=tuple(json.loads(row["participants"] or "[]")),
            last_activity=_parse_iso(row["last_activity"]),
            is_unread=bool(row["is_unread"]),
            has_attachment=bool(row["has_attachment"]),
            message_count=row["message_count"],
            order_id=row["order_id"],
            order_match_method=row["order_match_method"],
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def create_attachment_meta(
        self, message_row_id: int, attachments: list[AttachmentMeta]
    ) -> int:
        """Store attachment metadata for a message, skipping parts already stored.

        Returns:
            Number of newly inserted rows.
        """
        if not attachments:
            return 0
        rows = [
            (
                message_row_id,
                meta.filename,
                meta.content_type,
                meta.size,
                meta.locator,
                meta.content_id,
                int(meta.is_inline),
            )
            for meta in attachments
        ]
        before = self.conn.total_changes
        self.conn.executemany(
            """INSERT OR IGNORE INTO attachments
               (message_row_id, filename, content_type, size, locator, content_id, is_inline)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        self._commit()
        return self.conn.total_changes - before

    def get_attachments(self, message_row_id: int) -> list[AttachmentMeta]:
        rows = self.conn.execute(
            "SELECT * FROM attachments WHERE message_row_id = ? ORDER BY id",
            (message_row_id,),
        ).fetchall()
        return [
            AttachmentMeta(
                filename=row["filename"],
                content_type=row["content_type"],
                size=row["size"],
                locator=row["locator"],
                content_id=row["content_id"],
                is_inline=bool(row["is_inline"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def get_checkpoint(self, folder: str) -> SyncCheckpoint | None:
        row = self.conn.execute(
            "SELECT * FROM checkpoints WHERE folder = ?", (folder,)
        ).fetchone()
        if row is None:
            return None
        return SyncCheckpoint(
            folder=row["folder"], last_uid=row["last_uid"], uid_validity=row["uid_validity"]
        )

    def set_checkpoint(self, folder: str, uid: int, uid_validity: int | None = None) -> None:
        """Advance the folder checkpoint to ``uid``. Never moves it backwards."""
        self.conn.execute(
            """INSERT INTO checkpoints (folder, last_uid, uid_validity, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(folder) DO UPDATE SET
                   last_uid = MAX(checkpoints.last_uid, excluded.last_uid),
                   uid_validity = COALESCE(excluded.uid_validity, checkpoints.uid_validity),
                   updated_at = excluded.updated_at""",
            (folder, uid, uid_validity, _now()),
        )
        self._commit()

    def reset_checkpoint(self, folder: str, uid_validity: int | None = None) -> None:
        """Start the folder over, e.g. after the server changed UIDVALIDITY.

        Failed UIDs recorded for the folder belong to the old numbering and are dropped.
        """
        self.conn.execute(
            """INSERT INTO checkpoints (folder, last_uid, uid_validity, updated_at)
               VALUES (?, 0, ?, ?)
               ON CONFLICT(folder) DO UPDATE SET
                   last_uid = 0,
                   uid_validity = excluded.uid_validity,
                   updated_at = excluded.updated_at""",
            (folder, uid_validity, _now()),
        )
        cursor = self.conn.execute("DELETE FROM failed_messages WHERE folder = ?", (folder,))
        if cursor.rowcount:
            logger.warning(
                "Dropped %d failed UIDs of %s with the old checkpoint", cursor.rowcount, folder
            )
        self._commit()

    def list_checkpoints(self) -> list[SyncCheckpoint]:
        rows = self.conn.execute("SELECT * FROM checkpoints ORDER BY folder").fetchall()
        return [
            SyncCheckpoint(
                folder=row["folder"], last_uid=row["last_uid"], uid_validity=row["uid_validity"]
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def upsert_order(
        self,
        order_number: str,
        customer_email: str,
        order_date: datetime,
        *,
        customer_name: str = "",
        status: str = "",
    ) -> Order:
        """Insert or update an order keyed by its order number."""
        self.conn.execute(
            """INSERT INTO orders
               (order_number, customer_email, customer_name, order_date, status, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(order_number) DO UPDATE SET
                   customer_email = excluded.customer_email,
                   customer_name = excluded.customer_name,
                   order_date = excluded.order_date,
                   status = excluded.status,
                   updated_at = excluded.updated_at""",
            (order_number, customer_email.lower(), customer_name, _iso(order_date), status, _now()),
        )
        self._commit()
        order = self.get_order_by_number(order_number)
        if order is None:
            raise RuntimeError(f"Order {order_number} missing after upsert")
        return order

    def get_order_by_number(self, order_number: str) -> Order | None:
        row = self.conn.execute(
            "SELECT * FROM orders WHERE order_number = ?", (order_number,)
        ).fetchone()
        return self._row_to_order(row) if row else None

    def get_orders_by_customer_email(self, email: str) -> list[Order]:
        """Orders placed by ``email`` (case-insensitive), most recent first."""
        rows = self.conn.execute(
            """SELECT * FROM orders WHERE customer_email = ? COLLATE NOCASE
               ORDER BY order_date DESC""",
            (email.strip(),),
        ).fetchall()
        return [self._row_to_order(row) for row in rows]

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> Order:
        return Order(
            id=row["id"],
            order_number=row["order_number"],
            customer_email=row["customer_email"],
            order_date=_parse_iso(row["order_date"]) or datetime(1970, 1, 1, tzinfo=UTC),
            customer_name=row["customer_name"],
            status=row["status"],
        )

    # ------------------------------------------------------------------
    # Failure ledger
    # ------------------------------------------------------------------

    def record_failure(self, folder: str, uid: int, error_message: str) -> None:
        """Record a per-message failure, counting repeated attempts."""
        self.conn.execute(
            """INSERT INTO failed_messages (folder, uid, error_message, attempts, updated_at)
               VALUES (?, ?, ?, 1, ?)
               ON CONFLICT(folder, uid) DO UPDATE SET
                   error_message = excluded.error_message,
                   attempts = failed_messages.attempts + 1,
                   updated_at = excluded.updated_at""",
            (folder, uid, error_message, _now()),
        )
        self._commit()

    def get_failed_uids(self, folder: str) -> list[int]:
        rows = self.conn.execute(
            "SELECT uid FROM failed_messages WHERE folder = ? ORDER BY uid", (folder,)
        ).fetchall()
        return [row["uid"] for row in rows]

    def get_failure(self, folder: str, uid: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM failed_messages WHERE folder = ? AND uid = ?", (folder, uid)
        ).fetchone()
        return dict(row) if row else None

    def clear_failure(self, folder: str, uid: int) -> bool:
        """Remove a UID from the failure ledger. Returns True if it was there."""
        cursor = self.conn.execute(
            "DELETE FROM failed_messages WHERE folder = ? AND uid = ?", (folder, uid)
        )
        self._commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Runs & status
    # ------------------------------------------------------------------

    def start_run(self, folder: str, mode: str) -> int:
        """Record the start of a sync run. Returns the run_id."""
        cursor = self.conn.execute(
            "INSERT INTO sync_runs (folder, mode, started_at) VALUES (?, ?, ?)",
            (folder, mode, _now()),
        )
        self._commit()
        return cursor.lastrowid or 0

    def complete_run(self, run_id: int, summary: SyncSummary) -> None:
        """Record the completion of a sync run."""
        self.conn.execute(
            """UPDATE sync_runs SET
               completed_at = ?, mode = ?, messages_imported = ?, messages_skipped = ?,
               messages_failed = ?, bodies_unavailable = ?, last_uid = ?, final_stage = ?
               WHERE run_id = ?""",
            (
                _now(),
                summary.mode,
                summary.imported_count,
                summary.skipped_count,
                summary.failed_count,
                summary.body_unavailable_count,
                summary.last_uid,
                summary.current_stage,
                run_id,
            ),
        )
        self._commit()

    def get_run(self, run_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM sync_runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        return dict(row) if row else None

    def count_summary(self) -> dict[str, int]:
        """Row counts used by the ``status`` command."""
        queries: dict[str, str] = {
            "messages": "SELECT COUNT(*) FROM messages",
            "bodies_unavailable": "SELECT COUNT(*) FROM messages WHERE body_unavailable = 1",
            "threads": "SELECT COUNT(*) FROM threads",
            "threads_with_order": "SELECT COUNT(*) FROM threads WHERE order_id IS NOT NULL",
            "attachments": "SELECT COUNT(*) FROM attachments",
            "orders": "SELECT COUNT(*) FROM orders",
            "failed": "SELECT COUNT(*) FROM failed_messages",
        }
        counts: dict[str, Any] = {}
        for name, sql in queries.items():
            counts[name] = self.conn.execute(sql).fetchone()[0]
        return counts
