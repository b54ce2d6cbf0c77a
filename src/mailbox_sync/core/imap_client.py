"""IMAP client for folder selection, UID discovery, metadata fetch and part download."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from datetime import date
from typing import TYPE_CHECKING, Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from mailbox_sync.core.exceptions import (
    AuthenticationError,
    DecodeError,
    DownloadTimeoutError,
    ImapConnectionError,
)
from mailbox_sync.core.models import FolderStatus

if TYPE_CHECKING:
    from mailbox_sync.config.settings import MailboxSyncSettings

logger = logging.getLogger(__name__)

# ENVELOPE does not carry References, so that header is fetched separately.
METADATA_FIELDS = [
    "UID",
    "FLAGS",
    "INTERNALDATE",
    "ENVELOPE",
    "BODYSTRUCTURE",
    "BODY.PEEK[HEADER.FIELDS (REFERENCES)]",
]


class ImapClient:
    """Thin wrapper around IMAPClient for one mailbox session.

    Every server error is mapped onto the package's exception taxonomy: login
    rejections become AuthenticationError, aborted sessions and socket failures become
    ImapConnectionError, and a part download that exceeds its timeout becomes
    DownloadTimeoutError.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        port: int = 993,
        use_ssl: bool = True,
        connect_timeout: float = 30.0,
        connection_factory: Callable[..., Any] = IMAPClient,
    ) -> None:
        self._host = host
        self._username = username
        self._password = password
        self._port = port
        self._use_ssl = use_ssl
        self._connect_timeout = connect_timeout
        self._connection_factory = connection_factory
        self._conn: Any = None
        self._selected_folder: str | None = None

    @classmethod
    def from_settings(cls, settings: MailboxSyncSettings) -> ImapClient:
        return cls(
            settings.imap_host,
            settings.imap_user,
            settings.imap_password.get_secret_value(),
            port=settings.imap_port,
            use_ssl=settings.imap_use_ssl,
            connect_timeout=settings.connect_timeout_seconds,
        )

    @property
    def conn(self) -> Any:
        if self._conn is None:
            raise ImapConnectionError("IMAP session not open. Call connect() first.")
        return self._conn

    def connect(self) -> None:
        """Open the session and log in."""
        logger.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
        try:
            conn = self._connection_factory(
                self._host,
                port=self._port,
                ssl=self._use_ssl,
                timeout=self._connect_timeout,
            )
            # Keep server timezones so dates compare correctly once converted to UTC
            conn.normalise_times = False
            conn.login(self._username, self._password)
        except LoginError as e:
            raise AuthenticationError(f"IMAP login rejected for {self._username}: {e}") from e
        except (IMAPClientError, OSError) as e:
            raise ImapConnectionError(f"Failed to connect to {self._host}: {e}") from e
        self._conn = conn

    def logout(self) -> None:
        """Close the session. Safe to call on a session that was never opened."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        self._selected_folder = None
        try:
            conn.logout()
        except (IMAPClientError, OSError) as e:
            logger.warning("IMAP logout failed: %s", e)

    def __enter__(self) -> ImapClient:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.logout()

    def _call(self, context: str, fn: Callable[[], Any]) -> Any:
        """Run one IMAP command, mapping library errors to ImapConnectionError."""
        try:
            return fn()
        except (IMAPClientAbortError, OSError) as e:
            raise ImapConnectionError(f"Connection lost during {context}: {e}") from e
        except IMAPClientError as e:
            raise ImapConnectionError(f"Failed to {context}: {e}") from e

    def select_folder(self, folder: str) -> FolderStatus:
        """Select a folder read-only so server flags are never touched."""
        response = self._call(
            f"select {folder}", lambda: self.conn.select_folder(folder, readonly=True)
        )
        self._selected_folder = folder
        status = FolderStatus(
            folder=folder,
            exists=int(response.get(b"EXISTS", 0)),
            uid_validity=_optional_int(response.get(b"UIDVALIDITY")),
            uid_next=_optional_int(response.get(b"UIDNEXT")),
        )
        logger.info(
            "Selected %s: %d messages, UIDVALIDITY=%s, UIDNEXT=%s",
            folder, status.exists, status.uid_validity, status.uid_next,
        )
        return status

    def search_uids_after(self, last_uid: int) -> list[int]:
        """UIDs strictly greater than ``last_uid``, ascending.

        ``n:*`` always matches the highest UID even when it is below ``n``, so the
        result is filtered again here.
        """
        uids = self._call(
            "search new messages", lambda: self.conn.search(["UID", f"{last_uid + 1}:*"])
        )
        return sorted(uid for uid in uids if uid > last_uid)

    def search_sequence_range(
        self, start: int, end: int, *, since: date | None = None
    ) -> list[int]:
        """UIDs of messages at sequence positions ``start..end``, ascending."""
        criteria: list[Any] = [f"{start}:{end}"]
        if since is not None:
            criteria += ["SINCE", since]
        uids = self._call("search sequence range", lambda: self.conn.search(criteria))
        return sorted(uids)

    def search_since(self, since: date) -> list[int]:
        """UIDs of messages with an internal date on or after ``since``, ascending."""
        uids = self._call("search by date", lambda: self.conn.search(["SINCE", since]))
        return sorted(uids)

    def fetch_metadata(
        self, uids: list[int], batch_size: int = 50
    ) -> Generator[list[tuple[int, dict[bytes, Any] | None]], None, None]:
        """Fetch envelope, flags and structure for ``uids`` in batches.

        This is a generator, so the consumer controls the pace of fetching.

        Yields:
            One list per batch of ``(uid, fetch_data)`` pairs in ascending UID order.
            ``fetch_data`` is None for a UID the server did not return.
        """
        ordered = sorted(uids)
        for start in range(0, len(ordered), batch_size):
            batch = ordered[start : start + batch_size]
            response = self._call(
                "fetch message metadata", lambda: self.conn.fetch(batch, METADATA_FIELDS)
            )
            logger.debug("Fetched metadata for %d of %d UIDs", len(response), len(batch))
            yield [(uid, response.get(uid)) for uid in batch]

    def download_part(self, uid: int, locator: str, timeout: float) -> bytes:
        """Download one body part's raw (still transfer-encoded) bytes.

        Args:
            uid: Message UID in the selected folder.
            locator: IMAP section number of the part, e.g. ``1.2``.
            timeout: Seconds to wait for the server before giving up.

        Raises:
            DownloadTimeoutError: The server did not answer within ``timeout``.
            DecodeError: The server returned no data for the part.
            ImapConnectionError: The session failed.
        """
        section = f"BODY.PEEK[{locator}]"
        sock = self.conn.socket()
        sock.settimeout(timeout)
        try:
            response = self.conn.fetch([uid], [section])
        except TimeoutError as e:
            # The stream is mid-response after a timeout, so the session is replaced
            self._reconnect()
            raise DownloadTimeoutError(
                f"Downloading part {locator} of UID {uid} timed out after {timeout:.0f}s"
            ) from e
        except (IMAPClientAbortError, OSError) as e:
            raise ImapConnectionError(
                f"Connection lost downloading part {locator} of UID {uid}: {e}"
            ) from e
        except IMAPClientError as e:
            raise ImapConnectionError(
                f"Failed to download part {locator} of UID {uid}: {e}"
            ) from e
        finally:
            if self._conn is not None:
                self._conn.socket().settimeout(self._connect_timeout)

        data = response.get(uid) or {}
        for key, value in data.items():
            if isinstance(key, bytes) and key.upper().startswith(b"BODY["):
                return value or b""
        raise DecodeError(f"Server returned no data for part {locator} of UID {uid}")

    def _reconnect(self) -> None:
        folder = self._selected_folder
        logger.warning("Reopening IMAP session after a timed-out download")
        self.logout()
        self.connect()
        if folder is not None:
            self.select_folder(folder)


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)
