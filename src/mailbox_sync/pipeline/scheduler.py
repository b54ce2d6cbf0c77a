"""Sync triggers: rate-limited manual refresh and a periodic background loop."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.exceptions import RefreshRateLimitedError, SyncInProgressError
from mailbox_sync.core.models import SyncSummary
from mailbox_sync.pipeline.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Runs syncs for one configured mailbox, never two at once.

    Both triggers share a per-mailbox lock. A manual refresh that finds the lock held
    raises SyncInProgressError; a scheduled tick that finds it held is skipped, not queued.
    """

    def __init__(
        self,
        settings: MailboxSyncSettings,
        orchestrator_factory: Callable[[], SyncOrchestrator] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._orchestrator_factory = orchestrator_factory or (
            lambda: SyncOrchestrator(settings)
        )
        self._clock = clock

        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._last_refresh: dict[str, float] = {}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def mailbox_key(self) -> str:
        return self._settings.mailbox_key

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def is_syncing(self) -> bool:
        return self._lock_for(self.mailbox_key).locked()

    def refresh(self, folders: list[str] | None = None) -> list[SyncSummary]:
        """User-triggered incremental sync of every folder.

        Raises:
            RefreshRateLimitedError: The previous accepted refresh was too recent.
            SyncInProgressError: A sync for this mailbox is already running.
        """
        key = self.mailbox_key
        interval = self._settings.refresh_min_interval_seconds
        now = self._clock()

        with self._registry_lock:
            last = self._last_refresh.get(key)
            if last is not None and now - last < interval:
                retry_after = interval - (now - last)
                logger.info("Refresh for %s rate limited (%.0fs left)", key, retry_after)
                raise RefreshRateLimitedError(retry_after)

        lock = self._lock_for(key)
        if not lock.acquire(blocking=False):
            raise SyncInProgressError(f"A sync for {key} is already running")

        try:
            with self._registry_lock:
                self._last_refresh[key] = now
            return self._sync_folders(folders, raise_errors=True)
        finally:
            lock.release()

    def run_scheduled(self) -> list[SyncSummary] | None:
        """One scheduled tick. Returns None when skipped because a sync is running."""
        key = self.mailbox_key
        lock = self._lock_for(key)
        if not lock.acquire(blocking=False):
            logger.info("Sync for %s already in progress, skipping scheduled run", key)
            return None

        try:
            return self._sync_folders(None, raise_errors=False)
        finally:
            lock.release()

    def _sync_folders(
        self, folders: list[str] | None, *, raise_errors: bool
    ) -> list[SyncSummary]:
        summaries: list[SyncSummary] = []
        orchestrator = self._orchestrator_factory()
        try:
            for folder in folders or self._settings.folders:
                try:
                    summaries.append(orchestrator.run_incremental_sync(folder))
                except Exception as e:
                    if raise_errors:
                        raise
                    logger.error("Scheduled sync of %s failed: %s", folder, e)
        finally:
            orchestrator.close()
        return summaries

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Run a sync now and then every ``schedule_interval_seconds`` in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="mailbox-sync-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(
            "Scheduled sync started (every %.0fs)", self._settings.schedule_interval_seconds
        )

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduled sync stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop()`` is called. Returns True once stopped."""
        return self._stop_event.wait(timeout)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_scheduled()
            except Exception as e:
                logger.error("Scheduled sync tick failed: %s", e)
            if self._stop_event.wait(self._settings.schedule_interval_seconds):
                break
