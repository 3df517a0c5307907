"""Sync orchestration between the local store and the remote snapshot.

``perform_sync`` is the single boundary where every failure is caught and
turned into a failed :class:`SyncResult` carrying the untouched local data.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..errors import CaffeineTrackerError
from ..models import Snapshot
from ..storage.store import LAST_SYNC_KEY, PersistentStore, now_ms
from .merge import MergeDecision, reconcile
from .webdav_client import WebDAVClient

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    message: str
    data: Snapshot
    timestamp: int | None = None
    status: SyncStatus = SyncStatus.SUCCESS
    decision: MergeDecision | None = None
    uploaded: bool = False

    @property
    def merged_snapshot(self) -> Snapshot:
        return self.data

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "status": self.status.value,
            "decision": self.decision.value if self.decision else None,
            "uploaded": self.uploaded,
            "timestamp": self.timestamp,
        }


class SyncEngine:
    """Synchronizes one local replica against the remote snapshot file.

    Callers must not run two syncs for the same store at once;
    ``sync_store`` serializes itself within one engine.
    """

    def __init__(
        self,
        client: WebDAVClient,
        store: PersistentStore | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """Initialize the sync engine.

        Args:
            client: WebDAV client for the remote endpoint.
            store: Local store used by ``sync_store`` and ``sync_loop``.
            clock: Returns the current time in epoch ms.
        """
        self.client = client
        self.store = store
        self._clock = clock or now_ms
        self._lock = asyncio.Lock()
        self._consecutive_failures = 0
        self._last_result: SyncResult | None = None

    async def perform_sync(self, local: Snapshot) -> SyncResult:
        """Reconcile a stamped local snapshot with the remote one.

        Args:
            local: The local snapshot, stamped with its sync timestamp.

        Returns:
            SyncResult whose ``data`` is the reconciled snapshot on success
            and the unchanged local snapshot on failure.
        """
        if not self.client.is_configured():
            logger.info("Sync skipped: WebDAV not configured")
            return SyncResult(
                success=False,
                message="Sync not configured",
                data=local,
                status=SyncStatus.NOT_CONFIGURED,
            )

        decision = None
        try:
            try:
                remote = await self.client.download()
            except CaffeineTrackerError as e:
                logger.warning(f"Download failed, treating remote as absent: {e}")
                remote = None

            outcome = reconcile(local, remote)
            decision = outcome.decision

            uploaded = False
            if outcome.decision is MergeDecision.UPLOAD_LOCAL:
                await self.client.upload(outcome.snapshot)
                uploaded = True
                message = "Local data uploaded"
            else:
                message = "Remote data adopted"

            return SyncResult(
                success=True,
                message=message,
                data=outcome.snapshot,
                timestamp=outcome.snapshot.sync_timestamp,
                decision=outcome.decision,
                uploaded=uploaded,
            )

        except Exception as e:
            logger.error(f"Sync failed: {e}", exc_info=True)
            return SyncResult(
                success=False,
                message=f"Sync failed: {e}",
                data=local,
                status=SyncStatus.FAILED,
                decision=decision,
            )

    async def sync_store(self) -> SyncResult:
        """Sync the attached store and write the result back into it.

        The local snapshot is stamped with the store's last modification
        time, so a replica that has not changed since another device
        uploaded adopts the remote state.
        """
        if self.store is None:
            raise ValueError("SyncEngine has no store attached")

        async with self._lock:
            local = self.store.read_snapshot()
            local.sync_timestamp = self.store.last_modified or local.sync_timestamp

            result = await self.perform_sync(local)

            if result.success:
                self._consecutive_failures = 0
                if result.decision is MergeDecision.ADOPT_REMOTE:
                    self.store.import_snapshot(result.data)
                self.store.record_sync(result.timestamp, self._clock())
            elif result.status is SyncStatus.FAILED:
                self._consecutive_failures += 1

            self._last_result = result
            return result

    async def sync_loop(
        self,
        interval_seconds: int = 3600,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                result = await self.sync_store()
                logger.info(f"Sync: {result.status.value}, {result.message}")
            except CaffeineTrackerError as e:
                # Write-back failed; the store keeps its in-memory state
                self._consecutive_failures += 1
                logger.error(f"Sync loop error: {e}")

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    max(interval_seconds, 3600),
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        last_sync = self.store.get_setting(LAST_SYNC_KEY) if self.store else None
        return {
            "remote_url": self.client.file_url if self.client.server else None,
            "configured": self.client.is_configured(),
            "last_sync": int(last_sync) if last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }
