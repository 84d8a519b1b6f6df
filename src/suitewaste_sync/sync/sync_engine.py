"""Sync coordinator - reconciles the offline queues with the remote store."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ..errors import SyncAuthError, SyncClientError, TransportError
from ..models import PendingRecord, RecordKind, SyncOutcome, SyncReport
from .protocols import (
    ConnectivityProtocol,
    Notifier,
    QueueStoreProtocol,
    SyncClientProtocol,
    ViewInvalidator,
)

logger = logging.getLogger(__name__)

# Read views that depend on confirmed server-side data
INVALIDATED_VIEWS = ["ledger", "transactions", "suppliers", "dashboard"]

_KIND_LABELS = {
    RecordKind.LEDGER: "Ledger",
    RecordKind.TRANSACTION: "Transaction",
}


class SyncCoordinator:
    """Runs sync passes: snapshot each queue, submit, prune what was confirmed.

    At most one pass runs at a time. A pass requested while another is in
    flight is dropped, not queued; records still pending will be picked up by
    the next trigger.
    """

    def __init__(
        self,
        queue: QueueStoreProtocol,
        client: SyncClientProtocol,
        connectivity: ConnectivityProtocol,
        invalidator: Optional[ViewInvalidator] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.queue = queue
        self.client = client
        self.connectivity = connectivity
        self.invalidator = invalidator
        self.notifier = notifier
        self._pass_lock = threading.Lock()
        self._last_sync: Optional[datetime] = None
        self._last_report: Optional[SyncReport] = None

    @property
    def is_syncing(self) -> bool:
        return self._pass_lock.locked()

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self._last_report

    def sync_all(self) -> SyncReport:
        """Perform one sync pass over both queues.

        1. Skip if offline or nothing is pending
        2. For each non-empty queue, snapshot it and submit the snapshot
        3. Prune exactly the confirmed ids; everything else stays queued
        4. Invalidate dependent views once if anything was pruned
        """
        if not self.connectivity.is_online:
            logger.debug("Sync skipped: offline")
            return SyncReport(skipped_reason="offline")

        if self.queue.pending_count() == 0:
            return SyncReport(skipped_reason="empty")

        if not self._pass_lock.acquire(blocking=False):
            logger.debug("Sync skipped: a pass is already in flight")
            return SyncReport(skipped_reason="in_flight")

        try:
            report = SyncReport()
            for kind in (RecordKind.LEDGER, RecordKind.TRANSACTION):
                snapshot = self.queue.snapshot(kind)
                if not snapshot:
                    continue
                report.outcomes.append(self._sync_kind(kind, snapshot))

            if report.pruned > 0:
                self._invalidate_views()
                self._notify(
                    "Sync complete",
                    f"{report.pruned} pending item(s) synced successfully",
                )

            self._last_sync = datetime.now(timezone.utc)
            self._last_report = report
            logger.info(
                f"Sync pass done: {report.confirmed_count} confirmed, "
                f"{self.queue.pending_count()} still pending"
            )
            return report
        finally:
            self._pass_lock.release()

    def _sync_kind(self, kind: RecordKind, snapshot: list[PendingRecord]) -> SyncOutcome:
        """Submit one snapshot and prune whatever the server confirmed."""
        label = _KIND_LABELS[kind]
        try:
            outcome = self.client.submit(kind, snapshot)
        except TransportError as e:
            logger.warning(f"{label} sync failed, {len(snapshot)} records stay queued: {e}")
            self._notify(f"{label} sync failed", str(e))
            return SyncOutcome(kind=kind, submitted=len(snapshot), transport_error=str(e))
        except SyncAuthError as e:
            logger.warning(f"{label} sync not authorized: {e}")
            self._notify(f"{label} sync failed", "Re-login required")
            return SyncOutcome(kind=kind, submitted=len(snapshot), rejected=str(e))
        except SyncClientError as e:
            logger.error(f"{label} batch rejected: {e}")
            self._notify(f"{label} sync failed", str(e))
            return SyncOutcome(kind=kind, submitted=len(snapshot), rejected=str(e))

        # Only ids from this snapshot can be confirmed by this response
        snapshot_ids = {r.id for r in snapshot}
        confirmed = [i for i in outcome.confirmed_ids if i in snapshot_ids]
        outcome.pruned = self.queue.prune_confirmed(kind, confirmed)

        for record_id, reason in outcome.failures:
            logger.warning(f"{label} record {record_id} rejected by server: {reason}")

        return outcome

    def _invalidate_views(self) -> None:
        if self.invalidator is None:
            return
        try:
            self.invalidator.invalidate(list(INVALIDATED_VIEWS))
        except Exception:
            logger.exception("View invalidation failed")

    def _notify(self, title: str, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(title, message)
        except Exception:
            logger.exception("Notifier failed")

    def trigger(self, reason: str = "manual") -> Optional[SyncReport]:
        """Entry point for connectivity, foreground and manual triggers.

        Never raises; a failing pass leaves records queued for the next one.
        """
        logger.debug(f"Sync triggered ({reason})")
        try:
            return self.sync_all()
        except Exception:
            logger.exception(f"Sync pass triggered by {reason} failed")
            return None

    def get_status(self) -> dict:
        """Get current sync status."""
        return {
            "online": self.connectivity.is_online,
            "pending": self.queue.pending_count(),
            "syncing": self.is_syncing,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
        }
