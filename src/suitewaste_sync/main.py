"""SuiteWaste Sync - service composition and command-line entry point."""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import __version__
from .compliance import compute_epr_fee
from .config import Config, setup_logging
from .connectivity import ConnectivityMonitor, NetworkPoller
from .errors import SyncError
from .models import LedgerDraft, SyncReport, TransactionDraft, new_record_id
from .notifications import OSNotifier
from .sync import (
    BackgroundRetryAgent,
    Notifier,
    OfflineQueue,
    RetryConfig,
    SyncApiClient,
    SyncCoordinator,
    ViewInvalidator,
)

logger = logging.getLogger(__name__)


class SyncService:
    """Owns the queue, transport, connectivity signal and scheduler.

    Host applications call ``record_capture`` for user actions and feed
    platform events through ``on_connectivity_change`` / ``on_foreground``.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        queue: Optional[OfflineQueue] = None,
        client: Optional[SyncApiClient] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        retry_agent: Optional[BackgroundRetryAgent] = None,
        invalidator: Optional[ViewInvalidator] = None,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.config = config or Config.load()
        self.queue = queue or OfflineQueue()

        if retry_agent is None and self.config.background_retry.enabled:
            retry_agent = BackgroundRetryAgent(
                retention_minutes=self.config.background_retry.retention_minutes
            )
        self.retry_agent = retry_agent

        self.client = client or SyncApiClient(
            api_url=self.config.sync.api_url,
            device_id=self.config.device_id,
            timeout=self.config.sync.timeout,
            retry_config=RetryConfig(
                max_retries=self.config.sync.max_retries,
                base_delay=1.0,
                max_delay=10.0,
            ),
            retry_agent=self.retry_agent,
        )

        self.monitor = monitor or ConnectivityMonitor()
        self.monitor.set_pending_count(self.queue.pending_count)
        self.monitor.set_trigger(self.trigger_sync)
        self.monitor.add_listener(self._on_network_change)

        self.coordinator = SyncCoordinator(
            queue=self.queue,
            client=self.client,
            connectivity=self.monitor,
            invalidator=invalidator,
            notifier=notifier if notifier is not None else OSNotifier(),
        )

        self.scheduler = scheduler or BackgroundScheduler()
        self.poller: Optional[NetworkPoller] = None
        if self.config.connectivity.enabled:
            self.poller = NetworkPoller(
                self.monitor,
                host=self.config.connectivity.probe_host,
                port=self.config.connectivity.probe_port,
                interval=self.config.connectivity.poll_interval_seconds,
            )

    # -- capture ----------------------------------------------------------

    def record_capture(
        self,
        supplier_id: str,
        material_type: str,
        weight_kg: float,
        amount: float,
        notes: Optional[str] = None,
        photo_attachment_key: Optional[str] = None,
        payment_method: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> tuple[str, str]:
        """Queue a weight capture and the transaction settling it.

        The ledger id is generated up front so the transaction can reference
        it before either record reaches the server.

        Returns:
            (ledger_id, transaction_id)
        """
        ledger_id = new_record_id()
        ledger_draft = LedgerDraft(
            id=ledger_id,
            supplier_id=supplier_id,
            material_type=material_type,
            weight_kg=weight_kg,
            operator_id=self.config.operator_id,
            device_id=self.config.device_id,
            notes=notes,
            photo_attachment_key=photo_attachment_key,
        )
        ledger_draft.validate()
        transaction_draft = TransactionDraft(
            ledger_entry_id=ledger_id,
            amount=amount,
            epr_fee=compute_epr_fee(weight_kg, material_type, self.config.compliance),
            currency=currency or self.config.compliance.currency,
            payment_method=payment_method,
        )
        transaction_draft.validate()

        self.queue.enqueue_ledger_record(ledger_draft)
        transaction_id = self.queue.enqueue_transaction_record(transaction_draft)
        return ledger_id, transaction_id

    def pending_count(self) -> int:
        return self.queue.pending_count()

    # -- triggers ---------------------------------------------------------

    def sync_now(self) -> SyncReport:
        """Run a sync pass on the calling thread (manual sync action)."""
        return self.coordinator.sync_all()

    def trigger_sync(self, reason: str = "manual") -> None:
        """Schedule a one-off sync, or run it inline when not started."""
        if self.scheduler.running:
            self.scheduler.add_job(
                self.coordinator.trigger,
                args=[reason],
                id="immediate_sync",
                replace_existing=True,
            )
        else:
            self.coordinator.trigger(reason)

    def on_connectivity_change(self, is_online: bool) -> None:
        self.monitor.on_connectivity_change(is_online)

    def on_foreground(self) -> None:
        self.monitor.on_foreground()

    def _on_network_change(self, is_online: bool) -> None:
        if is_online and self.retry_agent is not None:
            if self.scheduler.running:
                self.scheduler.add_job(
                    self.replay_deferred, id="deferred_replay", replace_existing=True
                )
            else:
                self.replay_deferred()

    def replay_deferred(self) -> None:
        """Replay deferred sync submissions, if any."""
        if self.retry_agent is None:
            return
        try:
            stats = self.retry_agent.replay()
            if stats.replayed or stats.expired:
                logger.info(
                    f"Background replay: {stats.replayed} delivered, "
                    f"{stats.expired} expired, {stats.remaining} remaining"
                )
        except Exception as e:
            logger.exception(f"Background replay error: {e}")

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler, the replay job and the network poller."""
        if self.retry_agent is not None:
            self.scheduler.add_job(
                self.replay_deferred,
                trigger=IntervalTrigger(
                    seconds=self.config.background_retry.replay_interval_seconds
                ),
                id="replay_job",
                replace_existing=True,
            )
        self.scheduler.start()
        if self.poller is not None:
            self.poller.start()

        if self.monitor.is_online and self.queue.pending_count() > 0:
            self.trigger_sync("startup")
        logger.info(f"SuiteWaste Sync {__version__} started ({self.queue.pending_count()} pending)")

    def stop(self) -> None:
        """Stop polling and shut down the scheduler if running."""
        if self.poller is not None:
            self.poller.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def get_status(self) -> dict:
        status = self.coordinator.get_status()
        status["deferred_requests"] = self.retry_agent.size() if self.retry_agent else 0
        return status

    def close(self) -> None:
        self.stop()
        self.client.close()
        self.queue.close()
        if self.retry_agent is not None:
            self.retry_agent.close()

    def __enter__(self) -> "SyncService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _print_report(report: SyncReport) -> None:
    if report.skipped_reason:
        print(f"Sync skipped: {report.skipped_reason}")
        return
    for outcome in report.outcomes:
        print(
            f"{outcome.kind.value}: {len(outcome.confirmed_ids)}/{outcome.submitted} confirmed"
        )
        for record_id, reason in outcome.failures:
            print(f"  {record_id}: {reason}")
        if outcome.transport_error:
            print(f"  transport error: {outcome.transport_error}")
        if outcome.rejected:
            print(f"  rejected: {outcome.rejected}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="suitewaste-sync", description="Offline capture sync")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--api-url", type=str, default=None, help="Override the sync API URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show pending counts and connectivity")
    sub.add_parser("sync", help="Run one sync pass now")
    sub.add_parser("run", help="Run in the background, syncing on reconnect")

    capture = sub.add_parser("capture", help="Queue a weight capture and its transaction")
    capture.add_argument("--supplier", required=True)
    capture.add_argument("--material", required=True)
    capture.add_argument("--weight", type=float, required=True, help="Weight in kg")
    capture.add_argument("--amount", type=float, required=True)
    capture.add_argument("--notes", default=None)
    capture.add_argument("--payment-method", default=None)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = Config.load()
    if args.api_url:
        config.sync.api_url = args.api_url
    setup_logging(args.debug or config.debug_mode)

    with SyncService(config=config) as service:
        if args.command == "capture":
            try:
                ledger_id, transaction_id = service.record_capture(
                    supplier_id=args.supplier,
                    material_type=args.material,
                    weight_kg=args.weight,
                    amount=args.amount,
                    notes=args.notes,
                    payment_method=args.payment_method,
                )
            except SyncError as e:
                print(f"Capture rejected: {e}", file=sys.stderr)
                return 1
            print(f"Queued ledger entry {ledger_id} and transaction {transaction_id}")
            return 0

        if args.command == "status":
            service.on_connectivity_change(service.client.is_reachable())
            print(json.dumps(service.get_status(), indent=2))
            return 0

        if args.command == "sync":
            service.monitor.on_connectivity_change(service.client.is_reachable())
            report = service.sync_now()
            _print_report(report)
            return 0 if report.success else 1

        stop_event = threading.Event()

        def _signal_handler(signum, frame) -> None:
            logger.info(f"Received signal {signum}, shutting down")
            stop_event.set()

        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)

        service.start()
        stop_event.wait()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
