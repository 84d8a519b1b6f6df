"""Offline queue for ledger and transaction records not yet confirmed remotely."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from ..config import Config, QUEUE_SLOT_NAME
from ..errors import QueueStoreError, ValidationError
from ..models import (
    LedgerDraft,
    PendingLedgerRecord,
    PendingRecord,
    PendingTransactionRecord,
    RecordKind,
    TransactionDraft,
)

logger = logging.getLogger(__name__)

_LEDGER_KEY = "pendingLedgerEntries"
_TRANSACTION_KEY = "pendingTransactions"


class OfflineQueue:
    """SQLite-backed store for the two pending record queues.

    Both queues live in memory and are mirrored to a single key-value slot.
    Every mutation writes the full snapshot in one transaction before the
    in-memory state is replaced, so a failed write changes nothing.
    """

    def __init__(self, db_path: Optional[Path] = None, slot_name: str = QUEUE_SLOT_NAME):
        """Initialize the offline queue.

        Args:
            db_path: Path to SQLite database file
            slot_name: Key of the slot holding the serialized queues
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "offline_queue.db"

        self.db_path = Path(db_path)
        self.slot_name = slot_name
        self._local = threading.local()
        self._lock = threading.Lock()
        self._ledger: list[PendingLedgerRecord] = []
        self._transactions: list[PendingTransactionRecord] = []
        self._init_db()
        self._load()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def _load(self) -> None:
        """Load both queues from the durable slot."""
        with self._cursor() as cursor:
            cursor.execute("SELECT value FROM kv_store WHERE name = ?", (self.slot_name,))
            row = cursor.fetchone()
        if row is None:
            return

        try:
            state = json.loads(row["value"])
            self._ledger = [PendingLedgerRecord.from_dict(r) for r in state.get(_LEDGER_KEY, [])]
            self._transactions = [
                PendingTransactionRecord.from_dict(r) for r in state.get(_TRANSACTION_KEY, [])
            ]
        except (ValueError, TypeError, AttributeError) as e:
            raise QueueStoreError(f"Queue slot '{self.slot_name}' is unreadable: {e}") from e

        if self._ledger or self._transactions:
            logger.info(
                f"Loaded offline queue: {len(self._ledger)} ledger entries, "
                f"{len(self._transactions)} transactions pending"
            )

    def _write(
        self,
        ledger: list[PendingLedgerRecord],
        transactions: list[PendingTransactionRecord],
    ) -> None:
        """Persist a full snapshot of both queues."""
        value = json.dumps(
            {
                _LEDGER_KEY: [r.to_dict() for r in ledger],
                _TRANSACTION_KEY: [r.to_dict() for r in transactions],
            }
        )
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO kv_store (name, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (self.slot_name, value, now),
                )
        except sqlite3.Error as e:
            raise QueueStoreError(f"Failed to persist offline queue: {e}") from e

    def enqueue_ledger_record(self, draft: Union[LedgerDraft, dict]) -> str:
        """Queue a weight capture.

        Args:
            draft: Ledger draft; may carry a pre-generated ``id``

        Returns:
            The record identifier
        """
        if isinstance(draft, dict):
            draft = LedgerDraft.from_dict(draft)
        draft.validate()
        record = PendingLedgerRecord.from_draft(draft)

        with self._lock:
            if any(r.id == record.id for r in self._ledger):
                raise ValidationError(f"Ledger record {record.id} is already queued")
            ledger = self._ledger + [record]
            self._write(ledger, self._transactions)
            self._ledger = ledger

        logger.info(
            f"Queued ledger entry {record.id}: {record.weight_kg:.2f}kg of {record.material_type}"
        )
        return record.id

    def enqueue_transaction_record(self, draft: Union[TransactionDraft, dict]) -> str:
        """Queue a transaction settling a ledger record.

        The compliance fee must already be computed by the caller.

        Returns:
            The record identifier
        """
        if isinstance(draft, dict):
            draft = TransactionDraft.from_dict(draft)
        draft.validate()
        record = PendingTransactionRecord.from_draft(draft)

        with self._lock:
            transactions = self._transactions + [record]
            self._write(self._ledger, transactions)
            self._transactions = transactions

        logger.info(f"Queued transaction {record.id} for ledger entry {record.ledger_entry_id}")
        return record.id

    def prune_confirmed(self, kind: RecordKind, identifiers: Iterable[str]) -> int:
        """Remove confirmed records from a queue.

        Identifiers not present are ignored.

        Returns:
            Number of records removed
        """
        confirmed = set(identifiers)
        if not confirmed:
            return 0

        with self._lock:
            if kind == RecordKind.LEDGER:
                remaining = [r for r in self._ledger if r.id not in confirmed]
                removed = len(self._ledger) - len(remaining)
                if removed:
                    self._write(remaining, self._transactions)
                    self._ledger = remaining
            else:
                remaining = [r for r in self._transactions if r.id not in confirmed]
                removed = len(self._transactions) - len(remaining)
                if removed:
                    self._write(self._ledger, remaining)
                    self._transactions = remaining

        if removed:
            logger.debug(f"Pruned {removed} confirmed {kind.value} records")
        return removed

    def snapshot(self, kind: RecordKind) -> list[PendingRecord]:
        """Copy of the current queue for ``kind``, oldest first."""
        with self._lock:
            if kind == RecordKind.LEDGER:
                return list(self._ledger)
            return list(self._transactions)

    def pending_ledger_records(self) -> list[PendingLedgerRecord]:
        return self.snapshot(RecordKind.LEDGER)

    def pending_transaction_records(self) -> list[PendingTransactionRecord]:
        return self.snapshot(RecordKind.TRANSACTION)

    def pending_count(self) -> int:
        """Total number of records awaiting confirmation."""
        with self._lock:
            return len(self._ledger) + len(self._transactions)

    def is_empty(self) -> bool:
        """Check if both queues are empty."""
        return self.pending_count() == 0

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
