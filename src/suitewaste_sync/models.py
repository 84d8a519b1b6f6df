"""Record types for the offline queue and sync results."""

import math
import time
import uuid
from dataclasses import dataclass, field, asdict, fields
from enum import Enum
from typing import Optional, Union

from .errors import ValidationError

__all__ = [
    "RecordKind",
    "LedgerDraft",
    "TransactionDraft",
    "PendingLedgerRecord",
    "PendingTransactionRecord",
    "PendingRecord",
    "SyncOutcome",
    "SyncReport",
    "new_record_id",
    "now_ms",
]


class RecordKind(str, Enum):
    """The two independently synced queues."""

    LEDGER = "ledger"
    TRANSACTION = "transactions"


def new_record_id() -> str:
    """Generate a client-side record identifier."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def _require_non_negative(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")
    if value < 0:
        raise ValidationError(f"{name} must be non-negative")


def _known_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _draft_from_dict(cls, data: dict):
    try:
        return cls(**_known_fields(cls, data))
    except TypeError as e:
        raise ValidationError(f"Incomplete {cls.__name__}: {e}") from e


@dataclass
class LedgerDraft:
    """A weight capture before it is queued.

    ``id`` may be pre-generated by the caller so a transaction created in the
    same user action can reference it.
    """

    supplier_id: str
    material_type: str
    weight_kg: float
    operator_id: Optional[str] = None
    device_id: Optional[str] = None
    notes: Optional[str] = None
    photo_attachment_key: Optional[str] = None
    id: Optional[str] = None

    def validate(self) -> None:
        if not self.supplier_id:
            raise ValidationError("supplier_id is required")
        if not self.material_type or not self.material_type.strip():
            raise ValidationError("material_type is required")
        _require_non_negative("weight_kg", self.weight_kg)

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerDraft":
        return _draft_from_dict(cls, data)


@dataclass
class TransactionDraft:
    """A payment settling one ledger record, before it is queued."""

    ledger_entry_id: str
    amount: float
    epr_fee: float = 0.0
    currency: str = "ZAR"
    payment_method: Optional[str] = None
    receipt_key: Optional[str] = None

    def validate(self) -> None:
        if not self.ledger_entry_id:
            raise ValidationError("ledger_entry_id is required")
        _require_non_negative("amount", self.amount)
        _require_non_negative("epr_fee", self.epr_fee)
        if not self.currency:
            raise ValidationError("currency is required")

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionDraft":
        return _draft_from_dict(cls, data)


@dataclass
class PendingLedgerRecord:
    """A ledger entry resident in the local queue."""

    id: str
    supplier_id: str
    material_type: str
    weight_kg: float
    capture_timestamp: int
    created_at: int
    operator_id: Optional[str] = None
    device_id: Optional[str] = None
    notes: Optional[str] = None
    photo_attachment_key: Optional[str] = None
    is_synced: bool = False

    @classmethod
    def from_draft(cls, draft: LedgerDraft) -> "PendingLedgerRecord":
        """Assign identity and timestamps to a validated draft."""
        timestamp = now_ms()
        return cls(
            id=draft.id or new_record_id(),
            supplier_id=draft.supplier_id,
            material_type=draft.material_type.strip(),
            weight_kg=float(draft.weight_kg),
            capture_timestamp=timestamp,
            created_at=timestamp,
            operator_id=draft.operator_id,
            device_id=draft.device_id,
            notes=draft.notes,
            photo_attachment_key=draft.photo_attachment_key,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "PendingLedgerRecord":
        return cls(**_known_fields(cls, data))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PendingTransactionRecord:
    """A transaction resident in the local queue."""

    id: str
    ledger_entry_id: str
    amount: float
    currency: str
    epr_fee: float
    transaction_timestamp: int
    created_at: int
    payment_method: Optional[str] = None
    receipt_key: Optional[str] = None
    is_synced: bool = False

    @classmethod
    def from_draft(cls, draft: TransactionDraft) -> "PendingTransactionRecord":
        timestamp = now_ms()
        return cls(
            id=new_record_id(),
            ledger_entry_id=draft.ledger_entry_id,
            amount=float(draft.amount),
            currency=draft.currency,
            epr_fee=float(draft.epr_fee),
            transaction_timestamp=timestamp,
            created_at=timestamp,
            payment_method=draft.payment_method,
            receipt_key=draft.receipt_key,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "PendingTransactionRecord":
        return cls(**_known_fields(cls, data))

    def to_dict(self) -> dict:
        return asdict(self)


PendingRecord = Union[PendingLedgerRecord, PendingTransactionRecord]


@dataclass
class SyncOutcome:
    """Result of submitting one batch of one record kind."""

    kind: RecordKind
    submitted: int = 0
    confirmed_ids: list[str] = field(default_factory=list)
    failures: list[tuple[Optional[str], str]] = field(default_factory=list)
    transport_error: Optional[str] = None
    rejected: Optional[str] = None
    pruned: int = 0

    @property
    def success(self) -> bool:
        return self.transport_error is None and self.rejected is None


@dataclass
class SyncReport:
    """Statistics from one sync pass."""

    skipped_reason: Optional[str] = None
    outcomes: list[SyncOutcome] = field(default_factory=list)

    @property
    def confirmed_count(self) -> int:
        return sum(len(o.confirmed_ids) for o in self.outcomes)

    @property
    def pruned(self) -> int:
        return sum(o.pruned for o in self.outcomes)

    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def errors(self) -> list[str]:
        errors = []
        for outcome in self.outcomes:
            if outcome.transport_error:
                errors.append(f"{outcome.kind.value}: {outcome.transport_error}")
            if outcome.rejected:
                errors.append(f"{outcome.kind.value}: {outcome.rejected}")
        return errors
