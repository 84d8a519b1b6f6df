"""Pydantic schemas for records submitted to the sync endpoints."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntryIn(BaseModel):
    """Inventory ledger entry as captured offline."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    supplier_id: str = Field(min_length=1)
    material_type: str = Field(min_length=1)
    weight_kg: float = Field(ge=0)
    capture_timestamp: int
    operator_id: Optional[str] = None
    device_id: Optional[str] = None
    photo_attachment_key: Optional[str] = None
    notes: Optional[str] = None
    is_synced: bool = False
    created_at: Optional[int] = None


class TransactionIn(BaseModel):
    """Transaction as captured offline.

    ``ledger_entry_id`` is not checked against persisted ledger entries.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    ledger_entry_id: str = Field(min_length=1)
    amount: float = Field(ge=0)
    currency: str = "ZAR"
    payment_method: Optional[str] = None
    transaction_timestamp: int
    receipt_key: Optional[str] = None
    epr_fee: float = Field(default=0.0, ge=0)
    is_synced: bool = False
    created_at: Optional[int] = None


class RecordError(BaseModel):
    id: Optional[str] = None
    success: bool = False
    error: str


class SyncResult(BaseModel):
    syncedIds: list[str] = Field(default_factory=list)
    errors: list[RecordError] = Field(default_factory=list)
