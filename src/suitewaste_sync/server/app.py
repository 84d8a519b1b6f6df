"""FastAPI reconciliation endpoints for offline-captured records.

Every submitted record is validated and persisted on its own, so one bad
record cannot fail its siblings. Persisting is an upsert by record id, which
makes resubmission of an already-confirmed record a successful no-op.

Response format::

    {"success": true, "data": {"syncedIds": [...], "errors": [...]}}
    {"success": false, "error": "..."}
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Type

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config import Config
from ..models import now_ms
from .schemas import LedgerEntryIn, RecordError, SyncResult, TransactionIn
from .store import (
    LEDGER_ENTITY,
    TRANSACTION_ENTITY,
    EntityStore,
    EntityStoreError,
    SQLiteEntityStore,
)

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 1000


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"success": True, "data": data}, status_code=status_code)


def _bad(error: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"success": False, "error": error}, status_code=status_code)


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "record"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


def reconcile_batch(
    store: EntityStore,
    entity: str,
    schema: Type[BaseModel],
    records: list,
) -> SyncResult:
    """Validate and upsert each record independently."""
    result = SyncResult()
    for raw in records:
        record_id = raw.get("id") if isinstance(raw, dict) else None
        if not isinstance(record_id, str):
            record_id = None
        try:
            record = schema.model_validate(raw).model_dump()
            record["is_synced"] = True
            if record.get("created_at") is None:
                record["created_at"] = now_ms()
            store.create(entity, record)
        except PydanticValidationError as e:
            result.errors.append(RecordError(id=record_id, error=_describe(e)))
        except EntityStoreError as e:
            logger.warning(f"Failed to persist {entity} {record_id}: {e}")
            result.errors.append(RecordError(id=record_id, error=str(e)))
        else:
            result.syncedIds.append(record["id"])

    logger.info(
        f"Reconciled {entity} batch: {len(result.syncedIds)} persisted, "
        f"{len(result.errors)} failed"
    )
    return result


def create_app(store: Optional[EntityStore] = None, db_path: Optional[Path] = None) -> FastAPI:
    """Build the reconciliation API.

    Args:
        store: Entity store to persist into; defaults to SQLite
        db_path: SQLite file used when no store is given
    """
    if store is None:
        store = SQLiteEntityStore(db_path or Config.get_data_dir() / "server.db")

    app = FastAPI(title="SuiteWaste Sync", version=__version__)
    app.state.store = store

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _bad(str(exc.detail), status_code=exc.status_code)

    async def _read_batch(request: Request, key: str) -> Optional[list]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(body, dict):
            return None
        batch = body.get(key)
        if not isinstance(batch, list) or not batch:
            return None
        return batch

    @app.get("/api/health")
    async def health():
        return _ok({"status": "ok", "version": __version__})

    @app.post("/api/sync/ledger")
    async def sync_ledger(request: Request):
        entries = await _read_batch(request, "pendingEntries")
        if entries is None:
            return _bad("pendingEntries must be a non-empty array")
        result = await run_in_threadpool(
            reconcile_batch, store, LEDGER_ENTITY, LedgerEntryIn, entries
        )
        return _ok(result.model_dump())

    @app.post("/api/sync/transactions")
    async def sync_transactions(request: Request):
        transactions = await _read_batch(request, "pendingTransactions")
        if transactions is None:
            return _bad("pendingTransactions must be a non-empty array")
        result = await run_in_threadpool(
            reconcile_batch, store, TRANSACTION_ENTITY, TransactionIn, transactions
        )
        return _ok(result.model_dump())

    @app.get("/api/ledger")
    async def list_ledger(limit: int = 200):
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        return _ok(await run_in_threadpool(store.list, LEDGER_ENTITY, limit))

    @app.get("/api/transactions")
    async def list_transactions(limit: int = 200):
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        return _ok(await run_in_threadpool(store.list, TRANSACTION_ENTITY, limit))

    return app
