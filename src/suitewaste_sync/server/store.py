"""Indexed entity store consumed by the reconciliation endpoints.

Only the create/list contract is used: ``create`` is an upsert keyed by
``(entity, id)`` so replays of the same record are harmless.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

__all__ = [
    "EntityStore",
    "EntityStoreError",
    "SQLiteEntityStore",
    "InMemoryEntityStore",
    "LEDGER_ENTITY",
    "TRANSACTION_ENTITY",
]

logger = logging.getLogger(__name__)

LEDGER_ENTITY = "inventory_ledger"
TRANSACTION_ENTITY = "transaction"


class EntityStoreError(Exception):
    """A record could not be persisted."""

    pass


@runtime_checkable
class EntityStore(Protocol):
    """Create/list contract of the remote persistence layer."""

    def create(self, entity: str, record: dict) -> dict: ...

    def list(self, entity: str, limit: int = 200) -> list[dict]: ...


def _record_id(record: dict) -> str:
    record_id = record.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise EntityStoreError("Record has no id")
    return record_id


class SQLiteEntityStore:
    """SQLite-based entity store."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path), timeout=10)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
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
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    entity TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (entity, id)
                )
                """
            )

    def create(self, entity: str, record: dict) -> dict:
        """Persist ``record`` under its id, replacing any previous version."""
        record_id = _record_id(record)
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO entities (entity, id, data, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(entity, id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    """,
                    (entity, record_id, json.dumps(record), now),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise EntityStoreError(f"Failed to persist {entity} {record_id}: {e}") from e
        return record

    def list(self, entity: str, limit: int = 200) -> list[dict]:
        """Most recently inserted records first."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT data FROM entities
                WHERE entity = ?
                ORDER BY rowid DESC
                LIMIT ?
                """,
                (entity, limit),
            )
            return [json.loads(row["data"]) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection


class InMemoryEntityStore:
    """Dict-backed entity store for tests and throwaway servers."""

    def __init__(self):
        self._entities: dict[str, dict[str, dict]] = {}
        self._lock = threading.Lock()

    def create(self, entity: str, record: dict) -> dict:
        record_id = _record_id(record)
        with self._lock:
            self._entities.setdefault(entity, {})[record_id] = dict(record)
        return record

    def list(self, entity: str, limit: int = 200) -> list[dict]:
        with self._lock:
            records = list(self._entities.get(entity, {}).values())
        return list(reversed(records))[:limit]
