"""Deferred replay of sync submissions that failed at the transport layer.

Failed ``POST`` requests under the sync prefix are stored in SQLite and
replayed later, independently of the in-app queue, until they get any HTTP
response or fall out of the retention window. Duplicates are harmless because
the reconciliation endpoint upserts by record id.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlparse

import requests

from ..config import Config, DEFAULT_RETENTION_MINUTES
from .retry import RetryConfig, next_attempt_at

__all__ = [
    "BackgroundRetryAgent",
    "DeferredRequest",
    "ReplayStats",
    "DEFAULT_SYNC_PREFIX",
]

logger = logging.getLogger(__name__)

DEFAULT_SYNC_PREFIX = "/api/sync/"

# Replay backoff: 30s, 60s, 120s ... capped at 30 minutes
DEFAULT_REPLAY_BACKOFF = RetryConfig(
    max_retries=0,
    base_delay=30.0,
    max_delay=1800.0,
    exponential_base=2.0,
    jitter=True,
)


@dataclass
class DeferredRequest:
    """A request waiting for replay."""

    id: int
    method: str
    url: str
    body: Optional[dict]
    headers: dict
    created_at: datetime
    attempts: int
    next_attempt_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DeferredRequest":
        """Create from database row."""
        return cls(
            id=row["id"],
            method=row["method"],
            url=row["url"],
            body=json.loads(row["body"]) if row["body"] else None,
            headers=json.loads(row["headers"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            attempts=row["attempts"],
            next_attempt_at=datetime.fromisoformat(row["next_attempt_at"]),
        )


@dataclass
class ReplayStats:
    """Result of one replay pass."""

    replayed: int = 0
    expired: int = 0
    failed: int = 0
    remaining: int = 0


class BackgroundRetryAgent:
    """Bounded-retention retry queue at the transport layer."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        retention_minutes: int = DEFAULT_RETENTION_MINUTES,
        sync_prefix: str = DEFAULT_SYNC_PREFIX,
        session: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: int = 30,
    ):
        if db_path is None:
            db_path = Config.get_data_dir() / "background_retry.db"

        self.db_path = Path(db_path)
        self.retention = timedelta(minutes=retention_minutes)
        self.sync_prefix = sync_prefix
        self.retry_config = retry_config or DEFAULT_REPLAY_BACKOFF
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._local = threading.local()
        self._replay_lock = threading.Lock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
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
                CREATE TABLE IF NOT EXISTS deferred_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    method TEXT NOT NULL,
                    url TEXT NOT NULL,
                    body TEXT,
                    headers TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    attempts INTEGER DEFAULT 0,
                    next_attempt_at TEXT NOT NULL
                )
                """
            )

    def is_eligible(self, method: str, url: str) -> bool:
        """Only POSTs under the sync prefix are intercepted."""
        return method.upper() == "POST" and urlparse(url).path.startswith(self.sync_prefix)

    def defer(
        self,
        method: str,
        url: str,
        body: Optional[dict],
        headers: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Store a failed request for later replay.

        Returns:
            True if the request was stored
        """
        if not self.is_eligible(method, url):
            return False

        now = now or datetime.now(timezone.utc)
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO deferred_requests
                    (method, url, body, headers, created_at, attempts, next_attempt_at)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    method.upper(),
                    url,
                    json.dumps(body) if body is not None else None,
                    json.dumps(headers or {}),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        logger.info(f"Deferred {method.upper()} {url} for background retry")
        return True

    def pending(self) -> list[DeferredRequest]:
        """All deferred requests, oldest first."""
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM deferred_requests ORDER BY id ASC")
            return [DeferredRequest.from_row(row) for row in cursor.fetchall()]

    def replay(self, now: Optional[datetime] = None) -> ReplayStats:
        """Expire stale requests, then replay the ones that are due.

        Stops at the first transport failure; the network is assumed still down.
        """
        stats = ReplayStats()
        if not self._replay_lock.acquire(blocking=False):
            logger.debug("Background replay already running, skipping")
            return stats

        try:
            now = now or datetime.now(timezone.utc)
            stats.expired = self._expire(now)

            for request in self.pending():
                if request.next_attempt_at > now:
                    continue
                try:
                    response = self._session.request(
                        request.method,
                        request.url,
                        json=request.body,
                        headers=request.headers,
                        timeout=self.timeout,
                    )
                except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                    self._reschedule(request, now)
                    stats.failed += 1
                    logger.debug(f"Background replay of {request.url} failed: {e}")
                    break

                # Any HTTP response means the server saw the request
                self._delete(request.id)
                stats.replayed += 1
                if response.status_code >= 400:
                    logger.warning(
                        f"Background replay of {request.url} answered {response.status_code}"
                    )
                else:
                    logger.info(f"Background replay of {request.url} delivered")

            stats.remaining = self.size()
            return stats
        finally:
            self._replay_lock.release()

    def _expire(self, now: datetime) -> int:
        cutoff = now - self.retention
        expired = [r.id for r in self.pending() if r.created_at < cutoff]
        if not expired:
            return 0

        with self._cursor() as cursor:
            placeholders = ",".join("?" * len(expired))
            cursor.execute(
                f"DELETE FROM deferred_requests WHERE id IN ({placeholders})",
                expired,
            )
        logger.warning(f"Dropped {len(expired)} deferred requests past the retention window")
        return len(expired)

    def _reschedule(self, request: DeferredRequest, now: datetime) -> None:
        attempts = request.attempts + 1
        retry_at = next_attempt_at(attempts - 1, self.retry_config, now=now)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE deferred_requests
                SET attempts = ?, next_attempt_at = ?
                WHERE id = ?
                """,
                (attempts, retry_at.isoformat(), request.id),
            )

    def _delete(self, request_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM deferred_requests WHERE id = ?", (request_id,))

    def size(self) -> int:
        """Number of deferred requests."""
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM deferred_requests")
            return cursor.fetchone()[0]

    def clear(self) -> int:
        """Drop all deferred requests."""
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM deferred_requests")
            return cursor.rowcount

    def close(self) -> None:
        """Close the database connection and owned session."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None
