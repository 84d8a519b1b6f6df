"""HTTP client for the reconciliation endpoints."""

import logging
from typing import TYPE_CHECKING, Optional, Sequence

import requests

from .. import __version__
from ..config import DEFAULT_API_URL
from ..errors import BatchRejectedError, SyncAuthError, SyncClientError, TransportError
from ..models import PendingRecord, RecordKind, SyncOutcome
from .retry import RetryConfig, RetryExhausted, retry_with_backoff

if TYPE_CHECKING:
    from .background_retry import BackgroundRetryAgent

__all__ = [
    "SyncApiClient",
    "BATCH_KEYS",
]

logger = logging.getLogger(__name__)

# Envelope key carrying the batch for each record kind
BATCH_KEYS = {
    RecordKind.LEDGER: "pendingEntries",
    RecordKind.TRANSACTION: "pendingTransactions",
}


class _TransientError(Exception):
    """Internal: Marks an error as transient/retryable."""

    pass


class _NetworkError(_TransientError):
    """Internal: No HTTP response arrived at all."""

    pass


class SyncApiClient:
    """Client for submitting queued records to the reconciliation API.

    Handles:
    - Session management
    - Authentication headers
    - Retry with exponential backoff for transport failures and 5xx
    - Unwrapping the ``{success, data, error}`` response envelope
    - Handing failed sync submissions to the background retry agent
    """

    DEFAULT_RETRY_CONFIG = RetryConfig(
        max_retries=2,
        base_delay=1.0,
        max_delay=10.0,
        exponential_base=2.0,
        jitter=True,
    )

    USER_AGENT = f"SuiteWaste-Sync/{__version__}"

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        token: Optional[str] = None,
        device_id: Optional[str] = None,
        timeout: int = 30,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
        retry_agent: Optional["BackgroundRetryAgent"] = None,
    ):
        """Initialize the sync client.

        Args:
            api_url: API base URL (e.g. "https://host/api")
            token: Bearer token for authentication
            device_id: Identifier of this capture device
            timeout: Request timeout in seconds
            retry_config: Configuration for retry with exponential backoff
            session: Optional requests session (for dependency injection/testing)
            retry_agent: Optional deferred-replay queue for failed submissions
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.device_id = device_id
        self.timeout = timeout
        self.retry_config = retry_config or self.DEFAULT_RETRY_CONFIG
        self.retry_agent = retry_agent
        self._session = session or requests.Session()
        self._owns_session = session is None

    def _get_headers(self) -> dict:
        """Get request headers with authentication."""
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.device_id:
            headers["X-Device-ID"] = self.device_id
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        retry: bool = True,
    ) -> dict:
        """Make a request and unwrap the response envelope.

        Returns:
            The envelope's ``data`` member

        Raises:
            SyncAuthError: For 401/403 responses (not retried)
            BatchRejectedError: For other 4xx or ``success: false`` responses
            TransportError: When no usable response arrived
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        headers = self._get_headers()
        kwargs: dict = {"timeout": self.timeout, "headers": headers}
        if data is not None:
            kwargs["json"] = data

        def do_request() -> dict:
            try:
                response = self._session.request(method, url, **kwargs)
            except requests.exceptions.ConnectionError:
                raise _NetworkError("Cannot connect to sync API")
            except requests.exceptions.Timeout:
                raise _NetworkError("Request timed out")

            if response.status_code == 401:
                raise SyncAuthError("Invalid or expired API token")
            if response.status_code == 403:
                raise SyncAuthError("Device not authorized")

            # Server errors (5xx) are retryable
            if response.status_code >= 500:
                raise _TransientError(f"Server error: {response.status_code}")

            try:
                body = response.json() if response.content else {}
            except ValueError:
                raise SyncClientError(
                    f"Invalid JSON response ({response.status_code}) from {endpoint}"
                )

            if not isinstance(body, dict):
                raise SyncClientError(
                    f"Invalid response ({response.status_code}) from {endpoint}: expected an object"
                )

            if response.status_code >= 400 or not body.get("success", False):
                message = body.get("error") or f"API error ({response.status_code})"
                raise BatchRejectedError(message, status_code=response.status_code)

            payload = body.get("data") or {}
            if not isinstance(payload, dict):
                raise SyncClientError(f"Invalid response data from {endpoint}: expected an object")
            return payload

        try:
            if retry:
                try:
                    return retry_with_backoff(
                        do_request,
                        config=self.retry_config,
                        retryable_exceptions=(_TransientError,),
                    )
                except RetryExhausted as e:
                    raise e.last_error or _TransientError("Request failed after retries")
            return do_request()
        except _TransientError as e:
            # Only requests that never got a response are replayed later
            if isinstance(e, _NetworkError):
                self._defer(method, url, data, headers)
            raise TransportError(str(e)) from e

    def _defer(self, method: str, url: str, data: Optional[dict], headers: dict) -> None:
        """Hand a failed submission to the background retry agent, if eligible."""
        if self.retry_agent is None or not self.retry_agent.is_eligible(method, url):
            return
        try:
            self.retry_agent.defer(method, url, data, headers)
        except Exception:
            logger.exception(f"Failed to defer {method} {url} for background retry")

    def submit(self, kind: RecordKind, records: Sequence[PendingRecord]) -> SyncOutcome:
        """Submit one batch of records of a single kind.

        Returns:
            SyncOutcome with the confirmed ids and per-record failures

        Raises:
            BatchRejectedError: If the batch is empty or rejected outright
            TransportError: If the request could not complete
        """
        key = BATCH_KEYS[kind]
        if not records:
            raise BatchRejectedError(f"{key} must be a non-empty array")

        data = self._request(
            "POST",
            f"sync/{kind.value}",
            data={key: [r.to_dict() for r in records]},
        )

        synced = data.get("syncedIds") or []
        errors = data.get("errors") or []
        if not isinstance(synced, list) or not isinstance(errors, list):
            raise SyncClientError(f"Invalid sync result for {kind.value}: expected lists")

        confirmed = [str(i) for i in synced]
        failures = [
            (err.get("id"), err.get("error") or "Unknown error")
            for err in errors
            if isinstance(err, dict)
        ]
        return SyncOutcome(
            kind=kind,
            submitted=len(records),
            confirmed_ids=confirmed,
            failures=failures,
        )

    def submit_ledger(self, records: Sequence[PendingRecord]) -> SyncOutcome:
        """POST a batch to ``/sync/ledger``."""
        return self.submit(RecordKind.LEDGER, records)

    def submit_transactions(self, records: Sequence[PendingRecord]) -> SyncOutcome:
        """POST a batch to ``/sync/transactions``."""
        return self.submit(RecordKind.TRANSACTION, records)

    def is_reachable(self) -> bool:
        """Check if the sync API is reachable."""
        try:
            self._request("GET", "health", retry=False)
            return True
        except SyncClientError:
            return False

    def set_credentials(self, token: str, device_id: Optional[str] = None) -> None:
        """Set authentication credentials."""
        self.token = token
        self.device_id = device_id

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "SyncApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
