"""Exception types shared by the queue, transport and coordinator."""

from typing import Optional

__all__ = [
    "SyncError",
    "ValidationError",
    "QueueStoreError",
    "SyncClientError",
    "TransportError",
    "BatchRejectedError",
    "SyncAuthError",
]


class SyncError(Exception):
    """Base error for SuiteWaste Sync."""

    pass


class ValidationError(SyncError):
    """A draft record failed local validation and was not queued."""

    pass


class QueueStoreError(SyncError):
    """The durable queue slot could not be read or written."""

    pass


class SyncClientError(SyncError):
    """Sync API client error."""

    pass


class TransportError(SyncClientError):
    """The request never reached the server, or no response came back."""

    pass


class BatchRejectedError(SyncClientError):
    """The server (or local envelope check) rejected a whole batch."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SyncAuthError(SyncClientError):
    """Authentication error."""

    pass
