"""Sync module - offline queue, transport and reconciliation passes."""

from .background_retry import BackgroundRetryAgent, ReplayStats
from .client import SyncApiClient
from .queue import OfflineQueue
from .retry import RetryConfig, retry_with_backoff
from .protocols import (
    ConnectivityProtocol,
    Notifier,
    QueueStoreProtocol,
    SyncClientProtocol,
    ViewInvalidator,
)
from .sync_engine import INVALIDATED_VIEWS, SyncCoordinator

__all__ = [
    "BackgroundRetryAgent",
    "ReplayStats",
    "SyncApiClient",
    "OfflineQueue",
    "RetryConfig",
    "retry_with_backoff",
    "ConnectivityProtocol",
    "Notifier",
    "QueueStoreProtocol",
    "SyncClientProtocol",
    "ViewInvalidator",
    "INVALIDATED_VIEWS",
    "SyncCoordinator",
]
