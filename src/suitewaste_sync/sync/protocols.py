"""Protocol types for SyncCoordinator dependencies.

Defines the interfaces that SyncCoordinator requires from its collaborators,
enabling easier testing and looser coupling.
"""

from typing import Iterable, Protocol, Sequence, runtime_checkable

from ..models import PendingRecord, RecordKind, SyncOutcome


@runtime_checkable
class QueueStoreProtocol(Protocol):
    """Interface for the durable pending-record queues."""

    def snapshot(self, kind: RecordKind) -> list[PendingRecord]: ...

    def prune_confirmed(self, kind: RecordKind, identifiers: Iterable[str]) -> int: ...

    def pending_count(self) -> int: ...


@runtime_checkable
class SyncClientProtocol(Protocol):
    """Interface for submitting batches to the reconciliation API."""

    def submit(self, kind: RecordKind, records: Sequence[PendingRecord]) -> SyncOutcome: ...

    def is_reachable(self) -> bool: ...


@runtime_checkable
class ConnectivityProtocol(Protocol):
    """Interface for the online/offline signal."""

    @property
    def is_online(self) -> bool: ...


@runtime_checkable
class ViewInvalidator(Protocol):
    """Cache of read views that must refetch after new data is confirmed."""

    def invalidate(self, view_names: list[str]) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    """User-facing transient messages."""

    def notify(self, title: str, message: str) -> None: ...
