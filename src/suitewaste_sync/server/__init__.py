"""Server module - reconciliation endpoints and entity store."""

from .app import create_app, reconcile_batch
from .store import EntityStore, EntityStoreError, InMemoryEntityStore, SQLiteEntityStore

__all__ = [
    "create_app",
    "reconcile_batch",
    "EntityStore",
    "EntityStoreError",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
]
