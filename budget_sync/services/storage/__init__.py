"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the local
store (SQLite), the remote store (Google Sheets, or in-memory) and the
remote change feed.
"""

from budget_sync.services.storage.interface import (
    AuditStorageInterface,
    ChangeCallback,
    ChangeFeedInterface,
    ConnectionError,
    DuplicateError,
    LocalStoreError,
    LocalStoreInterface,
    NotFoundError,
    RemoteStoreError,
    RemoteStoreInterface,
    StorageError,
    Subscription,
)
from budget_sync.services.storage.google_sheets import (
    GoogleSheetsChangeFeed,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
)
from budget_sync.services.storage.memory import (
    InMemoryBackend,
    InMemoryChangeFeed,
    InMemoryRemoteStore,
)
from budget_sync.services.storage.sqlite_store import SQLiteLocalStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ChangeCallback",
    "ChangeFeedInterface",
    "LocalStoreInterface",
    "RemoteStoreInterface",
    "Subscription",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "LocalStoreError",
    "NotFoundError",
    "RemoteStoreError",
    "StorageError",
    # SQLite implementation
    "SQLiteLocalStore",
    # Google Sheets implementation
    "GoogleSheetsChangeFeed",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    # In-memory implementation
    "InMemoryBackend",
    "InMemoryChangeFeed",
    "InMemoryRemoteStore",
]
