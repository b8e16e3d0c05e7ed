"""Services package."""

from budget_sync.services.storage import (
    AuditStorageInterface,
    ChangeFeedInterface,
    GoogleSheetsChangeFeed,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    InMemoryBackend,
    InMemoryChangeFeed,
    InMemoryRemoteStore,
    LocalStoreError,
    LocalStoreInterface,
    NotFoundError,
    RemoteStoreError,
    RemoteStoreInterface,
    SQLiteLocalStore,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ChangeFeedInterface",
    "GoogleSheetsChangeFeed",
    "GoogleSheetsClient",
    "GoogleSheetsRemoteStore",
    "InMemoryBackend",
    "InMemoryChangeFeed",
    "InMemoryRemoteStore",
    "LocalStoreError",
    "LocalStoreInterface",
    "NotFoundError",
    "RemoteStoreError",
    "RemoteStoreInterface",
    "SQLiteLocalStore",
    "StorageError",
]
