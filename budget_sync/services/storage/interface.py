"""
Abstract Storage Interfaces

DESIGN DECISION: The sync engine and the session only see these ABCs.
Google Sheets and the in-memory backend are interchangeable remotes, and
the SQLite working copy could be replaced without touching the engine.

There are three collaborators:
- The LOCAL store: always available, holds the working copy the user sees
- The REMOTE store: shared by all devices, reachable only when online
- The CHANGE FEED: tells a device that another device wrote remote data

The interfaces are intentionally small - only the operations replace-sync
needs, not a general ORM.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from budget_sync.models.audit import AuditEvent
from budget_sync.models.budget import BudgetSettings
from budget_sync.models.expense import Expense
from budget_sync.models.sync import ChangeEvent, EntityKind


class LocalStoreInterface(ABC):
    """
    Interface to the embedded database holding the working copy.

    Every method is scoped to one owner. Failures raise LocalStoreError
    (or NotFoundError) and are surfaced to the caller of the mutation.
    """

    @abstractmethod
    async def list_expenses(self, owner_id: str) -> list[Expense]:
        """Return all expenses of an owner, newest first."""
        pass

    @abstractmethod
    async def get_expense(self, owner_id: str, expense_id: str) -> Optional[Expense]:
        """Return one expense, or None if it does not exist."""
        pass

    @abstractmethod
    async def insert_expense(self, expense: Expense) -> Expense:
        """
        Insert a new expense.

        Raises:
            DuplicateError: If an expense with the same ID exists
        """
        pass

    @abstractmethod
    async def insert_expenses(self, expenses: list[Expense]) -> int:
        """Insert several expenses at once, returning how many were written."""
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        """
        Overwrite the stored fields of an existing expense.

        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, owner_id: str, expense_id: str) -> bool:
        """Delete one expense. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def delete_expenses(self, owner_id: str, expense_ids: list[str]) -> int:
        """Delete several expenses, returning how many rows went away."""
        pass

    @abstractmethod
    async def replace_expenses(self, owner_id: str, expenses: list[Expense]) -> None:
        """Replace the owner's whole collection (used when applying a pull)."""
        pass

    @abstractmethod
    async def get_settings(self, owner_id: str) -> Optional[BudgetSettings]:
        """Return the owner's settings, or None if never saved."""
        pass

    @abstractmethod
    async def save_settings(self, settings: BudgetSettings) -> BudgetSettings:
        """Upsert the owner's settings."""
        pass


class RemoteStoreInterface(ABC):
    """
    Interface to the networked backend shared across devices.

    Implementations stamp every write with their `origin` so that change
    notifications caused by this session can be told apart from foreign ones.
    Failures raise RemoteStoreError.
    """

    @property
    @abstractmethod
    def origin(self) -> str:
        """Session ID stamped on every write made through this client."""
        pass

    @abstractmethod
    async def delete_all_expenses(self, owner_id: str) -> int:
        """Delete every remote expense of an owner."""
        pass

    @abstractmethod
    async def insert_expenses(self, owner_id: str, expenses: list[Expense]) -> int:
        """Bulk-insert expenses for an owner."""
        pass

    @abstractmethod
    async def fetch_expenses(self, owner_id: str) -> list[Expense]:
        """Select every remote expense of an owner."""
        pass

    @abstractmethod
    async def upsert_settings(self, settings: BudgetSettings) -> None:
        """Insert or update settings, keyed by owner."""
        pass

    @abstractmethod
    async def fetch_settings(self, owner_id: str) -> Optional[BudgetSettings]:
        """Return remote settings, or None if the owner has none yet."""
        pass


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """
    Handle returned by a change feed subscription.

    `unsubscribe()` may be called any number of times; the underlying
    release runs exactly once.
    """

    def __init__(self, release: Callable[[], None]):
        self._release = release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._release()


class ChangeFeedInterface(ABC):
    """Server-pushed (or polled) change notifications, scoped per owner."""

    @abstractmethod
    def subscribe(
        self,
        owner_id: str,
        kind: EntityKind,
        callback: ChangeCallback,
    ) -> Subscription:
        """Start delivering change events for one owner and entity kind."""
        pass


class AuditStorageInterface(ABC):
    """
    Where sync and edit events are persisted on the device.

    Rows are only ever appended; nothing rewrites the history of what was
    pushed or pulled.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Persist one event.

        Returns:
            True once the row is stored. A failed write raises; AuditLogger
            turns that into a logged warning.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        owner_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Events for one owner (or all owners), newest first.
        """
        pass


class StorageError(Exception):
    """Base class for local and remote store failures."""
    pass


class NotFoundError(StorageError):
    """The expense to update or read does not exist for this owner."""
    pass


class DuplicateError(StorageError):
    """An expense with the same id is already stored."""
    pass


class ConnectionError(StorageError):
    """The Google Sheets backend could not be opened."""
    pass


class LocalStoreError(StorageError):
    """The embedded store rejected an operation."""
    pass


class RemoteStoreError(StorageError):
    """The remote backend rejected an operation or could not be reached."""
    pass
