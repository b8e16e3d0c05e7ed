"""
In-Memory Remote Backend

Stands in for the shared remote database when no network backend is
configured: tests, demos, and simulating several devices in one process.

One InMemoryBackend is the "server". Each device gets its own
InMemoryRemoteStore (with its own origin) and InMemoryChangeFeed on top of
the same backend, so a write by one device is announced to the others
exactly like a real change feed would.

The backend records every call it receives and can be told to fail or to
delay, which is how the sync engine's error and in-flight paths are tested.
"""

import asyncio
from typing import Optional
from uuid import uuid4

from budget_sync.models.budget import BudgetSettings
from budget_sync.models.expense import Expense
from budget_sync.models.sync import ChangeEvent, ChangeEventType, EntityKind
from budget_sync.services.storage.interface import (
    ChangeCallback,
    ChangeFeedInterface,
    RemoteStoreError,
    RemoteStoreInterface,
    Subscription,
)


class InMemoryBackend:
    """Shared state of the simulated remote database."""

    def __init__(self):
        self.expenses: dict[str, list[Expense]] = {}
        self.settings: dict[str, BudgetSettings] = {}
        self.calls: list[tuple[str, str]] = []

        # Failure / latency injection
        self.fail_writes: Optional[Exception] = None
        self.fail_reads: Optional[Exception] = None
        self.delay: float = 0.0

        self._subscribers: dict[tuple[str, EntityKind], list[ChangeCallback]] = {}

    def call_count(self, operation: str, owner_id: Optional[str] = None) -> int:
        return sum(
            1 for op, owner in self.calls
            if op == operation and (owner_id is None or owner == owner_id)
        )

    async def _enter(self, operation: str, owner_id: str, write: bool) -> None:
        self.calls.append((operation, owner_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        failure = self.fail_writes if write else self.fail_reads
        if failure is not None:
            raise failure

    def subscribe(
        self,
        owner_id: str,
        kind: EntityKind,
        callback: ChangeCallback,
    ) -> Subscription:
        key = (owner_id, kind)
        self._subscribers.setdefault(key, []).append(callback)

        def release() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return Subscription(release)

    def subscriber_count(self, owner_id: str) -> int:
        return sum(
            len(callbacks)
            for (owner, _), callbacks in self._subscribers.items()
            if owner == owner_id
        )

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event on the next loop iteration, like a network feed."""
        loop = asyncio.get_running_loop()
        for callback in list(self._subscribers.get((event.owner_id, event.kind), [])):
            loop.call_soon(callback, event)


class InMemoryRemoteStore(RemoteStoreInterface):
    """One device's client for an InMemoryBackend."""

    def __init__(self, backend: InMemoryBackend, origin: Optional[str] = None):
        self.backend = backend
        self._origin = origin or str(uuid4())

    @property
    def origin(self) -> str:
        return self._origin

    def _announce(self, owner_id: str, kind: EntityKind, event_type: ChangeEventType) -> None:
        self.backend.publish(
            ChangeEvent(
                owner_id=owner_id,
                kind=kind,
                event_type=event_type,
                origin=self._origin,
            )
        )

    async def delete_all_expenses(self, owner_id: str) -> int:
        await self.backend._enter("delete_all_expenses", owner_id, write=True)
        removed = self.backend.expenses.pop(owner_id, [])
        if removed:
            self._announce(owner_id, EntityKind.RECORDS, ChangeEventType.DELETE)
        return len(removed)

    async def insert_expenses(self, owner_id: str, expenses: list[Expense]) -> int:
        await self.backend._enter("insert_expenses", owner_id, write=True)
        if not expenses:
            return 0
        stored = self.backend.expenses.setdefault(owner_id, [])
        stored.extend(e.model_copy(deep=True) for e in expenses)
        self._announce(owner_id, EntityKind.RECORDS, ChangeEventType.INSERT)
        return len(expenses)

    async def fetch_expenses(self, owner_id: str) -> list[Expense]:
        await self.backend._enter("fetch_expenses", owner_id, write=False)
        return [e.model_copy(deep=True) for e in self.backend.expenses.get(owner_id, [])]

    async def upsert_settings(self, settings: BudgetSettings) -> None:
        await self.backend._enter("upsert_settings", settings.owner_id, write=True)
        existed = settings.owner_id in self.backend.settings
        self.backend.settings[settings.owner_id] = settings.model_copy(deep=True)
        self._announce(
            settings.owner_id,
            EntityKind.SETTINGS,
            ChangeEventType.UPDATE if existed else ChangeEventType.INSERT,
        )

    async def fetch_settings(self, owner_id: str) -> Optional[BudgetSettings]:
        await self.backend._enter("fetch_settings", owner_id, write=False)
        settings = self.backend.settings.get(owner_id)
        return settings.model_copy(deep=True) if settings else None


class InMemoryChangeFeed(ChangeFeedInterface):
    """Change feed backed by an InMemoryBackend's broker."""

    def __init__(self, backend: InMemoryBackend):
        self.backend = backend

    def subscribe(
        self,
        owner_id: str,
        kind: EntityKind,
        callback: ChangeCallback,
    ) -> Subscription:
        return self.backend.subscribe(owner_id, kind, callback)
