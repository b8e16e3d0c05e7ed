"""
Shared fixtures.

Timing values are injected as small fractions of a second so that debounce
and status-reset behaviour can be observed without slowing the suite down.
"""

import asyncio
from decimal import Decimal

import pytest

from budget_sync.models import BudgetSettings, Expense
from budget_sync.orchestrator import BudgetSession
from budget_sync.services.storage import (
    InMemoryBackend,
    InMemoryChangeFeed,
    InMemoryRemoteStore,
    SQLiteLocalStore,
)
from budget_sync.sync import ConnectivityMonitor, LoadGate, SyncEngine


DEBOUNCE = 0.05
SYNCED_DISPLAY = 0.1
ERROR_DISPLAY = 0.15

OWNER = "owner-1"


async def settle(seconds: float = DEBOUNCE * 3) -> None:
    """Let timers fire and the tasks they spawn complete."""
    await asyncio.sleep(seconds)


def make_expense(name: str = "Rent", amount: str = "100", **kwargs) -> Expense:
    return Expense(
        owner_id=kwargs.pop("owner_id", OWNER),
        name=name,
        amount=Decimal(amount),
        **kwargs,
    )


def open_gate() -> LoadGate:
    gate = LoadGate()
    gate.begin_loading()
    gate.mark_loaded()
    gate.end_startup_window()
    return gate


@pytest.fixture
def owner_id() -> str:
    return OWNER


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def remote(backend) -> InMemoryRemoteStore:
    return InMemoryRemoteStore(backend, origin="device-a")


@pytest.fixture
def feed(backend) -> InMemoryChangeFeed:
    return InMemoryChangeFeed(backend)


@pytest.fixture
def local_store():
    store = SQLiteLocalStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture
def engine(remote, connectivity) -> SyncEngine:
    """Engine with an already opened load gate."""
    return SyncEngine(
        OWNER,
        remote,
        connectivity=connectivity,
        gate=open_gate(),
        debounce_seconds=DEBOUNCE,
        synced_display_seconds=SYNCED_DISPLAY,
        error_display_seconds=ERROR_DISPLAY,
    )


@pytest.fixture
def session_factory(backend, feed, connectivity):
    """Build sessions sharing one backend, one per simulated device."""

    def factory(store, origin="device-a", with_feed=True, capacity=50) -> BudgetSession:
        return BudgetSession(
            OWNER,
            store,
            InMemoryRemoteStore(backend, origin=origin),
            feed=feed if with_feed else None,
            connectivity=connectivity,
            history_capacity=capacity,
            debounce_seconds=DEBOUNCE,
            synced_display_seconds=SYNCED_DISPLAY,
            error_display_seconds=ERROR_DISPLAY,
        )

    return factory


@pytest.fixture
def settings_fixed() -> BudgetSettings:
    return BudgetSettings(owner_id=OWNER, monthly_payment=Decimal("1000"))

