"""
Tests for the Sync Engine.

The remote side is an InMemoryBackend, which counts calls and can be told
to fail or to be slow.
"""

import asyncio
from decimal import Decimal

import pytest

from budget_sync.models import BudgetSettings, EntityKind, SyncStatus
from budget_sync.services.storage import RemoteStoreError
from budget_sync.sync import LoadGate, SyncEngine

from conftest import (
    DEBOUNCE,
    ERROR_DISPLAY,
    OWNER,
    SYNCED_DISPLAY,
    make_expense,
    open_gate,
    settle,
)


def pushes(backend) -> int:
    """Record pushes are delete-all + insert-all; count the first half."""
    return backend.call_count("delete_all_expenses")


class TestNoOpSuppression:
    """Unchanged data costs zero network calls."""

    @pytest.mark.asyncio
    async def test_second_identical_push_is_skipped(self, engine, backend):
        rent = make_expense("Rent")
        engine.push_records([rent])
        await settle()
        assert pushes(backend) == 1

        engine.push_records([rent.model_copy(deep=True)])
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_order_does_not_matter(self, engine, backend):
        a, b = make_expense("A"), make_expense("B")
        engine.push_records([a, b])
        await settle()
        engine.push_records([b, a])
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_changed_field_is_pushed(self, engine, backend):
        rent = make_expense("Rent")
        engine.push_records([rent])
        await settle()
        engine.push_records([rent.model_copy(update={"amount": Decimal("150")})])
        await settle()
        assert pushes(backend) == 2

    @pytest.mark.asyncio
    async def test_timestamps_alone_are_not_a_change(self, engine, backend):
        rent = make_expense("Rent")
        engine.push_records([rent])
        await settle()
        touched = rent.model_copy(update={"updated_at": rent.updated_at.replace(year=2001)})
        engine.push_records([touched])
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_identical_settings_are_skipped(self, engine, backend, settings_fixed):
        engine.push_settings(settings_fixed)
        await settle()
        engine.push_settings(BudgetSettings(**settings_fixed.model_dump()))
        await settle()
        assert backend.call_count("upsert_settings") == 1

    @pytest.mark.asyncio
    async def test_pull_establishes_snapshot(self, engine, backend):
        rent = make_expense("Rent")
        backend.expenses[OWNER] = [rent]

        result = await engine.pull_records()
        assert result.succeeded
        assert [e.id for e in result.value] == [rent.id]

        engine.push_records([rent])
        await settle()
        assert pushes(backend) == 0


class TestDebounceCoalescing:
    """N calls inside the window produce one push carrying the last value."""

    @pytest.mark.asyncio
    async def test_burst_produces_one_push(self, engine, backend):
        expenses = [make_expense(f"E{i}") for i in range(5)]
        for i in range(1, 6):
            engine.push_records(expenses[:i])
        assert backend.calls == []

        await settle()
        assert pushes(backend) == 1
        assert {e.id for e in backend.expenses[OWNER]} == {e.id for e in expenses}

    @pytest.mark.asyncio
    async def test_push_waits_for_debounce_window(self, engine, backend):
        engine.push_records([make_expense()])
        await asyncio.sleep(DEBOUNCE / 2)
        assert pushes(backend) == 0
        assert engine.has_pending_push(EntityKind.RECORDS)
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, engine, backend, settings_fixed):
        engine.push_records([make_expense()])
        engine.push_settings(settings_fixed)
        await settle()
        assert pushes(backend) == 1
        assert backend.call_count("upsert_settings") == 1


class TestImmediatePush:
    """Immediate pushes bypass the debounce window."""

    @pytest.mark.asyncio
    async def test_immediate_cancels_pending_debounce(self, engine, backend):
        a, b = make_expense("A"), make_expense("B")
        engine.push_records([a, b])
        assert engine.has_pending_push(EntityKind.RECORDS)

        assert await engine.push_records_immediate([a]) is True
        assert pushes(backend) == 1
        assert not engine.has_pending_push(EntityKind.RECORDS)

        await settle()
        assert pushes(backend) == 1
        assert [e.id for e in backend.expenses[OWNER]] == [a.id]

    @pytest.mark.asyncio
    async def test_immediate_always_issues_a_call(self, engine, backend):
        a = make_expense("A")
        await engine.push_records_immediate([a])
        await engine.push_records_immediate([a])
        assert pushes(backend) == 2

    @pytest.mark.asyncio
    async def test_later_debounced_push_of_same_value_is_suppressed(self, engine, backend):
        a = make_expense("A")
        await engine.push_records_immediate([a])
        engine.push_records([a])
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_immediate_settings(self, engine, backend, settings_fixed):
        assert await engine.push_settings_immediate(settings_fixed) is True
        assert backend.settings[OWNER].monthly_payment == Decimal("1000")


class TestInFlightGuard:
    """Never two pushes of the same kind at once."""

    @pytest.mark.asyncio
    async def test_immediate_pushes_are_serialized(self, engine, backend):
        backend.delay = 0.02
        first = asyncio.create_task(engine.push_records_immediate([make_expense("A")]))
        await asyncio.sleep(0)
        second = asyncio.create_task(engine.push_records_immediate([make_expense("B")]))
        await asyncio.gather(first, second)

        operations = [op for op, _ in backend.calls]
        assert operations == [
            "delete_all_expenses",
            "insert_expenses",
            "delete_all_expenses",
            "insert_expenses",
        ]
        assert [e.name for e in backend.expenses[OWNER]] == ["B"]

    @pytest.mark.asyncio
    async def test_queued_debounced_push_is_superseded_by_immediate(self, engine, backend):
        backend.delay = 0.1
        a, b, c = make_expense("A"), make_expense("B"), make_expense("C")

        engine.push_records([a])
        await asyncio.sleep(DEBOUNCE + 0.02)  # First push now in flight
        engine.push_records([a, b])
        await asyncio.sleep(DEBOUNCE + 0.02)  # Second push fired and is queued

        assert await engine.push_records_immediate([c]) is True
        await settle()

        assert pushes(backend) == 2
        assert [e.name for e in backend.expenses[OWNER]] == ["C"]

    @pytest.mark.asyncio
    async def test_has_pending_push_while_in_flight(self, engine, backend):
        backend.delay = 0.05
        task = asyncio.create_task(engine.push_records_immediate([make_expense()]))
        await asyncio.sleep(0.01)
        assert engine.has_pending_push(EntityKind.RECORDS)
        assert engine.has_pending_push()
        await task
        assert not engine.has_pending_push()


class TestStatusMachine:
    """idle -> syncing -> synced/error -> idle after a display delay."""

    @pytest.mark.asyncio
    async def test_success_shows_synced_then_idle(self, engine, backend):
        seen = []
        engine.add_status_listener(lambda state: seen.append(state.status))

        engine.push_records([make_expense()])
        await asyncio.sleep(DEBOUNCE + 0.03)
        assert engine.status == SyncStatus.SYNCED
        assert engine.last_sync_time is not None

        await asyncio.sleep(SYNCED_DISPLAY + 0.05)
        assert engine.status == SyncStatus.IDLE
        assert seen == [SyncStatus.SYNCING, SyncStatus.SYNCED, SyncStatus.IDLE]

    @pytest.mark.asyncio
    async def test_failure_shows_error_then_idle_with_message_cleared(self, engine, backend):
        backend.fail_writes = RemoteStoreError("backend down")

        engine.push_records([make_expense()])
        await asyncio.sleep(DEBOUNCE + 0.03)
        assert engine.status == SyncStatus.ERROR
        assert "backend down" in engine.error_message

        await asyncio.sleep(ERROR_DISPLAY + 0.05)
        assert engine.status == SyncStatus.IDLE
        assert engine.error_message is None

    @pytest.mark.asyncio
    async def test_failure_never_raises_to_caller(self, engine, backend):
        backend.fail_writes = RemoteStoreError("backend down")
        assert await engine.push_records_immediate([make_expense()]) is False
        assert engine.status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_failed_push_is_retried_by_next_push(self, engine, backend):
        rent = make_expense()
        backend.fail_writes = RemoteStoreError("backend down")
        engine.push_records([rent])
        await settle()

        backend.fail_writes = None
        engine.push_records([rent])
        await settle()
        assert [e.id for e in backend.expenses[OWNER]] == [rent.id]

    @pytest.mark.asyncio
    async def test_new_push_interrupts_error_display(self, engine, backend):
        backend.fail_writes = RemoteStoreError("backend down")
        await engine.push_records_immediate([make_expense("A")])
        backend.fail_writes = None
        await engine.push_records_immediate([make_expense("B")])
        assert engine.status == SyncStatus.SYNCED
        assert engine.error_message is None

    @pytest.mark.asyncio
    async def test_invalid_payload_is_an_error_without_network_call(self, engine, backend):
        foreign = make_expense("Theirs", owner_id="someone-else")
        assert await engine.push_records_immediate([foreign]) is False
        assert engine.status == SyncStatus.ERROR
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_rejected(self, engine, backend):
        rent = make_expense()
        assert await engine.push_records_immediate([rent, rent]) is False
        assert "more than once" in engine.error_message

    @pytest.mark.asyncio
    async def test_listener_can_be_removed(self, engine):
        seen = []
        remove = engine.add_status_listener(seen.append)
        remove()
        await engine.push_records_immediate([make_expense()])
        assert seen == []

    @pytest.mark.asyncio
    async def test_pull_failure_is_reported_not_raised(self, engine, backend):
        backend.fail_reads = RemoteStoreError("timeout")
        result = await engine.pull_records()
        assert not result.succeeded
        assert engine.status == SyncStatus.ERROR


class TestLoadGateOrdering:
    """No push before the gate opens; held kinds are remembered."""

    @pytest.mark.asyncio
    async def test_pushes_held_while_gate_closed(self, remote, backend, connectivity):
        gate = LoadGate()
        engine = SyncEngine(
            OWNER,
            remote,
            connectivity=connectivity,
            gate=gate,
            debounce_seconds=DEBOUNCE,
        )
        engine.push_records([make_expense()])
        assert not engine.has_pending_push()
        assert await engine.push_records_immediate([make_expense()]) is False

        gate.begin_loading()
        engine.push_records([make_expense()])
        gate.mark_loaded()
        engine.push_records([make_expense()])  # Still in startup window
        await settle()
        assert backend.calls == []
        assert engine.take_held() == {EntityKind.RECORDS}
        assert engine.take_held() == set()

        gate.end_startup_window()
        engine.push_records([make_expense()])
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_pending_push_held_if_gate_closes(self, engine, backend):
        engine.push_records([make_expense()])
        engine.gate.begin_loading()
        await settle()
        assert backend.calls == []
        assert engine.is_held(EntityKind.RECORDS)
        assert not engine.is_held(EntityKind.SETTINGS)


class TestOffline:
    """Offline: push and pull are no-ops, status is offline."""

    @pytest.mark.asyncio
    async def test_going_offline_sets_status(self, engine, connectivity):
        connectivity.set_online(False)
        assert engine.status == SyncStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_push_and_pull_are_noops_offline(self, engine, backend, connectivity):
        connectivity.set_online(False)
        engine.push_records([make_expense()])
        assert await engine.push_records_immediate([make_expense()]) is False
        result = await engine.pull_records()
        await settle()

        assert not result.succeeded
        assert backend.calls == []
        assert engine.status == SyncStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_pending_push_does_not_fire_offline(self, engine, backend, connectivity):
        engine.push_records([make_expense()])
        connectivity.set_online(False)
        await settle()
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_back_online_returns_to_idle_and_calls_reconnect(self, remote, connectivity):
        reconnects = []
        engine = SyncEngine(
            OWNER,
            remote,
            connectivity=connectivity,
            gate=open_gate(),
            debounce_seconds=DEBOUNCE,
            on_reconnect=lambda: reconnects.append(True),
        )
        connectivity.set_online(False)
        connectivity.set_online(True)
        assert engine.status == SyncStatus.IDLE
        assert reconnects == [True]

    @pytest.mark.asyncio
    async def test_offline_drop_is_not_held(self, engine, connectivity):
        connectivity.set_online(False)
        engine.push_records([make_expense()])
        assert engine.take_held() == set()

    @pytest.mark.asyncio
    async def test_going_offline_during_push_keeps_offline_status(
        self, engine, backend, connectivity
    ):
        expense = make_expense()
        backend.delay = 0.05
        task = asyncio.create_task(engine.push_records_immediate([expense]))
        await asyncio.sleep(0.01)
        connectivity.set_online(False)

        assert await task is True
        assert engine.status == SyncStatus.OFFLINE
        await asyncio.sleep(SYNCED_DISPLAY * 2)
        assert engine.status == SyncStatus.OFFLINE

        # The accepted push still became the snapshot
        backend.delay = 0
        connectivity.set_online(True)
        engine.push_records([expense])
        await settle()
        assert pushes(backend) == 1

    @pytest.mark.asyncio
    async def test_failed_push_after_going_offline_is_not_an_error(
        self, engine, backend, connectivity
    ):
        backend.delay = 0.05
        backend.fail_writes = RemoteStoreError("connection reset")
        task = asyncio.create_task(engine.push_records_immediate([make_expense()]))
        await asyncio.sleep(0.01)
        connectivity.set_online(False)

        assert await task is False
        assert engine.status == SyncStatus.OFFLINE
        assert engine.error_message is None

    @pytest.mark.asyncio
    async def test_going_offline_during_pull_keeps_offline_status(
        self, engine, backend, connectivity
    ):
        backend.expenses[OWNER] = [make_expense()]
        backend.delay = 0.05
        task = asyncio.create_task(engine.pull_records())
        await asyncio.sleep(0.01)
        connectivity.set_online(False)

        result = await task
        assert result.succeeded
        assert len(result.value) == 1
        assert engine.status == SyncStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_engine_created_offline_starts_offline(self, remote):
        from budget_sync.sync import ConnectivityMonitor

        engine = SyncEngine(OWNER, remote, connectivity=ConnectivityMonitor(online=False))
        assert engine.status == SyncStatus.OFFLINE


class TestLifecycle:
    """flush() and shutdown()."""

    @pytest.mark.asyncio
    async def test_flush_fires_pending_pushes(self, engine, backend, settings_fixed):
        engine.push_records([make_expense()])
        engine.push_settings(settings_fixed)
        await engine.flush()
        assert pushes(backend) == 1
        assert backend.call_count("upsert_settings") == 1
        assert not engine.has_pending_push()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_pushes(self, engine, backend):
        engine.push_records([make_expense()])
        await engine.shutdown()
        await settle()
        assert backend.calls == []
        assert await engine.push_records_immediate([make_expense()]) is False

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, engine):
        await engine.shutdown()
        await engine.shutdown()
