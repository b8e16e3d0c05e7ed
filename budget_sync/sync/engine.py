"""
Sync Engine

DESIGN DECISION: The local store is the truth the user sees; the remote
store is a replica shared across devices. The engine moves whole
collections between them:

1. PUSH replaces the owner's remote collection with the local one
   (delete-all, then insert-all). No field-level merge: when two devices
   edit concurrently, the last full push wins.
2. PULL reads the owner's full remote collection. It is only used by the
   load sequence and is never merged with in-memory edits.

Everything the engine owns, per entity kind:
- a debounce timer (only the last scheduled value survives)
- an in-flight lock (never two pushes of the same kind at once)
- a generation counter (an immediate push supersedes queued debounced work)
- the last successfully synced snapshot, compared structurally, so that
  pushing unchanged data costs zero network calls

Startup ordering is delegated to a LoadGate; connectivity to a
ConnectivityMonitor. Status is process-wide and written only here.
A push issued while the gate is closed is not sent; its kind is remembered
(take_held) so the session can push the local copy once the gate opens.
A remote call that completes after connectivity was lost leaves the status
at `offline`.

Sync failures never propagate to callers. They become status `error`
(shown briefly, then cleared) and an audit entry; the local copy is never
rolled back.
"""

import asyncio
from typing import Any, Callable, NamedTuple, Optional

import structlog

from budget_sync.audit import AuditLogger
from budget_sync.config import get_settings
from budget_sync.models.audit import AuditEvent, AuditEventBuilder
from budget_sync.models.budget import BudgetSettings
from budget_sync.models.expense import Expense, utc_now
from budget_sync.models.sync import EntityKind, SyncState, SyncStatus
from budget_sync.services.storage import RemoteStoreInterface
from budget_sync.sync.connectivity import ConnectivityMonitor
from budget_sync.sync.gate import LoadGate
from budget_sync.sync.timers import DebounceTimer
from budget_sync.validation import PayloadValidator


logger = structlog.get_logger("budget_sync.sync.engine")

StatusListener = Callable[[SyncState], None]


class PullResult(NamedTuple):
    """Outcome of a pull. `value` is only meaningful when `succeeded`."""
    succeeded: bool
    value: Any = None


def records_key(records: list[Expense]) -> tuple:
    """Order-independent structural key of a record collection."""
    return tuple(sorted((r.sync_key() for r in records), key=lambda k: k[0]))


def settings_key(settings: Optional[BudgetSettings]) -> Optional[tuple]:
    return settings.sync_key() if settings is not None else None


class _KindState:
    """Push bookkeeping for one entity kind."""

    def __init__(self, kind: EntityKind, timer: DebounceTimer):
        self.kind = kind
        self.timer = timer
        self.lock = asyncio.Lock()
        self.pending: Any = None
        self.generation = 0
        self.snapshot: Optional[tuple] = None
        self.has_snapshot = False
        self.tasks: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self.timer.is_pending or self.lock.locked() or bool(self.tasks)


class SyncEngine:
    """
    Coordinates pushes and pulls between the local and remote stores.

    Usage:
        engine = SyncEngine(owner_id, remote_store)
        engine.gate.begin_loading()
        result = await engine.pull_records()
        ...apply result locally...
        engine.gate.mark_loaded()
        engine.gate.end_startup_window()
        engine.push_records(records)           # debounced
        await engine.push_records_immediate(records)  # deletes
    """

    def __init__(
        self,
        owner_id: str,
        remote: RemoteStoreInterface,
        connectivity: Optional[ConnectivityMonitor] = None,
        gate: Optional[LoadGate] = None,
        debounce_seconds: Optional[float] = None,
        synced_display_seconds: Optional[float] = None,
        error_display_seconds: Optional[float] = None,
        validator: Optional[PayloadValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        on_reconnect: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize the engine.

        Args:
            owner_id: Owner whose data this engine synchronizes
            remote: Remote store client
            connectivity: Online/offline signal. Defaults to always online.
            gate: Load gate. A fresh (closed) gate by default.
            debounce_seconds: Debounce window; from settings if None
            synced_display_seconds: How long `synced` is shown; from settings if None
            error_display_seconds: How long `error` is shown; from settings if None
            validator: Pre-push payload validator
            audit_logger: Where sync events are recorded. If None, they
                          only go to the structured log.
            on_reconnect: Called after every offline -> online transition
        """
        sync_settings = get_settings().sync
        self.owner_id = owner_id
        self._remote = remote
        self.connectivity = connectivity or ConnectivityMonitor()
        self.gate = gate or LoadGate()
        self._validator = validator or PayloadValidator()
        self._audit_logger = audit_logger
        self._on_reconnect = on_reconnect

        self._debounce_seconds = (
            debounce_seconds if debounce_seconds is not None
            else sync_settings.debounce_seconds
        )
        self._synced_display_seconds = (
            synced_display_seconds if synced_display_seconds is not None
            else sync_settings.synced_display_seconds
        )
        self._error_display_seconds = (
            error_display_seconds if error_display_seconds is not None
            else sync_settings.error_display_seconds
        )

        self._kinds = {
            kind: _KindState(
                kind,
                DebounceTimer(self._debounce_seconds, lambda k=kind: self._on_debounce_fire(k)),
            )
            for kind in EntityKind
        }

        self._state = SyncState(
            status=SyncStatus.IDLE if self.connectivity.is_online else SyncStatus.OFFLINE
        )
        self._reset_timer: Optional[DebounceTimer] = None
        self._listeners: list[StatusListener] = []
        self._background: set[asyncio.Task] = set()
        self._closed = False
        # Kinds whose pushes were held back while the load gate was closed
        self._held: set[EntityKind] = set()

        self._unsubscribe_connectivity = self.connectivity.subscribe(
            self._on_connectivity_change
        )

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def status(self) -> SyncStatus:
        return self._state.status

    @property
    def error_message(self) -> Optional[str]:
        return self._state.error_message

    @property
    def last_sync_time(self):
        return self._state.last_sync_time

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a listener called with the new SyncState on every change.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_status(
        self,
        status: SyncStatus,
        error_message: Optional[str] = None,
        synced: bool = False,
    ) -> None:
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None

        self._state = SyncState(
            status=status,
            error_message=error_message if status == SyncStatus.ERROR else None,
            last_sync_time=utc_now() if synced else self._state.last_sync_time,
        )

        if status == SyncStatus.SYNCED:
            self._arm_reset(SyncStatus.SYNCED, self._synced_display_seconds)
        elif status == SyncStatus.ERROR:
            self._arm_reset(SyncStatus.ERROR, self._error_display_seconds)

        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Status listener failed", status=status.value)

    def _finish(
        self,
        status: SyncStatus,
        error_message: Optional[str] = None,
        synced: bool = False,
    ) -> None:
        """Report the outcome of a remote call, unless we went offline meanwhile."""
        if not self.connectivity.is_online:
            if self.status != SyncStatus.OFFLINE:
                self._set_status(SyncStatus.OFFLINE)
            return
        self._set_status(status, error_message, synced=synced)

    def _arm_reset(self, expected: SyncStatus, delay: float) -> None:
        def reset() -> None:
            self._reset_timer = None
            if self._state.status == expected:
                self._set_status(SyncStatus.IDLE)

        self._reset_timer = DebounceTimer(delay, reset)
        self._reset_timer.start()

    # =========================================================================
    # CONNECTIVITY
    # =========================================================================

    def _on_connectivity_change(self, online: bool) -> None:
        self._spawn(self._record(AuditEventBuilder.connectivity_changed(self.owner_id, online)))
        if not online:
            self._set_status(SyncStatus.OFFLINE)
            return

        self._set_status(SyncStatus.IDLE)
        if self._on_reconnect is not None:
            self._on_reconnect()

    # =========================================================================
    # PUSH
    # =========================================================================

    def push_records(self, records: list[Expense]) -> None:
        """Schedule a debounced push of the whole record collection."""
        self._schedule(EntityKind.RECORDS, list(records))

    def push_settings(self, settings: BudgetSettings) -> None:
        """Schedule a debounced push of the settings record."""
        self._schedule(EntityKind.SETTINGS, settings)

    async def push_records_immediate(self, records: list[Expense]) -> bool:
        """
        Push now, bypassing the debounce window.

        Cancels any pending debounced push of records. Waits for an
        in-flight push of the same kind instead of running beside it.

        Returns:
            True if the remote store accepted the push
        """
        return await self._push_immediate(EntityKind.RECORDS, list(records))

    async def push_settings_immediate(self, settings: BudgetSettings) -> bool:
        return await self._push_immediate(EntityKind.SETTINGS, settings)

    def _may_push(self, kind: EntityKind) -> bool:
        if self._closed:
            return False
        if not self.connectivity.is_online:
            if self.status != SyncStatus.OFFLINE:
                self._set_status(SyncStatus.OFFLINE)
            logger.debug("Push dropped while offline", kind=kind.value)
            return False
        if not self.gate.can_sync():
            self._held.add(kind)
            logger.debug(
                "Push held until load gate opens",
                kind=kind.value,
                gate=self.gate.state.value,
            )
            return False
        return True

    def take_held(self) -> set[EntityKind]:
        """
        Kinds edited while the load gate was closed, cleared on read.

        The engine does not keep the held values. The caller re-reads its
        local store once the gate is open and pushes what it finds.
        """
        held, self._held = self._held, set()
        return held

    def is_held(self, kind: EntityKind) -> bool:
        return kind in self._held

    def _schedule(self, kind: EntityKind, value: Any) -> None:
        if not self._may_push(kind):
            return
        state = self._kinds[kind]
        state.pending = value
        state.generation += 1
        state.timer.start()

    def _on_debounce_fire(self, kind: EntityKind) -> None:
        state = self._kinds[kind]
        value, state.pending = state.pending, None
        task = asyncio.get_running_loop().create_task(
            self._run_push(kind, value, state.generation, immediate=False)
        )
        state.tasks.add(task)
        task.add_done_callback(state.tasks.discard)

    async def _push_immediate(self, kind: EntityKind, value: Any) -> bool:
        if not self._may_push(kind):
            return False
        state = self._kinds[kind]
        state.timer.cancel()
        state.pending = None
        state.generation += 1
        return await self._run_push(kind, value, state.generation, immediate=True)

    async def _run_push(
        self,
        kind: EntityKind,
        value: Any,
        generation: int,
        immediate: bool,
    ) -> bool:
        state = self._kinds[kind]
        async with state.lock:
            if not immediate and generation != state.generation:
                # A newer push of this kind was issued while we were queued
                return False
            if not self._may_push(kind):
                return False

            key = self._key(kind, value)
            if not immediate and state.has_snapshot and key == state.snapshot:
                await self._record(
                    AuditEventBuilder.push_skipped(self.owner_id, kind.value, "unchanged")
                )
                return False

            validation = (
                self._validator.validate_records(self.owner_id, value)
                if kind == EntityKind.RECORDS
                else self._validator.validate_settings(self.owner_id, value)
            )
            if validation.has_errors:
                message = "; ".join(
                    i.message for i in validation.issues if i.severity == "error"
                )
                self._set_status(SyncStatus.ERROR, message)
                await self._record(
                    AuditEventBuilder.push_failed(self.owner_id, kind.value, message)
                )
                return False

            self._set_status(SyncStatus.SYNCING)
            await self._record(
                AuditEventBuilder.push_started(self.owner_id, kind.value, immediate)
            )
            try:
                count = await self._write(kind, value)
            except Exception as e:
                logger.warning("Push failed", kind=kind.value, error=str(e))
                self._finish(SyncStatus.ERROR, str(e))
                await self._record(
                    AuditEventBuilder.push_failed(self.owner_id, kind.value, str(e))
                )
                return False

            state.snapshot = key
            state.has_snapshot = True
            self._finish(SyncStatus.SYNCED, synced=True)
            await self._record(
                AuditEventBuilder.push_succeeded(self.owner_id, kind.value, count)
            )
            return True

    async def _write(self, kind: EntityKind, value: Any) -> int:
        if kind == EntityKind.RECORDS:
            # Replace-sync: not atomic across the two calls
            await self._remote.delete_all_expenses(self.owner_id)
            return await self._remote.insert_expenses(self.owner_id, value)
        await self._remote.upsert_settings(value)
        return 1

    def _key(self, kind: EntityKind, value: Any) -> Optional[tuple]:
        if kind == EntityKind.RECORDS:
            return records_key(value)
        return settings_key(value)

    # =========================================================================
    # PULL
    # =========================================================================

    async def pull_records(self) -> PullResult:
        """
        Read the owner's full remote record collection.

        On success the result becomes the records snapshot. On failure the
        caller keeps its local copy; the failure is reported, not raised.
        """
        return await self._pull(EntityKind.RECORDS)

    async def pull_settings(self) -> PullResult:
        """Read the owner's remote settings (value is None if there are none)."""
        return await self._pull(EntityKind.SETTINGS)

    async def _pull(self, kind: EntityKind) -> PullResult:
        if self._closed:
            return PullResult(False)
        if not self.connectivity.is_online:
            self._set_status(SyncStatus.OFFLINE)
            return PullResult(False)

        state = self._kinds[kind]
        self._set_status(SyncStatus.SYNCING)
        try:
            if kind == EntityKind.RECORDS:
                value = await self._remote.fetch_expenses(self.owner_id)
                count = len(value)
            else:
                value = await self._remote.fetch_settings(self.owner_id)
                count = 0 if value is None else 1
        except Exception as e:
            logger.warning("Pull failed", kind=kind.value, error=str(e))
            self._finish(SyncStatus.ERROR, str(e))
            await self._record(
                AuditEventBuilder.pull_failed(self.owner_id, kind.value, str(e))
            )
            return PullResult(False)

        state.snapshot = self._key(kind, value)
        state.has_snapshot = True
        self._finish(SyncStatus.SYNCED, synced=True)
        await self._record(
            AuditEventBuilder.pull_succeeded(self.owner_id, kind.value, count)
        )
        return PullResult(True, value)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def has_pending_push(self, kind: Optional[EntityKind] = None) -> bool:
        """True while a push is scheduled, queued or in flight."""
        if kind is not None:
            return self._kinds[kind].busy
        return any(state.busy for state in self._kinds.values())

    async def flush(self) -> None:
        """Fire every armed debounce timer now and wait for all pushes."""
        for state in self._kinds.values():
            state.timer.fire_now()
        tasks = [t for state in self._kinds.values() for t in state.tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel timers and outstanding work. The engine is unusable afterwards."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_connectivity()
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None

        tasks = list(self._background)
        for state in self._kinds.values():
            state.timer.cancel()
            state.pending = None
            tasks.extend(state.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def _record(self, event: AuditEvent) -> None:
        if self._audit_logger is not None:
            await self._audit_logger.log(event)
        else:
            logger.debug(event.description, **event.to_log_dict())

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
