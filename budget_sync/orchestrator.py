"""
Main Orchestrator for Budget Sync

This module ties together all the components and defines the
end-to-end flows for:
1. Mutation (edit -> local store -> history -> push)
2. Session load (pull -> local store -> gate opens -> seed push if needed)
3. Remote change (notification -> gated reload)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every mutation is written locally BEFORE any remote attempt
- Local store failures reach the caller; sync failures never do
- Deletes are pushed immediately, everything else is debounced
- Undo/redo replays through the very same mutation path

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional, Union

import structlog

from budget_sync.audit import AuditLogger
from budget_sync.history import (
    AddExpenseCommand,
    BulkDeleteCommand,
    Command,
    DeleteExpenseCommand,
    ImportExpensesCommand,
    InverseCommand,
    MutationTarget,
    UndoRedoStack,
    UpdateExpenseCommand,
)
from budget_sync.models.audit import AuditEvent, AuditEventBuilder
from budget_sync.models.budget import BudgetSettings, PaymentMode
from budget_sync.models.expense import (
    EDITABLE_EXPENSE_FIELDS,
    MONTHS_PER_YEAR,
    Expense,
    utc_now,
)
from budget_sync.models.sync import EntityKind
from budget_sync.queries import BudgetQueryExecutor
from budget_sync.services.storage import (
    AuditStorageInterface,
    ChangeFeedInterface,
    DuplicateError,
    GoogleSheetsChangeFeed,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
    LocalStoreInterface,
    NotFoundError,
    RemoteStoreInterface,
    SQLiteLocalStore,
)
from budget_sync.sync import ChangeNotifier, ConnectivityMonitor, SyncEngine, records_key
from budget_sync.validation import sanitize_expense_changes, sanitize_expense_input


logger = structlog.get_logger("budget_sync.orchestrator")


class _Audited:
    """Shared helper: record to the audit logger, or just the structured log."""

    _audit_logger: Optional[AuditLogger] = None

    async def _record(self, event: AuditEvent) -> None:
        if self._audit_logger is not None:
            await self._audit_logger.log(event)
        else:
            logger.info(event.description, **event.to_log_dict())


class ExpenseManager(_Audited, MutationTarget):
    """
    The mutation path for expenses.

    Public methods are user mutations: they write locally, record a
    command and schedule a push. The apply_* methods are the same path
    without the history step; undo and redo use them.
    """

    def __init__(
        self,
        owner_id: str,
        store: LocalStoreInterface,
        engine: SyncEngine,
        history: Optional[UndoRedoStack] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.owner_id = owner_id
        self._store = store
        self._engine = engine
        self.history = history or UndoRedoStack()
        self._audit_logger = audit_logger
        # While a load runs, every applied change is also kept here so it
        # can be replayed on top of the pulled collection
        self.journal: Optional[list[Command]] = None

    # =========================================================================
    # READS
    # =========================================================================

    async def list_expenses(self) -> list[Expense]:
        return await self._store.list_expenses(self.owner_id)

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        return await self._store.get_expense(self.owner_id, expense_id)

    # =========================================================================
    # USER MUTATIONS
    # =========================================================================

    async def add_expense(self, data: Optional[dict[str, Any]] = None) -> Expense:
        """
        Create an expense from raw input. Missing fields get defaults.

        Raises:
            LocalStoreError: If the local write fails
        """
        fields = sanitize_expense_input(data or {})
        fields["owner_id"] = self.owner_id
        expense = Expense(**fields)

        await self.apply_insert([expense])
        self._remember(AddExpenseCommand(expense))
        await self._record(
            AuditEventBuilder.expense_added(self.owner_id, expense.id, expense.name)
        )
        return expense

    async def update_expense(self, expense_id: str, changes: dict[str, Any]) -> Expense:
        """
        Change one or more fields of an expense.

        A change that leaves every synchronized field as it was is not
        written and not recorded.

        Raises:
            NotFoundError: If the expense doesn't exist
            ValueError: If a field is not editable
        """
        unknown = set(changes) - EDITABLE_EXPENSE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        before = await self._store.get_expense(self.owner_id, expense_id)
        if before is None:
            raise NotFoundError(f"Expense not found: {expense_id}")

        sanitized = sanitize_expense_changes(changes, before)
        after = Expense(**{**before.model_dump(), **sanitized, "updated_at": utc_now()})
        if after.sync_key() == before.sync_key():
            return before

        await self.apply_update(after)
        self._remember(UpdateExpenseCommand(before, after))
        await self._record(
            AuditEventBuilder.expense_updated(self.owner_id, expense_id, sorted(sanitized))
        )
        return after

    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete one expense and push immediately.

        Returns:
            False if the expense did not exist
        """
        expense = await self._store.get_expense(self.owner_id, expense_id)
        if expense is None:
            return False

        await self.apply_delete([expense_id])
        self._remember(DeleteExpenseCommand(expense))
        await self._record(
            AuditEventBuilder.expense_deleted(self.owner_id, expense_id, expense.name)
        )
        return True

    async def delete_expenses(self, expense_ids: list[str]) -> int:
        """Bulk delete with one immediate push and one history entry."""
        existing = []
        for expense_id in dict.fromkeys(expense_ids):
            expense = await self._store.get_expense(self.owner_id, expense_id)
            if expense is not None:
                existing.append(expense)
        if not existing:
            return 0

        await self.apply_delete([e.id for e in existing])
        self._remember(BulkDeleteCommand(existing))
        await self._record(
            AuditEventBuilder.expenses_bulk_deleted(self.owner_id, [e.id for e in existing])
        )
        return len(existing)

    async def import_expenses(
        self,
        items: list[Union[Expense, dict[str, Any]]],
    ) -> list[Expense]:
        """
        Replace the whole collection with imported expenses.

        Dict items are sanitized like user input. Every imported expense
        is re-owned by this owner. Undo restores the previous collection.
        """
        imported = []
        seen: set[str] = set()
        for item in items:
            data = item.model_dump() if isinstance(item, Expense) else dict(item)
            fields = sanitize_expense_input(data)
            fields["owner_id"] = self.owner_id
            if fields.get("id") in seen:
                fields.pop("id")  # Duplicate ids get a fresh one
            expense = Expense(**fields)
            seen.add(expense.id)
            imported.append(expense)

        previous = await self._store.list_expenses(self.owner_id)
        await self.apply_replace(imported)
        self._remember(ImportExpensesCommand(previous, imported))
        await self._record(AuditEventBuilder.expenses_imported(self.owner_id, len(imported)))
        return imported

    # =========================================================================
    # HISTORY
    # =========================================================================

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    async def undo(self) -> Optional[Command]:
        """Undo the last mutation. No-op (returns None) on an empty history."""
        command = await self.history.undo(self)
        if command is not None:
            self._journal(InverseCommand(command))
            await self._record(
                AuditEventBuilder.history_applied(self.owner_id, command.label, redo=False)
            )
        return command

    async def redo(self) -> Optional[Command]:
        command = await self.history.redo(self)
        if command is not None:
            self._journal(command)
            await self._record(
                AuditEventBuilder.history_applied(self.owner_id, command.label, redo=True)
            )
        return command

    def _remember(self, command: Command) -> None:
        self.history.record(command)
        self._journal(command)

    def _journal(self, command: Command) -> None:
        if self.journal is not None:
            self.journal.append(command)

    # =========================================================================
    # MUTATION PATH
    # =========================================================================

    async def apply_insert(self, expenses: list[Expense]) -> None:
        await self._store.insert_expenses(expenses)
        await self._push(immediate=False)

    async def apply_update(self, expense: Expense) -> None:
        await self._store.update_expense(expense)
        await self._push(immediate=False)

    async def apply_delete(self, expense_ids: list[str]) -> None:
        await self._store.delete_expenses(self.owner_id, expense_ids)
        await self._push(immediate=True)

    async def apply_replace(self, expenses: list[Expense]) -> None:
        await self._store.replace_expenses(self.owner_id, expenses)
        await self._push(immediate=False)

    async def _push(self, immediate: bool) -> None:
        records = await self._store.list_expenses(self.owner_id)
        if immediate:
            await self._engine.push_records_immediate(records)
        else:
            self._engine.push_records(records)


class SettingsManager(_Audited):
    """Mutation path for the per-owner payment settings (debounced push)."""

    def __init__(
        self,
        owner_id: str,
        store: LocalStoreInterface,
        engine: SyncEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.owner_id = owner_id
        self._store = store
        self._engine = engine
        self._audit_logger = audit_logger

    async def get_settings(self) -> BudgetSettings:
        """Stored settings, or unsaved defaults if there are none yet."""
        settings = await self._store.get_settings(self.owner_id)
        return settings or BudgetSettings(owner_id=self.owner_id)

    async def update_settings(self, **changes: Any) -> BudgetSettings:
        """
        Change settings fields and schedule a push.

        Raises:
            pydantic.ValidationError: If the result is not a valid settings record
        """
        if "owner_id" in changes:
            raise ValueError("Settings owner cannot be changed")

        current = await self.get_settings()
        updated = BudgetSettings(**{**current.model_dump(), **changes, "updated_at": utc_now()})
        stored = await self._store.get_settings(self.owner_id)
        if stored is not None and updated.sync_key() == stored.sync_key():
            return stored

        await self._store.save_settings(updated)
        self._engine.push_settings(updated)
        await self._record(
            AuditEventBuilder.settings_updated(self.owner_id, updated.payment_mode.value)
        )
        return updated

    async def switch_to_fixed(self, monthly_payment: Decimal) -> BudgetSettings:
        return await self.update_settings(
            payment_mode=PaymentMode.FIXED,
            monthly_payment=monthly_payment,
            monthly_payments=None,
        )

    async def switch_to_variable(
        self,
        monthly_payments: Optional[list[Decimal]] = None,
    ) -> BudgetSettings:
        """
        Switch to per-month payments.

        Without explicit values every month starts at the current fixed payment.
        """
        if monthly_payments is None:
            current = await self.get_settings()
            monthly_payments = [current.monthly_payment] * MONTHS_PER_YEAR
        return await self.update_settings(
            payment_mode=PaymentMode.VARIABLE,
            monthly_payments=list(monthly_payments),
        )


class BudgetSession(_Audited):
    """
    Everything one signed-in owner needs: engine, notifier, managers.

    Lifecycle:
    1. start() - gated load, then the change notifier subscribes
    2. mutations through `expenses` and `settings`
    3. close() - flush pending pushes, tear everything down exactly once
    """

    def __init__(
        self,
        owner_id: str,
        store: LocalStoreInterface,
        remote: RemoteStoreInterface,
        feed: Optional[ChangeFeedInterface] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        history_capacity: Optional[int] = None,
        debounce_seconds: Optional[float] = None,
        synced_display_seconds: Optional[float] = None,
        error_display_seconds: Optional[float] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.owner_id = owner_id
        self._store = store
        self._remote = remote
        self._audit_logger = audit_logger

        self.engine = SyncEngine(
            owner_id,
            remote,
            connectivity=connectivity,
            debounce_seconds=debounce_seconds,
            synced_display_seconds=synced_display_seconds,
            error_display_seconds=error_display_seconds,
            audit_logger=audit_logger,
            on_reconnect=self._on_reconnect,
        )
        self.expenses = ExpenseManager(
            owner_id,
            store,
            self.engine,
            history=UndoRedoStack(history_capacity),
            audit_logger=audit_logger,
        )
        self.settings = SettingsManager(owner_id, store, self.engine, audit_logger)
        self.queries = BudgetQueryExecutor(store, owner_id)

        self.notifier: Optional[ChangeNotifier] = None
        if feed is not None:
            self.notifier = ChangeNotifier(
                owner_id,
                feed,
                origin=remote.origin,
                reload=self.reload,
                is_push_pending=self.engine.has_pending_push,
                audit_logger=audit_logger,
            )

        self._started = False
        self._closed = False
        self._remote_loaded = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self.engine.connectivity

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def start(self) -> "BudgetSession":
        """Run the gated load and begin listening for remote changes."""
        if self._closed:
            raise RuntimeError("Session is closed")
        if self._started:
            return self
        self._started = True

        await self._load(initial=True)
        if self.notifier is not None:
            self.notifier.start()
        logger.info("Session started", owner_id=self.owner_id)
        return self

    async def recent_activity(self, limit: int = 50) -> list[AuditEvent]:
        """Persisted sync and edit events for this owner, newest first."""
        if self._audit_logger is None:
            return []
        return await self._audit_logger.recent(owner_id=self.owner_id, limit=limit)

    async def reload(self) -> None:
        """Re-run the gated pull path (after a remote change)."""
        if self._closed or not self._started:
            return
        await self._record(AuditEventBuilder.reload_triggered(self.owner_id, "reload requested"))
        await self._load(initial=False)

    async def _load(self, initial: bool) -> None:
        """
        Pull both kinds and apply them locally with pushes held back.

        - Remote has data: it replaces the local copy; edits made while the
          pull ran are replayed on top of it
        - Remote is empty on the first successful load, local is not:
          exactly one seed push per kind
        - Remote is empty on a later reload: another device emptied it,
          so the local copy is emptied too
        - Pull failed or offline: the local copy is kept, nothing is seeded
        The gate opens in every case, then held edits are pushed once.
        """
        gate = self.engine.gate
        gate.begin_loading()
        self.expenses.journal = []
        first_load = not self._remote_loaded
        seed_records: Optional[list[Expense]] = None
        seed_settings: Optional[BudgetSettings] = None
        try:
            pulled = await self.engine.pull_records()
            local_records = await self._store.list_expenses(self.owner_id)
            if pulled.succeeded:
                self._remote_loaded = True
                if pulled.value or not first_load:
                    if records_key(pulled.value) != records_key(local_records):
                        await self._replace_records(pulled.value)
                elif local_records:
                    seed_records = local_records

            pulled_settings = await self.engine.pull_settings()
            local_settings = await self._store.get_settings(self.owner_id)
            if pulled_settings.succeeded and not self.engine.is_held(EntityKind.SETTINGS):
                if pulled_settings.value is not None:
                    await self._store.save_settings(pulled_settings.value)
                elif local_settings is not None and first_load:
                    seed_settings = local_settings
        finally:
            self.expenses.journal = None
            gate.mark_loaded()
            gate.end_startup_window()

        if seed_records is not None:
            logger.info("Seeding remote records", owner_id=self.owner_id, count=len(seed_records))
            await self.engine.push_records_immediate(seed_records)
        if seed_settings is not None:
            await self.engine.push_settings_immediate(seed_settings)
        await self._push_held()
        logger.debug("Load finished", owner_id=self.owner_id, initial=initial)

    async def _replace_records(self, records: list[Expense]) -> None:
        """Adopt the pulled collection, then replay edits made during the load."""
        journal, self.expenses.journal = self.expenses.journal or [], None
        await self._store.replace_expenses(self.owner_id, records)
        # Recorded commands would now reverse against data they never saw
        self.expenses.history.clear()

        for command in journal:
            try:
                await command.redo(self.expenses)
            except (DuplicateError, NotFoundError) as e:
                logger.warning(
                    "Edit made during load no longer applies",
                    owner_id=self.owner_id,
                    command=command.label,
                    error=str(e),
                )

    async def _push_held(self) -> None:
        """Push the local copy of every kind edited while the gate was closed."""
        held = self.engine.take_held()
        if EntityKind.RECORDS in held:
            self.engine.push_records(await self._store.list_expenses(self.owner_id))
        if EntityKind.SETTINGS in held:
            settings = await self._store.get_settings(self.owner_id)
            if settings is not None:
                self.engine.push_settings(settings)

    def _on_reconnect(self) -> None:
        if self._closed or not self._started:
            return
        if self._remote_loaded:
            task = asyncio.get_running_loop().create_task(self._push_local_state())
        else:
            # Never saw the remote copy; pull before anything is pushed
            task = asyncio.get_running_loop().create_task(self.reload())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _push_local_state(self) -> None:
        """Schedule debounced pushes of both kinds; unchanged data is skipped."""
        self.engine.push_records(await self._store.list_expenses(self.owner_id))
        settings = await self._store.get_settings(self.owner_id)
        if settings is not None:
            self.engine.push_settings(settings)

    async def close(self) -> None:
        """Flush pending pushes and release every resource exactly once."""
        if self._closed:
            return
        self._closed = True

        if self.notifier is not None:
            await self.notifier.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        await self.engine.flush()
        await self.engine.shutdown()
        logger.info("Session closed", owner_id=self.owner_id)

    async def __aenter__(self) -> "BudgetSession":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def create_session(
    owner_id: str,
    store: Optional[LocalStoreInterface] = None,
    remote: Optional[RemoteStoreInterface] = None,
    feed: Optional[ChangeFeedInterface] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
) -> BudgetSession:
    """
    Factory function to create a session with its collaborators.

    Args:
        owner_id: The signed-in owner
        store: Local store. Defaults to SQLite at the configured path.
        remote: Remote store. Defaults to Google Sheets; when given, the
                change feed is only used if passed explicitly.
        feed: Change feed. Defaults to polling the Google Sheets change log.
        connectivity: Online/offline signal. Defaults to always online.

    Returns:
        An unstarted BudgetSession
    """
    store = store or SQLiteLocalStore()

    if remote is None:
        sheets_client = GoogleSheetsClient()
        remote = GoogleSheetsRemoteStore(sheets_client)
        feed = feed or GoogleSheetsChangeFeed(sheets_client)

    audit_logger = AuditLogger(
        store if isinstance(store, AuditStorageInterface) else None
    )

    return BudgetSession(
        owner_id,
        store,
        remote,
        feed=feed,
        connectivity=connectivity,
        audit_logger=audit_logger,
    )
