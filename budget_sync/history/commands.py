"""
Undo/Redo Command Stack

DESIGN DECISION: Every forward mutation of the expense collection is
recorded as an invertible command carrying the full data needed to reverse
it (a delete keeps the exact prior record, an update keeps both versions).

Undo and redo replay commands through the SAME mutation path that ordinary
edits use (a MutationTarget). There is no special casing: the sync engine
sees a replayed delete exactly like a user delete (immediate push) and a
replayed add or update exactly like a user edit (debounced push).

History is linear. A new forward mutation after one or more undos clears
the redo stack. The undo history is bounded; the oldest entries are dropped.
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Optional

import structlog

from budget_sync.config import get_settings
from budget_sync.models.expense import Expense


logger = structlog.get_logger("budget_sync.history")


class MutationTarget(ABC):
    """
    The local mutation path commands replay through.

    Implementations write the local store and schedule the matching push,
    without recording anything in the history.
    """

    @abstractmethod
    async def apply_insert(self, expenses: list[Expense]) -> None:
        pass

    @abstractmethod
    async def apply_update(self, expense: Expense) -> None:
        pass

    @abstractmethod
    async def apply_delete(self, expense_ids: list[str]) -> None:
        pass

    @abstractmethod
    async def apply_replace(self, expenses: list[Expense]) -> None:
        pass


class Command(ABC):
    """One recorded, invertible mutation."""

    label: str = "change"

    @abstractmethod
    async def undo(self, target: MutationTarget) -> None:
        pass

    @abstractmethod
    async def redo(self, target: MutationTarget) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.label}>"


class AddExpenseCommand(Command):
    def __init__(self, expense: Expense):
        self.expense = expense
        self.label = f"add {expense.name}"

    async def undo(self, target: MutationTarget) -> None:
        await target.apply_delete([self.expense.id])

    async def redo(self, target: MutationTarget) -> None:
        await target.apply_insert([self.expense])


class UpdateExpenseCommand(Command):
    def __init__(self, before: Expense, after: Expense):
        if before.id != after.id:
            raise ValueError("Update command must refer to a single expense")
        self.before = before
        self.after = after
        self.label = f"edit {after.name}"

    async def undo(self, target: MutationTarget) -> None:
        await target.apply_update(self.before)

    async def redo(self, target: MutationTarget) -> None:
        await target.apply_update(self.after)


class DeleteExpenseCommand(Command):
    """Inverse is re-insert with the exact prior fields, id included."""

    def __init__(self, expense: Expense):
        self.expense = expense
        self.label = f"delete {expense.name}"

    async def undo(self, target: MutationTarget) -> None:
        await target.apply_insert([self.expense])

    async def redo(self, target: MutationTarget) -> None:
        await target.apply_delete([self.expense.id])


class BulkDeleteCommand(Command):
    def __init__(self, expenses: list[Expense]):
        self.expenses = list(expenses)
        self.label = f"delete {len(self.expenses)} expenses"

    async def undo(self, target: MutationTarget) -> None:
        await target.apply_insert(self.expenses)

    async def redo(self, target: MutationTarget) -> None:
        await target.apply_delete([e.id for e in self.expenses])


class ImportExpensesCommand(Command):
    """Replace-all import; undo restores the collection as it was."""

    def __init__(self, previous: list[Expense], imported: list[Expense]):
        self.previous = list(previous)
        self.imported = list(imported)
        self.label = f"import {len(self.imported)} expenses"

    async def undo(self, target: MutationTarget) -> None:
        await target.apply_replace(self.previous)

    async def redo(self, target: MutationTarget) -> None:
        await target.apply_replace(self.imported)


class InverseCommand(Command):
    """A command run backwards: replaying it undoes the wrapped command."""

    def __init__(self, command: Command):
        self.command = command
        self.label = f"undo {command.label}"

    async def undo(self, target: MutationTarget) -> None:
        await self.command.redo(target)

    async def redo(self, target: MutationTarget) -> None:
        await self.command.undo(target)


class UndoRedoStack:
    """
    Bounded linear history of commands.

    A command only moves between the stacks after its replay succeeded;
    if the local store rejects the replay, the error propagates and the
    history is left as it was.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity if capacity is not None else get_settings().history.capacity
        if self.capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {self.capacity}")
        self._undo: deque[Command] = deque(maxlen=self.capacity)
        self._redo: deque[Command] = deque(maxlen=self.capacity)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def record(self, command: Command) -> None:
        """Record a forward mutation. Clears the redo stack."""
        self._undo.append(command)
        self._redo.clear()

    async def undo(self, target: MutationTarget) -> Optional[Command]:
        """
        Reverse the most recent command.

        Returns:
            The command undone, or None if there was nothing to undo
        """
        if not self._undo:
            return None
        command = self._undo[-1]
        await command.undo(target)
        self._undo.pop()
        self._redo.append(command)
        logger.debug("Undo applied", command=command.label)
        return command

    async def redo(self, target: MutationTarget) -> Optional[Command]:
        """Re-apply the most recently undone command."""
        if not self._redo:
            return None
        command = self._redo[-1]
        await command.redo(target)
        self._redo.pop()
        self._undo.append(command)
        logger.debug("Redo applied", command=command.label)
        return command

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
