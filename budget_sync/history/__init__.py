"""Undo/redo history package."""

from budget_sync.history.commands import (
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

__all__ = [
    "AddExpenseCommand",
    "BulkDeleteCommand",
    "Command",
    "DeleteExpenseCommand",
    "ImportExpensesCommand",
    "InverseCommand",
    "MutationTarget",
    "UndoRedoStack",
    "UpdateExpenseCommand",
]
