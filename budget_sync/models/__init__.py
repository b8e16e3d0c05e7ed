"""
Data Models Package

This package contains all Pydantic models used in Budget Sync.
All data flowing between the local store, the sync engine and the remote
store must conform to these schemas.
"""

from budget_sync.models.expense import (
    EDITABLE_EXPENSE_FIELDS,
    MONTHS_PER_YEAR,
    Expense,
    Frequency,
    utc_now,
)
from budget_sync.models.budget import BudgetSettings, PaymentMode
from budget_sync.models.sync import (
    ChangeEvent,
    ChangeEventType,
    EntityKind,
    SyncState,
    SyncStatus,
    ValidationIssue,
    ValidationResult,
)
from budget_sync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "EDITABLE_EXPENSE_FIELDS",
    "MONTHS_PER_YEAR",
    "Expense",
    "Frequency",
    "utc_now",
    # Settings models
    "BudgetSettings",
    "PaymentMode",
    # Sync models
    "ChangeEvent",
    "ChangeEventType",
    "EntityKind",
    "SyncState",
    "SyncStatus",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
