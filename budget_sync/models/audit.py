"""
Audit Models for Budget Sync

Every push, pull, remote change and user mutation is recorded as an audit
event. This provides:
1. Traceability of what reached the remote store and when
2. Debugging information when devices disagree
3. A local history the user can inspect while offline

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budget_sync.models.expense import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Push
    PUSH_STARTED = "push_started"
    PUSH_SUCCEEDED = "push_succeeded"
    PUSH_SKIPPED = "push_skipped"
    PUSH_FAILED = "push_failed"

    # Pull
    PULL_SUCCEEDED = "pull_succeeded"
    PULL_FAILED = "pull_failed"

    # Remote changes
    REMOTE_CHANGE_RECEIVED = "remote_change_received"
    RELOAD_TRIGGERED = "reload_triggered"

    # Connectivity
    CONNECTIVITY_CHANGED = "connectivity_changed"

    # Local mutations
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSES_BULK_DELETED = "expenses_bulk_deleted"
    EXPENSES_IMPORTED = "expenses_imported"
    SETTINGS_UPDATED = "settings_updated"

    # History
    UNDO_APPLIED = "undo_applied"
    REDO_APPLIED = "redo_applied"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what is this about?
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner whose data the event concerns"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'records', 'settings', 'expense')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the local sync_log table.

        Columns in order:
        (event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, description, details_json, error_message, is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id,
            self.entity_type,
            self.entity_id,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_message,
            int(self.is_user_action),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.push_succeeded(owner_id, "records", 3)
        event = AuditEventBuilder.expense_deleted(owner_id, expense_id, "Rent")
    """

    @staticmethod
    def push_started(owner_id: str, kind: str, immediate: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_STARTED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Pushing {kind}" + (" (immediate)" if immediate else ""),
            details={"immediate": immediate},
        )

    @staticmethod
    def push_succeeded(owner_id: str, kind: str, item_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_SUCCEEDED,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Pushed {kind} ({item_count} items)",
            details={"item_count": item_count},
        )

    @staticmethod
    def push_skipped(owner_id: str, kind: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_SKIPPED,
            severity=AuditSeverity.DEBUG,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Skipped {kind} push: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def push_failed(owner_id: str, kind: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Failed to push {kind}",
            error_message=error_message,
        )

    @staticmethod
    def pull_succeeded(owner_id: str, kind: str, item_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PULL_SUCCEEDED,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Pulled {kind} ({item_count} items)",
            details={"item_count": item_count},
        )

    @staticmethod
    def pull_failed(owner_id: str, kind: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PULL_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Failed to pull {kind}; keeping local data",
            error_message=error_message,
        )

    @staticmethod
    def remote_change_received(
        owner_id: str,
        kind: str,
        event_type: str,
        origin: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_CHANGE_RECEIVED,
            owner_id=owner_id,
            entity_type=kind,
            description=f"Remote {event_type} on {kind} from another device",
            details={"change": event_type, "origin": origin},
        )

    @staticmethod
    def reload_triggered(owner_id: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RELOAD_TRIGGERED,
            owner_id=owner_id,
            description=f"Reloading from remote: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def connectivity_changed(owner_id: Optional[str], online: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONNECTIVITY_CHANGED,
            severity=AuditSeverity.INFO if online else AuditSeverity.WARNING,
            owner_id=owner_id,
            description="Back online" if online else "Offline mode",
            details={"online": online},
        )

    @staticmethod
    def expense_added(owner_id: str, expense_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            owner_id=owner_id,
            entity_type="expense",
            entity_id=expense_id,
            description=f"Expense added: {name}",
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        owner_id: str,
        expense_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            owner_id=owner_id,
            entity_type="expense",
            entity_id=expense_id,
            description=f"Expense updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(owner_id: str, expense_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            owner_id=owner_id,
            entity_type="expense",
            entity_id=expense_id,
            description=f"Expense deleted: {name}",
            is_user_action=True,
        )

    @staticmethod
    def expenses_bulk_deleted(owner_id: str, expense_ids: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSES_BULK_DELETED,
            owner_id=owner_id,
            entity_type="expense",
            description=f"{len(expense_ids)} expenses deleted",
            details={"expense_ids": expense_ids},
            is_user_action=True,
        )

    @staticmethod
    def expenses_imported(owner_id: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSES_IMPORTED,
            owner_id=owner_id,
            entity_type="expense",
            description=f"Expenses replaced by import ({count} items)",
            details={"item_count": count},
            is_user_action=True,
        )

    @staticmethod
    def settings_updated(owner_id: str, payment_mode: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            owner_id=owner_id,
            entity_type="settings",
            description=f"Payment settings updated ({payment_mode} mode)",
            details={"payment_mode": payment_mode},
            is_user_action=True,
        )

    @staticmethod
    def history_applied(owner_id: str, command: str, redo: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REDO_APPLIED if redo else AuditEventType.UNDO_APPLIED,
            owner_id=owner_id,
            description=f"{'Redo' if redo else 'Undo'}: {command}",
            details={"command": command},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        owner_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
