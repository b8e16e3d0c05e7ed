"""
Synchronization Models

Shared vocabulary between the sync engine, the change notifier and
whoever reads sync state (typically a status indicator in the UI).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from budget_sync.models.expense import utc_now


# =============================================================================
# ENUMS
# =============================================================================

class SyncStatus(str, Enum):
    """
    Process-wide sync status.

    Written only by the sync engine, read by anyone.
    """
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"       # Shown briefly, then back to idle
    ERROR = "error"         # Shown briefly with a message, then back to idle
    OFFLINE = "offline"     # All push/pull calls are no-ops


class EntityKind(str, Enum):
    """The two kinds of data that are synchronized independently."""
    RECORDS = "records"
    SETTINGS = "settings"


class ChangeEventType(str, Enum):
    """Row-level change reported by the remote change feed."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# =============================================================================
# EVENTS AND STATE
# =============================================================================

class ChangeEvent(BaseModel):
    """
    A change notification from the remote backend.

    Carries no payload: receivers re-pull the data instead of applying
    partial rows.
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str
    kind: EntityKind
    event_type: ChangeEventType
    origin: str = Field(
        ...,
        description="Session ID of the writer that caused the change"
    )
    occurred_at: datetime = Field(default_factory=utc_now)


class SyncState(BaseModel):
    """Immutable view of the engine's status, handed to status listeners."""
    model_config = ConfigDict(frozen=True)

    status: SyncStatus = SyncStatus.IDLE
    error_message: Optional[str] = None
    last_sync_time: Optional[datetime] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'duplicate_id', 'foreign_owner')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of validating a payload before it is pushed."""

    kind: EntityKind
    validated_at: datetime = Field(default_factory=utc_now)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def is_valid(self) -> bool:
        return not self.has_errors
