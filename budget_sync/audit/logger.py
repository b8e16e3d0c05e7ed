"""
Audit Logger

DESIGN DECISION: Every push, pull and user mutation leaves a trace.
A trace answers "what reached the remote store, and when" on a device
that may have been offline for days, so it is written to the local
database and not only to the process log.

The audit logger:
- Is async so it composes with the sync engine's awaits
- Never raises: a failing audit write must not break a sync or an edit
"""

import logging
from typing import Optional

import structlog

from budget_sync.config import get_settings
from budget_sync.models.audit import AuditEvent, AuditSeverity
from budget_sync.services.storage import AuditStorageInterface


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog for JSON output through the stdlib logging tree.

    Args:
        level: Minimum level name. Defaults to AppSettings.effective_log_level.
    """
    level_name = level or get_settings().app.effective_log_level
    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name.upper()))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


_LEVEL_FOR_SEVERITY = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Writes sync and mutation events to the structured log and, when a
    storage backend is given, to its sync_log table.
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("budget_sync.audit")

    @property
    def persists(self) -> bool:
        return self._storage is not None

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns:
            False only if a storage backend is configured and the write failed
        """
        method = getattr(self._logger, _LEVEL_FOR_SEVERITY[event.severity])
        method(event.description, **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "Audit write failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def recent(self, owner_id: Optional[str] = None, limit: int = 100) -> list[AuditEvent]:
        """Most recent persisted events, newest first. Empty without storage."""
        if self._storage is None:
            return []
        return await self._storage.get_recent_events(owner_id=owner_id, limit=limit)
