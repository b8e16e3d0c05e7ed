"""Audit logging package."""

from budget_sync.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
