"""Validation package."""

from budget_sync.validation.validator import (
    PayloadValidationError,
    PayloadValidator,
    clamp_month_range,
    parse_amount,
    sanitize_expense_changes,
    sanitize_expense_input,
)

__all__ = [
    "PayloadValidationError",
    "PayloadValidator",
    "clamp_month_range",
    "parse_amount",
    "sanitize_expense_changes",
    "sanitize_expense_input",
]
