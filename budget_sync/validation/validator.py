"""
Input Sanitization and Payload Validation

DESIGN DECISION: Validation happens at two distinct points:

POINT 1 - INPUT SANITIZATION (before a record is written locally):
- Raw form values (strings, numbers, None) are coerced into a valid record
- Amounts accept both "1234.56" and the comma-decimal "1.234,56" form
- Negative amounts become 0, months are clamped, end month >= start month
- The user never gets stuck on an edit; the record is always storable

POINT 2 - PAYLOAD VALIDATION (before a push reaches the remote store):
- The whole payload is checked, not single fields
- Foreign-owner records and duplicate ids are errors
- Payload validation NEVER fixes anything. It reports, and the push is
  refused so a malformed payload cannot replace good remote data.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from budget_sync.models.budget import BudgetSettings, PaymentMode
from budget_sync.models.expense import MONTHS_PER_YEAR, Expense, Frequency
from budget_sync.models.sync import EntityKind, ValidationIssue, ValidationResult


DEFAULT_EXPENSE_NAME = "New expense"
DEFAULT_EXPENSE_AMOUNT = Decimal("100")

_NUMBER_PATTERN = re.compile(r"^-?[\d.,]+$")


# =============================================================================
# INPUT SANITIZATION
# =============================================================================

def parse_amount(value: Any) -> Decimal:
    """
    Parse a user-entered amount. Never raises.

    A comma is read as the decimal separator (periods are then thousands
    separators); without a comma a period is the decimal point.
    Anything unparseable becomes 0, and so does anything negative.

    Examples:
        parse_amount("100,95")   -> Decimal("100.95")
        parse_amount("1.234,56") -> Decimal("1234.56")
        parse_amount(-50)        -> Decimal("0")
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")

    if isinstance(value, (int, float, Decimal)):
        parsed = Decimal(str(value))
    else:
        text = str(value).strip()
        if not text or not _NUMBER_PATTERN.match(text):
            return Decimal("0")
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return Decimal("0")

    if not parsed.is_finite() or parsed < 0:
        return Decimal("0")
    return parsed.quantize(Decimal("0.01"))


def _parse_month(value: Any, default: int) -> int:
    try:
        month = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(MONTHS_PER_YEAR, month))


def clamp_month_range(start_month: Any, end_month: Any) -> tuple[int, int]:
    """Clamp both months into 1-12 and raise the end to at least the start."""
    start = _parse_month(start_month, 1)
    end = max(start, _parse_month(end_month, MONTHS_PER_YEAR))
    return start, end


def sanitize_expense_input(data: dict[str, Any]) -> dict[str, Any]:
    """
    Coerce raw expense input into field values an Expense accepts.

    Missing fields get defaults (name "New expense", amount 100, monthly,
    January to December). Keys other than the editable fields pass through
    untouched. A per-month array that is not exactly 12 values is dropped.
    """
    sanitized = dict(data)

    name = data.get("name")
    sanitized["name"] = (
        name.strip() if isinstance(name, str) and name.strip() else DEFAULT_EXPENSE_NAME
    )

    sanitized["amount"] = (
        parse_amount(data["amount"]) if "amount" in data else DEFAULT_EXPENSE_AMOUNT
    )

    try:
        sanitized["frequency"] = Frequency(data.get("frequency") or Frequency.MONTHLY)
    except ValueError:
        sanitized["frequency"] = Frequency.MONTHLY

    start, end = clamp_month_range(data.get("start_month"), data.get("end_month"))
    sanitized["start_month"] = start
    sanitized["end_month"] = end

    if "monthly_amounts" in data:
        amounts = data["monthly_amounts"]
        if isinstance(amounts, (list, tuple)) and len(amounts) == MONTHS_PER_YEAR:
            sanitized["monthly_amounts"] = [parse_amount(a) for a in amounts]
        else:
            sanitized["monthly_amounts"] = None

    return sanitized


def sanitize_expense_changes(changes: dict[str, Any], current: Expense) -> dict[str, Any]:
    """
    Sanitize a partial update against the record it applies to.

    Only the keys present in `changes` are returned; the month range is
    clamped using the current value of whichever month is not being changed.
    """
    merged = {
        "name": current.name,
        "amount": current.amount,
        "frequency": current.frequency,
        "start_month": current.start_month,
        "end_month": current.end_month,
        **changes,
    }
    sanitized = sanitize_expense_input(merged)

    result = {key: sanitized[key] for key in changes if key in sanitized}
    # Raising the start month can drag the end month with it
    if "start_month" in changes and sanitized["end_month"] != current.end_month:
        result["end_month"] = sanitized["end_month"]
    return result


# =============================================================================
# PAYLOAD VALIDATION
# =============================================================================

class PayloadValidator:
    """Checks a full push payload before it replaces the remote copy."""

    def validate_records(
        self,
        owner_id: str,
        records: list[Expense],
    ) -> ValidationResult:
        issues = []
        seen: set[str] = set()

        for record in records:
            if record.owner_id != owner_id:
                issues.append(ValidationIssue(
                    field="owner_id",
                    issue_type="foreign_owner",
                    message=f"Record {record.id} belongs to another owner",
                    severity="error",
                ))
            if record.id in seen:
                issues.append(ValidationIssue(
                    field="id",
                    issue_type="duplicate_id",
                    message=f"Record id {record.id} appears more than once",
                    severity="error",
                ))
            seen.add(record.id)

        return ValidationResult(kind=EntityKind.RECORDS, issues=issues)

    def validate_settings(
        self,
        owner_id: str,
        settings: Optional[BudgetSettings],
    ) -> ValidationResult:
        issues = []

        if settings is None:
            issues.append(ValidationIssue(
                field="settings",
                issue_type="missing",
                message="No settings to push",
                severity="error",
            ))
        else:
            if settings.owner_id != owner_id:
                issues.append(ValidationIssue(
                    field="owner_id",
                    issue_type="foreign_owner",
                    message="Settings belong to another owner",
                    severity="error",
                ))
            if (
                settings.payment_mode == PaymentMode.FIXED
                and settings.monthly_payment == 0
            ):
                issues.append(ValidationIssue(
                    field="monthly_payment",
                    issue_type="zero_income",
                    message="Monthly payment is zero",
                    severity="warning",
                ))

        return ValidationResult(kind=EntityKind.SETTINGS, issues=issues)


class PayloadValidationError(Exception):
    """A push payload failed validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(f"Invalid {result.kind.value} payload: {messages}")
