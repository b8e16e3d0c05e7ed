"""
Budget Settings Model

The settings record is a per-owner singleton holding the income side of
the budget: either one fixed monthly payment or twelve variable payments,
plus the balance carried in from the previous year.

DESIGN DECISION: The payment mode is explicit. A fixed-mode settings record
never carries a payment array and a variable-mode record always carries
exactly twelve values, so there is no guessing about which one applies.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from budget_sync.models.expense import MONTHS_PER_YEAR, MonthlyAmount, utc_now


class PaymentMode(str, Enum):
    """How the monthly income is expressed."""
    FIXED = "fixed"
    VARIABLE = "variable"


class BudgetSettings(BaseModel):
    """Owner-scoped payment settings. Upserted, never duplicated."""
    model_config = ConfigDict(str_strip_whitespace=True)

    owner_id: str = Field(
        ...,
        min_length=1,
        description="ID of the user who owns these settings"
    )
    payment_mode: PaymentMode = Field(
        default=PaymentMode.FIXED,
        description="Whether a single payment or a per-month array applies"
    )
    monthly_payment: Annotated[
        Decimal,
        Field(ge=0, decimal_places=2, description="Fixed monthly payment")
    ] = Decimal("0")
    monthly_payments: Optional[list[MonthlyAmount]] = Field(
        default=None,
        description="Per-month payments, January first (variable mode only)"
    )
    previous_balance: Annotated[
        Decimal,
        Field(decimal_places=2, description="Balance carried in from last year")
    ] = Decimal("0")
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_payment_mode(self) -> 'BudgetSettings':
        """Enforce the mutually exclusive payment modes."""
        if self.payment_mode == PaymentMode.VARIABLE:
            if self.monthly_payments is None:
                raise ValueError("Variable payment mode requires monthly payments")
            if len(self.monthly_payments) != MONTHS_PER_YEAR:
                raise ValueError(
                    f"Monthly payments must have exactly {MONTHS_PER_YEAR} values, "
                    f"got {len(self.monthly_payments)}"
                )
        elif self.monthly_payments is not None:
            raise ValueError("Fixed payment mode cannot carry monthly payments")
        return self

    def payment_for_month(self, month: int) -> Decimal:
        """Income for a month (1-12) under the current payment mode."""
        if month < 1 or month > MONTHS_PER_YEAR:
            raise ValueError(f"Month must be between 1 and 12, got {month}")
        if self.payment_mode == PaymentMode.VARIABLE:
            return self.monthly_payments[month - 1]
        return self.monthly_payment

    def annual_income(self) -> Decimal:
        return sum(
            (self.payment_for_month(m) for m in range(1, MONTHS_PER_YEAR + 1)),
            Decimal("0"),
        )

    def sync_key(self) -> tuple:
        """Hashable tuple of the synchronized fields (timestamp excluded)."""
        return (
            self.owner_id,
            self.payment_mode.value,
            self.monthly_payment,
            tuple(self.monthly_payments) if self.monthly_payments is not None else None,
            self.previous_balance,
        )
