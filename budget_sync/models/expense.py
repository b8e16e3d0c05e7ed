"""
Expense Record Model

An expense is a recurring cost the user budgets for: a name, an amount,
how often it is due, and which months of the year it is active.

DESIGN DECISION: We use Pydantic v2 models for records.
Every record that reaches the local store or the remote store has passed
through this schema, so both stores can trust the shape of what they hold.

The `id` is generated locally when the record is created and never changes,
which keeps a record recognisable across devices even though the remote
collection is replaced wholesale on every push.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MONTHS_PER_YEAR = 12

# Months in which a quarterly expense is due
QUARTER_START_MONTHS = (1, 4, 7, 10)


def utc_now() -> datetime:
    """Timezone-aware current time, used for all record timestamps."""
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    return str(uuid4())


class Frequency(str, Enum):
    """How often an expense is due."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


MonthlyAmount = Annotated[Decimal, Field(ge=0, decimal_places=2)]


class Expense(BaseModel):
    """
    A single recurring expense owned by one user.

    The per-month override (`monthly_amounts`) is optional. When present it
    supersedes the scalar `amount` for projections.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: str = Field(
        default_factory=new_record_id,
        min_length=1,
        description="Owner-scoped identifier, stable across sync"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="ID of the user who owns this record"
    )

    # Business fields
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name of the expense"
    )
    amount: Annotated[
        Decimal,
        Field(ge=0, decimal_places=2, description="Amount per occurrence")
    ]
    frequency: Frequency = Field(
        default=Frequency.MONTHLY,
        description="How often the expense is due"
    )
    start_month: int = Field(
        default=1,
        ge=1,
        le=12,
        description="First active month (1-12)"
    )
    end_month: int = Field(
        default=12,
        ge=1,
        le=12,
        description="Last active month (1-12)"
    )
    monthly_amounts: Optional[list[MonthlyAmount]] = Field(
        default=None,
        description="Optional per-month override, January first"
    )

    # Timestamps (local bookkeeping, not part of sync equality)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('monthly_amounts')
    @classmethod
    def validate_monthly_amounts(
        cls, v: Optional[list[Decimal]]
    ) -> Optional[list[Decimal]]:
        if v is not None and len(v) != MONTHS_PER_YEAR:
            raise ValueError(
                f"Monthly amounts must have exactly {MONTHS_PER_YEAR} values, got {len(v)}"
            )
        return v

    @model_validator(mode='after')
    def validate_month_range(self) -> 'Expense':
        """End month cannot come before start month."""
        if self.end_month < self.start_month:
            raise ValueError("End month cannot be before start month")
        return self

    def is_active_in(self, month: int) -> bool:
        return self.start_month <= month <= self.end_month

    def sync_key(self) -> tuple:
        """
        Hashable tuple of every synchronized field.

        Timestamps are excluded: two records that differ only in when they
        were touched locally are the same record as far as the remote
        store is concerned.
        """
        return (
            self.id,
            self.owner_id,
            self.name,
            self.amount,
            self.frequency.value,
            self.start_month,
            self.end_month,
            tuple(self.monthly_amounts) if self.monthly_amounts is not None else None,
        )


# Fields a caller may change through an update
EDITABLE_EXPENSE_FIELDS = frozenset({
    "name",
    "amount",
    "frequency",
    "start_month",
    "end_month",
    "monthly_amounts",
})
