"""
Budget Projections

DESIGN DECISION: Projections are DETERMINISTIC and read only the local
store. They never wait for the remote store, so they work offline and
always agree with what the user sees.

Due months by frequency:
- monthly:   every active month
- quarterly: active months among January, April, July and October
- yearly:    the start month only

A per-month override (`monthly_amounts`) supersedes the scalar amount in
every active month, whatever the frequency.

Results are exact Decimals. Rounding is left to whoever displays them.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from budget_sync.models.budget import BudgetSettings
from budget_sync.models.expense import (
    MONTHS_PER_YEAR,
    QUARTER_START_MONTHS,
    Expense,
    Frequency,
)
from budget_sync.services.storage import LocalStoreInterface


ZERO = Decimal("0")
MONTHS = range(1, MONTHS_PER_YEAR + 1)


# =============================================================================
# RESULT MODELS
# =============================================================================

class BudgetSummary(BaseModel):
    """Yearly overview of expenses against income."""
    total_annual: Decimal = Field(..., description="Sum of all annual expense amounts")
    average_monthly: Decimal
    average_monthly_income: Decimal
    monthly_balance: Decimal = Field(..., description="Average income minus average expenses")
    annual_reserve: Decimal = Field(
        ...,
        description="Twelve monthly balances plus the previous-year carry-in"
    )


class MonthProjection(BaseModel):
    """Running balance at the end of one month."""
    month: int = Field(..., ge=1, le=12)
    income: Decimal
    expenses: Decimal
    balance: Decimal


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def monthly_amount(expense: Expense, month: int) -> Decimal:
    """Amount due for an expense in one month (1-12)."""
    if month < 1 or month > MONTHS_PER_YEAR:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    if not expense.is_active_in(month):
        return ZERO

    if expense.monthly_amounts is not None:
        return expense.monthly_amounts[month - 1]

    if expense.frequency == Frequency.YEARLY:
        return expense.amount if month == expense.start_month else ZERO
    if expense.frequency == Frequency.QUARTERLY:
        return expense.amount if month in QUARTER_START_MONTHS else ZERO
    return expense.amount


def annual_amount(expense: Expense) -> Decimal:
    return sum((monthly_amount(expense, m) for m in MONTHS), ZERO)


def monthly_totals(expenses: list[Expense]) -> list[Decimal]:
    """Twelve totals, January first."""
    return [
        sum((monthly_amount(e, m) for e in expenses), ZERO)
        for m in MONTHS
    ]


def _payments(settings: Optional[BudgetSettings]) -> list[Decimal]:
    if settings is None:
        return [ZERO] * MONTHS_PER_YEAR
    return [settings.payment_for_month(m) for m in MONTHS]


def summarize(
    expenses: list[Expense],
    settings: Optional[BudgetSettings],
) -> BudgetSummary:
    total_annual = sum((annual_amount(e) for e in expenses), ZERO)
    total_income = sum(_payments(settings), ZERO)
    previous_balance = settings.previous_balance if settings else ZERO

    average_monthly = total_annual / MONTHS_PER_YEAR
    average_income = total_income / MONTHS_PER_YEAR
    monthly_balance = average_income - average_monthly

    return BudgetSummary(
        total_annual=total_annual,
        average_monthly=average_monthly,
        average_monthly_income=average_income,
        monthly_balance=monthly_balance,
        annual_reserve=(total_income - total_annual) + previous_balance,
    )


def project_balance(
    expenses: list[Expense],
    settings: Optional[BudgetSettings],
) -> list[MonthProjection]:
    """Month-by-month running balance starting from the carry-in."""
    running = settings.previous_balance if settings else ZERO
    projection = []
    for month, income, spent in zip(MONTHS, _payments(settings), monthly_totals(expenses)):
        running = running + income - spent
        projection.append(MonthProjection(
            month=month,
            income=income,
            expenses=spent,
            balance=running,
        ))
    return projection


def totals_by_frequency(expenses: list[Expense]) -> dict[Frequency, Decimal]:
    """Annual totals per frequency; frequencies with no spend are left out."""
    totals = {frequency: ZERO for frequency in Frequency}
    for expense in expenses:
        totals[expense.frequency] += annual_amount(expense)
    return {frequency: total for frequency, total in totals.items() if total > 0}


# =============================================================================
# EXECUTOR
# =============================================================================

class BudgetQueryExecutor:
    """
    Runs projections against one owner's local data.

    GUARANTEES:
    - Only reads real data from the local store
    - Never estimates: an owner with no settings has zero income
    """

    def __init__(self, store: LocalStoreInterface, owner_id: str):
        self._store = store
        self.owner_id = owner_id

    async def _load(self) -> tuple[list[Expense], Optional[BudgetSettings]]:
        expenses = await self._store.list_expenses(self.owner_id)
        settings = await self._store.get_settings(self.owner_id)
        return expenses, settings

    def annual_amount(self, expense: Expense) -> Decimal:
        return annual_amount(expense)

    def monthly_amount(self, expense: Expense, month: int) -> Decimal:
        return monthly_amount(expense, month)

    async def monthly_totals(self) -> list[Decimal]:
        expenses = await self._store.list_expenses(self.owner_id)
        return monthly_totals(expenses)

    async def summary(self) -> BudgetSummary:
        expenses, settings = await self._load()
        return summarize(expenses, settings)

    async def balance_projection(self) -> list[MonthProjection]:
        expenses, settings = await self._load()
        return project_balance(expenses, settings)

    async def totals_by_frequency(self) -> dict[Frequency, Decimal]:
        expenses = await self._store.list_expenses(self.owner_id)
        return totals_by_frequency(expenses)
