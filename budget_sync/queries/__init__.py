"""Budget projection package."""

from budget_sync.queries.executor import (
    BudgetQueryExecutor,
    BudgetSummary,
    MonthProjection,
    annual_amount,
    monthly_amount,
    monthly_totals,
    project_balance,
    summarize,
    totals_by_frequency,
)

__all__ = [
    "BudgetQueryExecutor",
    "BudgetSummary",
    "MonthProjection",
    "annual_amount",
    "monthly_amount",
    "monthly_totals",
    "project_balance",
    "summarize",
    "totals_by_frequency",
]
