"""Read-side projections over the ledger."""

from moneyflow.queries.allowance import AllowancePlanner, plan_allowance
from moneyflow.queries.budgets import BudgetProgressQuery, budget_progress
from moneyflow.queries.summary import MonthlySummaryQuery

__all__ = [
    "AllowancePlanner",
    "BudgetProgressQuery",
    "MonthlySummaryQuery",
    "budget_progress",
    "plan_allowance",
]
