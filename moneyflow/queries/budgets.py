"""
Budget Progress

A read-only join between a month's budgets and the EXPENSE totals per
category over the same month window:

    remaining = max(cap - spent, 0)
    progress  = 0 if cap == 0 else min(100, round(spent / cap * 100))

Nothing here writes to storage.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from moneyflow.errors import ValidationError
from moneyflow.models.ledger import Budget, BudgetProgress, Category, TransactionKind
from moneyflow.money import ZERO, percent_of
from moneyflow.periods import month_window, utc_now
from moneyflow.services.storage import LedgerStorageInterface


def budget_progress(budget: Budget, spent: Decimal, category_name: Optional[str] = None) -> BudgetProgress:
    progress = min(100, percent_of(spent, budget.amount)) if budget.amount > 0 else 0
    return BudgetProgress(
        budget_id=budget.id,
        category_id=budget.category_id,
        category_name=category_name,
        month=budget.month,
        amount=budget.amount,
        spent=spent,
        remaining=max(budget.amount - spent, ZERO),
        progress=progress,
    )


class BudgetProgressQuery:
    """Joins budgets with actual spend."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._clock = clock or utc_now

    async def budgets_with_progress(
        self,
        user_id: UUID,
        month: Optional[str] = None,
    ) -> list[BudgetProgress]:
        """
        Budgets of one month (default: current) with spent, remaining
        and progress, in creation order.
        """
        try:
            window = month_window(month, now=self._clock())
        except ValueError as e:
            raise ValidationError.single("month", "invalid_format", str(e))

        async with self._storage.snapshot() as session:
            budgets = await session.find(Budget, owner_id=user_id, month=window.label)
            if not budgets:
                return []
            spent_by_category = await session.sum_amounts(
                "category_id",
                since=window.start,
                until=window.end,
                owner_id=user_id,
                kind=TransactionKind.EXPENSE,
            )
            names = {c.id: c.name for c in await session.find(Category, owner_id=user_id)}

        budgets.sort(key=lambda b: b.created_at)
        return [
            budget_progress(
                budget,
                spent_by_category.get(budget.category_id, ZERO),
                names.get(budget.category_id),
            )
            for budget in budgets
        ]
