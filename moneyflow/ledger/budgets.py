"""
Monthly Budgets

A budget caps spending for one EXPENSE category in one month. There is
at most one budget per (user, category, month).
"""

from typing import Any, Optional
from uuid import UUID

from moneyflow.errors import ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import Budget, Category, TransactionKind
from moneyflow.periods import month_window


class BudgetService(LedgerComponent):
    """Create, edit, delete and list budgets."""

    async def create_budget(
        self,
        user_id: UUID,
        category_id: UUID,
        amount: Any,
        month: Optional[str] = None,
    ) -> Budget:
        """
        Set a spending cap for a category.

        Args:
            month: "YYYY-MM"; defaults to the current month

        Raises:
            ValidationError: Non-expense category, amount <= 0, or a
                             budget already exists for that month
        """
        label = self._validator.month(month) if month else month_window(now=self._clock()).label

        async with self._atomic("create_budget", user_id) as session:
            value = self._validator.amount(amount)
            category = await session.get_owned(Category, user_id, category_id)
            if category.kind != TransactionKind.EXPENSE:
                raise ValidationError.single(
                    "category_id",
                    "kind_mismatch",
                    "Budgets can only be set for expense categories",
                )
            if await session.count(Budget, owner_id=user_id, category_id=category_id, month=label):
                raise ValidationError.single(
                    "month",
                    "duplicate",
                    f"A budget for '{category.name}' in {label} already exists",
                )

            budget = self._validator.build(
                Budget,
                owner_id=user_id,
                category_id=category_id,
                month=label,
                amount=value,
            )
            await session.add(budget)

        await self._audit_logger.log_entity_changed(
            AuditEventType.BUDGET_CREATED,
            owner_id=user_id,
            entity_type="budget",
            entity_id=budget.id,
            description=f"Budget of {budget.amount} set for {label}",
            details={"category_id": str(category_id)},
        )
        return budget

    async def update_budget(self, user_id: UUID, budget_id: UUID, amount: Any) -> Budget:
        async with self._atomic("update_budget", user_id) as session:
            budget = await session.get_owned(Budget, user_id, budget_id)
            budget.amount = self._validator.amount(amount)
            budget.touch()
            await session.update(budget)

        await self._audit_logger.log_entity_changed(
            AuditEventType.BUDGET_UPDATED,
            owner_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget changed to {budget.amount}",
        )
        return budget

    async def delete_budget(self, user_id: UUID, budget_id: UUID) -> None:
        async with self._atomic("delete_budget", user_id) as session:
            await session.get_owned(Budget, user_id, budget_id)
            await session.delete(Budget, budget_id)

        await self._audit_logger.log_entity_changed(
            AuditEventType.BUDGET_DELETED,
            owner_id=user_id,
            entity_type="budget",
            entity_id=budget_id,
            description="Budget deleted",
        )

    async def list_budgets(self, user_id: UUID, month: Optional[str] = None) -> list[Budget]:
        label = self._validator.month(month) if month else month_window(now=self._clock()).label
        async with self._storage.snapshot() as session:
            budgets = await session.find(Budget, owner_id=user_id, month=label)
        return sorted(budgets, key=lambda b: b.created_at)
