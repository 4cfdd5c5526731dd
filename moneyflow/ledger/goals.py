"""
Savings Goals

Goals are bookkeeping only: adding to current_amount does not move
money between wallets. The bound 0 <= current <= target is checked by
the Goal model itself, on create and on every update.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from moneyflow.errors import ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import Goal, GoalProgress
from moneyflow.money import ZERO, percent_of


def goal_progress(goal: Goal) -> GoalProgress:
    return GoalProgress(goal=goal, progress=percent_of(goal.current_amount, goal.target_amount))


class GoalService(LedgerComponent):
    """Create, edit, delete and list savings goals."""

    EDITABLE_FIELDS = {"name", "target_amount", "current_amount", "deadline", "note"}

    async def create_goal(
        self,
        user_id: UUID,
        name: str,
        target_amount: Any,
        current_amount: Any = ZERO,
        deadline: Optional[date] = None,
        note: Optional[str] = None,
    ) -> GoalProgress:
        async with self._atomic("create_goal", user_id) as session:
            goal = self._validator.build(
                Goal,
                owner_id=user_id,
                name=name,
                target_amount=self._validator.amount(target_amount, "target_amount"),
                current_amount=self._validator.amount(current_amount, "current_amount", allow_zero=True),
                deadline=deadline,
                note=note,
            )
            await session.add(goal)

        await self._audit_logger.log_entity_changed(
            AuditEventType.GOAL_CREATED,
            owner_id=user_id,
            entity_type="goal",
            entity_id=goal.id,
            description=f"Goal '{goal.name}' created",
            details={"target_amount": str(goal.target_amount)},
        )
        return goal_progress(goal)

    async def update_goal(self, user_id: UUID, goal_id: UUID, **changes: Any) -> GoalProgress:
        """
        Edit a goal.

        Raises:
            ValidationError: The result would break current <= target
        """
        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise ValidationError.single(
                "goal", "invalid_field", f"Cannot edit goal fields: {', '.join(sorted(unknown))}"
            )

        async with self._atomic("update_goal", user_id) as session:
            goal = await session.get_owned(Goal, user_id, goal_id)
            if "target_amount" in changes:
                changes["target_amount"] = self._validator.amount(changes["target_amount"], "target_amount")
            if "current_amount" in changes:
                changes["current_amount"] = self._validator.amount(
                    changes["current_amount"], "current_amount", allow_zero=True
                )
            updated = self._validator.revise(goal, **changes)
            updated.touch()
            await session.update(updated)

        await self._audit_logger.log_entity_changed(
            AuditEventType.GOAL_UPDATED,
            owner_id=user_id,
            entity_type="goal",
            entity_id=goal_id,
            description=f"Goal '{updated.name}' updated",
            details={k: str(v) for k, v in changes.items()},
        )
        return goal_progress(updated)

    async def delete_goal(self, user_id: UUID, goal_id: UUID) -> None:
        async with self._atomic("delete_goal", user_id) as session:
            await session.get_owned(Goal, user_id, goal_id)
            await session.delete(Goal, goal_id)

        await self._audit_logger.log_entity_changed(
            AuditEventType.GOAL_DELETED,
            owner_id=user_id,
            entity_type="goal",
            entity_id=goal_id,
            description="Goal deleted",
        )

    async def list_goals(self, user_id: UUID) -> list[GoalProgress]:
        """Goals with progress, nearest deadline first (no deadline last)."""
        async with self._storage.snapshot() as session:
            goals = await session.find(Goal, owner_id=user_id)
        goals.sort(key=lambda g: (g.deadline is None, g.deadline or date.max, g.created_at))
        return [goal_progress(goal) for goal in goals]
