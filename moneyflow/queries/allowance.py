"""
Daily Allowance Planning

DESIGN DECISION: The planner itself is a PURE function.
It never touches storage; callers hand it one DailySpend per calendar
day of the month and get an AllowancePlan back. The service class below
only gathers the daily spend and supplies "today".

The rebalancing rule: each day's cap is

    max(0, round(remaining / days_left))

and after that day, its ACTUAL spend (not the cap) comes off
`remaining`. Overspending on one day therefore lowers the cap of every
later day.

Worked example: 600000 budget, 400000 reserved for a goal, 30 days.
Spendable is 200000, so day 1's cap is 6667. Spending 40000 on day 1
leaves 160000 for 29 days and day 2's cap drops to 5517.
"""

from datetime import date, datetime
from typing import Any, Callable, Optional, Sequence
from uuid import UUID

from moneyflow.errors import ValidationError
from moneyflow.models.ledger import (
    AllowanceDay,
    AllowancePlan,
    AllowanceStatus,
    DailySpend,
    Transaction,
    TransactionKind,
)
from moneyflow.money import ZERO, ceil_units, round_units, to_money
from moneyflow.periods import ensure_utc, month_days, month_window, utc_now
from moneyflow.services.storage import LedgerStorageInterface


def plan_allowance(
    days: Sequence[DailySpend],
    total_budget: Any,
    daily_target: Any = None,
    goal_reservation: Any = ZERO,
    deposit_count: int = 0,
    today: Optional[date] = None,
) -> AllowancePlan:
    """
    Build day-by-day spending caps for a month.

    Args:
        days: Spend per calendar day; future days carry 0
        total_budget: Money available for the month
        daily_target: Flat daily figure overriding the computed baseline
        goal_reservation: Amount set aside for a goal before spending
        deposit_count: Days the user marked a goal deposit as done
        today: Reference day for statuses (default: current UTC date)

    Returns:
        AllowancePlan; all zero with no days when `days` is empty
    """
    if not days:
        return AllowancePlan()

    today = today or utc_now().date()
    budget = to_money(total_budget)
    reservation = max(to_money(goal_reservation), ZERO)
    target = to_money(daily_target) if daily_target is not None else ZERO
    ordered = sorted(days, key=lambda d: d.date)
    count = len(ordered)

    spendable = max(budget - reservation, ZERO)
    base_daily = target if target > 0 else round_units(spendable / count)

    remaining = spendable
    if spendable == 0 and target > 0:
        remaining = target * count
    planned_total = remaining

    plan_days = []
    for index, day in enumerate(ordered):
        days_left = count - index
        cap = max(ZERO, round_units(remaining / days_left))
        spent = max(day.spent, ZERO)
        remaining -= spent

        if day.date > today:
            status = AllowanceStatus.UPCOMING
        elif spent <= cap:
            status = AllowanceStatus.OK
        else:
            status = AllowanceStatus.OVER
        plan_days.append(AllowanceDay(date=day.date, spent=spent, planned=cap, status=status))

    spent_so_far = sum((d.spent for d in plan_days if d.date <= today), ZERO)
    upcoming = [d for d in plan_days if d.date >= today]
    next_cap = upcoming[0].planned if upcoming else plan_days[-1].planned

    daily_saving = ceil_units(reservation / count) if reservation > 0 else ZERO
    completed_saving = min(reservation, max(deposit_count, 0) * daily_saving)

    return AllowancePlan(
        days=plan_days,
        total_budget=planned_total,
        goal_reservation=reservation,
        base_daily=base_daily,
        next_cap=next_cap,
        remaining_budget=max(ZERO, planned_total - spent_so_far),
        spent_so_far=spent_so_far,
        daily_saving=daily_saving,
        completed_saving=completed_saving,
        deposit_count=deposit_count,
    )


class AllowancePlanner:
    """
    Feeds the pure planner with a month of recorded spend.

    Usage:
        planner = AllowancePlanner(storage)
        plan = await planner.plan_for_month(user_id, total_budget=600000)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._clock = clock or utc_now

    async def daily_spend(
        self,
        user_id: UUID,
        month: Optional[str] = None,
        category_id: Optional[UUID] = None,
        wallet_id: Optional[UUID] = None,
    ) -> list[DailySpend]:
        """EXPENSE total for every day of the month, zero-filled."""
        try:
            window = month_window(month, now=self._clock())
        except ValueError as e:
            raise ValidationError.single("month", "invalid_format", str(e))
        async with self._storage.snapshot() as session:
            expenses = await session.find(
                Transaction,
                since=window.start,
                until=window.end,
                owner_id=user_id,
                kind=TransactionKind.EXPENSE,
                category_id=category_id,
                wallet_id=wallet_id,
            )

        totals: dict[date, Any] = {}
        for tx in expenses:
            day = tx.date.date()
            totals[day] = totals.get(day, ZERO) + tx.amount

        return [DailySpend(date=day, spent=totals.get(day, ZERO)) for day in month_days(window.label)]

    async def plan_for_month(
        self,
        user_id: UUID,
        total_budget: Any,
        month: Optional[str] = None,
        daily_target: Any = None,
        goal_reservation: Any = ZERO,
        deposit_count: int = 0,
        category_id: Optional[UUID] = None,
        wallet_id: Optional[UUID] = None,
    ) -> AllowancePlan:
        days = await self.daily_spend(user_id, month, category_id, wallet_id)
        return plan_allowance(
            days,
            total_budget=total_budget,
            daily_target=daily_target,
            goal_reservation=goal_reservation,
            deposit_count=deposit_count,
            today=ensure_utc(self._clock()).date(),
        )
