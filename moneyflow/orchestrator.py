"""
Ledger Service Facade

This module ties together all the components and exposes the
operations the surrounding layer (HTTP handlers, a UI, a cron job)
calls:

1. Balances: balance, reconcile
2. Writes: wallets, categories, transactions, transfers, recurring
   rules, goals, budgets
3. Scheduling: process_due_for_user, process_all_due
4. Projections: plan_allowance, budgets_with_progress, monthly_summary

DESIGN DECISION: The facade enforces the boundaries:
- Every write goes through one atomic storage transaction
- Every write is audited
- Callers always pass the authenticated user id; nothing crosses users

All components share one storage backend, one audit logger and one set
of locks, so transfers and recurrence passes serialise correctly
against each other.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence
from uuid import UUID

import structlog

from moneyflow.audit import AuditLogger, set_log_level
from moneyflow.config import get_settings
from moneyflow.ledger import (
    BalanceDeriver,
    BudgetService,
    CategoryService,
    GoalService,
    LedgerLocks,
    RecurrenceScheduler,
    TransactionService,
    TransferCoordinator,
    WalletService,
)
from moneyflow.models.ledger import (
    AllowancePlan,
    BalanceCheck,
    BudgetProgress,
    Category,
    DailySpend,
    MonthlySummary,
    RecurrenceRunResult,
    RecurrenceSweepResult,
    TransferResult,
)
from moneyflow.periods import ensure_utc, utc_now
from moneyflow.queries import (
    AllowancePlanner,
    BudgetProgressQuery,
    MonthlySummaryQuery,
    plan_allowance,
)
from moneyflow.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    SQLiteAuditStorage,
    SQLiteLedgerStorage,
)
from moneyflow.validation import LedgerValidator


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    One user-facing entry point over every ledger component.

    The CRUD services are available as attributes (`wallets`,
    `categories`, `transactions`, `transfers`, `recurrence`, `goals`,
    `budgets`); the core operations are also methods here.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.audit_logger = audit_logger or AuditLogger()
        self._clock = clock or utc_now
        locks = LedgerLocks()
        validator = validator or LedgerValidator()

        shared = dict(
            storage=storage,
            audit_logger=self.audit_logger,
            validator=validator,
            locks=locks,
            clock=self._clock,
        )
        self.balances = BalanceDeriver(**shared)
        self.wallets = WalletService(**shared)
        self.categories = CategoryService(**shared)
        self.transactions = TransactionService(**shared)
        self.transfers = TransferCoordinator(**shared)
        self.recurrence = RecurrenceScheduler(**shared)
        self.goals = GoalService(**shared)
        self.budgets = BudgetService(**shared)

        self.allowance = AllowancePlanner(storage, clock=self._clock)
        self.budget_progress = BudgetProgressQuery(storage, clock=self._clock)
        self.summary = MonthlySummaryQuery(storage, clock=self._clock)

    async def setup_user(self, user_id: UUID) -> list[Category]:
        """Prepare a newly registered user (seeds default categories)."""
        return await self.categories.ensure_default_categories(user_id)

    # =========================================================================
    # CORE OPERATIONS
    # =========================================================================

    async def balance(self, user_id: UUID, wallet_id: UUID) -> Decimal:
        return await self.balances.balance(user_id, wallet_id)

    async def reconcile(self, user_id: UUID) -> list[BalanceCheck]:
        return await self.balances.reconcile(user_id)

    async def transfer(
        self,
        user_id: UUID,
        from_wallet_id: UUID,
        to_wallet_id: UUID,
        amount: Any,
        fee: Any = 0,
        date: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> TransferResult:
        return await self.transfers.transfer(
            user_id,
            from_wallet_id,
            to_wallet_id,
            amount,
            fee=fee,
            date=date,
            note=note,
        )

    async def process_due_for_user(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> RecurrenceRunResult:
        return await self.recurrence.process_due_for_user(user_id, now=now)

    async def process_all_due(self, now: Optional[datetime] = None) -> RecurrenceSweepResult:
        return await self.recurrence.process_all_due(now=now)

    def plan_allowance(
        self,
        days: Sequence[DailySpend],
        total_budget: Any,
        daily_target: Any = None,
        goal_reservation: Any = 0,
        deposit_count: int = 0,
        today: Optional[date] = None,
    ) -> AllowancePlan:
        """Pure allowance planning over caller-supplied daily spend."""
        return plan_allowance(
            days,
            total_budget=total_budget,
            daily_target=daily_target,
            goal_reservation=goal_reservation,
            deposit_count=deposit_count,
            today=today or ensure_utc(self._clock()).date(),
        )

    async def budgets_with_progress(
        self,
        user_id: UUID,
        month: Optional[str] = None,
    ) -> list[BudgetProgress]:
        return await self.budget_progress.budgets_with_progress(user_id, month)

    async def monthly_summary(self, user_id: UUID, month: Optional[str] = None) -> MonthlySummary:
        return await self.summary.monthly_summary(user_id, month)

    async def close(self) -> None:
        await self.storage.close()
        audit_storage = self.audit_logger.storage
        if audit_storage is not None:
            await audit_storage.close()


def create_storage() -> tuple[LedgerStorageInterface, AuditStorageInterface]:
    """Build the ledger and audit storage named by STORAGE_BACKEND."""
    settings = get_settings().storage
    if settings.backend == "sqlite":
        logger.info("storage_selected", backend="sqlite", path=settings.sqlite_path)
        ledger_storage = SQLiteLedgerStorage(settings.sqlite_path)
        audit_storage = SQLiteAuditStorage(
            settings.sqlite_path,
            write_lock=ledger_storage.write_lock,
        )
        return ledger_storage, audit_storage

    logger.info("storage_selected", backend="memory")
    return InMemoryLedgerStorage(), InMemoryAuditStorage()


def create_ledger_service(
    storage: Optional[LedgerStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> LedgerService:
    """
    Factory function to create a fully wired LedgerService.

    Args:
        storage: Ledger storage to use. If None, the backend configured
                 in settings is created.
        audit_storage: Where audit events are persisted. Defaults to the
                       configured backend when storage is also None,
                       otherwise local logging only.
        clock: Source of "now" for scheduling and projections.

    Returns:
        LedgerService
    """
    set_log_level(get_settings().app.log_level)

    if storage is None:
        storage, configured_audit = create_storage()
        audit_storage = audit_storage or configured_audit

    return LedgerService(
        storage=storage,
        audit_logger=AuditLogger(audit_storage),
        clock=clock,
    )
