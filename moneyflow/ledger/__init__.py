"""
Ledger writers.

Every service here keeps the balance invariant: a wallet's cached
balance equals its initial balance plus the signed sum of its
transactions after every committed write.
"""

from moneyflow.ledger.balances import BalanceDeriver, derive_balance
from moneyflow.ledger.budgets import BudgetService
from moneyflow.ledger.categories import (
    DEFAULT_CATEGORIES,
    CategoryService,
    get_or_create_system_category,
)
from moneyflow.ledger.goals import GoalService, goal_progress
from moneyflow.ledger.locks import LedgerLocks
from moneyflow.ledger.recurrence import RecurrenceScheduler
from moneyflow.ledger.transactions import TransactionService
from moneyflow.ledger.transfers import TransferCoordinator
from moneyflow.ledger.wallets import WalletService

__all__ = [
    "BalanceDeriver",
    "BudgetService",
    "CategoryService",
    "DEFAULT_CATEGORIES",
    "GoalService",
    "LedgerLocks",
    "RecurrenceScheduler",
    "TransactionService",
    "TransferCoordinator",
    "WalletService",
    "derive_balance",
    "get_or_create_system_category",
    "goal_progress",
]
