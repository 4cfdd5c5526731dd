"""
Data Models Package

This package contains all Pydantic models used by the ledger.
Every record stored and every projection returned conforms to these schemas.
"""

from moneyflow.models.ledger import (
    AllowanceDay,
    AllowancePlan,
    AllowanceStatus,
    BalanceCheck,
    Budget,
    BudgetProgress,
    Cadence,
    Category,
    CategoryTotal,
    CurrencyBalance,
    CurrencyTotals,
    DailySpend,
    Goal,
    GoalProgress,
    LedgerRecord,
    MonthlySummary,
    RecurrenceRunResult,
    RecurrenceSweepResult,
    RecurringRule,
    SystemTag,
    Transaction,
    TransactionKind,
    TransferResult,
    ValidationIssue,
    Wallet,
    WalletKind,
)
from moneyflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "Budget",
    "Category",
    "Goal",
    "LedgerRecord",
    "RecurringRule",
    "Transaction",
    "Wallet",
    # Enums
    "AllowanceStatus",
    "Cadence",
    "SystemTag",
    "TransactionKind",
    "WalletKind",
    # Results and projections
    "AllowanceDay",
    "AllowancePlan",
    "BalanceCheck",
    "BudgetProgress",
    "CategoryTotal",
    "CurrencyBalance",
    "CurrencyTotals",
    "DailySpend",
    "GoalProgress",
    "MonthlySummary",
    "RecurrenceRunResult",
    "RecurrenceSweepResult",
    "TransferResult",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
