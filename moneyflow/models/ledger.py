"""
Core Data Models for the Ledger

These models define the strict schemas for every record the ledger
stores and every projection it returns. They are designed to:
1. Enforce type safety and amount precision at runtime
2. Provide clear validation error messages
3. Be serializable for storage (one JSON document per record)
4. Support the audit trail

DESIGN DECISION: Amounts use the Money annotated types, which reject
floats and quantise to two places. Timestamps are always aware UTC.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, ClassVar, Optional
from uuid import UUID, uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from moneyflow.money import ZERO, Money, NonNegativeMoney, PositiveMoney
from moneyflow.periods import ensure_utc, format_month_label, parse_month_label, utc_now


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """
    Direction of money movement.

    Categories carry the same kind; a transaction's kind must always
    equal its category's kind.
    """
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class WalletKind(str, Enum):
    """Kinds of wallet a user can hold."""
    CASH = "CASH"
    BANK = "BANK"
    E_WALLET = "E_WALLET"
    INVESTMENT = "INVESTMENT"
    OTHER = "OTHER"


class Cadence(str, Enum):
    """Recurrence interval of a recurring rule."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class SystemTag(str, Enum):
    """
    Fixed semantic tags for categories the ledger creates itself.

    Display names are configurable; the tag is what transfers look up.
    """
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    TRANSFER_FEE = "transfer_fee"


class AllowanceStatus(str, Enum):
    """Classification of a single day in an allowance plan."""
    OK = "ok"
    OVER = "over"
    UPCOMING = "upcoming"


# =============================================================================
# STORED RECORDS
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Base for every persisted record.

    Each record belongs to exactly one user (owner_id) and is never
    shared. `table_name` names its collection in storage; `date_field`
    names the field storage range filters apply to.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    table_name: ClassVar[str] = ""
    date_field: ClassVar[Optional[str]] = None

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()


class Wallet(LedgerRecord):
    """
    A named store of money.

    INVARIANT: current_balance == initial_balance + sum of signed
    transaction amounts for this wallet, after every committed write.
    """
    table_name: ClassVar[str] = "wallets"

    name: str = Field(..., min_length=1, max_length=100)
    kind: WalletKind
    currency: str = Field(default="IDR", pattern=r"^[A-Z]{3}$")
    initial_balance: Money = ZERO
    current_balance: Money = ZERO

    @field_validator("currency", mode="before")
    @classmethod
    def normalise_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class Category(LedgerRecord):
    """An income or expense category."""
    table_name: ClassVar[str] = "categories"

    name: str = Field(..., min_length=1, max_length=100)
    kind: TransactionKind
    is_default: bool = False
    system_tag: Optional[SystemTag] = None


class Transaction(LedgerRecord):
    """
    One entry in the ledger.

    `date` is the calendar moment the money moved, not necessarily when
    the entry was recorded.
    """
    table_name: ClassVar[str] = "transactions"
    date_field: ClassVar[Optional[str]] = "date"

    wallet_id: UUID
    category_id: UUID
    kind: TransactionKind
    amount: PositiveMoney
    date: UtcDatetime
    note: Optional[str] = Field(default=None, max_length=500)

    # Provenance
    recurring_rule_id: Optional[UUID] = None
    transfer_id: Optional[UUID] = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind == TransactionKind.INCOME else -self.amount


class Budget(LedgerRecord):
    """Monthly spending cap for one EXPENSE category."""
    table_name: ClassVar[str] = "budgets"

    category_id: UUID
    month: str
    amount: NonNegativeMoney

    @field_validator("month")
    @classmethod
    def normalise_month(cls, v: str) -> str:
        return format_month_label(*parse_month_label(v))


class Goal(LedgerRecord):
    """A savings goal."""
    table_name: ClassVar[str] = "goals"

    name: str = Field(..., min_length=1, max_length=100)
    target_amount: PositiveMoney
    current_amount: NonNegativeMoney = ZERO
    deadline: Optional[date] = None
    note: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_amounts(self) -> "Goal":
        if self.current_amount > self.target_amount:
            raise ValueError("Current amount cannot exceed target amount")
        return self


class RecurringRule(LedgerRecord):
    """
    A transaction template materialised on a schedule.

    The only schedule state is `next_run`. `anchor_day` remembers the
    day of month a MONTHLY rule was set up on, so clamping into a short
    month does not permanently shift it.
    """
    table_name: ClassVar[str] = "recurring_rules"
    date_field: ClassVar[Optional[str]] = "next_run"

    wallet_id: UUID
    category_id: UUID
    kind: TransactionKind
    amount: PositiveMoney
    cadence: Cadence
    next_run: UtcDatetime
    anchor_day: Optional[int] = Field(default=None, ge=1, le=31)
    note: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single reason a write was rejected."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'invalid_value', 'kind_mismatch', 'referenced')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


# =============================================================================
# RESULTS AND PROJECTIONS
# =============================================================================

class TransferResult(BaseModel):
    """The ledger entries produced by one transfer."""

    transfer_id: UUID
    transfer_out: Transaction
    transfer_in: Transaction
    fee_transaction: Optional[Transaction] = None

    @property
    def transactions(self) -> list[Transaction]:
        legs = [self.transfer_out, self.transfer_in]
        if self.fee_transaction:
            legs.append(self.fee_transaction)
        return legs


class RecurrenceRunResult(BaseModel):
    """Outcome of one processing pass over a user's due rules."""

    created: int = 0
    skipped: int = 0
    transactions: list[Transaction] = Field(default_factory=list)
    # Rules whose wallet or category no longer exists; left untouched
    orphaned_rule_ids: list[UUID] = Field(default_factory=list)


class RecurrenceSweepResult(BaseModel):
    """Outcome of one externally triggered pass over every user."""

    processed_users: int = 0
    created: int = 0
    skipped: int = 0
    failed_users: list[UUID] = Field(default_factory=list)
    correlation_id: Optional[UUID] = None


class BalanceCheck(BaseModel):
    """Cached balance of a wallet compared with full recomputation."""

    wallet_id: UUID
    cached: Money
    derived: Money

    @property
    def consistent(self) -> bool:
        return self.cached == self.derived

    @property
    def difference(self) -> Decimal:
        return self.cached - self.derived


class BudgetProgress(BaseModel):
    """A budget joined with its month's actual spend."""

    budget_id: UUID
    category_id: UUID
    category_name: Optional[str] = None
    month: str
    amount: Money
    spent: Money
    remaining: Money
    progress: int = Field(ge=0, le=100)


class GoalProgress(BaseModel):
    """A goal with its completion percentage."""

    goal: Goal
    progress: int = Field(ge=0)


class DailySpend(BaseModel):
    """Total expense recorded on one calendar day."""

    date: date
    spent: Money = ZERO


class AllowanceDay(BaseModel):
    """One day of an allowance plan."""

    date: date
    spent: Money
    planned: Money
    status: AllowanceStatus


class AllowancePlan(BaseModel):
    """
    Day-by-day spending caps for a month.

    `total_budget` is the amount actually planned over (the spendable
    budget, or daily target x days when only a target was given).
    """

    days: list[AllowanceDay] = Field(default_factory=list)
    total_budget: Money = ZERO
    goal_reservation: Money = ZERO
    base_daily: Money = ZERO
    next_cap: Money = ZERO
    remaining_budget: Money = ZERO
    spent_so_far: Money = ZERO
    daily_saving: Money = ZERO
    completed_saving: Money = ZERO
    deposit_count: int = 0


class CurrencyTotals(BaseModel):
    currency: str
    income: Money
    expense: Money
    net: Money


class CategoryTotal(BaseModel):
    category_id: UUID
    category_name: str
    total: Money


class CurrencyBalance(BaseModel):
    currency: str
    total: Money


class MonthlySummary(BaseModel):
    """Income, expense and balances for one month, grouped by currency."""

    month: str
    totals_by_currency: list[CurrencyTotals] = Field(default_factory=list)
    balance_by_currency: list[CurrencyBalance] = Field(default_factory=list)
    by_category_by_currency: dict[str, list[CategoryTotal]] = Field(default_factory=dict)
    primary_currency: str
    total_income: Money = ZERO
    total_expense: Money = ZERO
    net: Money = ZERO
    total_balance: Money = ZERO
    by_category: list[CategoryTotal] = Field(default_factory=list)
    wallets: list[Wallet] = Field(default_factory=list)
