"""
Monthly Summary

Income, expense and net for one month, grouped by the currency of the
wallet each transaction belongs to. Amounts in different currencies are
never added together; the "primary" figures are those of the first
currency seen (wallet currencies in creation order, then any currency
only present in the month's transactions).
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from moneyflow.config import get_settings
from moneyflow.errors import ValidationError
from moneyflow.models.ledger import (
    Category,
    CategoryTotal,
    CurrencyBalance,
    CurrencyTotals,
    MonthlySummary,
    Transaction,
    TransactionKind,
    Wallet,
)
from moneyflow.money import ZERO
from moneyflow.periods import month_window, utc_now
from moneyflow.services.storage import LedgerStorageInterface


class MonthlySummaryQuery:
    """Builds MonthlySummary projections."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._clock = clock or utc_now

    async def monthly_summary(self, user_id: UUID, month: Optional[str] = None) -> MonthlySummary:
        try:
            window = month_window(month, now=self._clock())
        except ValueError as e:
            raise ValidationError.single("month", "invalid_format", str(e))

        async with self._storage.snapshot() as session:
            wallets = await session.find(Wallet, owner_id=user_id)
            transactions = await session.find(
                Transaction, since=window.start, until=window.end, owner_id=user_id
            )
            names = {c.id: c.name for c in await session.find(Category, owner_id=user_id)}

        wallets.sort(key=lambda w: w.created_at)
        default_currency = get_settings().ledger.default_currency
        currency_of = {w.id: w.currency for w in wallets}

        income: dict[str, Decimal] = defaultdict(lambda: ZERO)
        expense: dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_category: dict[str, dict[UUID, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))

        for tx in transactions:
            currency = currency_of.get(tx.wallet_id, default_currency)
            if tx.kind == TransactionKind.INCOME:
                income[currency] += tx.amount
            else:
                expense[currency] += tx.amount
                by_category[currency][tx.category_id] += tx.amount

        balances: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for wallet in wallets:
            balances[wallet.currency] += wallet.current_balance

        currencies: list[str] = []
        for currency in list(balances) + list(income) + list(expense):
            if currency not in currencies:
                currencies.append(currency)

        totals = [
            CurrencyTotals(
                currency=currency,
                income=income.get(currency, ZERO),
                expense=expense.get(currency, ZERO),
                net=income.get(currency, ZERO) - expense.get(currency, ZERO),
            )
            for currency in currencies
        ]
        category_totals = {
            currency: sorted(
                (
                    CategoryTotal(
                        category_id=category_id,
                        category_name=names.get(category_id, "Uncategorized"),
                        total=total,
                    )
                    for category_id, total in per_category.items()
                ),
                key=lambda c: c.total,
                reverse=True,
            )
            for currency, per_category in by_category.items()
        }

        primary = currencies[0] if currencies else default_currency
        primary_totals = next((t for t in totals if t.currency == primary), None)

        return MonthlySummary(
            month=window.label,
            totals_by_currency=totals,
            balance_by_currency=[
                CurrencyBalance(currency=currency, total=total) for currency, total in balances.items()
            ],
            by_category_by_currency=category_totals,
            primary_currency=primary,
            total_income=primary_totals.income if primary_totals else ZERO,
            total_expense=primary_totals.expense if primary_totals else ZERO,
            net=primary_totals.net if primary_totals else ZERO,
            total_balance=balances.get(primary, ZERO),
            by_category=category_totals.get(primary, []),
            wallets=wallets,
        )
