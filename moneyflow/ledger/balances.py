"""
Balance Deriver

A wallet's balance is defined by its transaction log:

    balance = initial_balance + sum(INCOME amounts) - sum(EXPENSE amounts)

The writers keep `Wallet.current_balance` in step with that formula by
applying deltas inside the same atomic unit as the transaction write.
This module recomputes the formula from scratch so the cached value can
be checked. A mismatch is audited and reported, never repaired silently.
"""

from decimal import Decimal
from uuid import UUID

from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.ledger import BalanceCheck, TransactionKind, Wallet
from moneyflow.money import ZERO
from moneyflow.services.storage import LedgerSession


async def derive_balance(session: LedgerSession, wallet: Wallet) -> Decimal:
    """Recompute a wallet's balance from its full transaction log."""
    totals = await session.sum_amounts(
        "kind",
        owner_id=wallet.owner_id,
        wallet_id=wallet.id,
    )
    income = totals.get(TransactionKind.INCOME, ZERO)
    expense = totals.get(TransactionKind.EXPENSE, ZERO)
    return wallet.initial_balance + income - expense


class BalanceDeriver(LedgerComponent):
    """Read-only balance computations."""

    async def balance(self, user_id: UUID, wallet_id: UUID) -> Decimal:
        """
        Derived balance of one wallet.

        Raises:
            NotFoundError: If the wallet is missing or not owned by user_id
        """
        async with self._storage.snapshot() as session:
            wallet = await session.get_owned(Wallet, user_id, wallet_id)
            return await derive_balance(session, wallet)

    async def check(self, user_id: UUID, wallet_id: UUID) -> BalanceCheck:
        """Compare the cached balance of one wallet with recomputation."""
        async with self._storage.snapshot() as session:
            wallet = await session.get_owned(Wallet, user_id, wallet_id)
            derived = await derive_balance(session, wallet)
        return BalanceCheck(wallet_id=wallet.id, cached=wallet.current_balance, derived=derived)

    async def reconcile(self, user_id: UUID) -> list[BalanceCheck]:
        """
        Check every wallet a user owns.

        Mismatches are logged as BALANCE_MISMATCH audit events.
        """
        async with self._storage.snapshot() as session:
            checks = []
            for wallet in await session.find(Wallet, owner_id=user_id):
                derived = await derive_balance(session, wallet)
                checks.append(BalanceCheck(
                    wallet_id=wallet.id,
                    cached=wallet.current_balance,
                    derived=derived,
                ))

        for check in checks:
            if not check.consistent:
                self._logger.error(
                    "balance_mismatch",
                    wallet_id=str(check.wallet_id),
                    cached=str(check.cached),
                    derived=str(check.derived),
                )
                await self._audit_logger.log_balance_mismatch(
                    owner_id=user_id,
                    wallet_id=check.wallet_id,
                    cached=check.cached,
                    derived=check.derived,
                )
        return checks

    async def wallets_with_balance(self, user_id: UUID) -> list[Wallet]:
        """A user's wallets in creation order, with cached balances."""
        async with self._storage.snapshot() as session:
            wallets = await session.find(Wallet, owner_id=user_id)
        return sorted(wallets, key=lambda w: w.created_at)
