"""
Transaction Recording

Every write here moves a wallet's cached balance by a delta inside the
same atomic unit as the transaction itself:

- create: + signed(amount)
- update on the same wallet: + (signed(next) - signed(previous))
- update moving wallets: - signed(previous) on the old wallet,
  + signed(next) on the new one
- delete: - signed(amount)

where signed() is +amount for INCOME and -amount for EXPENSE.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from moneyflow.errors import AtomicityError, ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import Category, Transaction, TransactionKind, Wallet
from moneyflow.money import signed_amount
from moneyflow.periods import month_window


class TransactionService(LedgerComponent):
    """Create, edit, delete and list ledger transactions."""

    EDITABLE_FIELDS = {"wallet_id", "category_id", "kind", "amount", "date", "note"}

    async def create_transaction(
        self,
        user_id: UUID,
        wallet_id: UUID,
        category_id: UUID,
        kind: TransactionKind,
        amount: Any,
        date: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> Transaction:
        """
        Record one income or expense.

        Raises:
            ValidationError: Bad amount or category/kind mismatch
            NotFoundError: Wallet or category not owned by user_id
        """
        async with self._locks.wallets_held([wallet_id]):
            async with self._atomic("create_transaction", user_id) as session:
                value = self._validator.amount(amount)
                await session.get_owned(Wallet, user_id, wallet_id)
                category = await session.get_owned(Category, user_id, category_id)
                tx = self._validator.build(
                    Transaction,
                    owner_id=user_id,
                    wallet_id=wallet_id,
                    category_id=category_id,
                    kind=kind,
                    amount=value,
                    date=date or self._clock(),
                    note=note,
                )
                self._validator.category_kind(category, tx.kind)

                await session.add(tx)
                await session.adjust_wallet_balance(wallet_id, tx.signed_amount)

        await self._audit_logger.log_entity_changed(
            AuditEventType.TRANSACTION_RECORDED,
            owner_id=user_id,
            entity_type="transaction",
            entity_id=tx.id,
            description=f"{tx.kind.value} of {tx.amount} recorded",
            details={"wallet_id": str(wallet_id), "category_id": str(category_id)},
        )
        return tx

    async def update_transaction(
        self,
        user_id: UUID,
        transaction_id: UUID,
        **changes: Any,
    ) -> Transaction:
        """
        Edit a transaction and rebalance the affected wallet(s).

        Args:
            changes: Any of wallet_id, category_id, kind, amount, date, note
        """
        try:
            unknown = set(changes) - self.EDITABLE_FIELDS
            if unknown:
                raise ValidationError.single(
                    "transaction", "invalid_field",
                    f"Cannot edit transaction fields: {', '.join(sorted(unknown))}",
                )
            if changes.get("wallet_id") is not None:
                changes["wallet_id"] = self._validator.identifier(changes["wallet_id"], "wallet_id")
        except ValidationError as e:
            await self._audit_logger.log_validation_failed(
                operation="update_transaction",
                issues=e.issue_dicts(),
                owner_id=user_id,
            )
            raise

        async with self._storage.snapshot() as session:
            current = await session.get_owned(Transaction, user_id, transaction_id)
        wallet_ids = {current.wallet_id, changes.get("wallet_id") or current.wallet_id}

        async with self._locks.wallets_held(wallet_ids):
            async with self._atomic("update_transaction", user_id) as session:
                previous = await session.get_owned(Transaction, user_id, transaction_id)
                if previous.wallet_id not in wallet_ids:
                    raise AtomicityError("Transaction was moved concurrently, retry the update")

                if "amount" in changes:
                    changes["amount"] = self._validator.amount(changes["amount"])
                updated = self._validator.revise(previous, **changes)

                await session.get_owned(Wallet, user_id, updated.wallet_id)
                category = await session.get_owned(Category, user_id, updated.category_id)
                self._validator.category_kind(category, updated.kind)

                updated.touch()
                await session.update(updated)

                before = signed_amount(previous.kind, previous.amount)
                after = signed_amount(updated.kind, updated.amount)
                if updated.wallet_id == previous.wallet_id:
                    await session.adjust_wallet_balance(updated.wallet_id, after - before)
                else:
                    await session.adjust_wallet_balance(previous.wallet_id, -before)
                    await session.adjust_wallet_balance(updated.wallet_id, after)

        await self._audit_logger.log_entity_changed(
            AuditEventType.TRANSACTION_UPDATED,
            owner_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Transaction updated",
            details={k: str(getattr(v, "value", v)) for k, v in changes.items()},
        )
        return updated

    async def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> None:
        """Delete a transaction and reverse its balance effect."""
        async with self._storage.snapshot() as session:
            current = await session.get_owned(Transaction, user_id, transaction_id)

        async with self._locks.wallets_held([current.wallet_id]):
            async with self._atomic("delete_transaction", user_id) as session:
                tx = await session.get_owned(Transaction, user_id, transaction_id)
                if tx.wallet_id != current.wallet_id:
                    raise AtomicityError("Transaction was moved concurrently, retry the delete")
                await session.delete(Transaction, transaction_id)
                await session.adjust_wallet_balance(tx.wallet_id, -tx.signed_amount)

        await self._audit_logger.log_entity_changed(
            AuditEventType.TRANSACTION_DELETED,
            owner_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"{tx.kind.value} of {tx.amount} deleted",
            details={"wallet_id": str(tx.wallet_id)},
        )

    async def get_transaction(self, user_id: UUID, transaction_id: UUID) -> Transaction:
        async with self._storage.snapshot() as session:
            return await session.get_owned(Transaction, user_id, transaction_id)

    async def list_transactions(
        self,
        user_id: UUID,
        month: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        wallet_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        kind: Optional[TransactionKind] = None,
    ) -> list[Transaction]:
        """
        List transactions, newest first.

        With no month and no explicit range, the current month is used.
        """
        if since is None and until is None:
            window = month_window(self._validator.month(month) if month else None, now=self._clock())
            since, until = window.start, window.end

        async with self._storage.snapshot() as session:
            transactions = await session.find(
                Transaction,
                since=since,
                until=until,
                owner_id=user_id,
                wallet_id=wallet_id,
                category_id=category_id,
                kind=kind,
            )
        return list(reversed(transactions))
