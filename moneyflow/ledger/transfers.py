"""
Transfer Coordinator

A transfer between two of a user's wallets is recorded as ordinary
ledger entries, so balance derivation needs no special case:

1. EXPENSE on the source wallet under the "transfer out" category
2. INCOME on the destination wallet under the "transfer in" category
3. Only when fee > 0: a second EXPENSE on the source wallet under the
   "transfer fee" category

All legs share one transfer_id. The legs, the system categories they
need, and both balance updates commit as a single atomic unit.

DESIGN DECISION: Transfers do not check the source balance. A wallet
may go negative (e.g. a credit card), same as with a plain expense.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from moneyflow.errors import ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.ledger.categories import get_or_create_system_category
from moneyflow.models.ledger import (
    SystemTag,
    Transaction,
    TransactionKind,
    TransferResult,
    Wallet,
)


class TransferCoordinator(LedgerComponent):
    """Moves money between two wallets of the same user."""

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
        """
        Transfer `amount` from one wallet to another.

        The source wallet decreases by amount + fee, the destination
        increases by amount.

        Raises:
            ValidationError: amount <= 0, fee < 0, or the same wallet
                             on both sides
            NotFoundError: Either wallet missing or not owned by user_id
            AtomicityError: The batch failed; nothing was written
        """
        transfer_id = uuid4()

        async with self._locks.wallets_held([from_wallet_id, to_wallet_id]):
            async with self._atomic("transfer", user_id, correlation_id=transfer_id) as session:
                value = self._validator.amount(amount)
                fee_value = self._validator.amount(fee, "fee", allow_zero=True)
                if from_wallet_id == to_wallet_id:
                    raise ValidationError.single(
                        "to_wallet_id",
                        "same_wallet",
                        "Source and destination wallets must be different",
                    )

                source = await session.get_owned(Wallet, user_id, from_wallet_id)
                destination = await session.get_owned(Wallet, user_id, to_wallet_id)

                out_category = await get_or_create_system_category(session, user_id, SystemTag.TRANSFER_OUT)
                in_category = await get_or_create_system_category(session, user_id, SystemTag.TRANSFER_IN)

                moment = date or self._clock()
                note = note.strip() if note else None

                transfer_out = self._validator.build(
                    Transaction,
                    owner_id=user_id,
                    wallet_id=source.id,
                    category_id=out_category.id,
                    kind=TransactionKind.EXPENSE,
                    amount=value,
                    date=moment,
                    note=note or f"Transfer to {destination.name}",
                    transfer_id=transfer_id,
                )
                transfer_in = self._validator.build(
                    Transaction,
                    owner_id=user_id,
                    wallet_id=destination.id,
                    category_id=in_category.id,
                    kind=TransactionKind.INCOME,
                    amount=value,
                    date=moment,
                    note=note or f"Transfer from {source.name}",
                    transfer_id=transfer_id,
                )
                await session.add(transfer_out)
                await session.add(transfer_in)

                fee_transaction = None
                if fee_value > 0:
                    fee_category = await get_or_create_system_category(
                        session, user_id, SystemTag.TRANSFER_FEE
                    )
                    fee_transaction = self._validator.build(
                        Transaction,
                        owner_id=user_id,
                        wallet_id=source.id,
                        category_id=fee_category.id,
                        kind=TransactionKind.EXPENSE,
                        amount=fee_value,
                        date=moment,
                        note=f"{note} (fee)" if note else "Transfer fee",
                        transfer_id=transfer_id,
                    )
                    await session.add(fee_transaction)

                await session.adjust_wallet_balance(source.id, -(value + fee_value))
                await session.adjust_wallet_balance(destination.id, value)

        self._logger.info(
            "transfer_completed",
            transfer_id=str(transfer_id),
            amount=str(value),
            fee=str(fee_value),
        )
        await self._audit_logger.log_transfer_completed(
            owner_id=user_id,
            transfer_id=transfer_id,
            from_wallet_id=from_wallet_id,
            to_wallet_id=to_wallet_id,
            amount=value,
            fee=fee_value,
        )
        return TransferResult(
            transfer_id=transfer_id,
            transfer_out=transfer_out,
            transfer_in=transfer_in,
            fee_transaction=fee_transaction,
        )

    async def list_transfer_legs(self, user_id: UUID, transfer_id: UUID) -> list[Transaction]:
        """Every ledger entry belonging to one transfer."""
        async with self._storage.snapshot() as session:
            return await session.find(Transaction, owner_id=user_id, transfer_id=transfer_id)
