"""
Wallet Management

A wallet starts with current_balance equal to its initial_balance.
After that only ledger writes move current_balance, with one exception:
editing initial_balance shifts current_balance by the same delta, which
keeps the balance formula true without touching any transaction.
"""

from typing import Any, Optional
from uuid import UUID

from moneyflow.config import get_settings
from moneyflow.errors import ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import RecurringRule, Transaction, Wallet, WalletKind
from moneyflow.money import ZERO


class WalletService(LedgerComponent):
    """Create, edit, delete and list wallets."""

    EDITABLE_FIELDS = {"name", "kind", "currency", "initial_balance"}

    async def create_wallet(
        self,
        user_id: UUID,
        name: str,
        kind: WalletKind = WalletKind.CASH,
        currency: Optional[str] = None,
        initial_balance: Any = ZERO,
    ) -> Wallet:
        async with self._atomic("create_wallet", user_id) as session:
            opening = self._validator.amount(initial_balance, "initial_balance", allow_zero=True)
            wallet = self._validator.build(
                Wallet,
                owner_id=user_id,
                name=name,
                kind=kind,
                currency=currency or get_settings().ledger.default_currency,
                initial_balance=opening,
                current_balance=opening,
            )
            await session.add(wallet)

        await self._audit_logger.log_entity_changed(
            AuditEventType.WALLET_CREATED,
            owner_id=user_id,
            entity_type="wallet",
            entity_id=wallet.id,
            description=f"Wallet '{wallet.name}' created",
            details={"initial_balance": str(wallet.initial_balance), "currency": wallet.currency},
        )
        return wallet

    async def update_wallet(self, user_id: UUID, wallet_id: UUID, **changes: Any) -> Wallet:
        """
        Edit wallet fields.

        Args:
            changes: Any of name, kind, currency, initial_balance

        Raises:
            ValidationError: Unknown fields or invalid values
            NotFoundError: Wallet missing or not owned by user_id
        """
        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise ValidationError.single(
                "wallet", "invalid_field", f"Cannot edit wallet fields: {', '.join(sorted(unknown))}"
            )

        async with self._locks.wallets_held([wallet_id]):
            async with self._atomic("update_wallet", user_id) as session:
                wallet = await session.get_owned(Wallet, user_id, wallet_id)

                if "initial_balance" in changes:
                    opening = self._validator.amount(
                        changes["initial_balance"], "initial_balance", allow_zero=True
                    )
                    changes["initial_balance"] = opening
                    changes["current_balance"] = wallet.current_balance + (opening - wallet.initial_balance)

                updated = self._validator.revise(wallet, **changes)
                updated.touch()
                await session.update(updated)

        await self._audit_logger.log_entity_changed(
            AuditEventType.WALLET_UPDATED,
            owner_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description=f"Wallet '{updated.name}' updated",
            details={k: str(v) for k, v in changes.items()},
        )
        return updated

    async def delete_wallet(self, user_id: UUID, wallet_id: UUID) -> None:
        """
        Delete a wallet nothing references.

        Raises:
            ValidationError: Transactions or recurring rules still use it
        """
        async with self._locks.wallets_held([wallet_id]):
            async with self._atomic("delete_wallet", user_id) as session:
                wallet = await session.get_owned(Wallet, user_id, wallet_id)
                self._validator.not_referenced("Wallet", {
                    "transactions": await session.count(Transaction, owner_id=user_id, wallet_id=wallet_id),
                    "recurring_rules": await session.count(RecurringRule, owner_id=user_id, wallet_id=wallet_id),
                })
                await session.delete(Wallet, wallet_id)

        await self._audit_logger.log_entity_changed(
            AuditEventType.WALLET_DELETED,
            owner_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description=f"Wallet '{wallet.name}' deleted",
        )

    async def get_wallet(self, user_id: UUID, wallet_id: UUID) -> Wallet:
        async with self._storage.snapshot() as session:
            return await session.get_owned(Wallet, user_id, wallet_id)

    async def list_wallets(self, user_id: UUID) -> list[Wallet]:
        async with self._storage.snapshot() as session:
            wallets = await session.find(Wallet, owner_id=user_id)
        return sorted(wallets, key=lambda w: w.created_at)
