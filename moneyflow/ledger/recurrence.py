"""
Recurrence Scheduler

A recurring rule is a transaction template whose only state is
`next_run`. Each processing pass, for every rule with next_run <= now:

1. If it is an EXPENSE and the wallet's current balance is below the
   rule amount, nothing is materialised and the rule counts as skipped.
2. Otherwise a transaction dated exactly next_run is created and the
   wallet balance moves by its signed amount.
3. Either way next_run advances by ONE cadence step.

A rule overdue by several periods catches up one step per pass; the
external trigger is expected to call again.

The pass over one user's rules is a single atomic unit. Duplicate
triggers are harmless: passes for the same user are serialised by a
per-user lock and the due rules are selected inside the transaction,
so a second pass sees the already-advanced next_run values.

DESIGN DECISION: A skip is a normal, audited outcome, not an error.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from moneyflow.audit import create_correlation_id
from moneyflow.errors import LedgerError, ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import (
    Cadence,
    Category,
    RecurrenceRunResult,
    RecurrenceSweepResult,
    RecurringRule,
    Transaction,
    TransactionKind,
    Wallet,
)
from moneyflow.periods import advance, ensure_utc


class RecurrenceScheduler(LedgerComponent):
    """Recurring rule management and materialisation."""

    EDITABLE_FIELDS = {"wallet_id", "category_id", "kind", "amount", "cadence", "next_run", "note"}

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else ensure_utc(self._clock())

    # =========================================================================
    # RULES
    # =========================================================================

    async def create_rule(
        self,
        user_id: UUID,
        wallet_id: UUID,
        category_id: UUID,
        kind: TransactionKind,
        amount: Any,
        cadence: Cadence,
        next_run: datetime,
        note: Optional[str] = None,
    ) -> RecurringRule:
        """
        Create a recurring rule.

        The day of month of the first next_run becomes the rule's
        anchor day for MONTHLY stepping.
        """
        async with self._atomic("create_recurring_rule", user_id) as session:
            value = self._validator.amount(amount)
            await session.get_owned(Wallet, user_id, wallet_id)
            category = await session.get_owned(Category, user_id, category_id)
            rule = self._validator.build(
                RecurringRule,
                owner_id=user_id,
                wallet_id=wallet_id,
                category_id=category_id,
                kind=kind,
                amount=value,
                cadence=cadence,
                next_run=next_run,
                note=note,
            )
            self._validator.category_kind(category, rule.kind)
            rule.anchor_day = rule.next_run.day
            await session.add(rule)

        await self._audit_logger.log_entity_changed(
            AuditEventType.RECURRING_RULE_CREATED,
            owner_id=user_id,
            entity_type="recurring_rule",
            entity_id=rule.id,
            description=f"{rule.cadence.value} {rule.kind.value} of {rule.amount} scheduled",
            details={"next_run": rule.next_run.isoformat()},
        )
        return rule

    async def update_rule(self, user_id: UUID, rule_id: UUID, **changes: Any) -> RecurringRule:
        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise ValidationError.single(
                "recurring_rule", "invalid_field",
                f"Cannot edit recurring rule fields: {', '.join(sorted(unknown))}",
            )

        async with self._atomic("update_recurring_rule", user_id) as session:
            rule = await session.get_owned(RecurringRule, user_id, rule_id)
            if "amount" in changes:
                changes["amount"] = self._validator.amount(changes["amount"])

            updated = self._validator.revise(rule, **changes)
            await session.get_owned(Wallet, user_id, updated.wallet_id)
            category = await session.get_owned(Category, user_id, updated.category_id)
            self._validator.category_kind(category, updated.kind)

            if "next_run" in changes:
                updated.anchor_day = updated.next_run.day
            updated.touch()
            await session.update(updated)

        await self._audit_logger.log_entity_changed(
            AuditEventType.RECURRING_RULE_UPDATED,
            owner_id=user_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            description="Recurring rule updated",
            details={k: str(getattr(v, "value", v)) for k, v in changes.items()},
        )
        return updated

    async def delete_rule(self, user_id: UUID, rule_id: UUID) -> None:
        """Delete a rule. Transactions it already created are kept."""
        async with self._atomic("delete_recurring_rule", user_id) as session:
            await session.get_owned(RecurringRule, user_id, rule_id)
            await session.delete(RecurringRule, rule_id)

        await self._audit_logger.log_entity_changed(
            AuditEventType.RECURRING_RULE_DELETED,
            owner_id=user_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            description="Recurring rule deleted",
        )

    async def list_rules(self, user_id: UUID) -> list[RecurringRule]:
        """A user's rules, soonest next_run first."""
        async with self._storage.snapshot() as session:
            return await session.find(RecurringRule, owner_id=user_id)

    # =========================================================================
    # PROCESSING
    # =========================================================================

    async def process_due_for_user(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> RecurrenceRunResult:
        """
        Materialise every rule of one user that is due at `now`.

        Returns:
            RecurrenceRunResult with created/skipped counts

        Raises:
            AtomicityError: The batch failed; no rule advanced, nothing
                            was created
        """
        now = self._now(now)
        correlation_id = create_correlation_id()
        result = RecurrenceRunResult()
        skipped_details = []

        async with self._locks.user_held(user_id):
            async with self._storage.snapshot() as session:
                wallet_ids = [w.id for w in await session.find(Wallet, owner_id=user_id)]

            async with self._locks.wallets_held(wallet_ids):
                async with self._atomic(
                    "process_due_for_user", user_id, correlation_id=correlation_id
                ) as session:
                    rules = await session.find(RecurringRule, until=now, owner_id=user_id)

                    for rule in rules:
                        wallet = await session.get(Wallet, rule.wallet_id)
                        category = await session.get(Category, rule.category_id)
                        if (
                            wallet is None
                            or category is None
                            or wallet.owner_id != user_id
                            or category.owner_id != user_id
                        ):
                            result.orphaned_rule_ids.append(rule.id)
                            continue

                        occurrence = rule.next_run
                        if rule.kind == TransactionKind.EXPENSE and wallet.current_balance < rule.amount:
                            result.skipped += 1
                            skipped_details.append((rule, wallet.current_balance, occurrence))
                        else:
                            tx = Transaction(
                                owner_id=user_id,
                                wallet_id=rule.wallet_id,
                                category_id=rule.category_id,
                                kind=rule.kind,
                                amount=rule.amount,
                                date=occurrence,
                                note=rule.note,
                                recurring_rule_id=rule.id,
                            )
                            await session.add(tx)
                            await session.adjust_wallet_balance(rule.wallet_id, tx.signed_amount)
                            result.created += 1
                            result.transactions.append(tx)

                        rule.next_run = advance(occurrence, rule.cadence, rule.anchor_day or occurrence.day)
                        rule.touch()
                        await session.update(rule)

        for tx in result.transactions:
            await self._audit_logger.log_recurrence_materialized(
                owner_id=user_id,
                rule_id=tx.recurring_rule_id,
                transaction_id=tx.id,
                occurrence=tx.date,
                correlation_id=correlation_id,
            )
        for rule, balance, occurrence in skipped_details:
            await self._audit_logger.log_recurrence_skipped(
                owner_id=user_id,
                rule_id=rule.id,
                wallet_id=rule.wallet_id,
                balance=balance,
                amount=rule.amount,
                occurrence=occurrence,
                correlation_id=correlation_id,
            )
        for rule_id in result.orphaned_rule_ids:
            await self._audit_logger.log_recurrence_orphaned(
                owner_id=user_id,
                rule_id=rule_id,
                correlation_id=correlation_id,
            )
        if result.created or result.skipped:
            await self._audit_logger.log_recurrence_batch_completed(
                owner_id=user_id,
                created=result.created,
                skipped=result.skipped,
                correlation_id=correlation_id,
            )
        return result

    async def process_all_due(self, now: Optional[datetime] = None) -> RecurrenceSweepResult:
        """
        Run one pass for every user with a due rule.

        This is the entry point for the external periodic trigger. A
        user whose batch fails is rolled back, logged and reported in
        failed_users; the sweep carries on with the other users.
        """
        now = self._now(now)
        sweep = RecurrenceSweepResult(correlation_id=create_correlation_id())

        for user_id in await self._storage.owner_ids_with_due_rules(now):
            try:
                result = await self.process_due_for_user(user_id, now=now)
            except LedgerError as e:
                self._logger.error("recurrence_user_failed", user_id=str(user_id), error=str(e))
                await self._audit_logger.log_error(
                    error_type="recurrence_user_failed",
                    error_message=str(e),
                    details={"operation": "process_all_due", "user_id": str(user_id)},
                    owner_id=user_id,
                    correlation_id=sweep.correlation_id,
                )
                sweep.failed_users.append(user_id)
                continue
            sweep.processed_users += 1
            sweep.created += result.created
            sweep.skipped += result.skipped

        self._logger.info(
            "recurrence_sweep_completed",
            correlation_id=str(sweep.correlation_id),
            processed_users=sweep.processed_users,
            created=sweep.created,
            skipped=sweep.skipped,
        )
        return sweep
