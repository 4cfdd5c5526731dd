"""
Tests for recurring rules and their materialisation.
"""

import asyncio

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from moneyflow.audit import AuditLogger
from moneyflow.errors import AtomicityError, NotFoundError, ValidationError
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import (
    Cadence,
    Category,
    RecurringRule,
    Transaction,
    TransactionKind,
    WalletKind,
)
from moneyflow.orchestrator import LedgerService
from moneyflow.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerSession,
    InMemoryLedgerStorage,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class FlakySession(InMemoryLedgerSession):
    """Session that blows up on the Nth transaction insert."""

    def __init__(self, tables, fail_on: int):
        super().__init__(tables)
        self._fail_on = fail_on
        self._inserted = 0

    async def add(self, record):
        if isinstance(record, Transaction):
            self._inserted += 1
            if self._inserted == self._fail_on:
                raise RuntimeError("connection reset")
        return await super().add(record)


class FlakyStorage(InMemoryLedgerStorage):
    def __init__(self):
        super().__init__()
        self.fail_on = 0

    async def _begin(self):
        if self.fail_on:
            return FlakySession(self._tables, self.fail_on)
        return await super()._begin()


async def make_rule(ledger, user_id, wallet, category, amount, cadence=Cadence.DAILY, next_run=None):
    return await ledger.recurrence.create_rule(
        user_id,
        wallet.id,
        category.id,
        TransactionKind(category.kind),
        amount,
        cadence,
        next_run or utc(2024, 3, 15, 8),
    )


class TestRecurringRules:
    """Tests for rule management."""

    async def test_create_rule_sets_anchor_day(self, ledger, user_id, cash, categories):
        """Test that the first run's day becomes the anchor day."""
        rule = await make_rule(
            ledger, user_id, cash, categories["Household"], 500, Cadence.MONTHLY, utc(2024, 1, 31)
        )
        assert rule.anchor_day == 31

    async def test_rule_kind_must_match_category(self, ledger, user_id, cash, categories):
        """Test that an INCOME rule cannot use an expense category."""
        with pytest.raises(ValidationError) as exc:
            await ledger.recurrence.create_rule(
                user_id, cash.id, categories["Food"].id, TransactionKind.INCOME,
                100, Cadence.DAILY, utc(2024, 3, 15),
            )
        assert exc.value.issues[0].issue_type == "kind_mismatch"

    async def test_update_rule_resets_anchor(self, ledger, user_id, cash, categories):
        """Test that moving next_run moves the anchor day too."""
        rule = await make_rule(
            ledger, user_id, cash, categories["Household"], 500, Cadence.MONTHLY, utc(2024, 1, 31)
        )
        updated = await ledger.recurrence.update_rule(user_id, rule.id, next_run=utc(2024, 4, 10))
        assert updated.anchor_day == 10

        updated = await ledger.recurrence.update_rule(user_id, rule.id, amount="750")
        assert updated.amount == Decimal("750.00")
        assert updated.anchor_day == 10

    async def test_update_rule_rejects_unknown_fields(self, ledger, user_id, cash, categories):
        """Test that only editable fields may change."""
        rule = await make_rule(ledger, user_id, cash, categories["Food"], 100)
        with pytest.raises(ValidationError, match="owner_id"):
            await ledger.recurrence.update_rule(user_id, rule.id, owner_id=user_id)

    async def test_delete_and_list_rules(self, ledger, user_id, cash, categories):
        """Test listing by next_run and deleting."""
        later = await make_rule(ledger, user_id, cash, categories["Food"], 100, next_run=utc(2024, 4, 1))
        sooner = await make_rule(ledger, user_id, cash, categories["Food"], 100, next_run=utc(2024, 3, 1))

        assert [r.id for r in await ledger.recurrence.list_rules(user_id)] == [sooner.id, later.id]
        await ledger.recurrence.delete_rule(user_id, later.id)
        assert [r.id for r in await ledger.recurrence.list_rules(user_id)] == [sooner.id]

    async def test_delete_foreign_rule_not_found(self, ledger, user_id, other_user_id, cash, categories):
        """Test that one user cannot delete another user's rule."""
        rule = await make_rule(ledger, user_id, cash, categories["Food"], 100)
        with pytest.raises(NotFoundError):
            await ledger.recurrence.delete_rule(other_user_id, rule.id)


class TestProcessDue:
    """Tests for process_due_for_user."""

    async def test_due_rule_materialises_once(self, ledger, user_id, cash, categories):
        """Test that a second pass at the same instant creates nothing."""
        rule = await make_rule(ledger, user_id, cash, categories["Food"], 2500, next_run=utc(2024, 3, 15, 8))

        first = await ledger.process_due_for_user(user_id)
        second = await ledger.process_due_for_user(user_id)

        assert first.created == 1
        assert second.created == 0 and second.skipped == 0
        tx = first.transactions[0]
        assert tx.date == utc(2024, 3, 15, 8)
        assert tx.recurring_rule_id == rule.id
        assert await ledger.balance(user_id, cash.id) == Decimal("97500.00")

        rules = await ledger.recurrence.list_rules(user_id)
        assert rules[0].next_run == utc(2024, 3, 16, 8)

    async def test_future_rule_is_left_alone(self, ledger, user_id, cash, categories):
        """Test that rules not yet due are untouched."""
        await make_rule(ledger, user_id, cash, categories["Food"], 2500, next_run=utc(2024, 3, 15, 13))
        result = await ledger.process_due_for_user(user_id)
        assert result.created == 0
        rules = await ledger.recurrence.list_rules(user_id)
        assert rules[0].next_run == utc(2024, 3, 15, 13)

    async def test_insufficient_funds_skips_and_advances(self, ledger, user_id, categories):
        """Test that an unaffordable expense is skipped but still advances."""
        wallet = await ledger.wallets.create_wallet(user_id, "Pocket", initial_balance=10000)
        await make_rule(ledger, user_id, wallet, categories["Household"], 50000, Cadence.WEEKLY, utc(2024, 3, 10))

        result = await ledger.process_due_for_user(user_id)

        assert result.created == 0
        assert result.skipped == 1
        assert await ledger.balance(user_id, wallet.id) == Decimal("10000.00")
        rules = await ledger.recurrence.list_rules(user_id)
        assert rules[0].next_run == utc(2024, 3, 17)

    async def test_skip_is_audited(self, ledger, audit_storage, user_id, categories):
        """Test that a skip is visible in the audit log."""
        wallet = await ledger.wallets.create_wallet(user_id, "Pocket", initial_balance=10000)
        rule = await make_rule(ledger, user_id, wallet, categories["Household"], 50000)

        await ledger.process_due_for_user(user_id)

        events = await audit_storage.get_events_by_entity("recurring_rule", rule.id)
        skipped = [e for e in events if e.event_type == AuditEventType.RECURRENCE_SKIPPED]
        assert len(skipped) == 1
        assert skipped[0].details["balance"] == "10000.00"

    async def test_income_is_never_skipped(self, ledger, user_id, categories):
        """Test that income rules materialise on an empty wallet."""
        wallet = await ledger.wallets.create_wallet(user_id, "Payroll", WalletKind.BANK)
        await make_rule(ledger, user_id, wallet, categories["Salary"], 8000000, Cadence.MONTHLY, utc(2024, 3, 1))

        result = await ledger.process_due_for_user(user_id)
        assert result.created == 1
        assert await ledger.balance(user_id, wallet.id) == Decimal("8000000.00")

    async def test_overdue_rule_steps_once_per_pass(self, ledger, user_id, cash, categories):
        """Test that a rule three days behind catches up one step per call."""
        await make_rule(ledger, user_id, cash, categories["Food"], 100, next_run=utc(2024, 3, 12, 8))

        counts = [(await ledger.process_due_for_user(user_id)).created for _ in range(5)]

        assert counts == [1, 1, 1, 1, 0]
        async with ledger.storage.snapshot() as session:
            dates = [tx.date for tx in await session.find(Transaction, owner_id=user_id)]
        assert dates == [utc(2024, 3, d, 8) for d in (12, 13, 14, 15)]

    async def test_monthly_rule_keeps_anchor_day(self, ledger, user_id, cash, categories):
        """Test Jan 31 -> Feb 29 -> Mar 31 for a monthly rule."""
        await make_rule(ledger, user_id, cash, categories["Household"], 100, Cadence.MONTHLY, utc(2024, 1, 31))

        for _ in range(3):
            await ledger.process_due_for_user(user_id, now=utc(2024, 6, 1))

        async with ledger.storage.snapshot() as session:
            dates = [tx.date for tx in await session.find(Transaction, owner_id=user_id)]
        assert dates == [utc(2024, 1, 31), utc(2024, 2, 29), utc(2024, 3, 31)]

    async def test_orphaned_rule_is_reported_and_untouched(self, ledger, storage, user_id, cash, categories):
        """Test a rule whose category vanished underneath it."""
        rule = await make_rule(ledger, user_id, cash, categories["Food"], 100)
        async with storage.transaction() as session:
            await session.delete(Category, categories["Food"].id)

        result = await ledger.process_due_for_user(user_id)

        assert result.orphaned_rule_ids == [rule.id]
        assert result.created == 0
        async with storage.snapshot() as session:
            stored = await session.get(RecurringRule, rule.id)
        assert stored.next_run == rule.next_run

    async def test_failed_batch_rolls_back_every_rule(self, clock, user_id):
        """Test that one failing insert undoes the whole pass."""
        storage = FlakyStorage()
        ledger = LedgerService(storage, audit_logger=AuditLogger(), clock=clock)
        await ledger.setup_user(user_id)
        food = (await ledger.categories.list_categories(user_id, TransactionKind.EXPENSE))[0]
        wallet = await ledger.wallets.create_wallet(user_id, "Cash", initial_balance=1000)
        for hour in (1, 2, 3):
            await make_rule(ledger, user_id, wallet, food, 100, next_run=utc(2024, 3, 15, hour))
        before = await ledger.recurrence.list_rules(user_id)

        storage.fail_on = 2
        with pytest.raises(AtomicityError, match="connection reset"):
            await ledger.process_due_for_user(user_id)
        storage.fail_on = 0

        assert storage.record_count("transactions") == 0
        assert await ledger.balance(user_id, wallet.id) == Decimal("1000.00")
        after = await ledger.recurrence.list_rules(user_id)
        assert [r.next_run for r in after] == [r.next_run for r in before]

        retry = await ledger.process_due_for_user(user_id)
        assert retry.created == 3

    async def test_duplicate_concurrent_passes_are_harmless(self, ledger, user_id, cash, categories):
        """Test that two simultaneous triggers create each occurrence once."""
        for hour in (6, 7, 8):
            await make_rule(ledger, user_id, cash, categories["Food"], 1000, next_run=utc(2024, 3, 15, hour))

        first, second = await asyncio.gather(
            ledger.process_due_for_user(user_id),
            ledger.process_due_for_user(user_id),
        )

        assert first.created + second.created == 3
        assert await ledger.balance(user_id, cash.id) == Decimal("97000.00")
        checks = await ledger.reconcile(user_id)
        assert all(check.consistent for check in checks)

    async def test_batch_events_share_correlation_id(self, ledger, audit_storage, user_id, cash, categories):
        """Test that one pass's audit events are correlated."""
        await make_rule(ledger, user_id, cash, categories["Food"], 100)
        await make_rule(ledger, user_id, cash, categories["Transport"], 200)

        await ledger.process_due_for_user(user_id)

        recent = await audit_storage.get_recent_events(limit=1)
        assert recent[0].event_type == AuditEventType.RECURRENCE_BATCH_COMPLETED
        batch = await audit_storage.get_events_by_correlation_id(recent[0].correlation_id)
        types = [e.event_type for e in batch]
        assert types.count(AuditEventType.RECURRENCE_MATERIALIZED) == 2


class TestProcessAllDue:
    """Tests for the sweep over every user."""

    async def test_sweep_processes_each_user(self, ledger, user_id, other_user_id, cash, categories):
        """Test that every user with a due rule gets one pass."""
        await make_rule(ledger, user_id, cash, categories["Food"], 100)

        await ledger.setup_user(other_user_id)
        salary = (await ledger.categories.list_categories(other_user_id, TransactionKind.INCOME))[0]
        theirs = await ledger.wallets.create_wallet(other_user_id, "Bank", WalletKind.BANK)
        await make_rule(ledger, other_user_id, theirs, salary, 5000)

        sweep = await ledger.process_all_due()

        assert sweep.processed_users == 2
        assert sweep.created == 2
        assert sweep.failed_users == []
        assert await ledger.balance(other_user_id, theirs.id) == Decimal("5000.00")

    async def test_sweep_with_nothing_due(self, ledger, user_id, cash, categories):
        """Test that a sweep with no due rules does nothing."""
        await make_rule(ledger, user_id, cash, categories["Food"], 100, next_run=utc(2025, 1, 1))
        sweep = await ledger.process_all_due()
        assert sweep.processed_users == 0
        assert sweep.created == 0

    async def test_failed_user_is_audited(self, clock, user_id):
        """Test that a user whose pass fails leaves an audit event tied to the sweep."""
        storage = FlakyStorage()
        audit_storage = InMemoryAuditStorage()
        ledger = LedgerService(storage, audit_logger=AuditLogger(audit_storage), clock=clock)
        await ledger.setup_user(user_id)
        food = (await ledger.categories.list_categories(user_id, TransactionKind.EXPENSE))[0]
        wallet = await ledger.wallets.create_wallet(user_id, "Cash", initial_balance=1000)
        await make_rule(ledger, user_id, wallet, food, 100)

        storage.fail_on = 1
        sweep = await ledger.process_all_due()

        assert sweep.failed_users == [user_id]
        assert sweep.processed_users == 0
        events = await audit_storage.get_events_by_correlation_id(sweep.correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.SYSTEM_ERROR]
        assert events[0].owner_id == user_id
        assert "connection reset" in events[0].error_message
        assert events[0].details["operation"] == "process_all_due"
