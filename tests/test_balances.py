"""
Tests for balance derivation and the cached-balance invariant.

The randomised test drives a mixed workload through the public
operations and reconciles after every step, on both backends.
"""

import random

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from moneyflow.audit import AuditLogger
from moneyflow.errors import NotFoundError
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import Cadence, TransactionKind, Wallet, WalletKind
from moneyflow.orchestrator import LedgerService
from moneyflow.services.storage import InMemoryAuditStorage, SQLiteLedgerStorage


async def run_workload(ledger, user_id, seed, steps=60):
    """Apply random writes, reconciling after each one."""
    rng = random.Random(seed)
    await ledger.setup_user(user_id)
    categories = await ledger.categories.list_categories(user_id)
    wallets = [
        await ledger.wallets.create_wallet(user_id, f"W{i}", WalletKind.BANK, initial_balance=rng.randint(0, 50000))
        for i in range(3)
    ]
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    recorded = []

    for _ in range(steps):
        action = rng.choice(["create", "create", "update", "delete", "transfer", "recur"])
        if action == "create" or not recorded and action in ("update", "delete"):
            category = rng.choice(categories)
            tx = await ledger.transactions.create_transaction(
                user_id,
                rng.choice(wallets).id,
                category.id,
                TransactionKind(category.kind),
                Decimal(rng.randint(1, 1000000)) / 100,
                date=start + timedelta(hours=rng.randint(0, 700)),
            )
            recorded.append(tx.id)
        elif action == "update":
            category = rng.choice(categories)
            await ledger.transactions.update_transaction(
                user_id,
                rng.choice(recorded),
                wallet_id=rng.choice(wallets).id,
                category_id=category.id,
                kind=category.kind,
                amount=rng.randint(1, 20000),
            )
        elif action == "delete":
            await ledger.transactions.delete_transaction(user_id, recorded.pop(rng.randrange(len(recorded))))
        elif action == "transfer":
            source, destination = rng.sample(wallets, 2)
            await ledger.transfer(
                user_id, source.id, destination.id, rng.randint(1, 30000), fee=rng.choice([0, 0, 250])
            )
        else:
            category = rng.choice(categories)
            await ledger.recurrence.create_rule(
                user_id,
                rng.choice(wallets).id,
                category.id,
                TransactionKind(category.kind),
                rng.randint(1, 5000),
                rng.choice(list(Cadence)),
                start + timedelta(days=rng.randint(0, 14)),
            )
            await ledger.process_due_for_user(user_id)

        checks = await ledger.reconcile(user_id)
        assert all(check.consistent for check in checks), checks

    return wallets


class TestBalanceDerivation:
    """Tests for BalanceDeriver."""

    async def test_new_wallet_balance_is_initial_balance(self, ledger, user_id, cash):
        """Test that an untouched wallet derives its opening balance."""
        assert await ledger.balance(user_id, cash.id) == Decimal("100000.00")

    async def test_balance_follows_income_and_expense(self, ledger, user_id, cash, categories, record):
        """Test initial + income - expense."""
        await record(cash, categories["Salary"], 5000)
        await record(cash, categories["Food"], 1234)
        assert await ledger.balance(user_id, cash.id) == Decimal("103766.00")

    async def test_check_single_wallet(self, ledger, user_id, cash, categories, record):
        """Test comparing one wallet's cached and derived balance."""
        await record(cash, categories["Food"], 250)
        check = await ledger.balances.check(user_id, cash.id)
        assert check.consistent is True
        assert check.derived == Decimal("99750.00")

    async def test_wallets_with_balance(self, ledger, user_id, cash, bank):
        """Test listing wallets with their cached balances."""
        wallets = await ledger.balances.wallets_with_balance(user_id)
        assert [(w.name, w.current_balance) for w in wallets] == [
            ("Cash", Decimal("100000.00")),
            ("Bank", Decimal("500000.00")),
        ]

    async def test_balance_of_foreign_wallet(self, ledger, other_user_id, cash):
        """Test that another user's wallet cannot be read."""
        with pytest.raises(NotFoundError):
            await ledger.balance(other_user_id, cash.id)

    async def test_reconcile_reports_and_audits_drift(self, ledger, storage, audit_storage, user_id, cash):
        """Test that a tampered cached balance is detected, not repaired."""
        async with storage.transaction() as session:
            await session.adjust_wallet_balance(cash.id, Decimal("1"))

        checks = await ledger.reconcile(user_id)

        assert checks[0].consistent is False
        assert checks[0].difference == Decimal("1.00")
        async with storage.snapshot() as session:
            assert (await session.get(Wallet, cash.id)).current_balance == Decimal("100001.00")
        events = await audit_storage.get_events_by_entity("wallet", cash.id)
        assert events[-1].event_type == AuditEventType.BALANCE_MISMATCH


class TestBalanceInvariant:
    """Randomised workloads keep cached and derived balances equal."""

    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_memory_workload(self, ledger, user_id, seed):
        """Test the invariant on the in-memory backend."""
        await run_workload(ledger, user_id, seed)

    async def test_sqlite_workload(self, tmp_path, clock, user_id):
        """Test the invariant on the SQLite backend."""
        storage = SQLiteLedgerStorage(str(tmp_path / "ledger.db"))
        ledger = LedgerService(storage, audit_logger=AuditLogger(InMemoryAuditStorage()), clock=clock)
        try:
            wallets = await run_workload(ledger, user_id, seed=3, steps=40)
            for wallet in wallets:
                stored = await ledger.wallets.get_wallet(user_id, wallet.id)
                assert stored.current_balance == await ledger.balance(user_id, wallet.id)
        finally:
            await ledger.close()
