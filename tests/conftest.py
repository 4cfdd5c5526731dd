"""
Shared fixtures.

Every test gets a fresh in-memory ledger, an in-memory audit log and a
clock frozen at 2024-03-15 12:00 UTC that tests may move.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from moneyflow.audit import AuditLogger
from moneyflow.models.ledger import TransactionKind, WalletKind
from moneyflow.orchestrator import LedgerService
from moneyflow.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


class FrozenClock:
    """Callable clock the tests can move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def other_user_id():
    return uuid4()


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def ledger(storage, audit_storage, clock):
    return LedgerService(storage, audit_logger=AuditLogger(audit_storage), clock=clock)


@pytest.fixture
async def categories(ledger, user_id):
    """The user's default categories, by name."""
    await ledger.setup_user(user_id)
    return {c.name: c for c in await ledger.categories.list_categories(user_id)}


@pytest.fixture
async def cash(ledger, user_id):
    return await ledger.wallets.create_wallet(user_id, "Cash", WalletKind.CASH, initial_balance="100000")


@pytest.fixture
async def bank(ledger, user_id):
    return await ledger.wallets.create_wallet(user_id, "Bank", WalletKind.BANK, initial_balance="500000")


@pytest.fixture
def record(ledger, user_id):
    """Record a transaction whose kind follows its category."""
    async def _record(wallet, category, amount, when=None, note=None):
        return await ledger.transactions.create_transaction(
            user_id,
            wallet.id,
            category.id,
            TransactionKind(category.kind),
            amount,
            date=when,
            note=note,
        )
    return _record
