"""
Tests for wallet, category and transaction writes.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from moneyflow.errors import NotFoundError, ValidationError
from moneyflow.ledger import DEFAULT_CATEGORIES
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import Cadence, SystemTag, TransactionKind, WalletKind


MARCH = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)


class TestWallets:
    """Tests for WalletService."""

    async def test_create_wallet(self, ledger, audit_storage, user_id):
        """Test that a new wallet starts at its initial balance."""
        wallet = await ledger.wallets.create_wallet(user_id, "E-money", WalletKind.E_WALLET, currency="idr", initial_balance="2500.5")

        assert wallet.current_balance == Decimal("2500.50")
        assert wallet.currency == "IDR"
        events = await audit_storage.get_events_by_entity("wallet", wallet.id)
        assert events[0].event_type == AuditEventType.WALLET_CREATED

    async def test_negative_initial_balance_rejected(self, ledger, user_id):
        """Test that the opening balance cannot be negative."""
        with pytest.raises(ValidationError, match="Initial balance cannot be negative"):
            await ledger.wallets.create_wallet(user_id, "Cash", initial_balance=-1)

    async def test_blank_name_rejected(self, ledger, user_id):
        """Test that a wallet needs a name."""
        with pytest.raises(ValidationError):
            await ledger.wallets.create_wallet(user_id, "   ")

    async def test_editing_initial_balance_shifts_current(self, ledger, user_id, cash, categories, record):
        """Test that the balance formula still holds after an edit."""
        await record(cash, categories["Food"], 30000, when=MARCH)

        updated = await ledger.wallets.update_wallet(user_id, cash.id, initial_balance=150000, name="Wallet")

        assert updated.name == "Wallet"
        assert updated.current_balance == Decimal("120000.00")
        assert await ledger.balance(user_id, cash.id) == Decimal("120000.00")

    async def test_update_rejects_current_balance(self, ledger, user_id, cash):
        """Test that the cached balance is not directly editable."""
        with pytest.raises(ValidationError, match="current_balance"):
            await ledger.wallets.update_wallet(user_id, cash.id, current_balance=0)

    async def test_delete_unused_wallet(self, ledger, user_id, cash):
        """Test deleting a wallet with no history."""
        await ledger.wallets.delete_wallet(user_id, cash.id)
        assert await ledger.wallets.list_wallets(user_id) == []

    async def test_delete_wallet_in_use_rejected(self, ledger, user_id, cash, categories, record):
        """Test that referenced wallets cannot be deleted."""
        await record(cash, categories["Food"], 10, when=MARCH)
        with pytest.raises(ValidationError, match="1 transactions"):
            await ledger.wallets.delete_wallet(user_id, cash.id)

    async def test_delete_wallet_with_rule_rejected(self, ledger, user_id, cash, categories):
        """Test that a recurring rule also keeps its wallet alive."""
        await ledger.recurrence.create_rule(
            user_id, cash.id, categories["Food"].id, TransactionKind.EXPENSE, 10, Cadence.DAILY, MARCH
        )
        with pytest.raises(ValidationError, match="recurring_rules"):
            await ledger.wallets.delete_wallet(user_id, cash.id)

    async def test_list_wallets_in_creation_order(self, ledger, user_id, cash, bank):
        """Test wallet listing order."""
        assert [w.name for w in await ledger.wallets.list_wallets(user_id)] == ["Cash", "Bank"]

    async def test_other_user_cannot_see_wallet(self, ledger, other_user_id, cash):
        """Test per-user isolation."""
        with pytest.raises(NotFoundError):
            await ledger.wallets.get_wallet(other_user_id, cash.id)
        assert await ledger.wallets.list_wallets(other_user_id) == []


class TestCategories:
    """Tests for CategoryService."""

    async def test_defaults_seeded_once(self, ledger, user_id):
        """Test that setup is idempotent."""
        first = await ledger.setup_user(user_id)
        second = await ledger.setup_user(user_id)

        assert len(first) == len(DEFAULT_CATEGORIES)
        assert second == []
        assert len(await ledger.categories.list_categories(user_id)) == len(DEFAULT_CATEGORIES)

    async def test_seeding_not_blocked_by_system_category(self, ledger, user_id):
        """Test that a transfer category created first does not stop seeding."""
        await ledger.categories.get_or_create_system_category(user_id, SystemTag.TRANSFER_OUT)
        seeded = await ledger.setup_user(user_id)
        assert len(seeded) == len(DEFAULT_CATEGORIES)

    async def test_list_by_kind(self, ledger, user_id, categories):
        """Test filtering and ordering categories."""
        income = await ledger.categories.list_categories(user_id, TransactionKind.INCOME)
        assert [c.name for c in income] == ["Bonus", "Investment", "Other", "Salary"]

    async def test_create_rename_delete(self, ledger, user_id, categories):
        """Test the life of a user category."""
        pets = await ledger.categories.create_category(user_id, "Pets", TransactionKind.EXPENSE)
        renamed = await ledger.categories.update_category(user_id, pets.id, name="Pet care")
        assert renamed.name == "Pet care"

        await ledger.categories.delete_category(user_id, pets.id)
        names = [c.name for c in await ledger.categories.list_categories(user_id)]
        assert "Pet care" not in names

    async def test_default_category_is_protected(self, ledger, user_id, categories):
        """Test that default categories cannot be edited or deleted."""
        food = categories["Food"]
        with pytest.raises(ValidationError, match="cannot be edited"):
            await ledger.categories.update_category(user_id, food.id, name="Groceries")
        with pytest.raises(ValidationError, match="cannot be deleted"):
            await ledger.categories.delete_category(user_id, food.id)

    async def test_system_category_is_protected(self, ledger, user_id):
        """Test that transfer categories cannot be deleted."""
        fee = await ledger.categories.get_or_create_system_category(user_id, SystemTag.TRANSFER_FEE)
        assert fee.kind == TransactionKind.EXPENSE
        with pytest.raises(ValidationError):
            await ledger.categories.delete_category(user_id, fee.id)

    async def test_referenced_category_cannot_change_kind(self, ledger, user_id, cash, record):
        """Test that kind changes are refused while entries use the category."""
        pets = await ledger.categories.create_category(user_id, "Pets", TransactionKind.EXPENSE)
        await record(cash, pets, 100, when=MARCH)

        with pytest.raises(ValidationError, match="transactions"):
            await ledger.categories.update_category(user_id, pets.id, kind=TransactionKind.INCOME)
        with pytest.raises(ValidationError):
            await ledger.categories.delete_category(user_id, pets.id)

        # Renaming is still fine
        await ledger.categories.update_category(user_id, pets.id, name="Animals")


class TestTransactions:
    """Tests for TransactionService."""

    async def test_expense_lowers_balance(self, ledger, user_id, cash, categories, record):
        """Test that recording an expense moves the cached balance."""
        tx = await record(cash, categories["Food"], "12500.75", when=MARCH, note="lunch")

        assert tx.amount == Decimal("12500.75")
        wallet = await ledger.wallets.get_wallet(user_id, cash.id)
        assert wallet.current_balance == Decimal("87499.25")

    async def test_undated_transaction_uses_ledger_clock(self, ledger, clock, user_id, cash, categories, record):
        """Test that an entry without a date is stamped with the injected clock."""
        tx = await record(cash, categories["Food"], 10)
        assert tx.date == clock.now

        listed = await ledger.transactions.list_transactions(user_id)
        assert [t.id for t in listed] == [tx.id]

    async def test_kind_must_match_category(self, ledger, storage, user_id, cash, categories):
        """Test that an INCOME entry cannot use an expense category."""
        with pytest.raises(ValidationError) as exc:
            await ledger.transactions.create_transaction(
                user_id, cash.id, categories["Food"].id, TransactionKind.INCOME, 100
            )
        assert exc.value.issues[0].issue_type == "kind_mismatch"
        assert storage.record_count("transactions") == 0

    async def test_amount_ceiling(self, ledger, user_id, cash, categories):
        """Test the sanity ceiling on single amounts."""
        with pytest.raises(ValidationError, match="exceeds the maximum"):
            await ledger.transactions.create_transaction(
                user_id, cash.id, categories["Food"].id, TransactionKind.EXPENSE, 10 ** 13
            )

    async def test_update_amount_applies_delta(self, ledger, user_id, cash, categories, record):
        """Test that editing an amount moves the balance by the difference."""
        tx = await record(cash, categories["Food"], 1000, when=MARCH)
        await ledger.transactions.update_transaction(user_id, tx.id, amount=400)
        assert (await ledger.wallets.get_wallet(user_id, cash.id)).current_balance == Decimal("99600.00")

    async def test_update_kind_flips_sign(self, ledger, user_id, cash, categories, record):
        """Test turning an expense into income."""
        tx = await record(cash, categories["Food"], 1000, when=MARCH)
        await ledger.transactions.update_transaction(
            user_id, tx.id, kind=TransactionKind.INCOME, category_id=categories["Bonus"].id
        )
        assert (await ledger.wallets.get_wallet(user_id, cash.id)).current_balance == Decimal("101000.00")

    async def test_update_moves_between_wallets(self, ledger, user_id, cash, bank, categories, record):
        """Test that moving an entry reverses it on the old wallet."""
        tx = await record(cash, categories["Food"], 1000, when=MARCH)
        moved = await ledger.transactions.update_transaction(user_id, tx.id, wallet_id=bank.id, amount=2000)

        assert moved.wallet_id == bank.id
        assert (await ledger.wallets.get_wallet(user_id, cash.id)).current_balance == Decimal("100000.00")
        assert (await ledger.wallets.get_wallet(user_id, bank.id)).current_balance == Decimal("498000.00")
        checks = await ledger.reconcile(user_id)
        assert all(check.consistent for check in checks)

    async def test_update_to_foreign_wallet_rejected(self, ledger, user_id, other_user_id, cash, categories, record):
        """Test that an entry cannot be moved into another user's wallet."""
        tx = await record(cash, categories["Food"], 1000, when=MARCH)
        theirs = await ledger.wallets.create_wallet(other_user_id, "Theirs")
        with pytest.raises(NotFoundError):
            await ledger.transactions.update_transaction(user_id, tx.id, wallet_id=theirs.id)
        assert (await ledger.wallets.get_wallet(user_id, cash.id)).current_balance == Decimal("99000.00")

    async def test_update_with_malformed_wallet_id_rejected(
        self, ledger, audit_storage, user_id, cash, categories, record
    ):
        """Test that a wallet id that is not a UUID is a validation error, and audited."""
        tx = await record(cash, categories["Food"], 1000, when=MARCH)

        with pytest.raises(ValidationError) as exc:
            await ledger.transactions.update_transaction(user_id, tx.id, wallet_id="not-a-uuid")

        assert exc.value.issues[0].field == "wallet_id"
        assert exc.value.issues[0].issue_type == "invalid_value"
        recent = (await audit_storage.get_recent_events(limit=1))[0]
        assert recent.event_type == AuditEventType.VALIDATION_FAILED
        assert recent.details["operation"] == "update_transaction"
        assert (await ledger.transactions.get_transaction(user_id, tx.id)).wallet_id == cash.id
        assert (await ledger.wallets.get_wallet(user_id, cash.id)).current_balance == Decimal("99000.00")

    async def test_update_accepts_wallet_id_as_string(self, ledger, user_id, cash, bank, categories, record):
        """Test that a well-formed string id still moves the entry."""
        tx = await record(cash, categories["Food"], 1000, when=MARCH)
        moved = await ledger.transactions.update_transaction(user_id, tx.id, wallet_id=str(bank.id))
        assert moved.wallet_id == bank.id
        assert (await ledger.wallets.get_wallet(user_id, bank.id)).current_balance == Decimal("499000.00")

    async def test_delete_reverses_balance(self, ledger, user_id, cash, categories, record):
        """Test that deleting an entry undoes its effect."""
        tx = await record(cash, categories["Salary"], 5000, when=MARCH)
        await ledger.transactions.delete_transaction(user_id, tx.id)

        assert (await ledger.wallets.get_wallet(user_id, cash.id)).current_balance == Decimal("100000.00")
        with pytest.raises(NotFoundError):
            await ledger.transactions.get_transaction(user_id, tx.id)

    async def test_list_transactions_newest_first(self, ledger, user_id, cash, categories, record):
        """Test month filtering and ordering."""
        early = await record(cash, categories["Food"], 1, when=datetime(2024, 3, 1, tzinfo=timezone.utc))
        late = await record(cash, categories["Food"], 2, when=datetime(2024, 3, 31, 23, tzinfo=timezone.utc))
        await record(cash, categories["Food"], 3, when=datetime(2024, 4, 1, tzinfo=timezone.utc))

        listed = await ledger.transactions.list_transactions(user_id, month="2024-03")
        assert [tx.id for tx in listed] == [late.id, early.id]

    async def test_list_transactions_by_kind(self, ledger, user_id, cash, categories, record):
        """Test filtering by kind over an explicit range."""
        await record(cash, categories["Food"], 1, when=MARCH)
        income = await record(cash, categories["Salary"], 2, when=MARCH)

        listed = await ledger.transactions.list_transactions(
            user_id,
            since=datetime(2024, 1, 1, tzinfo=timezone.utc),
            until=datetime(2024, 12, 31, tzinfo=timezone.utc),
            kind=TransactionKind.INCOME,
        )
        assert [tx.id for tx in listed] == [income.id]
