"""
Category Management

Every user gets a fixed set of default categories, seeded once. Default
categories and the system categories used by transfers are protected:
they cannot be edited or deleted.

System categories are found by their tag, not their name, so renaming
the display names in settings never creates duplicates.
"""

from typing import Any, Optional
from uuid import UUID

from moneyflow.config import get_settings
from moneyflow.errors import ValidationError
from moneyflow.ledger.base import LedgerComponent
from moneyflow.models.audit import AuditEventType
from moneyflow.models.ledger import (
    Budget,
    Category,
    RecurringRule,
    SystemTag,
    Transaction,
    TransactionKind,
)
from moneyflow.services.storage import LedgerSession


DEFAULT_CATEGORIES: list[tuple[str, TransactionKind]] = [
    ("Salary", TransactionKind.INCOME),
    ("Bonus", TransactionKind.INCOME),
    ("Investment", TransactionKind.INCOME),
    ("Other", TransactionKind.INCOME),
    ("Food", TransactionKind.EXPENSE),
    ("Transport", TransactionKind.EXPENSE),
    ("Entertainment", TransactionKind.EXPENSE),
    ("Household", TransactionKind.EXPENSE),
    ("Health", TransactionKind.EXPENSE),
]

SYSTEM_TAG_KINDS: dict[SystemTag, TransactionKind] = {
    SystemTag.TRANSFER_OUT: TransactionKind.EXPENSE,
    SystemTag.TRANSFER_IN: TransactionKind.INCOME,
    SystemTag.TRANSFER_FEE: TransactionKind.EXPENSE,
}


def system_category_name(tag: SystemTag) -> str:
    settings = get_settings().ledger
    return {
        SystemTag.TRANSFER_OUT: settings.transfer_out_name,
        SystemTag.TRANSFER_IN: settings.transfer_in_name,
        SystemTag.TRANSFER_FEE: settings.transfer_fee_name,
    }[tag]


async def get_or_create_system_category(
    session: LedgerSession,
    user_id: UUID,
    tag: SystemTag,
) -> Category:
    """
    Find the user's category for a system tag, creating it if needed.

    Runs inside the caller's transaction, so a category created here is
    rolled back together with the rest of the batch.
    """
    existing = await session.find(Category, owner_id=user_id, system_tag=tag)
    if existing:
        return existing[0]

    category = Category(
        owner_id=user_id,
        name=system_category_name(tag),
        kind=SYSTEM_TAG_KINDS[tag],
        system_tag=tag,
    )
    await session.add(category)
    return category


def is_protected(category: Category) -> bool:
    return category.is_default or category.system_tag is not None


class CategoryService(LedgerComponent):
    """Create, edit, delete and list categories."""

    EDITABLE_FIELDS = {"name", "kind"}

    async def ensure_default_categories(self, user_id: UUID) -> list[Category]:
        """
        Seed the default categories for a user.

        Does nothing if the user already has default categories.

        Returns:
            The categories created (empty when already seeded)
        """
        async with self._atomic("ensure_default_categories", user_id) as session:
            if await session.count(Category, owner_id=user_id, is_default=True):
                return []

            created = []
            for name, kind in DEFAULT_CATEGORIES:
                category = Category(owner_id=user_id, name=name, kind=kind, is_default=True)
                await session.add(category)
                created.append(category)

        await self._audit_logger.log_entity_changed(
            AuditEventType.DEFAULT_CATEGORIES_SEEDED,
            owner_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"Seeded {len(created)} default categories",
        )
        return created

    async def get_or_create_system_category(self, user_id: UUID, tag: SystemTag) -> Category:
        async with self._atomic("get_or_create_system_category", user_id) as session:
            return await get_or_create_system_category(session, user_id, SystemTag(tag))

    async def create_category(self, user_id: UUID, name: str, kind: TransactionKind) -> Category:
        async with self._atomic("create_category", user_id) as session:
            category = self._validator.build(Category, owner_id=user_id, name=name, kind=kind)
            await session.add(category)

        await self._audit_logger.log_entity_changed(
            AuditEventType.CATEGORY_CREATED,
            owner_id=user_id,
            entity_type="category",
            entity_id=category.id,
            description=f"Category '{category.name}' created",
            details={"kind": category.kind.value},
        )
        return category

    async def _reference_counts(self, session: LedgerSession, category: Category) -> dict[str, int]:
        owner = category.owner_id
        return {
            "transactions": await session.count(Transaction, owner_id=owner, category_id=category.id),
            "recurring_rules": await session.count(RecurringRule, owner_id=owner, category_id=category.id),
            "budgets": await session.count(Budget, owner_id=owner, category_id=category.id),
        }

    def _refuse_protected(self, category: Category, action: str) -> None:
        if is_protected(category):
            raise ValidationError.single(
                "category_id",
                "protected",
                f"Default category '{category.name}' cannot be {action}",
            )

    async def update_category(self, user_id: UUID, category_id: UUID, **changes: Any) -> Category:
        """
        Rename a category or change its kind.

        Raises:
            ValidationError: Protected category, or a kind change while
                             the category is referenced
        """
        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise ValidationError.single(
                "category", "invalid_field", f"Cannot edit category fields: {', '.join(sorted(unknown))}"
            )

        async with self._atomic("update_category", user_id) as session:
            category = await session.get_owned(Category, user_id, category_id)
            self._refuse_protected(category, "edited")

            updated = self._validator.revise(category, **changes)
            if updated.kind != category.kind:
                self._validator.not_referenced(
                    "Category", await self._reference_counts(session, category)
                )
            updated.touch()
            await session.update(updated)

        await self._audit_logger.log_entity_changed(
            AuditEventType.CATEGORY_UPDATED,
            owner_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category '{updated.name}' updated",
            details={k: str(getattr(v, "value", v)) for k, v in changes.items()},
        )
        return updated

    async def delete_category(self, user_id: UUID, category_id: UUID) -> None:
        async with self._atomic("delete_category", user_id) as session:
            category = await session.get_owned(Category, user_id, category_id)
            self._refuse_protected(category, "deleted")
            self._validator.not_referenced(
                "Category", await self._reference_counts(session, category)
            )
            await session.delete(Category, category_id)

        await self._audit_logger.log_entity_changed(
            AuditEventType.CATEGORY_DELETED,
            owner_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category '{category.name}' deleted",
        )

    async def list_categories(
        self,
        user_id: UUID,
        kind: Optional[TransactionKind] = None,
    ) -> list[Category]:
        """Categories ordered by kind, then name."""
        async with self._storage.snapshot() as session:
            categories = await session.find(Category, owner_id=user_id, kind=kind)
        return sorted(categories, key=lambda c: (c.kind.value, c.name.lower()))
