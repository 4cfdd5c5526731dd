"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the whole ledger in memory for tests
2. Persist to SQLite without touching business logic
3. Keep the atomicity contract in one place

The interface is intentionally simple - we're not building a full ORM.
Records are Pydantic models; a session can get, find, add, update and
delete them. Filtering beyond owner and date range happens in Python,
which is fine at personal-finance volumes.

ATOMICITY CONTRACT: every write happens inside `transaction()`. All
writes made through the yielded session become visible together when
the block exits normally, and none of them do if it raises.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional, TypeVar
from uuid import UUID

from moneyflow.errors import AtomicityError, LedgerError, NotFoundError
from moneyflow.models.audit import AuditEvent
from moneyflow.models.ledger import LedgerRecord, Transaction, Wallet
from moneyflow.money import ZERO
from moneyflow.periods import ensure_utc


R = TypeVar("R", bound=LedgerRecord)


def record_matches(
    record: LedgerRecord,
    filters: dict[str, Any],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> bool:
    """
    Check a record against equality filters and an inclusive date range.

    The range applies to the record's `date_field`; filters whose value
    is None are ignored.
    """
    for name, expected in filters.items():
        if expected is not None and getattr(record, name) != expected:
            return False
    if since is not None or until is not None:
        if record.date_field is None:
            raise ValueError(f"{type(record).__name__} has no date field to range over")
        moment = getattr(record, record.date_field)
        if since is not None and moment < ensure_utc(since):
            return False
        if until is not None and moment > ensure_utc(until):
            return False
    return True


def sort_records(records: list[R]) -> list[R]:
    """Order by date field (when the model has one), then creation time."""
    def key(record: LedgerRecord):
        moment = getattr(record, record.date_field) if record.date_field else record.created_at
        return (moment, record.created_at)
    return sorted(records, key=key)


class LedgerSession(ABC):
    """
    A unit of work against ledger storage.

    Any storage implementation (memory, SQLite, etc.)
    must implement the five abstract methods below.
    """

    @abstractmethod
    async def get(self, model: type[R], record_id: UUID) -> Optional[R]:
        """
        Retrieve a record by its ID.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def find(
        self,
        model: type[R],
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        **filters: Any,
    ) -> list[R]:
        """
        List records matching all equality filters.

        Args:
            model: Record type to search
            since: Earliest value of the model's date field (inclusive)
            until: Latest value of the model's date field (inclusive)
            filters: field=value pairs; None values are ignored

        Returns:
            Matching records ordered by date field, then creation time
        """
        pass

    @abstractmethod
    async def add(self, record: R) -> R:
        """
        Insert a new record.

        Raises:
            StorageError: If a record with the same ID exists
        """
        pass

    @abstractmethod
    async def update(self, record: R) -> R:
        """
        Replace an existing record.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, model: type[R], record_id: UUID) -> bool:
        """
        Delete a record by ID.

        Returns:
            True if a record was deleted
        """
        pass

    async def count(self, model: type[R], **filters: Any) -> int:
        return len(await self.find(model, **filters))

    async def get_owned(self, model: type[R], owner_id: UUID, record_id: UUID) -> R:
        """
        Retrieve a record that must belong to `owner_id`.

        Raises:
            NotFoundError: If missing or owned by someone else
        """
        record = await self.get(model, record_id)
        if record is None or record.owner_id != owner_id:
            label = model.__name__
            raise NotFoundError(f"{label} not found: {record_id}")
        return record

    async def adjust_wallet_balance(self, wallet_id: UUID, delta: Decimal) -> Wallet:
        """Apply a signed delta to a wallet's cached balance."""
        wallet = await self.get(Wallet, wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found: {wallet_id}")
        if delta:
            wallet.current_balance = wallet.current_balance + delta
            wallet.touch()
            await self.update(wallet)
        return wallet

    async def sum_amounts(
        self,
        group_by: str,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        **filters: Any,
    ) -> dict[Any, Decimal]:
        """Total transaction amounts grouped by one transaction field."""
        totals: dict[Any, Decimal] = defaultdict(lambda: ZERO)
        for tx in await self.find(Transaction, since=since, until=until, **filters):
            totals[getattr(tx, group_by)] += tx.amount
        return dict(totals)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Subclasses provide sessions and the begin/commit/rollback steps;
    the atomicity contract itself lives in `transaction()`.
    """

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerSession]:
        """
        Open an atomic unit of work.

        Ledger errors raised inside the block propagate unchanged after
        rollback; any other failure is surfaced as AtomicityError.
        """
        session = await self._begin()
        try:
            yield session
        except LedgerError:
            await self._rollback(session)
            raise
        except Exception as e:
            await self._rollback(session)
            raise AtomicityError(f"Transaction rolled back: {e}") from e
        except BaseException:
            await self._rollback(session)
            raise

        try:
            await self._commit(session)
        except Exception as e:
            await self._rollback(session)
            raise AtomicityError(f"Commit failed, transaction rolled back: {e}") from e

    @abstractmethod
    def snapshot(self):
        """
        Open a read-only session over committed state.

        Used as `async with storage.snapshot() as session:`.
        """
        pass

    @abstractmethod
    async def _begin(self) -> LedgerSession:
        pass

    @abstractmethod
    async def _commit(self, session: LedgerSession) -> None:
        pass

    @abstractmethod
    async def _rollback(self, session: LedgerSession) -> None:
        pass

    async def owner_ids_with_due_rules(self, now: datetime) -> list[UUID]:
        """Distinct owners that have at least one rule due at `now`."""
        from moneyflow.models.ledger import RecurringRule

        async with self.snapshot() as session:
            rules = await session.find(RecurringRule, until=now)
        seen: dict[UUID, None] = {}
        for rule in rules:
            seen.setdefault(rule.owner_id, None)
        return list(seen)

    async def close(self) -> None:
        """Release any resources held by the backend."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one recurrence batch).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the backend."""
        pass
