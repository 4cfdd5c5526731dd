"""
In-Memory Storage Implementation

DESIGN DECISION: The in-memory backend is a full implementation, not a
test double. It is what the ledger runs on by default and what the test
suite exercises.

How atomicity works here:
1. A write session never touches committed state directly. Every add,
   update and delete is staged in the session's own overlay.
2. Reads inside the session look at the overlay first, so a session
   sees its own writes.
3. Commit copies the overlay into the committed tables in one
   synchronous step. There is no await inside it, so no other coroutine
   can observe half of a batch.
4. Rollback simply drops the overlay.

Records are copied on the way in and on the way out, so callers can
never mutate stored state by accident.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Union
from uuid import UUID

from moneyflow.errors import NotFoundError, StorageError
from moneyflow.models.audit import AuditEvent
from moneyflow.services.storage.interface import (
    AuditStorageInterface,
    LedgerSession,
    LedgerStorageInterface,
    R,
    record_matches,
    sort_records,
)


# Staged deletes are recorded as this marker
_DELETED = None

Key = tuple[str, UUID]


class InMemoryLedgerSession(LedgerSession):
    """Session over an InMemoryLedgerStorage with a private write overlay."""

    def __init__(self, tables: dict[str, dict[UUID, Any]], read_only: bool = False):
        self._tables = tables
        self._staged: dict[Key, Union[Any, None]] = {}
        self._read_only = read_only
        self.closed = False

    def _check_writable(self) -> None:
        if self._read_only:
            raise StorageError("Session is read-only")
        if self.closed:
            raise StorageError("Session is already closed")

    def _lookup(self, model: type[R], record_id: UUID) -> Optional[R]:
        key = (model.table_name, record_id)
        if key in self._staged:
            return self._staged[key]
        return self._tables.get(model.table_name, {}).get(record_id)

    async def get(self, model: type[R], record_id: UUID) -> Optional[R]:
        record = self._lookup(model, record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def find(
        self,
        model: type[R],
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        **filters: Any,
    ) -> list[R]:
        merged = dict(self._tables.get(model.table_name, {}))
        for (table, record_id), record in self._staged.items():
            if table != model.table_name:
                continue
            if record is _DELETED:
                merged.pop(record_id, None)
            else:
                merged[record_id] = record

        matches = [
            record.model_copy(deep=True)
            for record in merged.values()
            if record_matches(record, filters, since, until)
        ]
        return sort_records(matches)

    async def add(self, record: R) -> R:
        self._check_writable()
        if self._lookup(type(record), record.id) is not None:
            raise StorageError(f"{type(record).__name__} already exists: {record.id}")
        self._staged[(record.table_name, record.id)] = record.model_copy(deep=True)
        return record

    async def update(self, record: R) -> R:
        self._check_writable()
        if self._lookup(type(record), record.id) is None:
            raise NotFoundError(f"{type(record).__name__} not found: {record.id}")
        self._staged[(record.table_name, record.id)] = record.model_copy(deep=True)
        return record

    async def delete(self, model: type[R], record_id: UUID) -> bool:
        self._check_writable()
        if self._lookup(model, record_id) is None:
            return False
        self._staged[(model.table_name, record_id)] = _DELETED
        return True

    def apply(self) -> int:
        """Copy staged writes into committed state. Returns the write count."""
        applied = 0
        for (table, record_id), record in self._staged.items():
            rows = self._tables.setdefault(table, {})
            if record is _DELETED:
                rows.pop(record_id, None)
            else:
                rows[record_id] = record
            applied += 1
        self._staged.clear()
        self.closed = True
        return applied

    def discard(self) -> None:
        self._staged.clear()
        self.closed = True


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Ledger storage held in process memory.

    Usage:
        storage = InMemoryLedgerStorage()
        async with storage.transaction() as session:
            await session.add(wallet)
    """

    def __init__(self):
        self._tables: dict[str, dict[UUID, Any]] = {}

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[InMemoryLedgerSession]:
        session = InMemoryLedgerSession(self._tables, read_only=True)
        try:
            yield session
        finally:
            session.closed = True

    async def _begin(self) -> InMemoryLedgerSession:
        return InMemoryLedgerSession(self._tables)

    async def _commit(self, session: InMemoryLedgerSession) -> None:
        session.apply()

    async def _rollback(self, session: InMemoryLedgerSession) -> None:
        session.discard()

    def record_count(self, table: str) -> int:
        """Committed rows in one table (handy in tests)."""
        return len(self._tables.get(table, {}))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log held in process memory."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
