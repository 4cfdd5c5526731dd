"""
SQLite Storage Implementation

Persists the ledger to a single SQLite file.

DESIGN DECISION: Each record type gets its own table holding one JSON
document per row, plus the columns we filter on (owner, date). The
Pydantic models stay the single source of truth for the schema, so
adding a field never needs a migration.

Schema per table:
| id | owner_id | date_key | doc |

Concurrency:
- WAL journal mode, so readers never block on the writer
- Write transactions use BEGIN IMMEDIATE and are serialised in-process
  by an asyncio lock
- Opening a write transaction is retried with exponential backoff when
  another process holds the database lock
- Because of the single in-process write lock, writes touching disjoint
  wallets (two unrelated transfers, say) still run one after another
  here. Only the in-memory backend lets them proceed in parallel
"""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from moneyflow.config import get_settings
from moneyflow.errors import AtomicityError, ConnectionError, NotFoundError, StorageError
from moneyflow.models.audit import AuditEvent
from moneyflow.models.ledger import (
    Budget,
    Category,
    Goal,
    LedgerRecord,
    RecurringRule,
    Transaction,
    Wallet,
)
from moneyflow.periods import ensure_utc
from moneyflow.services.storage.interface import (
    AuditStorageInterface,
    LedgerSession,
    LedgerStorageInterface,
    R,
    record_matches,
    sort_records,
)


LEDGER_MODELS: tuple[type[LedgerRecord], ...] = (
    Wallet,
    Category,
    Transaction,
    Budget,
    Goal,
    RecurringRule,
)

TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    date_key TEXT,
    doc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_{table}_owner_date ON {table} (owner_id, date_key);
"""

AUDIT_SQL = """
CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    correlation_id TEXT,
    entity_type TEXT,
    entity_id TEXT,
    doc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_audit_correlation ON audit_events (correlation_id);
CREATE INDEX IF NOT EXISTS ix_audit_entity ON audit_events (entity_type, entity_id);
"""


def date_key(moment: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text that sorts the same way the datetimes do."""
    if moment is None:
        return None
    return ensure_utc(moment).strftime("%Y-%m-%dT%H:%M:%S.%f")


def _record_date_key(record: LedgerRecord) -> Optional[str]:
    if record.date_field is None:
        return None
    return date_key(getattr(record, record.date_field))


class SQLiteConnectionFactory:
    """
    Opens connections to one database file.

    An in-memory database only exists for the lifetime of one
    connection, so ":memory:" shares a single connection. That mode is
    meant for quick experiments; snapshots on it can see a write
    transaction that is still open.
    """

    def __init__(self, path: str, busy_timeout_seconds: float):
        self.path = path
        self.busy_timeout_seconds = busy_timeout_seconds
        self._shared: Optional[sqlite3.Connection] = None

    @property
    def is_memory(self) -> bool:
        return self.path == ":memory:"

    def connect(self) -> sqlite3.Connection:
        if self.is_memory and self._shared is not None:
            return self._shared
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise ConnectionError(f"Failed to open SQLite database {self.path}: {e}")
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        if self.is_memory:
            self._shared = conn
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        if conn is not self._shared:
            conn.close()

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None


class SQLiteLedgerSession(LedgerSession):
    """Session bound to one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection, read_only: bool = False):
        self.conn = conn
        self.read_only = read_only
        self.closed = False

    def _check_writable(self) -> None:
        if self.read_only:
            raise StorageError("Session is read-only")
        if self.closed:
            raise StorageError("Session is already closed")

    async def get(self, model: type[R], record_id: UUID) -> Optional[R]:
        row = self.conn.execute(
            f"SELECT doc FROM {model.table_name} WHERE id = ?",
            (str(record_id),),
        ).fetchone()
        return model.model_validate_json(row[0]) if row else None

    async def find(
        self,
        model: type[R],
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        **filters: Any,
    ) -> list[R]:
        clauses: list[str] = []
        params: list[Any] = []

        owner_id = filters.get("owner_id")
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(str(owner_id))
        if since is not None:
            clauses.append("date_key >= ?")
            params.append(date_key(since))
        if until is not None:
            clauses.append("date_key <= ?")
            params.append(date_key(until))

        sql = f"SELECT doc FROM {model.table_name}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)

        # Remaining equality filters are applied in Python
        records = [model.model_validate_json(row[0]) for row in self.conn.execute(sql, params)]
        return sort_records([r for r in records if record_matches(r, filters, since, until)])

    async def add(self, record: R) -> R:
        self._check_writable()
        try:
            self.conn.execute(
                f"INSERT INTO {record.table_name} (id, owner_id, date_key, doc) VALUES (?, ?, ?, ?)",
                (
                    str(record.id),
                    str(record.owner_id),
                    _record_date_key(record),
                    record.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError:
            raise StorageError(f"{type(record).__name__} already exists: {record.id}")
        return record

    async def update(self, record: R) -> R:
        self._check_writable()
        cursor = self.conn.execute(
            f"UPDATE {record.table_name} SET owner_id = ?, date_key = ?, doc = ? WHERE id = ?",
            (
                str(record.owner_id),
                _record_date_key(record),
                record.model_dump_json(),
                str(record.id),
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"{type(record).__name__} not found: {record.id}")
        return record

    async def delete(self, model: type[R], record_id: UUID) -> bool:
        self._check_writable()
        cursor = self.conn.execute(
            f"DELETE FROM {model.table_name} WHERE id = ?",
            (str(record_id),),
        )
        return cursor.rowcount > 0


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    Ledger storage backed by a SQLite file.

    Usage:
        storage = SQLiteLedgerStorage("ledger.db")
        async with storage.transaction() as session:
            await session.add(wallet)
    """

    def __init__(
        self,
        path: Optional[str] = None,
        busy_timeout_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
    ):
        settings = get_settings().storage
        self._factory = SQLiteConnectionFactory(
            path or settings.sqlite_path,
            busy_timeout_seconds if busy_timeout_seconds is not None else settings.busy_timeout_seconds,
        )
        self._retry_attempts = retry_attempts or settings.retry_attempts
        self._write_lock = asyncio.Lock()
        self._initialize()

    @property
    def path(self) -> str:
        return self._factory.path

    @property
    def write_lock(self) -> asyncio.Lock:
        """Held for the whole of every write transaction."""
        return self._write_lock

    def _initialize(self) -> None:
        """Create tables if they don't exist."""
        conn = self._factory.connect()
        try:
            for model in LEDGER_MODELS:
                conn.executescript(TABLE_SQL.format(table=model.table_name))
        finally:
            self._factory.release(conn)

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[SQLiteLedgerSession]:
        conn = self._factory.connect()
        session = SQLiteLedgerSession(conn, read_only=True)
        try:
            yield session
        finally:
            session.closed = True
            self._factory.release(conn)

    async def _open_write_connection(self) -> sqlite3.Connection:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=retry_if_exception_type(sqlite3.OperationalError),
            reraise=True,
        ):
            with attempt:
                conn = self._factory.connect()
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.OperationalError:
                    self._factory.release(conn)
                    raise
        return conn

    async def _begin(self) -> SQLiteLedgerSession:
        await self._write_lock.acquire()
        try:
            conn = await self._open_write_connection()
        except sqlite3.OperationalError as e:
            self._write_lock.release()
            raise AtomicityError(f"Could not open write transaction: {e}") from e
        except BaseException:
            self._write_lock.release()
            raise
        return SQLiteLedgerSession(conn)

    def _finish(self, session: SQLiteLedgerSession) -> None:
        if session.closed:
            return
        session.closed = True
        self._factory.release(session.conn)
        self._write_lock.release()

    async def _commit(self, session: SQLiteLedgerSession) -> None:
        session.conn.execute("COMMIT")
        self._finish(session)

    async def _rollback(self, session: SQLiteLedgerSession) -> None:
        if session.closed:
            return
        try:
            if session.conn.in_transaction:
                session.conn.execute("ROLLBACK")
        finally:
            self._finish(session)

    async def close(self) -> None:
        self._factory.close()


class SQLiteAuditStorage(AuditStorageInterface):
    """
    Append-only audit log in the same (or a separate) SQLite file.

    When sharing a file with SQLiteLedgerStorage, pass its write_lock so
    audit appends wait for open ledger transactions instead of blocking
    on the database lock.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        busy_timeout_seconds: Optional[float] = None,
        write_lock: Optional[asyncio.Lock] = None,
    ):
        self._write_lock = write_lock or asyncio.Lock()
        settings = get_settings().storage
        self._factory = SQLiteConnectionFactory(
            path or settings.sqlite_path,
            busy_timeout_seconds if busy_timeout_seconds is not None else settings.busy_timeout_seconds,
        )
        conn = self._factory.connect()
        try:
            conn.executescript(AUDIT_SQL)
        finally:
            self._factory.release(conn)

    def _query(self, sql: str, params: tuple) -> list[AuditEvent]:
        conn = self._factory.connect()
        try:
            return [AuditEvent.model_validate_json(row[0]) for row in conn.execute(sql, params)]
        finally:
            self._factory.release(conn)

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._write_lock:
            return self._insert(event)

    def _insert(self, event: AuditEvent) -> bool:
        conn = self._factory.connect()
        try:
            conn.execute(
                "INSERT INTO audit_events (event_id, timestamp, correlation_id, entity_type, entity_id, doc) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    str(event.event_id),
                    date_key(event.timestamp),
                    str(event.correlation_id) if event.correlation_id else None,
                    event.entity_type,
                    str(event.entity_id) if event.entity_id else None,
                    event.model_dump_json(),
                ),
            )
            return True
        except sqlite3.Error as e:
            raise StorageError(f"Failed to log audit event: {e}")
        finally:
            self._factory.release(conn)

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            "SELECT doc FROM audit_events WHERE correlation_id = ? ORDER BY timestamp, rowid",
            (str(correlation_id),),
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            "SELECT doc FROM audit_events WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY timestamp, rowid",
            (entity_type, str(entity_id)),
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._query(
            "SELECT doc FROM audit_events ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )

    async def close(self) -> None:
        self._factory.close()
