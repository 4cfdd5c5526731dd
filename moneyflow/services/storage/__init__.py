"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger runs in memory by default and can persist to SQLite; both
backends honour the same atomicity contract.
"""

from moneyflow.errors import (
    AtomicityError,
    ConnectionError,
    NotFoundError,
    StorageError,
)
from moneyflow.services.storage.interface import (
    AuditStorageInterface,
    LedgerSession,
    LedgerStorageInterface,
)
from moneyflow.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerSession,
    InMemoryLedgerStorage,
)
from moneyflow.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteLedgerSession,
    SQLiteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerSession",
    "LedgerStorageInterface",
    # Exceptions
    "AtomicityError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerSession",
    "InMemoryLedgerStorage",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteLedgerSession",
    "SQLiteLedgerStorage",
]
