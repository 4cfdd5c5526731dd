"""Services package."""

from moneyflow.services.storage import (
    AtomicityError,
    AuditStorageInterface,
    ConnectionError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerSession,
    LedgerStorageInterface,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteLedgerStorage,
    StorageError,
)

__all__ = [
    # Storage services
    "AtomicityError",
    "AuditStorageInterface",
    "ConnectionError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerSession",
    "LedgerStorageInterface",
    "NotFoundError",
    "SQLiteAuditStorage",
    "SQLiteLedgerStorage",
    "StorageError",
]
