"""
Error Taxonomy

- ValidationError: the request itself is wrong. Surfaced to the caller,
  never retried automatically.
- NotFoundError: the record is missing or belongs to another user.
  Surfaced as a 404-equivalent, never retried.
- AtomicityError: the store rejected a transactional batch. Nothing was
  committed, so the caller may safely retry.

A skipped recurrence because of insufficient funds is NOT an error;
see moneyflow.ledger.recurrence.
"""

from typing import Optional

from moneyflow.models.ledger import ValidationIssue


class LedgerError(Exception):
    """Base exception for every error the ledger raises on purpose."""
    pass


class ValidationError(LedgerError):
    """A write was rejected because its input is invalid."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        self.issues = issues or []
        super().__init__(message)

    @classmethod
    def single(cls, field: str, issue_type: str, message: str) -> "ValidationError":
        return cls(
            message,
            [ValidationIssue(field=field, issue_type=issue_type, message=message)],
        )

    def issue_dicts(self) -> list[dict]:
        return [
            {"field": i.field, "type": i.issue_type, "message": i.message}
            for i in self.issues
        ]


class StorageError(LedgerError):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage, or not owned by the requesting user."""
    pass


class AtomicityError(StorageError):
    """A transactional batch failed and was rolled back in full."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
