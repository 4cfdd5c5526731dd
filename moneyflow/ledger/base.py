"""
Shared plumbing for the ledger writers.

Each writer gets the same collaborators injected (storage, audit
logger, validator, locks, clock) and wraps its writes in `_atomic`,
which audits rejected and rolled-back operations before re-raising them.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional
from uuid import UUID

import structlog

from moneyflow.audit import AuditLogger
from moneyflow.errors import AtomicityError, ValidationError
from moneyflow.ledger.locks import LedgerLocks
from moneyflow.periods import utc_now
from moneyflow.services.storage import LedgerSession, LedgerStorageInterface
from moneyflow.validation import LedgerValidator


class LedgerComponent:
    """Base class for services that read or write the ledger."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        locks: Optional[LedgerLocks] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator()
        self._locks = locks or LedgerLocks()
        self._clock = clock or utc_now
        self._logger = structlog.get_logger(type(self).__module__)

    @asynccontextmanager
    async def _atomic(
        self,
        operation: str,
        owner_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AsyncIterator[LedgerSession]:
        """
        One write transaction, audited on failure.

        Usage:
            async with self._atomic("create_wallet", user_id) as session:
                await session.add(wallet)
        """
        try:
            async with self._storage.transaction() as session:
                yield session
        except ValidationError as e:
            await self._audit_logger.log_validation_failed(
                operation=operation,
                issues=e.issue_dicts(),
                owner_id=owner_id,
                correlation_id=correlation_id,
            )
            raise
        except AtomicityError as e:
            self._logger.error("ledger_write_rolled_back", operation=operation, error=str(e))
            await self._audit_logger.log_atomicity_failure(
                operation=operation,
                error_message=str(e),
                owner_id=owner_id,
                correlation_id=correlation_id,
            )
            raise
