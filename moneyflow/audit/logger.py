"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability of every balance
2. Debugging capability when a batch is rolled back
3. A visible record of recurring expenses that were skipped

The audit logger:
- Is async so it fits the service call flow
- Gracefully handles failures (a broken audit store never breaks a write)
- Supports correlation IDs to trace related events
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from moneyflow.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from moneyflow.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def set_log_level(level: str) -> None:
    """Apply a minimum level to every moneyflow logger."""
    logging.getLogger("moneyflow").setLevel(level)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("moneyflow.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        owner_id: UUID,
        entity_type: str,
        entity_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a create, update or delete of a stored record."""
        event = AuditEventBuilder.entity_changed(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transfer_completed(
        self,
        owner_id: UUID,
        transfer_id: UUID,
        from_wallet_id: UUID,
        to_wallet_id: UUID,
        amount: Decimal,
        fee: Decimal,
    ) -> None:
        event = AuditEventBuilder.transfer_completed(
            owner_id=owner_id,
            transfer_id=transfer_id,
            from_wallet_id=from_wallet_id,
            to_wallet_id=to_wallet_id,
            amount=amount,
            fee=fee,
        )
        await self.log(event)

    async def log_recurrence_materialized(
        self,
        owner_id: UUID,
        rule_id: UUID,
        transaction_id: UUID,
        occurrence: datetime,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.recurrence_materialized(
            owner_id=owner_id,
            rule_id=rule_id,
            transaction_id=transaction_id,
            occurrence=occurrence,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurrence_skipped(
        self,
        owner_id: UUID,
        rule_id: UUID,
        wallet_id: UUID,
        balance: Decimal,
        amount: Decimal,
        occurrence: datetime,
        correlation_id: UUID,
    ) -> None:
        """Log an expense occurrence dropped for insufficient funds."""
        event = AuditEventBuilder.recurrence_skipped(
            owner_id=owner_id,
            rule_id=rule_id,
            wallet_id=wallet_id,
            balance=balance,
            amount=amount,
            occurrence=occurrence,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurrence_orphaned(
        self,
        owner_id: UUID,
        rule_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.recurrence_orphaned(
            owner_id=owner_id,
            rule_id=rule_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurrence_batch_completed(
        self,
        owner_id: UUID,
        created: int,
        skipped: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.recurrence_batch_completed(
            owner_id=owner_id,
            created=created,
            skipped=skipped,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_mismatch(
        self,
        owner_id: UUID,
        wallet_id: UUID,
        cached: Decimal,
        derived: Decimal,
    ) -> None:
        event = AuditEventBuilder.balance_mismatch(
            owner_id=owner_id,
            wallet_id=wallet_id,
            cached=cached,
            derived=derived,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        operation: str,
        issues: list[dict],
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            operation=operation,
            issues=issues,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_atomicity_failure(
        self,
        operation: str,
        error_message: str,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a batch that was rolled back."""
        event = AuditEventBuilder.atomicity_failure(
            operation=operation,
            error_message=error_message,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of an operation (e.g., one recurrence pass).
    Pass it through all subsequent operations.
    """
    return uuid4()
