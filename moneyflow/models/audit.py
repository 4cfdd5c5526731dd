"""
Audit Models for the Ledger

Every ledger mutation, and every recognised non-error outcome such as a
skipped recurrence, is logged for audit purposes.
This provides:
1. Complete traceability of how a balance came to be
2. Debugging information when an atomic batch fails
3. A record of skipped schedule steps the user never saw

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from moneyflow.periods import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each writer in the ledger has its own event types.
    """
    # Wallets
    WALLET_CREATED = "wallet_created"
    WALLET_UPDATED = "wallet_updated"
    WALLET_DELETED = "wallet_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    DEFAULT_CATEGORIES_SEEDED = "default_categories_seeded"

    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Transfers
    TRANSFER_COMPLETED = "transfer_completed"

    # Recurrence
    RECURRING_RULE_CREATED = "recurring_rule_created"
    RECURRING_RULE_UPDATED = "recurring_rule_updated"
    RECURRING_RULE_DELETED = "recurring_rule_deleted"
    RECURRENCE_MATERIALIZED = "recurrence_materialized"
    RECURRENCE_SKIPPED = "recurrence_skipped"
    RECURRENCE_ORPHANED = "recurrence_orphaned"
    RECURRENCE_BATCH_COMPLETED = "recurrence_batch_completed"

    # Budgets and goals
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"

    # Consistency
    BALANCE_MISMATCH = "balance_mismatch"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    ATOMICITY_FAILURE = "atomicity_failure"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    owner_id: Optional[UUID] = Field(
        default=None,
        description="User the affected records belong to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'wallet', 'transaction', 'recurring_rule')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one recurrence batch)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": str(self.owner_id) if self.owner_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transfer_completed(owner_id, transfer_id, ...)
        event = AuditEventBuilder.recurrence_skipped(owner_id, rule_id, ...)
    """

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        owner_id: UUID,
        entity_type: str,
        entity_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def transfer_completed(
        owner_id: UUID,
        transfer_id: UUID,
        from_wallet_id: UUID,
        to_wallet_id: UUID,
        amount: Decimal,
        fee: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_COMPLETED,
            owner_id=owner_id,
            entity_type="transfer",
            entity_id=transfer_id,
            correlation_id=transfer_id,
            description=f"Transferred {amount} (fee {fee})",
            details={
                "from_wallet_id": str(from_wallet_id),
                "to_wallet_id": str(to_wallet_id),
                "amount": str(amount),
                "fee": str(fee),
            },
        )

    @staticmethod
    def recurrence_materialized(
        owner_id: UUID,
        rule_id: UUID,
        transaction_id: UUID,
        occurrence: datetime,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_MATERIALIZED,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring transaction created for {occurrence.date().isoformat()}",
            details={
                "transaction_id": str(transaction_id),
                "occurrence": occurrence.isoformat(),
            },
        )

    @staticmethod
    def recurrence_skipped(
        owner_id: UUID,
        rule_id: UUID,
        wallet_id: UUID,
        balance: Decimal,
        amount: Decimal,
        occurrence: datetime,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_SKIPPED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring expense skipped: insufficient funds",
            details={
                "wallet_id": str(wallet_id),
                "balance": str(balance),
                "amount": str(amount),
                "occurrence": occurrence.isoformat(),
            },
        )

    @staticmethod
    def recurrence_orphaned(
        owner_id: UUID,
        rule_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_ORPHANED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring rule references a missing wallet or category",
        )

    @staticmethod
    def recurrence_batch_completed(
        owner_id: UUID,
        created: int,
        skipped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_BATCH_COMPLETED,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Recurrence pass created {created}, skipped {skipped}",
            details={
                "created": created,
                "skipped": skipped,
            },
        )

    @staticmethod
    def balance_mismatch(
        owner_id: UUID,
        wallet_id: UUID,
        cached: Decimal,
        derived: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_MISMATCH,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description="Cached wallet balance differs from the transaction log",
            details={
                "cached": str(cached),
                "derived": str(derived),
            },
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def atomicity_failure(
        operation: str,
        error_message: str,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATOMICITY_FAILURE,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} rolled back",
            error_message=error_message,
            details={
                "operation": operation,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
