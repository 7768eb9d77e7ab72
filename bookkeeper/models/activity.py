"""
Activity Models for Bookkeeper

Every ledger mutation emits an activity event to the structured log.
This provides:
1. Traceability of create/update/delete/settle calls
2. Debugging information when the balance drifts
3. A visible record of consistency violations

DESIGN DECISION: Activity events go to the log stream only. They describe
operations, not balances, and are never read back by the ledger.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from bookkeeper.models.entry import utc_now


class ActivityEventType(str, Enum):
    """Types of events we log."""
    # Entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    VALIDATION_FAILED = "validation_failed"

    # Settlement
    SETTLEMENT_RECORDED = "settlement_recorded"
    SETTLEMENT_REVERSED = "settlement_reversed"

    # Balance
    BALANCE_RECALCULATED = "balance_recalculated"

    # Alerts
    ALERTS_RAISED = "alerts_raised"
    ALERT_PERSIST_FAILED = "alert_persist_failed"

    # Parties
    PARTY_CREATED = "party_created"
    PARTY_DELETED = "party_deleted"

    # Failures
    CONSISTENCY_VIOLATION = "consistency_violation"
    STORE_ERROR = "store_error"


class ActivitySeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ActivityEvent(BaseModel):
    """A single activity event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)

    event_type: ActivityEventType
    severity: ActivitySeverity = ActivitySeverity.INFO

    owner_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'party', 'alert')"
    )
    entity_id: Optional[UUID] = None
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Ties together the events of one service call"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class ActivityEventBuilder:
    """
    Helper class to build activity events with common patterns.

    Usage:
        event = ActivityEventBuilder.entry_created(entry_id, owner_id, ...)
    """

    @staticmethod
    def entry_created(
        owner_id: str,
        entry_id: UUID,
        entry_type: str,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.ENTRY_CREATED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"{entry_type} entry of {amount} recorded",
            details={
                "entry_type": entry_type,
                "amount": str(amount),
                "new_balance": str(new_balance),
            },
        )

    @staticmethod
    def entry_updated(
        owner_id: str,
        entry_id: UUID,
        changed_fields: list[str],
        updated_balance: Optional[Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.ENTRY_UPDATED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry updated: {', '.join(changed_fields) or 'no changes'}",
            details={
                "changed_fields": changed_fields,
                "updated_balance": str(updated_balance) if updated_balance is not None else None,
            },
        )

    @staticmethod
    def entry_deleted(
        owner_id: str,
        entry_id: UUID,
        cascaded_ids: list[UUID],
        reversed_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.ENTRY_DELETED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry deleted with {len(cascaded_ids)} settlement entries",
            details={
                "cascaded_ids": [str(i) for i in cascaded_ids],
                "reversed_balance": str(reversed_balance),
            },
        )

    @staticmethod
    def validation_failed(
        owner_id: str,
        operation: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.VALIDATION_FAILED,
            severity=ActivitySeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def settlement_recorded(
        owner_id: str,
        obligation_id: UUID,
        companion_id: UUID,
        amount: Decimal,
        remaining: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.SETTLEMENT_RECORDED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Settled {amount}, {remaining} remaining",
            details={
                "companion_id": str(companion_id),
                "amount": str(amount),
                "remaining_amount": str(remaining),
            },
        )

    @staticmethod
    def settlement_reversed(
        owner_id: str,
        obligation_id: UUID,
        companion_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.SETTLEMENT_REVERSED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Settlement of {amount} reversed",
            details={
                "companion_id": str(companion_id),
                "amount": str(amount),
            },
        )

    @staticmethod
    def balance_recalculated(
        owner_id: str,
        previous: Optional[Decimal],
        recalculated: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        drift = None if previous is None else recalculated - previous
        return ActivityEvent(
            event_type=ActivityEventType.BALANCE_RECALCULATED,
            severity=(
                ActivitySeverity.WARNING if drift else ActivitySeverity.INFO
            ),
            owner_id=owner_id,
            entity_type="balance",
            correlation_id=correlation_id,
            description=(
                f"Balance drift of {drift} repaired" if drift
                else "Balance recalculated"
            ),
            details={
                "previous": str(previous) if previous is not None else None,
                "recalculated": str(recalculated),
            },
        )

    @staticmethod
    def alerts_raised(
        owner_id: str,
        entry_id: UUID,
        alert_types: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.ALERTS_RAISED,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"{len(alert_types)} alerts raised",
            details={"alert_types": alert_types},
        )

    @staticmethod
    def alert_persist_failed(
        owner_id: str,
        alert_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.ALERT_PERSIST_FAILED,
            severity=ActivitySeverity.WARNING,
            owner_id=owner_id,
            entity_type="alert",
            correlation_id=correlation_id,
            description=f"Could not store {alert_type} alert",
            error_message=error_message,
        )

    @staticmethod
    def party_created(owner_id: str, party_id: UUID, name: str) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.PARTY_CREATED,
            owner_id=owner_id,
            entity_type="party",
            entity_id=party_id,
            description=f"Party created: {name}",
        )

    @staticmethod
    def party_deleted(owner_id: str, party_id: UUID, detached_entries: int) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.PARTY_DELETED,
            owner_id=owner_id,
            entity_type="party",
            entity_id=party_id,
            description=f"Party deleted, {detached_entries} entries detached",
            details={"detached_entries": detached_entries},
        )

    @staticmethod
    def consistency_violation(
        owner_id: str,
        entity_id: Optional[UUID],
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.CONSISTENCY_VIOLATION,
            severity=ActivitySeverity.ERROR,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Ledger consistency violation, operation aborted",
            error_message=error_message,
            details=details or {},
        )

    @staticmethod
    def store_error(
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            event_type=ActivityEventType.STORE_ERROR,
            severity=ActivitySeverity.ERROR,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Entry store failed during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
