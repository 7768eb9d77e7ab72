"""
Activity Logger

DESIGN DECISION: Every ledger mutation is logged as a structured event.
This provides:
1. Traceability of who changed what
2. A drift signal whenever a recalculation repairs the balance
3. Visibility of consistency violations

The activity logger:
- Is async so it can sit in the same await chain as the ledger
- Never raises (a logging failure must not fail a committed write)
- Supports correlation IDs to tie the events of one call together
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from bookkeeper.models.activity import ActivityEvent, ActivityEventBuilder


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


class ActivityLogger:
    """
    Central activity logging service.

    Writes to the structured local log only. Ledger balances are never
    derived from these events.
    """

    def __init__(self, logger_name: str = "bookkeeper.ledger"):
        self._logger = structlog.get_logger(logger_name)

    async def log(self, event: ActivityEvent) -> bool:
        """
        Log an activity event.

        Returns False if the event could not be rendered.
        """
        try:
            log_dict = event.to_log_dict()
            if event.severity.value == "error":
                self._logger.error("ledger_activity", **log_dict)
            elif event.severity.value == "warning":
                self._logger.warning("ledger_activity", **log_dict)
            elif event.severity.value == "debug":
                self._logger.debug("ledger_activity", **log_dict)
            else:
                self._logger.info("ledger_activity", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "activity_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False
        return True

    async def log_entry_created(
        self,
        owner_id: str,
        entry_id: UUID,
        entry_type: str,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.entry_created(
            owner_id=owner_id,
            entry_id=entry_id,
            entry_type=entry_type,
            amount=amount,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    async def log_entry_updated(
        self,
        owner_id: str,
        entry_id: UUID,
        changed_fields: list[str],
        updated_balance: Optional[Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.entry_updated(
            owner_id=owner_id,
            entry_id=entry_id,
            changed_fields=changed_fields,
            updated_balance=updated_balance,
            correlation_id=correlation_id,
        ))

    async def log_entry_deleted(
        self,
        owner_id: str,
        entry_id: UUID,
        cascaded_ids: list[UUID],
        reversed_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.entry_deleted(
            owner_id=owner_id,
            entry_id=entry_id,
            cascaded_ids=cascaded_ids,
            reversed_balance=reversed_balance,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        owner_id: str,
        operation: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.validation_failed(
            owner_id=owner_id,
            operation=operation,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_settlement_recorded(
        self,
        owner_id: str,
        obligation_id: UUID,
        companion_id: UUID,
        amount: Decimal,
        remaining: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.settlement_recorded(
            owner_id=owner_id,
            obligation_id=obligation_id,
            companion_id=companion_id,
            amount=amount,
            remaining=remaining,
            correlation_id=correlation_id,
        ))

    async def log_settlement_reversed(
        self,
        owner_id: str,
        obligation_id: UUID,
        companion_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.settlement_reversed(
            owner_id=owner_id,
            obligation_id=obligation_id,
            companion_id=companion_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_balance_recalculated(
        self,
        owner_id: str,
        previous: Optional[Decimal],
        recalculated: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.balance_recalculated(
            owner_id=owner_id,
            previous=previous,
            recalculated=recalculated,
            correlation_id=correlation_id,
        ))

    async def log_alerts_raised(
        self,
        owner_id: str,
        entry_id: UUID,
        alert_types: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.alerts_raised(
            owner_id=owner_id,
            entry_id=entry_id,
            alert_types=alert_types,
            correlation_id=correlation_id,
        ))

    async def log_alert_persist_failed(
        self,
        owner_id: str,
        alert_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.alert_persist_failed(
            owner_id=owner_id,
            alert_type=alert_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_party_created(self, owner_id: str, party_id: UUID, name: str) -> None:
        await self.log(ActivityEventBuilder.party_created(owner_id, party_id, name))

    async def log_party_deleted(
        self, owner_id: str, party_id: UUID, detached_entries: int
    ) -> None:
        await self.log(ActivityEventBuilder.party_deleted(owner_id, party_id, detached_entries))

    async def log_consistency_violation(
        self,
        owner_id: str,
        entity_id: Optional[UUID],
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.consistency_violation(
            owner_id=owner_id,
            entity_id=entity_id,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_store_error(
        self,
        owner_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(ActivityEventBuilder.store_error(
            owner_id=owner_id,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of each service call and pass it through.
    """
    return uuid4()
