"""
Data Models Package

This package contains all Pydantic models used by the bookkeeping ledger.
All data flowing through the system must conform to these schemas.
"""

from bookkeeper.models.entry import (
    ENTRY_INPUT_ADAPTER,
    SETTLEMENT_SUBTYPES,
    AdvanceInput,
    CashMovementInput,
    Category,
    CreditInput,
    DateRange,
    Entry,
    EntryInput,
    EntryType,
    EntryUpdate,
    ObligationState,
    Party,
    PartyInput,
    PartyType,
    PartyUpdate,
    PaymentMethod,
    RunningBalance,
    SettlementType,
    utc_now,
)
from bookkeeper.models.alert import Alert, AlertSeverity, AlertType
from bookkeeper.models.metrics import (
    CategoryExpense,
    OutstandingSummary,
    ProfitMetrics,
    ProfitTrendPoint,
)
from bookkeeper.models.results import (
    CreateEntryResult,
    DeleteEntryResult,
    SettlementResult,
    UpdateEntryResult,
    ValidationIssue,
    ValidationResult,
)
from bookkeeper.models.activity import (
    ActivityEvent,
    ActivityEventBuilder,
    ActivityEventType,
    ActivitySeverity,
)

__all__ = [
    # Entry models
    "ENTRY_INPUT_ADAPTER",
    "SETTLEMENT_SUBTYPES",
    "AdvanceInput",
    "CashMovementInput",
    "Category",
    "CreditInput",
    "DateRange",
    "Entry",
    "EntryInput",
    "EntryType",
    "EntryUpdate",
    "ObligationState",
    "PaymentMethod",
    "RunningBalance",
    "SettlementType",
    "utc_now",
    # Party models
    "Party",
    "PartyInput",
    "PartyType",
    "PartyUpdate",
    # Alert models
    "Alert",
    "AlertSeverity",
    "AlertType",
    # Metrics
    "CategoryExpense",
    "OutstandingSummary",
    "ProfitMetrics",
    "ProfitTrendPoint",
    # Results
    "CreateEntryResult",
    "DeleteEntryResult",
    "SettlementResult",
    "UpdateEntryResult",
    "ValidationIssue",
    "ValidationResult",
    # Activity models
    "ActivityEvent",
    "ActivityEventBuilder",
    "ActivityEventType",
    "ActivitySeverity",
]
