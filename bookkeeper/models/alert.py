"""
Alert Models

Alerts are advisory records raised after an entry is created.
Each one is stored independently so the user can dismiss them one by one.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from bookkeeper.models.entry import utc_now


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class AlertType(str, Enum):
    """The threshold rule that fired."""
    HIGH_EXPENSE = "high_expense"
    LOW_CASH_BALANCE = "low_cash_balance"
    NEGATIVE_CASH_BALANCE = "negative_cash_balance"
    EXPENSES_EXCEED_REVENUE = "expenses_exceed_revenue"
    EXCESSIVE_SPENDING = "excessive_spending"


class Alert(BaseModel):
    """A durable, dismissible alert."""

    id: Optional[UUID] = None
    owner_id: str = Field(..., min_length=1)
    entry_id: Optional[UUID] = Field(
        default=None,
        description="Entry whose creation triggered the alert"
    )
    alert_type: AlertType
    severity: AlertSeverity
    priority: int = Field(..., ge=1, le=10)
    title: str = Field(..., max_length=200)
    message: str = Field(..., max_length=1000)
    is_read: bool = False
    created_at: datetime = Field(default_factory=utc_now)
