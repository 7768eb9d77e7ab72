"""
Read-side Metric Models

Produced by the accrual calculator and the outstanding-balance summary.
None of these are persisted.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from bookkeeper.models.entry import Category, DateRange


class ProfitMetrics(BaseModel):
    """
    Accrual-basis profit for a period.

    `profit_margin` is net_profit / revenue, and None when there is no
    revenue to divide by.
    """

    revenue: Decimal
    cogs: Decimal
    gross_profit: Decimal
    operating_expenses: Decimal
    net_profit: Decimal
    profit_margin: Optional[Decimal] = None
    date_range: Optional[DateRange] = None

    @property
    def profit_margin_pct(self) -> Optional[Decimal]:
        if self.profit_margin is None:
            return None
        return self.profit_margin * 100


class ProfitTrendPoint(BaseModel):
    """One calendar month of the profit trend."""

    month: str = Field(..., description="Month label, e.g. 'Mar 2025'")
    revenue: Decimal
    expenses: Decimal
    profit: Decimal
    margin: Optional[Decimal] = None


class CategoryExpense(BaseModel):
    category: Category
    amount: Decimal
    percentage: Decimal


class OutstandingSummary(BaseModel):
    """Open obligations, summed over what is still unsettled."""

    pending_collections: Decimal = Decimal("0")
    pending_bills: Decimal = Decimal("0")
    pending_advances: Decimal = Decimal("0")
    open_obligations: int = 0
