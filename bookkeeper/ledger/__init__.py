"""
Ledger Engine Package

Cash balance maintenance, settlement, accrual profit and threshold alerts.
"""

from bookkeeper.ledger.accrual import (
    calculate_cogs,
    calculate_expenses,
    calculate_operating_expenses,
    calculate_revenue,
    get_expense_breakdown,
    get_profit_metrics,
    get_profit_trend,
    get_recommendations,
    month_range,
)
from bookkeeper.ledger.alerts import generate_alerts
from bookkeeper.ledger.cash import (
    CashBalanceLedger,
    cash_delta,
    entry_cash_delta,
    total_cash,
)
from bookkeeper.ledger.errors import (
    ConsistencyViolation,
    LedgerError,
    LedgerValidationError,
    NotFoundError,
)
from bookkeeper.ledger.locks import OwnerLockRegistry
from bookkeeper.ledger.settlement import (
    SettlementEngine,
    build_companion,
    party_balance,
    summarize_outstanding,
)

__all__ = [
    # Cash
    "CashBalanceLedger",
    "cash_delta",
    "entry_cash_delta",
    "total_cash",
    # Settlement
    "SettlementEngine",
    "build_companion",
    "party_balance",
    "summarize_outstanding",
    # Accrual
    "calculate_cogs",
    "calculate_expenses",
    "calculate_operating_expenses",
    "calculate_revenue",
    "get_expense_breakdown",
    "get_profit_metrics",
    "get_profit_trend",
    "get_recommendations",
    "month_range",
    # Alerts
    "generate_alerts",
    # Concurrency
    "OwnerLockRegistry",
    # Errors
    "ConsistencyViolation",
    "LedgerError",
    "LedgerValidationError",
    "NotFoundError",
]
