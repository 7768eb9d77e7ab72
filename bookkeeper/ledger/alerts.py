"""
Threshold Alert Generator

Stateless: given the entry just created, the balance after it, and the
current month's entries, returns the alerts that fire. Persisting them
is the caller's job.

Monthly revenue and expenses use the same accrual rules as the profit
calculator, so the alert and the profit report never disagree.
"""

from decimal import Decimal
from typing import Iterable

from bookkeeper.config import LedgerSettings
from bookkeeper.ledger.accrual import calculate_expenses, calculate_revenue
from bookkeeper.models.alert import Alert, AlertSeverity, AlertType
from bookkeeper.models.entry import Category, Entry


HIGH_EXPENSE_CATEGORIES = (Category.COGS, Category.OPEX, Category.ASSETS)


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


def generate_alerts(
    latest_entry: Entry,
    balance: Decimal,
    month_entries: Iterable[Entry],
    settings: LedgerSettings,
) -> list[Alert]:
    """
    Evaluate every threshold rule.

    Low and negative cash are mutually exclusive. Both monthly rules
    may fire together, and neither fires without revenue this month.
    """
    owner_id = latest_entry.owner_id
    alerts = []

    def raise_alert(
        alert_type: AlertType,
        severity: AlertSeverity,
        priority: int,
        title: str,
        message: str,
    ) -> None:
        alerts.append(Alert(
            owner_id=owner_id,
            entry_id=latest_entry.id,
            alert_type=alert_type,
            severity=severity,
            priority=priority,
            title=title,
            message=message,
        ))

    if (
        latest_entry.category in HIGH_EXPENSE_CATEGORIES
        and latest_entry.amount > settings.high_expense_threshold
    ):
        raise_alert(
            AlertType.HIGH_EXPENSE,
            AlertSeverity.WARNING,
            7,
            "High Expense Recorded",
            f"A large expense of {_money(latest_entry.amount)} was recorded in category "
            f"\"{latest_entry.category.value}\". Please review if this is expected.",
        )

    if 0 <= balance < settings.low_cash_threshold:
        raise_alert(
            AlertType.LOW_CASH_BALANCE,
            AlertSeverity.CRITICAL,
            9,
            "Low Cash Balance",
            f"Your current cash balance is {_money(balance)}. Consider reviewing cash outflows.",
        )
    elif balance < 0:
        raise_alert(
            AlertType.NEGATIVE_CASH_BALANCE,
            AlertSeverity.CRITICAL,
            10,
            "Negative Cash Balance Alert",
            f"Your cash balance is negative: {_money(balance)}. Immediate attention required.",
        )

    month_entries = list(month_entries)
    revenue = calculate_revenue(month_entries)
    expenses = calculate_expenses(month_entries)

    if revenue > 0 and expenses > revenue:
        raise_alert(
            AlertType.EXPENSES_EXCEED_REVENUE,
            AlertSeverity.WARNING,
            8,
            "Monthly Expenses Exceed Revenue",
            f"This month's expenses ({_money(expenses)}) exceed revenue "
            f"({_money(revenue)}) by {_money(expenses - revenue)}.",
        )

    if revenue > 0 and expenses > revenue * settings.excessive_spending_ratio:
        raise_alert(
            AlertType.EXCESSIVE_SPENDING,
            AlertSeverity.CRITICAL,
            9,
            "Excessive Spending Alert",
            f"Your monthly expenses are {expenses / revenue * 100:.0f}% of your revenue. "
            "This is not sustainable.",
        )

    return alerts
