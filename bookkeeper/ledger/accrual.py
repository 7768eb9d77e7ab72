"""
Accrual Profit Calculator

Recognizes revenue and expense when earned or incurred, not when cash
moves:

- Revenue: Cash IN sales (not credit settlements), every Credit sale,
  and Advance Settlement (Received).
- COGS / Opex: Cash OUT (not credit settlements), every Credit in that
  category, and Advance Settlement (Paid).
- An Advance itself is never recognized; its settlement is.
- Assets never enter profit.

Everything here is a pure function of the entries passed in.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from bookkeeper.models.entry import Category, DateRange, Entry, EntryType
from bookkeeper.models.metrics import CategoryExpense, ProfitMetrics, ProfitTrendPoint


ZERO = Decimal("0")

_REVENUE_TYPES = frozenset({
    EntryType.CASH_IN,
    EntryType.CREDIT,
    EntryType.ADVANCE_SETTLEMENT_RECEIVED,
})

_EXPENSE_TYPES = frozenset({
    EntryType.CASH_OUT,
    EntryType.CREDIT,
    EntryType.ADVANCE_SETTLEMENT_PAID,
})

EXPENSE_CATEGORIES = (Category.COGS, Category.OPEX)


def _in_range(entry: Entry, date_range: Optional[DateRange]) -> bool:
    return date_range is None or date_range.contains(entry.entry_date)


def is_recognized_revenue(entry: Entry) -> bool:
    return (
        entry.category == Category.SALES
        and entry.entry_type in _REVENUE_TYPES
        and not entry.is_credit_companion
    )


def is_recognized_expense(entry: Entry, category: Optional[Category] = None) -> bool:
    """True for COGS/Opex entries that count toward expenses (of `category`, if given)."""
    wanted = (category,) if category else EXPENSE_CATEGORIES
    return (
        entry.category in wanted
        and entry.entry_type in _EXPENSE_TYPES
        and not entry.is_credit_companion
    )


def calculate_revenue(entries: Iterable[Entry], date_range: Optional[DateRange] = None) -> Decimal:
    return sum(
        (e.amount for e in entries if _in_range(e, date_range) and is_recognized_revenue(e)),
        ZERO,
    )


def calculate_cogs(entries: Iterable[Entry], date_range: Optional[DateRange] = None) -> Decimal:
    return sum(
        (
            e.amount for e in entries
            if _in_range(e, date_range) and is_recognized_expense(e, Category.COGS)
        ),
        ZERO,
    )


def calculate_operating_expenses(
    entries: Iterable[Entry],
    date_range: Optional[DateRange] = None,
) -> Decimal:
    return sum(
        (
            e.amount for e in entries
            if _in_range(e, date_range) and is_recognized_expense(e, Category.OPEX)
        ),
        ZERO,
    )


def calculate_expenses(entries: Iterable[Entry], date_range: Optional[DateRange] = None) -> Decimal:
    """COGS plus Opex."""
    return sum(
        (e.amount for e in entries if _in_range(e, date_range) and is_recognized_expense(e)),
        ZERO,
    )


def profit_margin(net_profit: Decimal, revenue: Decimal) -> Optional[Decimal]:
    """net_profit / revenue, or None when there is no revenue."""
    if revenue <= 0:
        return None
    return net_profit / revenue


def get_profit_metrics(
    entries: Iterable[Entry],
    date_range: Optional[DateRange] = None,
) -> ProfitMetrics:
    entries = list(entries)
    revenue = calculate_revenue(entries, date_range)
    cogs = calculate_cogs(entries, date_range)
    gross_profit = revenue - cogs
    operating_expenses = calculate_operating_expenses(entries, date_range)
    net_profit = gross_profit - operating_expenses

    return ProfitMetrics(
        revenue=revenue,
        cogs=cogs,
        gross_profit=gross_profit,
        operating_expenses=operating_expenses,
        net_profit=net_profit,
        profit_margin=profit_margin(net_profit, revenue),
        date_range=date_range,
    )


def month_range(year: int, month: int) -> DateRange:
    """The calendar month as an inclusive date range."""
    start = date(year, month, 1)
    if month == 12:
        next_start = date(year + 1, 1, 1)
    else:
        next_start = date(year, month + 1, 1)
    return DateRange(start=start, end=date.fromordinal(next_start.toordinal() - 1))


def get_profit_trend(
    entries: Iterable[Entry],
    months: int = 6,
    today: Optional[date] = None,
) -> list[ProfitTrendPoint]:
    """
    Revenue, expenses and profit for each of the last `months` calendar
    months, oldest first, ending with the month containing `today`.
    """
    entries = list(entries)
    today = today or date.today()

    points = []
    for offset in range(months - 1, -1, -1):
        index = today.year * 12 + (today.month - 1) - offset
        year, month = divmod(index, 12)
        window = month_range(year, month + 1)

        revenue = calculate_revenue(entries, window)
        expenses = calculate_expenses(entries, window)
        profit = revenue - expenses
        points.append(ProfitTrendPoint(
            month=window.start.strftime("%b %Y"),
            revenue=revenue,
            expenses=expenses,
            profit=profit,
            margin=profit_margin(profit, revenue),
        ))
    return points


def get_expense_breakdown(
    entries: Iterable[Entry],
    date_range: Optional[DateRange] = None,
) -> list[CategoryExpense]:
    """COGS and Opex totals with their share of the total, largest first."""
    totals: dict[Category, Decimal] = {}
    for entry in entries:
        if _in_range(entry, date_range) and is_recognized_expense(entry):
            totals[entry.category] = totals.get(entry.category, ZERO) + entry.amount

    grand_total = sum(totals.values(), ZERO)
    breakdown = [
        CategoryExpense(
            category=category,
            amount=amount,
            percentage=(amount / grand_total * 100) if grand_total > 0 else ZERO,
        )
        for category, amount in totals.items()
    ]
    breakdown.sort(key=lambda c: c.amount, reverse=True)
    return breakdown


def get_recommendations(
    entries: Iterable[Entry],
    date_range: Optional[DateRange] = None,
) -> list[str]:
    """Plain-language observations on cost structure and margin."""
    entries = list(entries)
    metrics = get_profit_metrics(entries, date_range)
    recommendations = []

    if metrics.revenue > 0:
        cogs_pct = metrics.cogs / metrics.revenue * 100
        if cogs_pct > 50:
            recommendations.append(
                f"COGS is {cogs_pct:.1f}% of revenue. Consider renegotiating with suppliers."
            )
        elif cogs_pct < 30:
            recommendations.append(
                f"COGS is {cogs_pct:.1f}% of revenue, which leaves strong margins."
            )

        opex_pct = metrics.operating_expenses / metrics.revenue * 100
        if opex_pct > 40:
            recommendations.append(
                f"Operating expenses are {opex_pct:.1f}% of revenue. Look for overhead to cut."
            )

    margin_pct = metrics.profit_margin_pct
    if margin_pct is not None:
        if margin_pct < 0:
            recommendations.append(
                "The business is running at a loss. Increase revenue or reduce expenses to break even."
            )
        elif margin_pct < 10:
            recommendations.append(
                f"Profit margin is {margin_pct:.1f}%, which is low. Aim for at least 10-15%."
            )
        elif margin_pct > 20:
            recommendations.append(f"Profit margin of {margin_pct:.1f}% is excellent.")

    breakdown = get_expense_breakdown(entries, date_range)
    if breakdown:
        top = breakdown[0]
        recommendations.append(
            f"Top expense category: {top.category.value} "
            f"({top.amount:,.2f}, {top.percentage:.1f}% of expenses)"
        )

    return recommendations
