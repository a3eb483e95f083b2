"""Derived balances, budget usage and weekly analytics.

Everything here is pure: callers pass in the transactions and budgets they
already fetched and get fresh value objects back. Records may be ORM rows,
pydantic models or plain mappings; missing or garbled fields coerce to zero
(or are excluded) instead of raising. Amounts are integer cents.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import CATEGORY_STYLES, Category, TransactionType
from periods import Period, local_today, local_tz, month_period, to_local, week_windows

DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass(frozen=True)
class BalanceData:
    balance: int
    income: int
    expenses: int


@dataclass(frozen=True)
class BalanceAfterBudget:
    balance_after_budget: int
    total_income: int
    total_expense: int
    total_budgets: int


@dataclass(frozen=True)
class CategoryBudgetStatus:
    category: Category
    budget: int
    spent: int
    percent_used: float
    remaining: int
    status: str  # "safe" | "warning" | "danger"


@dataclass(frozen=True)
class BudgetUsage:
    percent_used: float
    total_budget: int
    spent: int
    categories: tuple[CategoryBudgetStatus, ...] = ()


@dataclass(frozen=True)
class SavingsProgress:
    current_savings: int
    progress_percent: float


@dataclass(frozen=True)
class CategoryBreakdown:
    category: Category
    amount: int
    percentage: float
    transaction_count: int
    icon: str
    color: str


@dataclass(frozen=True)
class DailySpending:
    date: date
    day_name: str
    amount: int
    transaction_count: int


@dataclass(frozen=True)
class WeeklyStats:
    total_spending: int
    total_income: int
    net_cashflow: int
    categories: tuple[CategoryBreakdown, ...]
    daily_breakdown: tuple[DailySpending, ...]
    top_category: Optional[CategoryBreakdown]
    transaction_count: int
    average_daily_spending: float
    week_over_week_change: float


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def to_cents(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(round(number))


def _amount(record: Any) -> int:
    return to_cents(_field(record, "amount_cents"))


def _type(record: Any) -> Optional[TransactionType]:
    raw = _field(record, "type")
    raw = getattr(raw, "value", raw)
    if not isinstance(raw, str):
        return None
    try:
        return TransactionType(raw.strip().lower())
    except ValueError:
        return None


def _category(record: Any) -> Category:
    raw = _field(record, "category")
    raw = getattr(raw, "value", raw)
    if not isinstance(raw, str):
        return Category.other
    try:
        return Category(raw.strip().lower().replace(" ", "_"))
    except ValueError:
        return Category.other


def _timestamp(record: Any, tz: ZoneInfo) -> Optional[datetime]:
    raw = _field(record, "transaction_date")
    if isinstance(raw, str):
        try:
            raw = datetime.fromisoformat(raw.strip())
        except ValueError:
            return None
    if isinstance(raw, datetime):
        return to_local(raw, tz)
    if isinstance(raw, date):
        return datetime.combine(raw, time.min, tzinfo=tz)
    return None


def _local_date(record: Any, tz: ZoneInfo) -> Optional[date]:
    stamp = _timestamp(record, tz)
    return stamp.date() if stamp else None


def _reference_day(reference: Optional[date], tz: ZoneInfo) -> date:
    if reference is None:
        return local_today(tz)
    if isinstance(reference, datetime):
        return to_local(reference, tz).date()
    return reference


def _in_period(transactions: Iterable[Any], period: Period, tz: ZoneInfo) -> list[Any]:
    selected = []
    for txn in transactions:
        day = _local_date(txn, tz)
        if day is not None and period.contains(day):
            selected.append(txn)
    return selected


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def month_transactions(
    transactions: Iterable[Any],
    reference: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> list[Any]:
    zone = local_tz(tz)
    period = month_period(_reference_day(reference, zone))
    return _in_period(transactions, period, zone)


def find_transactions(
    transactions: Iterable[Any],
    *,
    type: Optional[TransactionType] = None,
    category: Optional[Category] = None,
    on: Optional[date] = None,
    tz: Optional[ZoneInfo] = None,
) -> list[Any]:
    zone = local_tz(tz)
    matches = []
    for txn in transactions:
        if type is not None and _type(txn) != type:
            continue
        if category is not None and _category(txn) != category:
            continue
        if on is not None and _local_date(txn, zone) != on:
            continue
        matches.append(txn)
    return matches


def calculate_balance(transactions: Iterable[Any]) -> BalanceData:
    income = 0
    expenses = 0
    for txn in transactions:
        txn_type = _type(txn)
        if txn_type == TransactionType.income:
            income += _amount(txn)
        elif txn_type == TransactionType.expense:
            expenses += _amount(txn)
    return BalanceData(balance=income - expenses, income=income, expenses=expenses)


def calculate_month_balance(
    transactions: Iterable[Any],
    reference: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> BalanceData:
    return calculate_balance(month_transactions(transactions, reference, tz=tz))


def total_budgets(budgets: Iterable[Any]) -> int:
    return sum(_amount(budget) for budget in budgets)


def _after_budget(balance: BalanceData, budgets: Iterable[Any]) -> BalanceAfterBudget:
    allocated = total_budgets(budgets)
    return BalanceAfterBudget(
        balance_after_budget=balance.balance - allocated,
        total_income=balance.income,
        total_expense=balance.expenses,
        total_budgets=allocated,
    )


def calculate_balance_after_budget(
    transactions: Iterable[Any], budgets: Iterable[Any]
) -> BalanceAfterBudget:
    return _after_budget(calculate_balance(transactions), budgets)


def calculate_month_balance_after_budget(
    transactions: Iterable[Any],
    budgets: Iterable[Any],
    reference: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> BalanceAfterBudget:
    balance = calculate_month_balance(transactions, reference, tz=tz)
    return _after_budget(balance, budgets)


def budget_status(percent_used: float, warning_percent: Optional[int] = None) -> str:
    if warning_percent is None:
        warning_percent = get_settings().budget_warning_percent
    if percent_used >= 100:
        return "danger"
    if percent_used >= warning_percent:
        return "warning"
    return "safe"


def spent_by_category(
    transactions: Iterable[Any],
    reference: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> dict[Category, int]:
    spent: dict[Category, int] = {}
    for txn in month_transactions(transactions, reference, tz=tz):
        if _type(txn) != TransactionType.expense:
            continue
        category = _category(txn)
        spent[category] = spent.get(category, 0) + _amount(txn)
    return spent


def compute_budget_usage(
    budgets: Iterable[Any],
    transactions: Iterable[Any],
    reference: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
    warning_percent: Optional[int] = None,
) -> BudgetUsage:
    budget_by_category: dict[Category, int] = {}
    for budget in budgets:
        category = _category(budget)
        budget_by_category[category] = budget_by_category.get(category, 0) + _amount(
            budget
        )
    total_budget = sum(budget_by_category.values())

    spent_map = spent_by_category(transactions, reference, tz=tz)
    spent = sum(spent_map.values())

    statuses = []
    for category, allocated in budget_by_category.items():
        category_spent = spent_map.get(category, 0)
        percent = (category_spent / allocated * 100) if allocated > 0 else 0.0
        statuses.append(
            CategoryBudgetStatus(
                category=category,
                budget=allocated,
                spent=category_spent,
                percent_used=percent,
                remaining=allocated - category_spent,
                status=budget_status(percent, warning_percent),
            )
        )
    statuses.sort(key=lambda s: s.percent_used, reverse=True)

    percent_used = 0.0 if total_budget == 0 else _clamp(spent / total_budget * 100)
    return BudgetUsage(
        percent_used=percent_used,
        total_budget=total_budget,
        spent=spent,
        categories=tuple(statuses),
    )


def compute_savings_progress(
    transactions: Iterable[Any],
    budgets: Iterable[Any],
    goal: Any,
    reference: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> SavingsProgress:
    goal_cents = to_cents(goal)
    if goal_cents <= 0:
        goal_cents = get_settings().default_savings_goal_cents
    savings = calculate_month_balance_after_budget(
        transactions, budgets, reference, tz=tz
    )
    current = savings.balance_after_budget
    return SavingsProgress(
        current_savings=current,
        progress_percent=_clamp(current / goal_cents * 100),
    )


def category_breakdown(transactions: Iterable[Any]) -> list[CategoryBreakdown]:
    totals: dict[Category, int] = {}
    counts: dict[Category, int] = {}
    for txn in transactions:
        if _type(txn) != TransactionType.expense:
            continue
        category = _category(txn)
        totals[category] = totals.get(category, 0) + _amount(txn)
        counts[category] = counts.get(category, 0) + 1

    total = sum(totals.values())
    breakdown = []
    for category, amount in totals.items():
        style = CATEGORY_STYLES[category]
        breakdown.append(
            CategoryBreakdown(
                category=category,
                amount=amount,
                percentage=(amount / total * 100) if total > 0 else 0.0,
                transaction_count=counts[category],
                icon=style.icon,
                color=style.color,
            )
        )
    breakdown.sort(key=lambda row: row.amount, reverse=True)
    return breakdown


def daily_breakdown(
    transactions: Iterable[Any], period: Period, *, tz: Optional[ZoneInfo] = None
) -> list[DailySpending]:
    zone = local_tz(tz)
    totals: dict[date, int] = {}
    counts: dict[date, int] = {}
    for txn in transactions:
        if _type(txn) != TransactionType.expense:
            continue
        day = _local_date(txn, zone)
        if day is None or not period.contains(day):
            continue
        totals[day] = totals.get(day, 0) + _amount(txn)
        counts[day] = counts.get(day, 0) + 1

    days = []
    current = period.start
    while current <= period.end:
        days.append(
            DailySpending(
                date=current,
                day_name=DAY_NAMES[current.weekday()],
                amount=totals.get(current, 0),
                transaction_count=counts.get(current, 0),
            )
        )
        current += timedelta(days=1)
    return days


def week_over_week_change(current_total: int, previous_total: int) -> float:
    if previous_total <= 0:
        return 0.0
    return (current_total - previous_total) / previous_total * 100


def compute_weekly_stats(
    transactions: Iterable[Any],
    today: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> WeeklyStats:
    zone = local_tz(tz)
    transactions = list(transactions)
    current, previous = week_windows(_reference_day(today, zone))

    week = _in_period(transactions, current, zone)
    week_balance = calculate_balance(week)
    previous_spending = calculate_balance(
        _in_period(transactions, previous, zone)
    ).expenses

    categories = category_breakdown(week)
    total_spending = week_balance.expenses
    return WeeklyStats(
        total_spending=total_spending,
        total_income=week_balance.income,
        net_cashflow=week_balance.balance,
        categories=tuple(categories),
        daily_breakdown=tuple(daily_breakdown(week, current, tz=zone)),
        top_category=categories[0] if categories else None,
        transaction_count=len(week),
        average_daily_spending=total_spending / 7,
        week_over_week_change=week_over_week_change(total_spending, previous_spending),
    )


def recent_transactions(transactions: Iterable[Any], limit: int = 8) -> list[Any]:
    zone = local_tz()
    oldest = datetime.min.replace(tzinfo=timezone.utc)

    def sort_key(txn: Any) -> datetime:
        return _timestamp(txn, zone) or oldest

    return sorted(transactions, key=sort_key, reverse=True)[:limit]
