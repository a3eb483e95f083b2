from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_tz(tz: Optional[ZoneInfo] = None) -> ZoneInfo:
    return tz or get_settings().tz


def local_now(tz: Optional[ZoneInfo] = None) -> datetime:
    return datetime.now(local_tz(tz))


def local_today(tz: Optional[ZoneInfo] = None) -> date:
    return local_now(tz).date()


def to_local(value: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Convert a stored timestamp to the local calendar.

    Naive values are UTC, which is how the store writes them.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(local_tz(tz))


def to_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def effective_day(day_of_month: int, year: int, month: int) -> int:
    # days past the end of a short month snap to its last day
    return min(day_of_month, days_in_month(year, month))


def is_monthly_day(day_of_month: int, today: date) -> bool:
    return today.day == effective_day(day_of_month, today.year, today.month)


def month_period(reference: date) -> Period:
    first = reference.replace(day=1)
    end = first.replace(day=days_in_month(first.year, first.month))
    return Period("this_month", first, end)


def next_monthly_occurrence(day_of_month: int, today: date) -> date:
    day = effective_day(day_of_month, today.year, today.month)
    if day >= today.day:
        return today.replace(day=day)
    if today.month == 12:
        year, month = today.year + 1, 1
    else:
        year, month = today.year, today.month + 1
    return date(year, month, effective_day(day_of_month, year, month))


def next_weekly_occurrence(weekday: int, today: date) -> date:
    return today + timedelta(days=(weekday - today.weekday()) % 7)


def week_windows(today: date) -> tuple[Period, Period]:
    """Last seven calendar days including today, and the seven before them."""
    current = Period("this_week", today - timedelta(days=6), today)
    previous = Period(
        "previous_week", today - timedelta(days=13), today - timedelta(days=7)
    )
    return current, previous


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "last_7_days":
        return week_windows(today)[0]
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    return month_period(today)
