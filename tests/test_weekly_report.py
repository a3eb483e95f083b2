from datetime import date
from zoneinfo import ZoneInfo

from aggregation import compute_weekly_stats, week_over_week_change
from models import Category
from periods import week_windows

DUBAI = ZoneInfo("Asia/Dubai")
TODAY = date(2024, 3, 14)


def _expense(amount: int, day: str, category: str) -> dict:
    return {
        "type": "expense",
        "amount_cents": amount,
        "category": category,
        "transaction_date": f"{day}T06:00:00",
    }


def test_week_windows_do_not_overlap() -> None:
    current, previous = week_windows(TODAY)
    assert (current.start, current.end) == (date(2024, 3, 8), date(2024, 3, 14))
    assert (previous.start, previous.end) == (date(2024, 3, 1), date(2024, 3, 7))


def test_weekly_stats_groups_by_category_and_day() -> None:
    transactions = [
        _expense(6_000, "2024-03-13", "food"),
        _expense(2_000, "2024-03-13", "transport"),
        _expense(2_000, "2024-03-09", "food"),
        _expense(5_000, "2024-03-05", "food"),
        {
            "type": "income",
            "amount_cents": 30_000,
            "category": "salary",
            "transaction_date": "2024-03-10T06:00:00",
        },
    ]
    stats = compute_weekly_stats(transactions, TODAY, tz=DUBAI)

    assert stats.total_spending == 10_000
    assert stats.total_income == 30_000
    assert stats.net_cashflow == 20_000
    assert stats.transaction_count == 4
    assert stats.average_daily_spending == 10_000 / 7

    assert [c.category for c in stats.categories] == [Category.food, Category.transport]
    food = stats.categories[0]
    assert food.amount == 8_000
    assert food.percentage == 80
    assert food.transaction_count == 2
    assert stats.top_category == food

    assert len(stats.daily_breakdown) == 7
    assert stats.daily_breakdown[0].date == date(2024, 3, 8)
    assert stats.daily_breakdown[0].day_name == "Fri"
    by_day = {d.date: d for d in stats.daily_breakdown}
    assert by_day[date(2024, 3, 13)].amount == 8_000
    assert by_day[date(2024, 3, 13)].transaction_count == 2

    assert stats.week_over_week_change == 100


def test_empty_previous_week_reports_zero_change() -> None:
    transactions = [_expense(4_000, "2024-03-12", "bills")]
    stats = compute_weekly_stats(transactions, TODAY, tz=DUBAI)
    assert stats.week_over_week_change == 0
    assert week_over_week_change(500, 0) == 0.0


def test_empty_week() -> None:
    stats = compute_weekly_stats([], TODAY, tz=DUBAI)
    assert stats.total_spending == 0
    assert stats.categories == ()
    assert stats.top_category is None
    assert all(d.amount == 0 for d in stats.daily_breakdown)


def test_daily_breakdown_crosses_year_end() -> None:
    stats = compute_weekly_stats(
        [_expense(1_200, "2024-12-31", "food"), _expense(800, "2025-01-01", "food")],
        date(2025, 1, 2),
        tz=DUBAI,
    )
    assert [d.date for d in stats.daily_breakdown] == [
        date(2024, 12, 27),
        date(2024, 12, 28),
        date(2024, 12, 29),
        date(2024, 12, 30),
        date(2024, 12, 31),
        date(2025, 1, 1),
        date(2025, 1, 2),
    ]
    assert [d.amount for d in stats.daily_breakdown[4:6]] == [1_200, 800]
    assert stats.daily_breakdown[-1].day_name == "Thu"
