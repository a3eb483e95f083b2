import os
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency: str,
        default_savings_goal_cents: int,
        reminder_hour: int,
        reminder_minute: int,
        weekly_report_weekday: int,
        budget_warning_percent: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency = currency
        self.default_savings_goal_cents = default_savings_goal_cents
        self.reminder_hour = reminder_hour
        self.reminder_minute = reminder_minute
        self.weekly_report_weekday = weekly_report_weekday
        self.budget_warning_percent = budget_warning_percent

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("POCKETPILOT_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "pocketpilot.db"
    database_url = os.getenv("POCKETPILOT_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("POCKETPILOT_TIMEZONE", "Asia/Dubai")
    currency = os.getenv("POCKETPILOT_CURRENCY", "AED")
    default_savings_goal_cents = int(
        os.getenv("POCKETPILOT_DEFAULT_SAVINGS_GOAL_CENTS", "500000")
    )
    reminder_hour = int(os.getenv("POCKETPILOT_REMINDER_HOUR", "9"))
    reminder_minute = int(os.getenv("POCKETPILOT_REMINDER_MINUTE", "0"))
    # Monday is 0, matching date.weekday() and APScheduler's day_of_week
    weekly_report_weekday = int(os.getenv("POCKETPILOT_WEEKLY_REPORT_WEEKDAY", "6"))
    budget_warning_percent = int(os.getenv("POCKETPILOT_BUDGET_WARNING_PERCENT", "85"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        currency=currency,
        default_savings_goal_cents=default_savings_goal_cents,
        reminder_hour=reminder_hour,
        reminder_minute=reminder_minute,
        weekly_report_weekday=weekly_report_weekday,
        budget_warning_percent=budget_warning_percent,
    )
