"""Recurring local reminders.

Reminders are registered with an APScheduler instance and tracked in the
``scheduled_notifications`` table, keyed by user and type: scheduling a type
again cancels and replaces that user's previous job and record, so each user
has at most one live reminder per type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Protocol, Union
from uuid import uuid4
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from aggregation import compute_budget_usage
from config import get_settings
from models import (
    CATEGORY_STYLES,
    Category,
    Profile,
    ReminderCadence,
    ScheduledNotification,
    Transaction,
    TransactionType,
)
from periods import (
    is_monthly_day,
    local_today,
    local_tz,
    next_monthly_occurrence,
    next_weekly_occurrence,
    to_local,
)
from services import ProfileService, ValidationError, WriteFailure, commit_or_fail, format_money

logger = logging.getLogger(__name__)

SALARY_REMINDER = "salary_reminder"
WEEKLY_REPORT = "weekly_report"
SAVINGS_CHECKIN = "savings_checkin"
BUDGET_ALERT_PREFIX = "budget_alert_"
BUDGET_EXCEEDED_PREFIX = "budget_exceeded_"

JOB_PREFIX = "notification-"


class SchedulingFailure(RuntimeError):
    pass


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    type: str
    user_id: Optional[int] = None


@dataclass(frozen=True)
class MonthlyTrigger:
    day_of_month: int
    hour: int
    minute: int = 0


@dataclass(frozen=True)
class WeeklyTrigger:
    weekday: int
    hour: int
    minute: int = 0


Trigger = Union[MonthlyTrigger, WeeklyTrigger]


class ScheduleStatus(str, Enum):
    scheduled = "scheduled"
    sent = "sent"
    skipped = "skipped"
    failed = "failed"


@dataclass(frozen=True)
class ScheduleResult:
    status: ScheduleStatus
    message: str
    notification_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (ScheduleStatus.scheduled, ScheduleStatus.sent)


class NotificationSink(Protocol):
    def deliver(self, content: NotificationContent) -> None: ...


class PermissionGate(Protocol):
    def request_permission(self) -> bool: ...


class NotificationDelivery(Protocol):
    def schedule_at(self, trigger: Trigger, content: NotificationContent) -> str: ...

    def cancel(self, delivery_id: str) -> None: ...

    def fire_now(self, content: NotificationContent) -> None: ...


class LoggingSink:
    def deliver(self, content: NotificationContent) -> None:
        logger.info(
            f"notification_delivered: user_id={content.user_id} type={content.type} "
            f"title={content.title!r} body={content.body!r}"
        )


class AlwaysGranted:
    def request_permission(self) -> bool:
        return True


class APSchedulerDelivery:
    """Delivery primitive backed by cron jobs on an APScheduler scheduler.

    Monthly reminders run as a daily check that only fires on the matching day
    of the month (snapped to the last day in shorter months); weekly reminders
    are a plain weekday cron job.
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        sink: Optional[NotificationSink] = None,
        tz: Optional[ZoneInfo] = None,
    ) -> None:
        self.scheduler = scheduler
        self.sink = sink or LoggingSink()
        self.tz = local_tz(tz)

    def schedule_at(self, trigger: Trigger, content: NotificationContent) -> str:
        delivery_id = f"{JOB_PREFIX}{uuid4().hex}"
        if isinstance(trigger, MonthlyTrigger):
            cron = CronTrigger(hour=trigger.hour, minute=trigger.minute, timezone=self.tz)
            func = self.fire_if_due
            args = [trigger.day_of_month, content]
        else:
            cron = CronTrigger(
                day_of_week=trigger.weekday,
                hour=trigger.hour,
                minute=trigger.minute,
                timezone=self.tz,
            )
            func = self.fire_now
            args = [content]
        try:
            self.scheduler.add_job(
                func,
                cron,
                args=args,
                id=delivery_id,
                name=content.type,
                replace_existing=True,
                misfire_grace_time=3600,
            )
        except (ValueError, LookupError) as exc:
            raise SchedulingFailure(f"Failed to schedule {content.type}: {exc}") from exc
        return delivery_id

    def cancel(self, delivery_id: str) -> None:
        try:
            self.scheduler.remove_job(delivery_id)
        except JobLookupError:
            logger.info(f"notification_cancel: delivery_id={delivery_id} missing")

    def fire_now(self, content: NotificationContent) -> None:
        self.sink.deliver(content)

    def fire_if_due(
        self,
        day_of_month: int,
        content: NotificationContent,
        today: Optional[date] = None,
    ) -> bool:
        today = today or local_today(self.tz)
        if not is_monthly_day(day_of_month, today):
            return False
        self.fire_now(content)
        return True


class NotificationStore:
    """Local bookkeeping of one user's live reminders, at most one row per type."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_scheduled(self) -> list[ScheduledNotification]:
        stmt = (
            select(ScheduledNotification)
            .where(ScheduledNotification.user_id == self.user_id)
            .order_by(ScheduledNotification.created_at, ScheduledNotification.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, type: str) -> Optional[ScheduledNotification]:
        return self.session.scalar(
            select(ScheduledNotification).where(
                ScheduledNotification.user_id == self.user_id,
                ScheduledNotification.type == type,
            )
        )

    def save(
        self,
        *,
        delivery_id: str,
        type: str,
        trigger: Trigger,
        content: NotificationContent,
    ) -> ScheduledNotification:
        record = self.get(type)
        if record is None:
            record = ScheduledNotification(user_id=self.user_id, type=type)
            self.session.add(record)
        record.delivery_id = delivery_id
        record.title = content.title
        record.body = content.body
        record.hour = trigger.hour
        record.minute = trigger.minute
        if isinstance(trigger, MonthlyTrigger):
            record.cadence = ReminderCadence.monthly
            record.day_of_month = trigger.day_of_month
            record.weekday = None
        else:
            record.cadence = ReminderCadence.weekly
            record.day_of_month = None
            record.weekday = trigger.weekday
        commit_or_fail(self.session, f"save {type} notification")
        self.session.refresh(record)
        return record

    def remove(self, type: str) -> int:
        result = self.session.execute(
            delete(ScheduledNotification).where(
                ScheduledNotification.user_id == self.user_id,
                ScheduledNotification.type == type,
            )
        )
        commit_or_fail(self.session, f"remove {type} notification")
        return result.rowcount or 0

    def clear(self) -> int:
        result = self.session.execute(
            delete(ScheduledNotification).where(
                ScheduledNotification.user_id == self.user_id
            )
        )
        commit_or_fail(self.session, "clear notifications")
        return result.rowcount or 0


def trigger_for(record: ScheduledNotification) -> Trigger:
    if record.cadence == ReminderCadence.weekly:
        return WeeklyTrigger(record.weekday, record.hour, record.minute)
    return MonthlyTrigger(record.day_of_month, record.hour, record.minute)


def content_for(record: ScheduledNotification) -> NotificationContent:
    return NotificationContent(record.title, record.body, record.type, record.user_id)


def restore_all(session: Session, delivery: NotificationDelivery) -> int:
    """Re-register every user's persisted reminders with a freshly started delivery."""
    stmt = select(ScheduledNotification).order_by(ScheduledNotification.id)
    restored = 0
    for record in session.scalars(stmt).all():
        try:
            record.delivery_id = delivery.schedule_at(trigger_for(record), content_for(record))
            commit_or_fail(session, f"restore {record.type} notification")
        except (SchedulingFailure, WriteFailure) as exc:
            logger.error(
                f"notification_restore_failed: user_id={record.user_id} "
                f"type={record.type} error={exc}"
            )
            continue
        restored += 1
    logger.info(f"notification_restored: count={restored}")
    return restored


class NotificationScheduler:
    def __init__(
        self,
        session: Session,
        user_id: int,
        delivery: NotificationDelivery,
        permissions: Optional[PermissionGate] = None,
        tz: Optional[ZoneInfo] = None,
    ) -> None:
        self.user_id = user_id
        self.store = NotificationStore(session, user_id)
        self.delivery = delivery
        self.permissions = permissions or AlwaysGranted()
        self.tz = local_tz(tz)
        self.settings = get_settings()

    def _content(self, title: str, body: str, type: str) -> NotificationContent:
        return NotificationContent(title=title, body=body, type=type, user_id=self.user_id)

    def _check_permission(self) -> None:
        try:
            granted = self.permissions.request_permission()
        except Exception as exc:
            logger.warning(f"notification_permission_error: user_id={self.user_id} error={exc}")
            granted = False
        if not granted:
            # keep going; the user may grant permission later
            logger.warning(f"notification_permission: user_id={self.user_id} not granted")

    def schedule_monthly(
        self,
        day_of_month: int,
        title: str,
        body: str,
        type: str = "reminder",
        fire_if_today: bool = True,
        *,
        today: Optional[date] = None,
    ) -> ScheduleResult:
        if not 1 <= day_of_month <= 31:
            raise ValidationError("Day of month must be between 1 and 31")
        self._check_permission()

        today = today or local_today(self.tz)
        content = self._content(title, body, type)
        trigger = MonthlyTrigger(
            day_of_month, self.settings.reminder_hour, self.settings.reminder_minute
        )
        try:
            delivery_id = self._replace(type, trigger, content)
        except (SchedulingFailure, WriteFailure) as exc:
            logger.error(
                f"notification_schedule_failed: user_id={self.user_id} type={type} error={exc}"
            )
            return ScheduleResult(
                ScheduleStatus.failed, f"Failed to schedule notification: {exc}"
            )

        next_date = next_monthly_occurrence(day_of_month, today)
        logger.info(
            f"notification_scheduled: user_id={self.user_id} type={type} "
            f"delivery_id={delivery_id} day_of_month={day_of_month} next={next_date.isoformat()}"
        )
        if fire_if_today and is_monthly_day(day_of_month, today):
            try:
                self.delivery.fire_now(content)
            except SchedulingFailure as exc:
                logger.warning(
                    f"notification_send_failed: user_id={self.user_id} type={type} error={exc}"
                )
            else:
                logger.info(
                    f"notification_sent: user_id={self.user_id} type={type} "
                    f"day_of_month={day_of_month} immediate=true"
                )
        return ScheduleResult(
            ScheduleStatus.scheduled,
            f"Notification scheduled for day {day_of_month} of every month",
            delivery_id,
        )

    def schedule_weekly(
        self,
        weekday: int,
        title: str,
        body: str,
        type: str,
        *,
        hour: Optional[int] = None,
        today: Optional[date] = None,
    ) -> ScheduleResult:
        if not 0 <= weekday <= 6:
            raise ValidationError("Weekday must be between 0 (Monday) and 6 (Sunday)")
        self._check_permission()

        today = today or local_today(self.tz)
        content = self._content(title, body, type)
        trigger = WeeklyTrigger(
            weekday,
            self.settings.reminder_hour if hour is None else hour,
            self.settings.reminder_minute,
        )
        try:
            delivery_id = self._replace(type, trigger, content)
        except (SchedulingFailure, WriteFailure) as exc:
            logger.error(
                f"notification_schedule_failed: user_id={self.user_id} type={type} error={exc}"
            )
            return ScheduleResult(
                ScheduleStatus.failed, f"Failed to schedule notification: {exc}"
            )

        next_date = next_weekly_occurrence(weekday, today)
        logger.info(
            f"notification_scheduled: user_id={self.user_id} type={type} "
            f"delivery_id={delivery_id} weekday={weekday} next={next_date.isoformat()}"
        )
        return ScheduleResult(
            ScheduleStatus.scheduled,
            "Notification scheduled every week",
            delivery_id,
        )

    def send_immediate(self, title: str, body: str, type: str = "instant") -> ScheduleResult:
        try:
            self.delivery.fire_now(self._content(title, body, type))
        except SchedulingFailure as exc:
            logger.error(
                f"notification_send_failed: user_id={self.user_id} type={type} error={exc}"
            )
            return ScheduleResult(
                ScheduleStatus.failed, f"Failed to send notification: {exc}"
            )
        logger.info(f"notification_sent: user_id={self.user_id} type={type} immediate=true")
        return ScheduleResult(ScheduleStatus.sent, "Notification sent successfully")

    def list_scheduled(self) -> list[ScheduledNotification]:
        return self.store.list_scheduled()

    def cancel_by_type(self, type: str) -> int:
        record = self.store.get(type)
        if record is None:
            return 0
        self.delivery.cancel(record.delivery_id)
        count = self.store.remove(type)
        logger.info(f"notification_cancelled: user_id={self.user_id} type={type} count={count}")
        return count

    def cancel_matching(self, prefix: str) -> int:
        types = {r.type for r in self.store.list_scheduled() if r.type.startswith(prefix)}
        return sum(self.cancel_by_type(t) for t in sorted(types))

    def clear_all(self) -> int:
        for record in self.store.list_scheduled():
            self.delivery.cancel(record.delivery_id)
        count = self.store.clear()
        logger.info(f"notification_cleared: user_id={self.user_id} count={count}")
        return count

    def _replace(self, type: str, trigger: Trigger, content: NotificationContent) -> str:
        self.cancel_by_type(type)
        delivery_id = self.delivery.schedule_at(trigger, content)
        try:
            self.store.save(
                delivery_id=delivery_id, type=type, trigger=trigger, content=content
            )
        except WriteFailure:
            self.delivery.cancel(delivery_id)
            raise
        return delivery_id


class ReminderService:
    """Preference-gated reminders for one user."""

    def __init__(self, session: Session, user_id: int, scheduler: NotificationScheduler) -> None:
        self.session = session
        self.user_id = user_id
        self.scheduler = scheduler
        self.profiles = ProfileService(session, user_id)

    def _profile(self) -> Profile:
        return self.profiles.get_or_create()

    @staticmethod
    def _skipped(what: str) -> ScheduleResult:
        return ScheduleResult(ScheduleStatus.skipped, f"{what} notifications are turned off")

    def schedule_salary_reminder(
        self, day_of_month: int, amount_cents: Optional[int] = None
    ) -> ScheduleResult:
        if not self._profile().salary_notif:
            return self._skipped("Salary")
        title = "Salary Day Reminder"
        if amount_cents:
            body = f"You're expecting {format_money(amount_cents)} today"
        else:
            body = "It's your salary day! Don't forget to log your income."
        return self.scheduler.schedule_monthly(
            day_of_month, title, body, SALARY_REMINDER, fire_if_today=True
        )

    def schedule_weekly_report(self) -> ScheduleResult:
        if not self._profile().report_notif:
            return self._skipped("Weekly report")
        return self.scheduler.schedule_weekly(
            self.scheduler.settings.weekly_report_weekday,
            "Weekly Report Ready",
            "Your weekly spending report is ready. See where your money went this week.",
            WEEKLY_REPORT,
        )

    def schedule_budget_alert(self, category: Category, threshold: int = 80) -> ScheduleResult:
        if not self._profile().budget_notif:
            return self._skipped("Budget")
        label = CATEGORY_STYLES[category].label
        return self.scheduler.schedule_monthly(
            1,
            "Budget Alert",
            f"You've reached {threshold}% of your {label} budget",
            f"{BUDGET_ALERT_PREFIX}{category.value}",
            fire_if_today=False,
        )

    def schedule_savings_check_in(
        self, day_of_month: int, goal_cents: Optional[int] = None
    ) -> ScheduleResult:
        if goal_cents:
            body = f"Track your progress towards your {format_money(goal_cents)} savings goal"
        else:
            body = "Check your savings progress this month!"
        return self.scheduler.schedule_monthly(
            day_of_month, "Savings Check-in", body, SAVINGS_CHECKIN, fire_if_today=False
        )

    def send_budget_exceeded_alert(
        self, category: Category, budget_amount_cents: int, spent_cents: int
    ) -> ScheduleResult:
        if not self._profile().budget_notif:
            return self._skipped("Budget")
        label = CATEGORY_STYLES[category].label
        over = max(0, spent_cents - budget_amount_cents)
        return self.scheduler.send_immediate(
            "Budget Exceeded",
            f"You've exceeded your {label} budget by {format_money(over)}",
            f"{BUDGET_EXCEEDED_PREFIX}{category.value}",
        )

    def alert_if_budget_exceeded(
        self,
        txn: Transaction,
        transactions: Iterable[Transaction],
        budgets: Iterable[object],
    ) -> Optional[ScheduleResult]:
        """Alert when ``txn`` is the expense that pushed its category over budget."""
        if txn.type != TransactionType.expense:
            return None
        usage = compute_budget_usage(
            budgets, transactions, to_local(txn.transaction_date, self.scheduler.tz).date()
        )
        status = next((s for s in usage.categories if s.category == txn.category), None)
        if status is None or status.spent <= status.budget:
            return None
        if status.spent - txn.amount_cents > status.budget:
            return None
        return self.send_budget_exceeded_alert(txn.category, status.budget, status.spent)

    def cancel_by_type(self, type: str) -> int:
        return self.scheduler.cancel_by_type(type)

    def sync_salary_reminder(self) -> ScheduleResult:
        """Schedule the salary reminder for the saved salary day, or drop it."""
        profile = self._profile()
        if profile.salary_notif and profile.monthly_income_day:
            return self.schedule_salary_reminder(
                profile.monthly_income_day, profile.monthly_income_cents
            )
        self.scheduler.cancel_by_type(SALARY_REMINDER)
        return self._skipped("Salary")

    def sync_preferences(self) -> dict[str, ScheduleResult]:
        """Bring scheduled reminders in line with the saved profile."""
        profile = self._profile()
        results: dict[str, ScheduleResult] = {}

        if profile.report_notif:
            results[WEEKLY_REPORT] = self.schedule_weekly_report()
        else:
            self.scheduler.cancel_by_type(WEEKLY_REPORT)
            results[WEEKLY_REPORT] = self._skipped("Weekly report")

        results[SALARY_REMINDER] = self.sync_salary_reminder()

        if not profile.budget_notif:
            self.scheduler.cancel_matching(BUDGET_ALERT_PREFIX)
        return results
