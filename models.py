from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Category(str, Enum):
    transport = "transport"
    entertainment = "entertainment"
    groceries = "groceries"
    food = "food"
    shopping = "shopping"
    bills = "bills"
    health = "health"
    education = "education"
    salary = "salary"
    emergency_fund = "emergency_fund"
    stock = "stock"
    other = "other"


@dataclass(frozen=True)
class CategoryStyle:
    label: str
    icon: str
    color: str


CATEGORY_STYLES: dict[Category, CategoryStyle] = {
    Category.transport: CategoryStyle("Transport", "truck", "#3B82F6"),
    Category.entertainment: CategoryStyle("Entertainment", "film", "#EC4899"),
    Category.groceries: CategoryStyle("Groceries", "shopping-cart", "#10B981"),
    Category.food: CategoryStyle("Food", "coffee", "#F59E0B"),
    Category.shopping: CategoryStyle("Shopping", "shopping-bag", "#8B5CF6"),
    Category.bills: CategoryStyle("Bills", "file-text", "#EF4444"),
    Category.health: CategoryStyle("Health", "heart", "#06B6D4"),
    Category.education: CategoryStyle("Education", "book", "#6366F1"),
    Category.salary: CategoryStyle("Salary", "dollar-sign", "#22C55E"),
    Category.emergency_fund: CategoryStyle("Emergency Fund", "shield", "#0EA5E9"),
    Category.stock: CategoryStyle("Stock", "trending-up", "#14B8A6"),
    Category.other: CategoryStyle("Other", "tag", "#6B7280"),
}


class ReminderCadence(str, Enum):
    monthly = "monthly"
    weekly = "weekly"


class StepStatus(str, Enum):
    pending = "pending"
    done = "done"
    failed = "failed"
    skipped = "skipped"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"

    # one profile per user, keyed by the user id
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(120))
    monthly_income_cents: Mapped[Optional[int]] = mapped_column(Integer)
    monthly_income_day: Mapped[Optional[int]] = mapped_column(Integer)
    monthly_saving_goal_cents: Mapped[Optional[int]] = mapped_column(Integer)
    emergency_fund_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    emergency_fund_auto_invest_cents: Mapped[Optional[int]] = mapped_column(Integer)
    salary_notif: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    budget_notif: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    report_notif: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "emergency_fund_cents >= 0", name="ck_profile_emergency_fund_positive"
        ),
        CheckConstraint(
            "monthly_income_day IS NULL OR monthly_income_day BETWEEN 1 AND 31",
            name="ck_profile_income_day_range",
        ),
        CheckConstraint(
            "emergency_fund_auto_invest_cents IS NULL OR emergency_fund_auto_invest_cents > 0",
            name="ck_profile_auto_invest_positive",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(SAEnum(Category), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    # naive UTC
    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500))

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
        Index(
            "ix_transactions_user_type_category",
            "user_id",
            "type",
            "category",
        ),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(SAEnum(Category), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
    )


class ScheduledNotification(Base):
    __tablename__ = "scheduled_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    cadence: Mapped[ReminderCadence] = mapped_column(
        SAEnum(ReminderCadence), nullable=False
    )
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    weekday: Mapped[Optional[int]] = mapped_column(Integer)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_scheduled_notification_user_type"),
        CheckConstraint(
            "day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31",
            name="ck_scheduled_notification_day_range",
        ),
        CheckConstraint(
            "weekday IS NULL OR weekday BETWEEN 0 AND 6",
            name="ck_scheduled_notification_weekday_range",
        ),
    )


class SalaryPosting(Base, TimestampMixin):
    __tablename__ = "salary_postings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    posted_on: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_invest_cents: Mapped[Optional[int]] = mapped_column(Integer)
    salary_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )
    auto_invest_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL")
    )
    salary_status: Mapped[StepStatus] = mapped_column(
        SAEnum(StepStatus), default=StepStatus.pending, nullable=False
    )
    auto_invest_status: Mapped[StepStatus] = mapped_column(
        SAEnum(StepStatus), default=StepStatus.pending, nullable=False
    )
    fund_status: Mapped[StepStatus] = mapped_column(
        SAEnum(StepStatus), default=StepStatus.pending, nullable=False
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    salary_transaction: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", foreign_keys=[salary_transaction_id]
    )
    auto_invest_transaction: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", foreign_keys=[auto_invest_transaction_id]
    )

    __table_args__ = (Index("ix_salary_postings_user_day", "user_id", "posted_on"),)

    @property
    def is_complete(self) -> bool:
        finished = (StepStatus.done, StepStatus.skipped)
        return (
            self.salary_status in finished
            and self.auto_invest_status in finished
            and self.fund_status in finished
        )
