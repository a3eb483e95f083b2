"""initial schema

Revision ID: 202610011200
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610011200"
down_revision = None
branch_labels = None
depends_on = None

CATEGORIES = (
    "transport",
    "entertainment",
    "groceries",
    "food",
    "shopping",
    "bills",
    "health",
    "education",
    "salary",
    "emergency_fund",
    "stock",
    "other",
)
STEP_STATUSES = ("pending", "done", "failed", "skipped")


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("display_name", sa.String(length=120)),
        sa.Column("monthly_income_cents", sa.Integer()),
        sa.Column("monthly_income_day", sa.Integer()),
        sa.Column("monthly_saving_goal_cents", sa.Integer()),
        sa.Column(
            "emergency_fund_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("emergency_fund_auto_invest_cents", sa.Integer()),
        sa.Column("salary_notif", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("budget_notif", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("report_notif", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "emergency_fund_cents >= 0", name="ck_profile_emergency_fund_positive"
        ),
        sa.CheckConstraint(
            "monthly_income_day IS NULL OR monthly_income_day BETWEEN 1 AND 31",
            name="ck_profile_income_day_range",
        ),
        sa.CheckConstraint(
            "emergency_fund_auto_invest_cents IS NULL OR emergency_fund_auto_invest_cents > 0",
            name="ck_profile_auto_invest_positive",
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.Enum(*CATEGORIES, name="category"), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("transaction_date", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("receipt_url", sa.String(length=500)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "transaction_date"]
    )
    op.create_index(
        "ix_transactions_user_type_category",
        "transactions",
        ["user_id", "type", "category"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.Enum(*CATEGORIES, name="category"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
    )

    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("delivery_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column(
            "cadence", sa.Enum("monthly", "weekly", name="remindercadence"), nullable=False
        ),
        sa.Column("day_of_month", sa.Integer()),
        sa.Column("weekday", sa.Integer()),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("minute", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "type", name="uq_scheduled_notification_user_type"),
        sa.CheckConstraint(
            "day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31",
            name="ck_scheduled_notification_day_range",
        ),
        sa.CheckConstraint(
            "weekday IS NULL OR weekday BETWEEN 0 AND 6",
            name="ck_scheduled_notification_weekday_range",
        ),
    )

    op.create_table(
        "salary_postings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("posted_on", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("auto_invest_cents", sa.Integer()),
        sa.Column(
            "salary_transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "auto_invest_transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "salary_status", sa.Enum(*STEP_STATUSES, name="stepstatus"), nullable=False
        ),
        sa.Column(
            "auto_invest_status",
            sa.Enum(*STEP_STATUSES, name="stepstatus"),
            nullable=False,
        ),
        sa.Column(
            "fund_status", sa.Enum(*STEP_STATUSES, name="stepstatus"), nullable=False
        ),
        sa.Column("last_error", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_salary_postings_user_day", "salary_postings", ["user_id", "posted_on"]
    )


def downgrade() -> None:
    op.drop_index("ix_salary_postings_user_day", table_name="salary_postings")
    op.drop_table("salary_postings")
    op.drop_table("scheduled_notifications")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_type_category", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("profiles")
