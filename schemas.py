from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType


class TransactionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=50)
    type: TransactionType = TransactionType.expense
    transaction_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    receipt_url: Optional[str] = Field(default=None, max_length=500)


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    amount_cents: int = Field(..., gt=0)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_name: Optional[str] = Field(default=None, max_length=120)
    monthly_income_cents: Optional[int] = None
    monthly_income_day: Optional[int] = Field(default=None, ge=1, le=31)
    monthly_saving_goal_cents: Optional[int] = Field(default=None, ge=0)

    @field_validator("display_name")
    @classmethod
    def _name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Full name is required")
        return value.strip() if value else value

    @field_validator("monthly_income_cents")
    @classmethod
    def _income_not_negative(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("Monthly income cannot be negative")
        return value


class NotificationPreferencesIn(BaseModel):
    salary_notif: bool
    budget_notif: bool
    report_notif: bool


class AmountIn(BaseModel):
    amount_cents: int


class BudgetAlertIn(BaseModel):
    threshold: int = Field(default=80, ge=1, le=100)


class SavingsCheckInIn(BaseModel):
    day_of_month: int
    goal_cents: Optional[int] = Field(default=None, ge=0)
