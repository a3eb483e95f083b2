from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aggregation import calculate_balance_after_budget
from config import get_settings
from models import (
    CATEGORY_STYLES,
    Budget,
    Category,
    Profile,
    Transaction,
    TransactionType,
    utcnow,
)
from periods import Period, local_tz, to_storage
from schemas import BudgetIn, NotificationPreferencesIn, ProfileUpdate, TransactionIn

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    pass


class NoFundsAvailable(ValidationError):
    pass


class InsufficientFunds(ValidationError):
    pass


class CategoryAmbiguous(ValidationError):
    pass


class NotFound(ValueError):
    pass


class WriteFailure(RuntimeError):
    pass


class ConcurrentUpdate(WriteFailure):
    pass


def format_money(cents: int) -> str:
    return f"{get_settings().currency} {cents / 100:,.2f}"


def commit_or_fail(session: Session, action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"write_failed: action={action} error={exc}")
        raise WriteFailure(f"Failed to {action}") from exc


def _normalize_category_text(value: str) -> str:
    return " ".join(value.strip().lower().replace("_", " ").split())


def resolve_category(value: Union[str, Category]) -> Category:
    if isinstance(value, Category):
        return value
    text = _normalize_category_text(value or "")
    if not text:
        return Category.other

    names: dict[str, Category] = {}
    for category in Category:
        names[_normalize_category_text(category.value)] = category
        names[_normalize_category_text(CATEGORY_STYLES[category].label)] = category
    if text in names:
        return names[text]

    best_distance: Optional[int] = None
    best: set[Category] = set()
    for name, category in names.items():
        dist = int(Levenshtein.distance(text, name))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = {category}
        elif dist == best_distance:
            best.add(category)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(c.value for c in best))
            raise CategoryAmbiguous(
                f"Category '{value}' is ambiguous; matches: {options}"
            )
        return best.pop()

    logger.info(f"category_fallback: input={value!r} category=other")
    return Category.other


def _period_bounds(period: Period) -> tuple[datetime, datetime]:
    tz = local_tz()
    start = to_storage(datetime.combine(period.start, time.min, tzinfo=tz))
    end = to_storage(
        datetime.combine(period.end + timedelta(days=1), time.min, tzinfo=tz)
    )
    return start, end


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self, period: Optional[Period] = None) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        if period is not None:
            start, end = _period_bounds(period)
            stmt = stmt.where(
                Transaction.transaction_date >= start,
                Transaction.transaction_date < end,
            )
        return list(self.session.scalars(stmt).all())

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFound("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        return self.record(
            title=data.title,
            amount_cents=data.amount_cents,
            category=resolve_category(data.category),
            type=data.type,
            when=data.transaction_date,
            notes=data.notes,
            receipt_url=data.receipt_url,
        )

    def record(
        self,
        *,
        title: str,
        amount_cents: int,
        category: Category,
        type: TransactionType,
        when: Optional[datetime] = None,
        notes: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> Transaction:
        if amount_cents <= 0:
            raise ValidationError("Amount must be a valid positive number")
        txn = Transaction(
            user_id=self.user_id,
            title=title,
            amount_cents=amount_cents,
            category=category,
            type=type,
            transaction_date=to_storage(when) if when else utcnow(),
            notes=notes,
            receipt_url=receipt_url,
        )
        self.session.add(txn)
        commit_or_fail(self.session, f"save {type.value} transaction")
        self.session.refresh(txn)
        logger.info(
            f"transaction_saved: user_id={self.user_id} id={txn.id} "
            f"type={type.value} category={category.value} amount_cents={amount_cents}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        commit_or_fail(self.session, "delete transaction")


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def upsert(self, data: BudgetIn) -> Budget:
        category = resolve_category(data.category)
        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category == category,
            )
        )
        if existing:
            existing.amount_cents = data.amount_cents
            commit_or_fail(self.session, "update budget")
            self.session.refresh(existing)
            return existing

        budget = Budget(
            user_id=self.user_id,
            category=category,
            amount_cents=data.amount_cents,
        )
        self.session.add(budget)
        commit_or_fail(self.session, "save budget")
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        self.session.delete(budget)
        commit_or_fail(self.session, "delete budget")


class ProfileService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Profile:
        profile = self.session.get(Profile, self.user_id)
        if not profile:
            raise NotFound("Profile not found")
        return profile

    def get_or_create(self) -> Profile:
        profile = self.session.get(Profile, self.user_id)
        if profile:
            return profile
        profile = Profile(id=self.user_id, emergency_fund_cents=0, version=1)
        self.session.add(profile)
        commit_or_fail(self.session, "create profile")
        self.session.refresh(profile)
        return profile

    def update(self, data: ProfileUpdate) -> Profile:
        profile = self.get_or_create()
        for name, value in data.model_dump(exclude_unset=True).items():
            setattr(profile, name, value)
        profile.version += 1
        commit_or_fail(self.session, "update profile")
        self.session.refresh(profile)
        return profile

    def update_preferences(self, data: NotificationPreferencesIn) -> Profile:
        profile = self.get_or_create()
        profile.salary_notif = data.salary_notif
        profile.budget_notif = data.budget_notif
        profile.report_notif = data.report_notif
        profile.version += 1
        commit_or_fail(self.session, "update notification preferences")
        self.session.refresh(profile)
        return profile

    def set_auto_invest(self, amount_cents: Optional[int]) -> Profile:
        profile = self.get_or_create()
        profile.emergency_fund_auto_invest_cents = amount_cents
        profile.version += 1
        commit_or_fail(self.session, "update emergency fund auto-invest")
        self.session.refresh(profile)
        return profile

    def compare_and_set_fund(self, expected_version: int, new_amount_cents: int) -> Profile:
        """Write the fund amount only if nobody else changed the profile."""
        try:
            result = self.session.execute(
                update(Profile)
                .where(
                    Profile.id == self.user_id,
                    Profile.version == expected_version,
                )
                .values(
                    emergency_fund_cents=new_amount_cents,
                    version=Profile.version + 1,
                    updated_at=utcnow(),
                )
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"write_failed: action=update emergency fund error={exc}")
            raise WriteFailure("Failed to update emergency fund") from exc
        if result.rowcount == 0:
            self.session.rollback()
            raise ConcurrentUpdate(
                "Your profile changed while saving; reload and try again"
            )
        commit_or_fail(self.session, "update emergency fund")
        profile = self.get()
        self.session.refresh(profile)
        return profile


@dataclass(frozen=True)
class FundMovement:
    kind: str  # "deposit" | "withdraw"
    amount_cents: int
    new_balance_cents: int
    transaction_id: Optional[int] = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


class EmergencyFundService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.profiles = ProfileService(session, user_id)
        self.transactions = TransactionService(session, user_id)

    def available_to_deposit(self, profile: Optional[Profile] = None) -> int:
        profile = profile or self.profiles.get_or_create()
        budgets = BudgetService(self.session, self.user_id).list()
        after_budget = calculate_balance_after_budget(
            self.transactions.list(), budgets
        ).balance_after_budget
        return max(0, after_budget - (profile.emergency_fund_cents or 0))

    def deposit(self, amount_cents: int) -> FundMovement:
        profile = self.profiles.get_or_create()
        ceiling = self.available_to_deposit(profile)
        _validate_amount(amount_cents)
        if ceiling <= 0:
            raise NoFundsAvailable(
                "You don't have any net positive income available. Your income "
                "must exceed your expenses and budget allocations."
            )
        if amount_cents > ceiling:
            raise InsufficientFunds(
                f"Insufficient funds: {format_money(ceiling)} available to deposit "
                "after your budgets and existing emergency fund"
            )
        return self._move(profile, "deposit", amount_cents)

    def withdraw(self, amount_cents: int) -> FundMovement:
        profile = self.profiles.get_or_create()
        ceiling = profile.emergency_fund_cents or 0
        _validate_amount(amount_cents)
        if ceiling <= 0:
            raise NoFundsAvailable("Your emergency fund is empty")
        if amount_cents > ceiling:
            raise InsufficientFunds(
                f"Insufficient funds: you can only withdraw {format_money(ceiling)} "
                "from your emergency fund"
            )
        return self._move(profile, "withdraw", amount_cents)

    def enable_auto_invest(self, amount_cents: int) -> Profile:
        _validate_amount(amount_cents)
        profile = self.profiles.set_auto_invest(amount_cents)
        logger.info(
            f"auto_invest_enabled: user_id={self.user_id} amount_cents={amount_cents}"
        )
        return profile

    def disable_auto_invest(self) -> Profile:
        profile = self.profiles.set_auto_invest(None)
        logger.info(f"auto_invest_disabled: user_id={self.user_id}")
        return profile

    def _move(self, profile: Profile, kind: str, amount_cents: int) -> FundMovement:
        current = profile.emergency_fund_cents or 0
        if kind == "deposit":
            new_balance = current + amount_cents
        else:
            new_balance = current - amount_cents
        if new_balance < 0:
            raise ValidationError("New balance cannot be negative")

        # the fund amount is the source of truth; the mirrored row is best-effort
        self.profiles.compare_and_set_fund(profile.version, new_balance)
        logger.info(
            f"emergency_fund_{kind}: user_id={self.user_id} "
            f"amount_cents={amount_cents} balance_cents={new_balance}"
        )

        warnings: list[str] = []
        transaction_id = None
        try:
            txn = self.transactions.record(
                title=(
                    "Emergency Fund Deposit"
                    if kind == "deposit"
                    else "Emergency Fund Withdrawal"
                ),
                amount_cents=amount_cents,
                category=Category.emergency_fund,
                type=(
                    TransactionType.expense
                    if kind == "deposit"
                    else TransactionType.income
                ),
                notes=(
                    "Deposited to emergency fund"
                    if kind == "deposit"
                    else "Withdrawn from emergency fund"
                ),
            )
            transaction_id = txn.id
        except WriteFailure as exc:
            logger.warning(
                f"emergency_fund_mirror_failed: user_id={self.user_id} kind={kind} error={exc}"
            )
            warnings.append(
                "Emergency fund updated, but the matching transaction could not be recorded"
            )

        return FundMovement(
            kind=kind,
            amount_cents=amount_cents,
            new_balance_cents=new_balance,
            transaction_id=transaction_id,
            warnings=tuple(warnings),
        )


def _validate_amount(amount_cents: int) -> None:
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("Please enter a valid amount greater than 0")
