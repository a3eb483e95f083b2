"""Salary-day detection and posting.

Posting is a small saga: the salary transaction commits first and on its own,
then the optional emergency-fund auto-invest runs as two independent steps (a
mirrored expense and the fund top-up). Each step's outcome is stored on a
``SalaryPosting`` row so a committed-but-incomplete posting can be listed and
resumed later instead of being lost in a log line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from aggregation import find_transactions
from models import (
    Category,
    SalaryPosting,
    StepStatus,
    Transaction,
    TransactionType,
    utcnow,
)
from periods import is_monthly_day, local_today, local_tz, to_local, to_storage
from services import (
    NotFound,
    ProfileService,
    TransactionService,
    ValidationError,
    WriteFailure,
    commit_or_fail,
    format_money,
)

logger = logging.getLogger(__name__)

_OPEN = (StepStatus.pending, StepStatus.failed)


@dataclass(frozen=True)
class SalaryDayCheck:
    should_show: bool
    reason: str  # "due" | "no_income" | "no_income_day" | "not_salary_day" | "already_posted"


@dataclass
class SalaryOutcome:
    posting: SalaryPosting
    messages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.posting.is_complete


_REJECTIONS = {
    "no_income": "Set your monthly income before adding a salary",
    "no_income_day": "Set your salary day before adding a salary",
    "not_salary_day": "Today is not your salary day",
    "already_posted": "Salary has already been added today",
}


def check_salary_day(
    profile: Any,
    transactions: Iterable[Any],
    today: Optional[date] = None,
    *,
    tz: Optional[ZoneInfo] = None,
) -> SalaryDayCheck:
    zone = local_tz(tz)
    today = today or local_today(zone)

    income = getattr(profile, "monthly_income_cents", None)
    if not income or income <= 0:
        return SalaryDayCheck(False, "no_income")
    day = getattr(profile, "monthly_income_day", None)
    if not day:
        return SalaryDayCheck(False, "no_income_day")
    if not is_monthly_day(day, today):
        return SalaryDayCheck(False, "not_salary_day")

    posted = find_transactions(
        transactions,
        type=TransactionType.income,
        category=Category.salary,
        on=today,
        tz=zone,
    )
    if posted:
        return SalaryDayCheck(False, "already_posted")
    return SalaryDayCheck(True, "due")


class SalaryDayService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.profiles = ProfileService(session, user_id)
        self.transactions = TransactionService(session, user_id)

    def evaluate(self, today: Optional[date] = None) -> SalaryDayCheck:
        profile = self.profiles.get_or_create()
        return check_salary_day(profile, self.transactions.list(), today)

    def post_salary(self, now: Optional[datetime] = None) -> SalaryOutcome:
        now = now or datetime.now(local_tz())
        today = to_local(now).date()
        check = self.evaluate(today)
        if not check.should_show:
            raise ValidationError(_REJECTIONS[check.reason])

        profile = self.profiles.get()
        auto_invest = profile.emergency_fund_auto_invest_cents or 0
        pending_or_skipped = StepStatus.pending if auto_invest > 0 else StepStatus.skipped

        salary_txn = Transaction(
            user_id=self.user_id,
            title="Salary",
            amount_cents=profile.monthly_income_cents,
            category=Category.salary,
            type=TransactionType.income,
            transaction_date=to_storage(now),
        )
        posting = SalaryPosting(
            user_id=self.user_id,
            posted_on=today,
            amount_cents=profile.monthly_income_cents,
            auto_invest_cents=auto_invest or None,
            salary_transaction=salary_txn,
            salary_status=StepStatus.done,
            auto_invest_status=pending_or_skipped,
            fund_status=pending_or_skipped,
        )
        self.session.add_all([salary_txn, posting])
        commit_or_fail(self.session, "add salary")
        self.session.refresh(posting)
        logger.info(
            f"salary_post: user_id={self.user_id} step=salary status=done "
            f"amount_cents={posting.amount_cents} posting_id={posting.id}"
        )

        outcome = SalaryOutcome(posting=posting, messages=["Salary added successfully!"])
        self._run_cascade(outcome, when=now)
        return outcome

    def resume(self, posting_id: int) -> SalaryOutcome:
        posting = self.session.get(SalaryPosting, posting_id)
        if not posting or posting.user_id != self.user_id:
            raise NotFound("Salary posting not found")
        outcome = SalaryOutcome(posting=posting)
        if posting.is_complete:
            return outcome
        self._run_cascade(outcome)
        return outcome

    def incomplete_postings(self) -> list[SalaryPosting]:
        stmt = (
            select(SalaryPosting)
            .where(
                SalaryPosting.user_id == self.user_id,
                or_(
                    SalaryPosting.auto_invest_status.in_(_OPEN),
                    SalaryPosting.fund_status.in_(_OPEN),
                ),
            )
            .order_by(SalaryPosting.posted_on.desc(), SalaryPosting.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def _run_cascade(self, outcome: SalaryOutcome, when: Optional[datetime] = None) -> None:
        posting = outcome.posting
        amount = posting.auto_invest_cents or 0

        if posting.auto_invest_status in _OPEN:
            try:
                txn = self.transactions.record(
                    title="Emergency Fund Auto-Invest",
                    amount_cents=amount,
                    category=Category.emergency_fund,
                    type=TransactionType.expense,
                    when=when,
                )
            except (WriteFailure, ValidationError) as exc:
                self._finish_step(posting, "auto_invest", StepStatus.failed, error=exc)
                outcome.warnings.append("Salary added, but emergency fund transfer failed")
            else:
                posting.auto_invest_transaction_id = txn.id
                self._finish_step(posting, "auto_invest", StepStatus.done)

        if posting.fund_status in _OPEN:
            try:
                profile = self.profiles.get()
                self.session.refresh(profile)
                self.profiles.compare_and_set_fund(
                    profile.version, (profile.emergency_fund_cents or 0) + amount
                )
            except WriteFailure as exc:
                self._finish_step(posting, "fund", StepStatus.failed, error=exc)
                outcome.warnings.append(
                    "Salary added, but emergency fund amount not updated"
                )
            else:
                self._finish_step(posting, "fund", StepStatus.done)
                outcome.messages.append(
                    f"Emergency fund increased by {format_money(amount)}"
                )

    def _finish_step(
        self,
        posting: SalaryPosting,
        step: str,
        status: StepStatus,
        *,
        error: Optional[Exception] = None,
    ) -> None:
        # each step commits its own status; a later rollback must not undo it
        setattr(posting, f"{step}_status", status)
        if error is not None:
            posting.last_error = f"{step}: {error}"
            logger.warning(
                f"salary_post: user_id={self.user_id} step={step} status=failed "
                f"posting_id={posting.id} error={error}"
            )
        else:
            if posting.is_complete:
                posting.last_error = None
            logger.info(
                f"salary_post: user_id={self.user_id} step={step} status=done "
                f"posting_id={posting.id}"
            )
        posting.updated_at = utcnow()
        try:
            commit_or_fail(self.session, "record salary posting status")
        except WriteFailure:
            logger.warning(
                f"salary_post_status_unsaved: user_id={self.user_id} posting_id={posting.id}"
            )
