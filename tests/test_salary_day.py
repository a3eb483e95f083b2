from datetime import date, datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, Profile, StepStatus, Transaction, TransactionType
from salary import SalaryDayService, check_salary_day
from services import ValidationError, WriteFailure

DUBAI = ZoneInfo("Asia/Dubai")
PAYDAY = datetime(2024, 3, 25, 10, 0, tzinfo=DUBAI)


@pytest.fixture()
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _profile(session: Session, auto_invest=50_000) -> Profile:
    profile = Profile(
        id=1,
        monthly_income_cents=800_000,
        monthly_income_day=25,
        emergency_fund_cents=0,
        emergency_fund_auto_invest_cents=auto_invest,
        version=1,
    )
    session.add(profile)
    session.commit()
    return profile


def _salary_row(day: str) -> dict:
    return {
        "type": "income",
        "category": "salary",
        "amount_cents": 800_000,
        "transaction_date": f"{day}T06:00:00",
    }


@pytest.mark.parametrize(
    "income, day, reason",
    [
        (None, 25, "no_income"),
        (0, 25, "no_income"),
        (800_000, None, "no_income_day"),
        (800_000, 24, "not_salary_day"),
    ],
)
def test_salary_card_hidden(income, day, reason) -> None:
    profile = SimpleNamespace(monthly_income_cents=income, monthly_income_day=day)
    check = check_salary_day(profile, [], date(2024, 3, 25), tz=DUBAI)
    assert not check.should_show
    assert check.reason == reason


def test_salary_card_hidden_once_posted_today() -> None:
    profile = SimpleNamespace(monthly_income_cents=800_000, monthly_income_day=25)
    today = date(2024, 3, 25)
    assert check_salary_day(profile, [_salary_row("2024-02-25")], today, tz=DUBAI).should_show
    check = check_salary_day(profile, [_salary_row("2024-03-25")], today, tz=DUBAI)
    assert check.reason == "already_posted"


def test_salary_day_past_month_end_snaps_to_last_day() -> None:
    profile = SimpleNamespace(monthly_income_cents=800_000, monthly_income_day=31)
    assert check_salary_day(profile, [], date(2024, 2, 29), tz=DUBAI).should_show
    assert not check_salary_day(profile, [], date(2024, 2, 28), tz=DUBAI).should_show
    assert not check_salary_day(profile, [], date(2024, 3, 30), tz=DUBAI).should_show


def test_post_salary_with_auto_invest(session: Session) -> None:
    _profile(session)
    outcome = SalaryDayService(session, 1).post_salary(PAYDAY)

    assert outcome.is_complete
    assert outcome.messages == [
        "Salary added successfully!",
        "Emergency fund increased by AED 500.00",
    ]
    assert outcome.warnings == []
    assert session.get(Profile, 1).emergency_fund_cents == 50_000

    rows = session.scalars(select(Transaction).order_by(Transaction.id)).all()
    assert [(r.category, r.type, r.amount_cents) for r in rows] == [
        (Category.salary, TransactionType.income, 800_000),
        (Category.emergency_fund, TransactionType.expense, 50_000),
    ]
    assert outcome.posting.salary_transaction_id == rows[0].id
    assert outcome.posting.auto_invest_transaction_id == rows[1].id


def test_post_salary_is_idempotent_per_day(session: Session) -> None:
    _profile(session)
    service = SalaryDayService(session, 1)
    service.post_salary(PAYDAY)

    assert service.evaluate(date(2024, 3, 25)).reason == "already_posted"
    with pytest.raises(ValidationError, match="already been added"):
        service.post_salary(PAYDAY)
    salaries = session.scalars(
        select(Transaction).where(Transaction.category == Category.salary)
    ).all()
    assert len(salaries) == 1


def test_post_salary_without_auto_invest(session: Session) -> None:
    _profile(session, auto_invest=None)
    outcome = SalaryDayService(session, 1).post_salary(PAYDAY)
    assert outcome.is_complete
    assert outcome.posting.auto_invest_status == StepStatus.skipped
    assert outcome.posting.fund_status == StepStatus.skipped
    assert outcome.messages == ["Salary added successfully!"]
    assert session.get(Profile, 1).emergency_fund_cents == 0


def test_post_salary_refuses_other_days(session: Session) -> None:
    _profile(session)
    with pytest.raises(ValidationError, match="not your salary day"):
        SalaryDayService(session, 1).post_salary(datetime(2024, 3, 24, 10, 0, tzinfo=DUBAI))


def test_transfer_failure_keeps_salary_and_can_resume(session: Session, monkeypatch) -> None:
    _profile(session)
    service = SalaryDayService(session, 1)

    def broken_record(self, **kwargs):
        raise WriteFailure("Failed to save expense transaction")

    with monkeypatch.context() as patch:
        patch.setattr("services.TransactionService.record", broken_record)
        outcome = service.post_salary(PAYDAY)

    assert not outcome.is_complete
    assert outcome.warnings == ["Salary added, but emergency fund transfer failed"]
    posting = outcome.posting
    assert posting.salary_status == StepStatus.done
    assert posting.auto_invest_status == StepStatus.failed
    assert posting.fund_status == StepStatus.done
    assert posting.last_error.startswith("auto_invest:")
    assert [p.id for p in service.incomplete_postings()] == [posting.id]

    resumed = service.resume(posting.id)
    assert resumed.is_complete
    assert resumed.posting.last_error is None
    assert service.incomplete_postings() == []
    # the fund step already ran and is not repeated
    assert session.get(Profile, 1).emergency_fund_cents == 50_000


def test_fund_update_failure_is_reported(session: Session, monkeypatch) -> None:
    _profile(session)
    service = SalaryDayService(session, 1)

    def broken_cas(self, expected_version, new_amount_cents):
        raise WriteFailure("Failed to update emergency fund")

    with monkeypatch.context() as patch:
        patch.setattr("services.ProfileService.compare_and_set_fund", broken_cas)
        outcome = service.post_salary(PAYDAY)

    assert outcome.warnings == ["Salary added, but emergency fund amount not updated"]
    assert outcome.posting.auto_invest_status == StepStatus.done
    assert outcome.posting.fund_status == StepStatus.failed
    assert session.get(Profile, 1).emergency_fund_cents == 0

    service.resume(outcome.posting.id)
    assert session.get(Profile, 1).emergency_fund_cents == 50_000
