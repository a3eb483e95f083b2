from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, Profile, Transaction, TransactionType
from services import (
    ConcurrentUpdate,
    EmergencyFundService,
    InsufficientFunds,
    NoFundsAvailable,
    ProfileService,
    ValidationError,
    WriteFailure,
)


@pytest.fixture()
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _seed(session: Session, income: int = 100_000, fund: int = 20_000) -> None:
    session.add(Profile(id=1, emergency_fund_cents=fund, version=1))
    session.add(
        Transaction(
            user_id=1,
            title="Salary",
            amount_cents=income,
            category=Category.salary,
            type=TransactionType.income,
            transaction_date=datetime(2024, 3, 1, 6, 0),
        )
    )
    session.commit()


def test_deposit_up_to_available_balance(session: Session) -> None:
    _seed(session)
    service = EmergencyFundService(session, 1)
    assert service.available_to_deposit() == 80_000

    movement = service.deposit(80_000)

    assert movement.new_balance_cents == 100_000
    assert movement.warnings == ()
    profile = session.get(Profile, 1)
    assert profile.emergency_fund_cents == 100_000
    assert profile.version == 2
    mirror = session.get(Transaction, movement.transaction_id)
    assert mirror.type == TransactionType.expense
    assert mirror.category == Category.emergency_fund
    assert mirror.title == "Emergency Fund Deposit"
    assert mirror.amount_cents == 80_000


def test_deposit_over_ceiling_is_rejected(session: Session) -> None:
    _seed(session)
    service = EmergencyFundService(session, 1)
    with pytest.raises(InsufficientFunds) as excinfo:
        service.deposit(80_001)
    assert "AED 800.00 available" in str(excinfo.value)
    assert session.get(Profile, 1).emergency_fund_cents == 20_000
    assert session.scalars(select(Transaction)).all()[0].title == "Salary"


def test_deposit_without_net_income(session: Session) -> None:
    _seed(session, income=20_000, fund=20_000)
    with pytest.raises(NoFundsAvailable):
        EmergencyFundService(session, 1).deposit(100)


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_are_rejected(session: Session, amount: int) -> None:
    _seed(session)
    service = EmergencyFundService(session, 1)
    with pytest.raises(ValidationError, match="greater than 0"):
        service.deposit(amount)
    with pytest.raises(ValidationError, match="greater than 0"):
        service.withdraw(amount)


def test_withdraw_whole_fund(session: Session) -> None:
    _seed(session)
    movement = EmergencyFundService(session, 1).withdraw(20_000)
    assert movement.new_balance_cents == 0
    mirror = session.get(Transaction, movement.transaction_id)
    assert mirror.type == TransactionType.income
    assert mirror.title == "Emergency Fund Withdrawal"


def test_withdraw_more_than_fund(session: Session) -> None:
    _seed(session)
    with pytest.raises(InsufficientFunds, match="AED 200.00"):
        EmergencyFundService(session, 1).withdraw(20_001)
    assert session.get(Profile, 1).emergency_fund_cents == 20_000


def test_withdraw_from_empty_fund(session: Session) -> None:
    _seed(session, fund=0)
    with pytest.raises(NoFundsAvailable, match="empty"):
        EmergencyFundService(session, 1).withdraw(1)


def test_stale_version_is_a_conflict(session: Session) -> None:
    _seed(session)
    profiles = ProfileService(session, 1)
    stale = profiles.get().version
    profiles.compare_and_set_fund(stale, 25_000)

    with pytest.raises(ConcurrentUpdate):
        profiles.compare_and_set_fund(stale, 30_000)
    session.expire_all()
    assert session.get(Profile, 1).emergency_fund_cents == 25_000


def test_mirror_failure_keeps_fund_update(session: Session, monkeypatch) -> None:
    _seed(session)

    def broken_record(self, **kwargs):
        raise WriteFailure("Failed to save expense transaction")

    monkeypatch.setattr("services.TransactionService.record", broken_record)
    movement = EmergencyFundService(session, 1).deposit(5_000)

    assert movement.transaction_id is None
    assert movement.warnings
    assert session.get(Profile, 1).emergency_fund_cents == 25_000


def test_auto_invest_toggle(session: Session) -> None:
    _seed(session)
    service = EmergencyFundService(session, 1)
    assert service.enable_auto_invest(15_000).emergency_fund_auto_invest_cents == 15_000
    assert service.disable_auto_invest().emergency_fund_auto_invest_cents is None
    with pytest.raises(ValidationError):
        service.enable_auto_invest(0)
