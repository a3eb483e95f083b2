import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from database import init_db, make_engine, make_session_factory
from main import app, get_db, get_notifications, get_user_id
from notifications import NotificationScheduler
from periods import local_today


class RecordingDelivery:
    def __init__(self) -> None:
        self.jobs: dict[str, object] = {}
        self.fired: list = []

    def schedule_at(self, trigger, content) -> str:
        delivery_id = f"job-{len(self.jobs) + len(self.fired) + 1}-{content.type}"
        self.jobs[delivery_id] = content
        return delivery_id

    def cancel(self, delivery_id: str) -> None:
        self.jobs.pop(delivery_id, None)

    def fire_now(self, content) -> None:
        self.fired.append(content)


@pytest.fixture()
def delivery():
    return RecordingDelivery()


@pytest.fixture()
def client(delivery):
    engine = make_engine("sqlite://")
    init_db(engine)
    TestSession = make_session_factory(engine)

    def override_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    def override_notifications(
        db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
    ):
        return NotificationScheduler(db, user_id, delivery)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_notifications] = override_notifications
    yield TestClient(app, headers={"X-User-Id": "1"})
    app.dependency_overrides.clear()


def _post_txn(client: TestClient, type: str, amount: int, category: str, when: str, **kw):
    return client.post(
        "/api/transactions",
        json={
            "title": kw.pop("title", category.title()),
            "amount_cents": amount,
            "category": category,
            "type": type,
            "transaction_date": when,
        },
        **kw,
    )


def test_month_summary(client: TestClient) -> None:
    assert _post_txn(client, "income", 100_000, "salary", "2024-03-01T08:00:00+04:00").status_code == 201
    assert client.put("/api/budgets", json={"category": "food", "amount_cents": 40_000}).status_code == 200
    resp = _post_txn(client, "expense", 30_000, "Food", "2024-03-05T08:00:00+04:00")
    assert resp.status_code == 201
    assert resp.json()["category"] == "food"

    summary = client.get("/api/summary", params={"month": "2024-03"}).json()
    assert summary["balance"] == {"balance": 70_000, "income": 100_000, "expenses": 30_000}
    assert summary["balance_after_budget"]["balance_after_budget"] == 30_000
    assert summary["budget_usage"]["percent_used"] == 75
    assert summary["budget_usage"]["categories"][0]["category"] == "food"
    assert len(summary["recent_transactions"]) == 2

    assert client.get("/api/summary", params={"month": "March"}).status_code == 400


def test_transactions_are_scoped_to_user(client: TestClient) -> None:
    _post_txn(client, "expense", 1_500, "transport", "2024-03-05T08:00:00+04:00")
    _post_txn(
        client,
        "expense",
        2_500,
        "transport",
        "2024-03-05T08:00:00+04:00",
        headers={"X-User-Id": "2"},
    )

    mine = client.get("/api/transactions", params={"period": "all"}).json()["items"]
    theirs = client.get(
        "/api/transactions", params={"period": "all"}, headers={"X-User-Id": "2"}
    ).json()["items"]
    assert [t["amount_cents"] for t in mine] == [1_500]
    assert [t["amount_cents"] for t in theirs] == [2_500]

    resp = client.delete(f"/api/transactions/{theirs[0]['id']}")
    assert resp.status_code == 404


def test_invalid_payloads(client: TestClient) -> None:
    resp = _post_txn(client, "expense", 0, "food", "2024-03-05T08:00:00+04:00")
    assert resp.status_code == 422
    resp = client.patch("/api/profile", json={"monthly_income_cents": -1})
    assert resp.status_code == 422
    resp = client.get("/api/transactions", params={"period": "custom", "start": "2024-03-10"})
    assert resp.status_code == 400


def test_emergency_fund_flow(client: TestClient) -> None:
    _post_txn(client, "income", 100_000, "salary", "2024-03-01T08:00:00+04:00")

    resp = client.post("/api/emergency-fund/deposit", json={"amount_cents": 100_001})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Insufficient funds: AED 1,000.00 available")

    resp = client.post("/api/emergency-fund/deposit", json={"amount_cents": 40_000})
    assert resp.status_code == 200
    assert resp.json()["new_balance_cents"] == 40_000

    fund = client.get("/api/emergency-fund").json()
    assert fund["balance_cents"] == 40_000
    # the mirrored expense and the fund both count against the ceiling
    assert fund["available_to_deposit_cents"] == 20_000

    resp = client.post("/api/emergency-fund/withdraw", json={"amount_cents": 0})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please enter a valid amount greater than 0"

    resp = client.put("/api/emergency-fund/auto-invest", json={"amount_cents": 5_000})
    assert resp.json()["emergency_fund_auto_invest_cents"] == 5_000
    resp = client.delete("/api/emergency-fund/auto-invest")
    assert resp.json()["emergency_fund_auto_invest_cents"] is None


def test_salary_day_confirm(client: TestClient, delivery: RecordingDelivery) -> None:
    today = local_today()
    resp = client.patch(
        "/api/profile",
        json={"monthly_income_cents": 800_000, "monthly_income_day": today.day},
    )
    assert resp.status_code == 200
    assert resp.json()["salary_reminder"]["status"] == "skipped"

    assert client.get("/api/salary-day").json() == {"should_show": True, "reason": "due"}
    resp = client.post("/api/salary-day/confirm")
    assert resp.status_code == 200
    assert resp.json()["messages"] == ["Salary added successfully!"]
    assert resp.json()["posting"]["is_complete"] is True

    assert client.get("/api/salary-day").json()["reason"] == "already_posted"
    assert client.post("/api/salary-day/confirm").status_code == 400
    assert client.get("/api/salary-postings/incomplete").json() == []


def test_preferences_drive_reminders(client: TestClient, delivery: RecordingDelivery) -> None:
    client.patch("/api/profile", json={"monthly_income_cents": 800_000, "monthly_income_day": 25})
    resp = client.put(
        "/api/profile/notifications",
        json={"salary_notif": True, "budget_notif": True, "report_notif": True},
    )
    assert resp.status_code == 200
    assert resp.json()["reminders"]["weekly_report"]["status"] == "scheduled"
    assert resp.json()["reminders"]["salary_reminder"]["status"] == "scheduled"

    resp = client.post("/api/notifications/budget-alerts/groceries", json={"threshold": 90})
    assert resp.json()["status"] == "scheduled"

    types = {n["type"] for n in client.get("/api/notifications").json()}
    assert types == {"weekly_report", "salary_reminder", "budget_alert_groceries"}

    resp = client.delete("/api/notifications/weekly_report")
    assert resp.json()["count"] == 1

    client.put(
        "/api/profile/notifications",
        json={"salary_notif": False, "budget_notif": False, "report_notif": False},
    )
    assert client.get("/api/notifications").json() == []
    assert delivery.jobs == {}


def test_expense_over_budget_sends_alert(client: TestClient, delivery: RecordingDelivery) -> None:
    client.put(
        "/api/profile/notifications",
        json={"salary_notif": False, "budget_notif": True, "report_notif": False},
    )
    client.put("/api/budgets", json={"category": "shopping", "amount_cents": 20_000})

    resp = _post_txn(client, "expense", 15_000, "shopping", "2024-03-05T08:00:00+04:00")
    assert resp.json()["budget_alert"] is None
    resp = _post_txn(client, "expense", 10_000, "shopping", "2024-03-06T08:00:00+04:00")
    assert resp.json()["budget_alert"]["status"] == "sent"
    assert delivery.fired[-1].body == "You've exceeded your Shopping budget by AED 50.00"


def test_missing_user_header_is_rejected(client: TestClient) -> None:
    client.patch("/api/profile", json={"monthly_income_cents": 123})
    assert client.get("/api/profile").json()["monthly_income_cents"] == 123

    anonymous = TestClient(app)
    assert anonymous.get("/api/profile").status_code == 422
    assert anonymous.get("/api/notifications").status_code == 422
    assert anonymous.post("/api/salary-day/confirm").status_code == 422


def test_profile_edit_keeps_other_users_reminders(
    client: TestClient, delivery: RecordingDelivery
) -> None:
    client.patch("/api/profile", json={"monthly_income_cents": 800_000, "monthly_income_day": 25})
    client.put(
        "/api/profile/notifications",
        json={"salary_notif": True, "budget_notif": False, "report_notif": True},
    )

    other = {"X-User-Id": "2"}
    assert client.patch("/api/profile", json={"display_name": "Sam"}, headers=other).status_code == 200
    client.put(
        "/api/profile/notifications",
        json={"salary_notif": False, "budget_notif": False, "report_notif": False},
        headers=other,
    )
    assert client.get("/api/notifications", headers=other).json() == []
    assert client.delete("/api/notifications", headers=other).status_code == 200

    reminders = {n["type"]: n for n in client.get("/api/notifications").json()}
    assert set(reminders) == {"salary_reminder", "weekly_report"}
    assert reminders["salary_reminder"]["day_of_month"] == 25
    assert {content.user_id for content in delivery.jobs.values()} == {1}
    assert len(delivery.jobs) == 2
