import logging
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.orm import Session

from aggregation import (
    calculate_month_balance,
    calculate_month_balance_after_budget,
    compute_budget_usage,
    compute_savings_progress,
    compute_weekly_stats,
    recent_transactions,
)
from database import SessionLocal, init_db
from models import CATEGORY_STYLES, Budget, Profile, SalaryPosting, Transaction
from notifications import NotificationScheduler, ReminderService, ScheduleResult
from periods import Period, local_today, resolve_period, to_local
from salary import SalaryDayService, SalaryOutcome
from scheduler import SchedulerManager
from schemas import (
    AmountIn,
    BudgetAlertIn,
    BudgetIn,
    NotificationPreferencesIn,
    ProfileUpdate,
    SavingsCheckInIn,
    TransactionIn,
)
from services import (
    BudgetService,
    ConcurrentUpdate,
    EmergencyFundService,
    NotFound,
    ProfileService,
    TransactionService,
    WriteFailure,
    resolve_category,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Pocket Pilot")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: int = Header()) -> int:
    return x_user_id


scheduler_manager = SchedulerManager()


def get_notifications(
    db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
) -> NotificationScheduler:
    return scheduler_manager.notifications(db, user_id)


def get_reminders(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    notifications: NotificationScheduler = Depends(get_notifications),
) -> ReminderService:
    return ReminderService(db, user_id, notifications)


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConcurrentUpdate):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, WriteFailure):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def reference_from_request(request: Request) -> date:
    month = request.query_params.get("month")
    if not month:
        return local_today()
    try:
        return date.fromisoformat(f"{month}-01")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Month must look like YYYY-MM") from exc


def transaction_payload(txn: Transaction) -> dict[str, object]:
    style = CATEGORY_STYLES[txn.category]
    return {
        "id": txn.id,
        "title": txn.title,
        "amount_cents": txn.amount_cents,
        "category": txn.category.value,
        "category_label": style.label,
        "icon": style.icon,
        "color": style.color,
        "type": txn.type.value,
        "transaction_date": to_local(txn.transaction_date).isoformat(),
        "notes": txn.notes,
        "receipt_url": txn.receipt_url,
    }


def budget_payload(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category": budget.category.value,
        "amount_cents": budget.amount_cents,
    }


def profile_payload(profile: Profile) -> dict[str, object]:
    return {
        "id": profile.id,
        "display_name": profile.display_name,
        "monthly_income_cents": profile.monthly_income_cents,
        "monthly_income_day": profile.monthly_income_day,
        "monthly_saving_goal_cents": profile.monthly_saving_goal_cents,
        "emergency_fund_cents": profile.emergency_fund_cents,
        "emergency_fund_auto_invest_cents": profile.emergency_fund_auto_invest_cents,
        "salary_notif": profile.salary_notif,
        "budget_notif": profile.budget_notif,
        "report_notif": profile.report_notif,
        "version": profile.version,
    }


def posting_payload(posting: SalaryPosting) -> dict[str, object]:
    return {
        "id": posting.id,
        "posted_on": posting.posted_on.isoformat(),
        "amount_cents": posting.amount_cents,
        "auto_invest_cents": posting.auto_invest_cents,
        "salary_transaction_id": posting.salary_transaction_id,
        "auto_invest_transaction_id": posting.auto_invest_transaction_id,
        "salary_status": posting.salary_status.value,
        "auto_invest_status": posting.auto_invest_status.value,
        "fund_status": posting.fund_status.value,
        "last_error": posting.last_error,
        "is_complete": posting.is_complete,
    }


def outcome_payload(outcome: SalaryOutcome) -> dict[str, object]:
    return {
        "posting": posting_payload(outcome.posting),
        "messages": outcome.messages,
        "warnings": outcome.warnings,
    }


def schedule_payload(result: ScheduleResult) -> dict[str, object]:
    return {
        "status": result.status.value,
        "success": result.success,
        "message": result.message,
        "notification_id": result.notification_id,
    }


@app.get("/api/summary")
def api_summary(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    reference = reference_from_request(request)
    try:
        profile = ProfileService(db, user_id).get_or_create()
    except WriteFailure as exc:
        raise http_error(exc) from exc
    transactions = TransactionService(db, user_id).list()
    budgets = BudgetService(db, user_id).list()
    return {
        "month": reference.strftime("%Y-%m"),
        "balance": asdict(calculate_month_balance(transactions, reference)),
        "balance_after_budget": asdict(
            calculate_month_balance_after_budget(transactions, budgets, reference)
        ),
        "budget_usage": asdict(compute_budget_usage(budgets, transactions, reference)),
        "savings_progress": asdict(
            compute_savings_progress(
                transactions, budgets, profile.monthly_saving_goal_cents, reference
            )
        ),
        "emergency_fund_cents": profile.emergency_fund_cents,
        "recent_transactions": [
            transaction_payload(txn) for txn in recent_transactions(transactions)
        ],
    }


@app.get("/api/weekly-report")
def api_weekly_report(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    transactions = TransactionService(db, user_id).list()
    return asdict(compute_weekly_stats(transactions))


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    period = period_from_request(request)
    items = TransactionService(db, user_id).list(period)
    return {
        "period": {
            "slug": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
        },
        "items": [transaction_payload(txn) for txn in items],
    }


@app.post("/api/transactions", status_code=201)
def api_create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    reminders: ReminderService = Depends(get_reminders),
):
    service = TransactionService(db, user_id)
    try:
        txn = service.create(payload)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc

    alert = None
    try:
        alert = reminders.alert_if_budget_exceeded(
            txn, service.list(), BudgetService(db, user_id).list()
        )
    except WriteFailure as exc:
        logger.warning(f"budget_alert_failed: user_id={user_id} error={exc}")
    body = transaction_payload(txn)
    body["budget_alert"] = schedule_payload(alert) if alert else None
    return body


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return {"status": "deleted", "id": transaction_id}


@app.get("/api/budgets")
def api_budgets(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    return [budget_payload(b) for b in BudgetService(db, user_id).list()]


@app.put("/api/budgets")
def api_upsert_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        budget = BudgetService(db, user_id).upsert(payload)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return budget_payload(budget)


@app.delete("/api/budgets/{budget_id}")
def api_delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return {"status": "deleted", "id": budget_id}


@app.get("/api/profile")
def api_profile(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    try:
        profile = ProfileService(db, user_id).get_or_create()
    except WriteFailure as exc:
        raise http_error(exc) from exc
    return profile_payload(profile)


@app.patch("/api/profile")
def api_update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    reminders: ReminderService = Depends(get_reminders),
):
    try:
        profile = ProfileService(db, user_id).update(payload)
        reminder = reminders.sync_salary_reminder()
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    body = profile_payload(profile)
    body["salary_reminder"] = schedule_payload(reminder)
    return body


@app.put("/api/profile/notifications")
def api_update_notification_preferences(
    payload: NotificationPreferencesIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    reminders: ReminderService = Depends(get_reminders),
):
    try:
        profile = ProfileService(db, user_id).update_preferences(payload)
        results = reminders.sync_preferences()
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    body = profile_payload(profile)
    body["reminders"] = {key: schedule_payload(r) for key, r in results.items()}
    return body


@app.get("/api/emergency-fund")
def api_emergency_fund(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    service = EmergencyFundService(db, user_id)
    try:
        profile = service.profiles.get_or_create()
    except WriteFailure as exc:
        raise http_error(exc) from exc
    return {
        "balance_cents": profile.emergency_fund_cents,
        "available_to_deposit_cents": service.available_to_deposit(profile),
        "auto_invest_cents": profile.emergency_fund_auto_invest_cents,
    }


@app.post("/api/emergency-fund/deposit")
def api_emergency_fund_deposit(
    payload: AmountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        movement = EmergencyFundService(db, user_id).deposit(payload.amount_cents)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return asdict(movement)


@app.post("/api/emergency-fund/withdraw")
def api_emergency_fund_withdraw(
    payload: AmountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        movement = EmergencyFundService(db, user_id).withdraw(payload.amount_cents)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return asdict(movement)


@app.put("/api/emergency-fund/auto-invest")
def api_enable_auto_invest(
    payload: AmountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        profile = EmergencyFundService(db, user_id).enable_auto_invest(payload.amount_cents)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return profile_payload(profile)


@app.delete("/api/emergency-fund/auto-invest")
def api_disable_auto_invest(
    db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        profile = EmergencyFundService(db, user_id).disable_auto_invest()
    except WriteFailure as exc:
        raise http_error(exc) from exc
    return profile_payload(profile)


@app.get("/api/salary-day")
def api_salary_day(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    try:
        check = SalaryDayService(db, user_id).evaluate()
    except WriteFailure as exc:
        raise http_error(exc) from exc
    return asdict(check)


@app.post("/api/salary-day/confirm")
def api_confirm_salary(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    try:
        outcome = SalaryDayService(db, user_id).post_salary()
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return outcome_payload(outcome)


@app.get("/api/salary-postings/incomplete")
def api_incomplete_postings(
    db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    postings = SalaryDayService(db, user_id).incomplete_postings()
    return [posting_payload(p) for p in postings]


@app.post("/api/salary-postings/{posting_id}/resume")
def api_resume_posting(
    posting_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        outcome = SalaryDayService(db, user_id).resume(posting_id)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return outcome_payload(outcome)


@app.get("/api/notifications")
def api_notifications(notifications: NotificationScheduler = Depends(get_notifications)):
    return [
        {
            "id": record.id,
            "type": record.type,
            "cadence": record.cadence.value,
            "day_of_month": record.day_of_month,
            "weekday": record.weekday,
            "hour": record.hour,
            "minute": record.minute,
            "title": record.title,
            "body": record.body,
        }
        for record in notifications.list_scheduled()
    ]


@app.post("/api/notifications/budget-alerts/{category}")
def api_schedule_budget_alert(
    category: str,
    payload: Optional[BudgetAlertIn] = None,
    reminders: ReminderService = Depends(get_reminders),
):
    payload = payload or BudgetAlertIn()
    try:
        result = reminders.schedule_budget_alert(resolve_category(category), payload.threshold)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return schedule_payload(result)


@app.post("/api/notifications/savings-check-in")
def api_schedule_savings_check_in(
    payload: SavingsCheckInIn,
    reminders: ReminderService = Depends(get_reminders),
):
    try:
        result = reminders.schedule_savings_check_in(payload.day_of_month, payload.goal_cents)
    except (ValueError, WriteFailure) as exc:
        raise http_error(exc) from exc
    return schedule_payload(result)


@app.delete("/api/notifications/{notification_type}")
def api_cancel_notification(
    notification_type: str,
    notifications: NotificationScheduler = Depends(get_notifications),
):
    try:
        count = notifications.cancel_by_type(notification_type)
    except WriteFailure as exc:
        raise http_error(exc) from exc
    return {"status": "cancelled", "type": notification_type, "count": count}


@app.delete("/api/notifications")
def api_clear_notifications(
    notifications: NotificationScheduler = Depends(get_notifications),
):
    try:
        notifications.clear_all()
    except WriteFailure as exc:
        raise http_error(exc) from exc
    return {"status": "cleared"}
