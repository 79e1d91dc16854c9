import logging
import os
from datetime import date, datetime
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import create_engine

from budget_backend import repository
from budget_backend.balance_engine import (
    DEFAULT_PROJECTION_DAYS,
    EXPENSE,
    INCOME,
    Alert,
    BalanceAdjustment,
    BalanceSnapshot,
    PlannedExpense,
    ProjectionEvent,
    ProjectionPoint,
    RecurringItem,
)
from budget_backend.balance_service import BalanceService
from budget_backend.errors import BudgetError, InvalidBudgetInput, RecordNotFound, UserNotFound
from budget_backend.frequency import frequency_data_of, get_next_due_date, parse_frequency
from budget_backend.occurrence import calculate_current_month_amount
from budget_backend.planned_expenses import (
    overdue_planned_expenses,
    summarize_by_category,
    summarize_planned_expenses,
    upcoming_planned_expenses,
    validate_planned_date,
)
from budget_backend.project_budgets import ProjectBudget, ProjectBudgetService
from budget_backend.schema import metadata
from budget_backend.unexpected_expenses import (
    UnexpectedExpense,
    monthly_unexpected_totals,
    recent_unexpected_expenses,
    summarize_unexpected_by_category,
    summarize_unexpected_expenses,
    validate_category,
    validate_unexpected_date,
)

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./budget.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)


def current_time() -> datetime:
    return datetime.now()


balance_service = BalanceService(engine, current_time)
project_service = ProjectBudgetService(engine, current_time)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


@app.exception_handler(UserNotFound)
def handle_user_not_found(request: Request, exc: UserNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "User not found."})


@app.exception_handler(RecordNotFound)
def handle_record_not_found(request: Request, exc: RecordNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(BudgetError)
def handle_budget_error(request: Request, exc: BudgetError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(InvalidBudgetInput)
def handle_invalid_input(request: Request, exc: InvalidBudgetInput) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


class UserCreatePayload(BaseModel):
    name: str | None = None
    initial_balance: Decimal = Decimal("0")
    margin_pct: int = Field(0, ge=0, le=50)
    month_start_day: int = Field(1, ge=1, le=31)


class UserSettingsPayload(BaseModel):
    initial_balance: Decimal | None = None
    margin_pct: int | None = Field(None, ge=0, le=50)
    month_start_day: int | None = Field(None, ge=1, le=31)


class UserSettingsResponse(BaseModel):
    id: int
    initial_balance: Decimal
    margin_pct: int
    month_start_day: int


class RecurringItemPayload(BaseModel):
    label: str
    amount: Decimal
    day_of_month: int = Field(..., ge=1, le=31)
    frequency: str = "MONTHLY"
    frequency_data: dict | None = None
    category: str | None = None

    @classmethod
    def validate_payload(cls, payload: "RecurringItemPayload") -> "RecurringItemPayload":
        payload.label = payload.label.strip()
        if not payload.label:
            raise ValueError("Label required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class RecurringItemUpdatePayload(BaseModel):
    label: str | None = None
    amount: Decimal | None = None
    day_of_month: int | None = Field(None, ge=1, le=31)
    frequency: str | None = None
    frequency_data: dict | None = None
    category: str | None = None


class RecurringItemResponse(BaseModel):
    id: int
    kind: str
    label: str
    amount: Decimal
    day_of_month: int
    frequency: str
    frequency_data: dict | None = None
    category: str | None = None
    current_month_amount: Decimal
    next_due_date: date | None = None


class PlannedExpensePayload(BaseModel):
    label: str
    amount: Decimal
    date: date
    category: str | None = None


class PlannedExpenseUpdatePayload(BaseModel):
    label: str | None = None
    amount: Decimal | None = None
    planned_date: date | None = Field(None, alias="date")
    spent: bool | None = None
    category: str | None = None


class MarkAsSpentPayload(BaseModel):
    spent: bool


class PlannedExpenseResponse(BaseModel):
    id: int
    label: str
    amount: Decimal
    date: date
    spent: bool
    category: str | None = None


class PlannedTotalsResponse(BaseModel):
    count: int
    amount: Decimal


class PlannedStatisticsResponse(BaseModel):
    total: PlannedTotalsResponse
    spent: PlannedTotalsResponse
    unspent: PlannedTotalsResponse


class UpcomingPlannedExpenseResponse(PlannedExpenseResponse):
    days_until: int


class OverduePlannedExpenseResponse(PlannedExpenseResponse):
    days_past_due: int


class CategoryTotalResponse(BaseModel):
    category: str
    total_amount: Decimal
    count: int


class UnexpectedExpensePayload(BaseModel):
    label: str
    amount: Decimal
    date: date
    category: str | None = None
    description: str | None = None


class UnexpectedExpenseUpdatePayload(BaseModel):
    label: str | None = None
    amount: Decimal | None = None
    expense_date: date | None = Field(None, alias="date")
    category: str | None = None
    description: str | None = None


class UnexpectedExpenseResponse(BaseModel):
    id: int
    label: str
    amount: Decimal
    date: date
    category: str
    description: str | None = None


class UnexpectedStatisticsResponse(BaseModel):
    total: PlannedTotalsResponse
    average: Decimal


class MonthlyUnexpectedTotalResponse(BaseModel):
    month: str
    count: int
    total_amount: Decimal


class BalanceAdjustmentPayload(BaseModel):
    amount: Decimal
    description: str
    type: str | None = None


class BalanceAdjustmentResponse(BaseModel):
    id: int | None = None
    amount: Decimal
    description: str
    date: datetime
    type: str


class BalanceResponse(BaseModel):
    current_balance: Decimal
    total_income: Decimal
    total_expenses: Decimal
    total_planned: Decimal
    projected_balance: Decimal
    margin_amount: Decimal
    adjustments: list[BalanceAdjustmentResponse] = []


class ProjectionEventResponse(BaseModel):
    label: str
    amount: Decimal


class ProjectionEventsResponse(BaseModel):
    incomes: list[ProjectionEventResponse]
    expenses: list[ProjectionEventResponse]
    planned_expenses: list[ProjectionEventResponse]


class ProjectionPointResponse(BaseModel):
    date: date
    balance: Decimal
    day: int
    events: ProjectionEventsResponse | None = None


class MonthlyResetResponse(BaseModel):
    new_balance: BalanceResponse
    reset_date: datetime
    previous_balance: Decimal
    monthly_income: Decimal
    monthly_expenses: Decimal
    net_change: Decimal


class MonthlyResetStatusResponse(BaseModel):
    last_reset: datetime | None = None
    next_reset: date
    is_reset_due: bool
    days_since_last_reset: int
    month_start_day: int


class AlertResponse(BaseModel):
    type: str
    title: str
    message: str
    amount: Decimal | None = None


class MonthlyTrendResponse(BaseModel):
    month: str
    income: Decimal
    expenses: Decimal
    balance: Decimal
    planned: Decimal


class BalanceSummaryResponse(BaseModel):
    balance: BalanceResponse
    alerts: list[AlertResponse]
    calculated_at: datetime


class ProjectBudgetPayload(BaseModel):
    name: str
    target_amount: Decimal
    description: str | None = None
    target_date: date | None = None


class ProjectBudgetUpdatePayload(BaseModel):
    name: str | None = None
    target_amount: Decimal | None = None
    description: str | None = None
    target_date: date | None = None


class ContributionPayload(BaseModel):
    amount: Decimal
    description: str | None = None


class ContributionResponse(BaseModel):
    id: int | None = None
    amount: Decimal
    description: str | None = None
    created_at: datetime


class ProjectBudgetResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    target_amount: Decimal
    current_amount: Decimal
    target_date: date | None = None
    status: str
    contributions: list[ContributionResponse]


class ProjectBudgetStatsResponse(BaseModel):
    total_budgets: int
    active_budgets: int
    completed_budgets: int
    paused_budgets: int
    total_target_amount: Decimal
    total_current_amount: Decimal
    total_contributions: int
    completion_rate: Decimal


def get_user_id(x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        if not repository.user_exists(conn, user_id):
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def settings_response(user_id: int, settings) -> UserSettingsResponse:
    return UserSettingsResponse(
        id=user_id,
        initial_balance=settings.initial_balance,
        margin_pct=settings.margin_pct,
        month_start_day=settings.month_start_day,
    )


def recurring_item_response(item: RecurringItem, today: date) -> RecurringItemResponse:
    return RecurringItemResponse(
        id=item.id,
        kind=item.kind,
        label=item.label,
        amount=item.amount,
        day_of_month=item.day_of_month,
        frequency=item.rule.name,
        frequency_data=frequency_data_of(item.rule),
        category=item.category,
        current_month_amount=calculate_current_month_amount(
            item.amount, item.rule, item.day_of_month, today
        ),
        next_due_date=get_next_due_date(item.rule, item.day_of_month, today),
    )


def planned_expense_response(expense: PlannedExpense) -> PlannedExpenseResponse:
    return PlannedExpenseResponse(
        id=expense.id,
        label=expense.label,
        amount=expense.amount,
        date=expense.date,
        spent=expense.spent,
        category=expense.category,
    )


def unexpected_expense_response(expense: UnexpectedExpense) -> UnexpectedExpenseResponse:
    return UnexpectedExpenseResponse(
        id=expense.id,
        label=expense.label,
        amount=expense.amount,
        date=expense.date,
        category=expense.category,
        description=expense.description,
    )


def adjustment_response(adjustment: BalanceAdjustment) -> BalanceAdjustmentResponse:
    return BalanceAdjustmentResponse(
        id=adjustment.id,
        amount=adjustment.amount,
        description=adjustment.description,
        date=adjustment.created_at,
        type=adjustment.type,
    )


def balance_response(snapshot: BalanceSnapshot) -> BalanceResponse:
    return BalanceResponse(
        current_balance=snapshot.current_balance,
        total_income=snapshot.total_income,
        total_expenses=snapshot.total_expenses,
        total_planned=snapshot.total_planned,
        projected_balance=snapshot.projected_balance,
        margin_amount=snapshot.margin_amount,
        adjustments=[adjustment_response(adjustment) for adjustment in snapshot.adjustments],
    )


def event_responses(events: tuple[ProjectionEvent, ...]) -> list[ProjectionEventResponse]:
    return [ProjectionEventResponse(label=event.label, amount=event.amount) for event in events]


def projection_point_response(point: ProjectionPoint) -> ProjectionPointResponse:
    events = None
    if point.events is not None:
        events = ProjectionEventsResponse(
            incomes=event_responses(point.events.incomes),
            expenses=event_responses(point.events.expenses),
            planned_expenses=event_responses(point.events.planned_expenses),
        )
    return ProjectionPointResponse(
        date=point.date,
        balance=point.balance,
        day=point.day,
        events=events,
    )


def alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse(
        type=alert.type,
        title=alert.title,
        message=alert.message,
        amount=alert.amount,
    )


def project_response(project: ProjectBudget) -> ProjectBudgetResponse:
    return ProjectBudgetResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        target_amount=project.target_amount,
        current_amount=project.current_amount,
        target_date=project.target_date,
        status=project.status,
        contributions=[
            ContributionResponse(
                id=contribution.id,
                amount=contribution.amount,
                description=contribution.description,
                created_at=contribution.created_at,
            )
            for contribution in project.contributions
        ],
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/users", response_model=UserSettingsResponse)
def create_user(payload: UserCreatePayload) -> UserSettingsResponse:
    with engine.begin() as conn:
        user_id = repository.create_user(
            conn,
            name=payload.name.strip() if payload.name else None,
            initial_balance=payload.initial_balance,
            margin_pct=payload.margin_pct,
            month_start_day=payload.month_start_day,
        )
        settings = repository.fetch_user_settings(conn, user_id)
    logger.info("User %s created", user_id)
    return settings_response(user_id, settings)


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        settings = repository.fetch_user_settings(conn, user_id)
    return settings_response(user_id, settings)


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude_none=True)
    with engine.begin() as conn:
        settings = repository.update_user_settings(conn, user_id, values)
    return settings_response(user_id, settings)


def list_recurring_items(kind: str, x_user_id: str | None) -> list[RecurringItemResponse]:
    user_id = get_user_id(x_user_id)
    today = current_time().date()
    with engine.begin() as conn:
        items = repository.fetch_recurring_items(conn, user_id, kind)
    return [recurring_item_response(item, today) for item in items]


def create_recurring_item(
    kind: str, payload: RecurringItemPayload, x_user_id: str | None
) -> RecurringItemResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = RecurringItemPayload.validate_payload(payload)
        rule = parse_frequency(payload.frequency, payload.frequency_data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        item = repository.insert_recurring_item(
            conn,
            user_id,
            kind,
            payload.label,
            payload.amount,
            payload.day_of_month,
            rule,
            payload.category,
        )
    logger.info("Recurring %s %s created for user %s", kind, item.id, user_id)
    return recurring_item_response(item, current_time().date())


def update_recurring_item(
    kind: str,
    item_id: int,
    payload: RecurringItemUpdatePayload,
    x_user_id: str | None,
) -> RecurringItemResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude_none=True, exclude={"frequency", "frequency_data"})
    if "amount" in values and values["amount"] <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero.")
    with engine.begin() as conn:
        if payload.frequency is not None or payload.frequency_data is not None:
            current = repository.fetch_recurring_item(conn, user_id, kind, item_id)
            try:
                values["rule"] = parse_frequency(
                    payload.frequency or current.rule.name,
                    payload.frequency_data,
                )
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        item = repository.update_recurring_item(conn, user_id, kind, item_id, values)
    logger.info("Recurring %s %s updated for user %s", kind, item_id, user_id)
    return recurring_item_response(item, current_time().date())


def delete_recurring_item(kind: str, item_id: int, x_user_id: str | None) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        repository.delete_recurring_item(conn, user_id, kind, item_id)
    logger.info("Recurring %s %s deleted for user %s", kind, item_id, user_id)
    return {"status": "deleted"}


@app.get("/incomes", response_model=list[RecurringItemResponse])
def list_incomes(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[RecurringItemResponse]:
    return list_recurring_items(INCOME, x_user_id)


@app.post("/incomes", response_model=RecurringItemResponse)
def create_income(
    payload: RecurringItemPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringItemResponse:
    return create_recurring_item(INCOME, payload, x_user_id)


@app.put("/incomes/{item_id}", response_model=RecurringItemResponse)
def update_income(
    item_id: int,
    payload: RecurringItemUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringItemResponse:
    return update_recurring_item(INCOME, item_id, payload, x_user_id)


@app.delete("/incomes/{item_id}")
def delete_income(item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    return delete_recurring_item(INCOME, item_id, x_user_id)


@app.get("/expenses", response_model=list[RecurringItemResponse])
def list_expenses(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[RecurringItemResponse]:
    return list_recurring_items(EXPENSE, x_user_id)


@app.post("/expenses", response_model=RecurringItemResponse)
def create_expense(
    payload: RecurringItemPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringItemResponse:
    return create_recurring_item(EXPENSE, payload, x_user_id)


@app.put("/expenses/{item_id}", response_model=RecurringItemResponse)
def update_expense(
    item_id: int,
    payload: RecurringItemUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RecurringItemResponse:
    return update_recurring_item(EXPENSE, item_id, payload, x_user_id)


@app.delete("/expenses/{item_id}")
def delete_expense(item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    return delete_recurring_item(EXPENSE, item_id, x_user_id)


@app.get("/planned-expenses", response_model=list[PlannedExpenseResponse])
def list_planned_expenses(
    spent: bool | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[PlannedExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_planned_expenses(conn, user_id, spent=spent)
    return [planned_expense_response(expense) for expense in expenses]


@app.post("/planned-expenses", response_model=PlannedExpenseResponse)
def create_planned_expense(
    payload: PlannedExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PlannedExpenseResponse:
    user_id = get_user_id(x_user_id)
    label = payload.label.strip()
    if not label:
        raise HTTPException(status_code=400, detail="Label required.")
    if payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero.")
    validate_planned_date(payload.date, current_time().date())
    with engine.begin() as conn:
        expense = repository.insert_planned_expense(
            conn, user_id, label, payload.amount, payload.date, payload.category
        )
    logger.info("Planned expense %s created for user %s", expense.id, user_id)
    return planned_expense_response(expense)


@app.get("/planned-expenses/statistics", response_model=PlannedStatisticsResponse)
def planned_expense_statistics(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PlannedStatisticsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_planned_expenses(conn, user_id)
    stats = summarize_planned_expenses(expenses)
    return PlannedStatisticsResponse(
        total=PlannedTotalsResponse(count=stats.total.count, amount=stats.total.amount),
        spent=PlannedTotalsResponse(count=stats.spent.count, amount=stats.spent.amount),
        unspent=PlannedTotalsResponse(count=stats.unspent.count, amount=stats.unspent.amount),
    )


@app.get("/planned-expenses/upcoming", response_model=list[UpcomingPlannedExpenseResponse])
def upcoming_planned(
    days: int = Query(30, ge=0),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[UpcomingPlannedExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_planned_expenses(conn, user_id, spent=False)
    return [
        UpcomingPlannedExpenseResponse(
            **planned_expense_response(entry.expense).model_dump(),
            days_until=entry.days_until,
        )
        for entry in upcoming_planned_expenses(expenses, current_time().date(), days)
    ]


@app.get("/planned-expenses/overdue", response_model=list[OverduePlannedExpenseResponse])
def overdue_planned(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[OverduePlannedExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_planned_expenses(conn, user_id, spent=False)
    return [
        OverduePlannedExpenseResponse(
            **planned_expense_response(entry.expense).model_dump(),
            days_past_due=entry.days_past_due,
        )
        for entry in overdue_planned_expenses(expenses, current_time().date())
    ]


@app.get("/planned-expenses/by-category", response_model=list[CategoryTotalResponse])
def planned_by_category(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryTotalResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_planned_expenses(conn, user_id)
    return [
        CategoryTotalResponse(
            category=entry.category,
            total_amount=entry.total_amount,
            count=entry.count,
        )
        for entry in summarize_by_category(expenses)
    ]


@app.put("/planned-expenses/{expense_id}", response_model=PlannedExpenseResponse)
def update_planned_expense(
    expense_id: int,
    payload: PlannedExpenseUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PlannedExpenseResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude_none=True, by_alias=True)
    if "date" in values:
        validate_planned_date(values["date"], current_time().date())
    if "amount" in values and values["amount"] <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero.")
    with engine.begin() as conn:
        expense = repository.update_planned_expense(conn, user_id, expense_id, values)
    return planned_expense_response(expense)


@app.patch("/planned-expenses/{expense_id}/spent", response_model=PlannedExpenseResponse)
def mark_planned_expense_spent(
    expense_id: int,
    payload: MarkAsSpentPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PlannedExpenseResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expense = repository.update_planned_expense(
            conn, user_id, expense_id, {"spent": payload.spent}
        )
    logger.info(
        "Planned expense %s marked as %s for user %s",
        expense_id,
        "spent" if payload.spent else "unspent",
        user_id,
    )
    return planned_expense_response(expense)


@app.delete("/planned-expenses/{expense_id}")
def delete_planned_expense(
    expense_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        repository.delete_planned_expense(conn, user_id, expense_id)
    return {"status": "deleted"}


@app.get("/unexpected", response_model=list[UnexpectedExpenseResponse])
def list_unexpected_expenses(
    year: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[UnexpectedExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_unexpected_expenses(conn, user_id, year=year)
    return [unexpected_expense_response(expense) for expense in expenses]


@app.post("/unexpected", response_model=UnexpectedExpenseResponse)
def create_unexpected_expense(
    payload: UnexpectedExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UnexpectedExpenseResponse:
    user_id = get_user_id(x_user_id)
    label = payload.label.strip()
    if not label:
        raise HTTPException(status_code=400, detail="Label required.")
    if payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero.")
    validate_unexpected_date(payload.date, current_time().date())
    category = validate_category(payload.category)
    with engine.begin() as conn:
        expense = repository.insert_unexpected_expense(
            conn, user_id, label, payload.amount, payload.date, category, payload.description
        )
    logger.info("Unexpected expense %s recorded for user %s", expense.id, user_id)
    return unexpected_expense_response(expense)


@app.get("/unexpected/statistics", response_model=UnexpectedStatisticsResponse)
def unexpected_expense_statistics(
    year: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UnexpectedStatisticsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_unexpected_expenses(conn, user_id, year=year)
    stats = summarize_unexpected_expenses(expenses)
    return UnexpectedStatisticsResponse(
        total=PlannedTotalsResponse(count=stats.total.count, amount=stats.total.amount),
        average=stats.average,
    )


@app.get("/unexpected/by-category", response_model=list[CategoryTotalResponse])
def unexpected_by_category(
    year: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryTotalResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_unexpected_expenses(conn, user_id, year=year)
    return [
        CategoryTotalResponse(
            category=entry.category,
            total_amount=entry.total_amount,
            count=entry.count,
        )
        for entry in summarize_unexpected_by_category(expenses)
    ]


@app.get("/unexpected/recent", response_model=list[UnexpectedExpenseResponse])
def recent_unexpected(
    days: int = Query(30, ge=0),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[UnexpectedExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_unexpected_expenses(conn, user_id)
    return [
        unexpected_expense_response(expense)
        for expense in recent_unexpected_expenses(expenses, current_time().date(), days)
    ]


@app.get("/unexpected/monthly-data", response_model=list[MonthlyUnexpectedTotalResponse])
def unexpected_monthly_data(
    months: int = Query(12, ge=1),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[MonthlyUnexpectedTotalResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expenses = repository.fetch_unexpected_expenses(conn, user_id)
    return [
        MonthlyUnexpectedTotalResponse(
            month=entry.month,
            count=entry.count,
            total_amount=entry.total_amount,
        )
        for entry in monthly_unexpected_totals(expenses, current_time().date(), months)
    ]


@app.get("/unexpected/{expense_id}", response_model=UnexpectedExpenseResponse)
def get_unexpected_expense(
    expense_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> UnexpectedExpenseResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expense = repository.fetch_unexpected_expense(conn, user_id, expense_id)
    return unexpected_expense_response(expense)


@app.patch("/unexpected/{expense_id}", response_model=UnexpectedExpenseResponse)
def update_unexpected_expense(
    expense_id: int,
    payload: UnexpectedExpenseUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UnexpectedExpenseResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude_none=True, by_alias=True)
    if "date" in values:
        validate_unexpected_date(values["date"], current_time().date())
    if "amount" in values and values["amount"] <= 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero.")
    if "category" in values:
        values["category"] = validate_category(values["category"])
    with engine.begin() as conn:
        expense = repository.update_unexpected_expense(conn, user_id, expense_id, values)
    return unexpected_expense_response(expense)


@app.delete("/unexpected/{expense_id}")
def delete_unexpected_expense(
    expense_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        repository.delete_unexpected_expense(conn, user_id, expense_id)
    return {"status": "deleted"}


@app.get("/balance", response_model=BalanceResponse)
def get_balance(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BalanceResponse:
    user_id = get_user_id(x_user_id)
    return balance_response(balance_service.calculate_balance(user_id, month))


@app.post("/balance/adjust", response_model=BalanceResponse)
def adjust_balance(
    payload: BalanceAdjustmentPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BalanceResponse:
    user_id = get_user_id(x_user_id)
    description = payload.description.strip()
    if not description:
        raise HTTPException(status_code=400, detail="Description required.")
    snapshot = balance_service.adjust_balance(
        user_id, payload.amount, description, payload.type
    )
    return balance_response(snapshot)


@app.get("/balance/adjustments", response_model=list[BalanceAdjustmentResponse])
def list_adjustments(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[BalanceAdjustmentResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        adjustments = repository.fetch_balance_adjustments(conn, user_id)
    return [adjustment_response(adjustment) for adjustment in adjustments]


@app.get(
    "/balance/projection",
    response_model=list[ProjectionPointResponse],
    response_model_exclude_none=True,
)
def get_projection(
    days: int = Query(DEFAULT_PROJECTION_DAYS, ge=1, le=366),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ProjectionPointResponse]:
    user_id = get_user_id(x_user_id)
    points = balance_service.calculate_projection(user_id, days)
    return [projection_point_response(point) for point in points]


@app.post("/balance/monthly-reset", response_model=MonthlyResetResponse)
def monthly_reset(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlyResetResponse:
    user_id = get_user_id(x_user_id)
    result = balance_service.trigger_monthly_reset(user_id)
    return MonthlyResetResponse(
        new_balance=balance_response(result.new_balance),
        reset_date=result.reset_date,
        previous_balance=result.previous_balance,
        monthly_income=result.monthly_income,
        monthly_expenses=result.monthly_expenses,
        net_change=result.net_change,
    )


@app.get("/balance/monthly-reset/status", response_model=MonthlyResetStatusResponse)
def monthly_reset_status(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlyResetStatusResponse:
    user_id = get_user_id(x_user_id)
    status = balance_service.get_monthly_reset_status(user_id)
    return MonthlyResetStatusResponse(
        last_reset=status.last_reset,
        next_reset=status.next_reset,
        is_reset_due=status.is_reset_due,
        days_since_last_reset=status.days_since_last_reset,
        month_start_day=status.month_start_day,
    )


@app.get("/balance/alerts", response_model=list[AlertResponse])
def get_alerts(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[AlertResponse]:
    user_id = get_user_id(x_user_id)
    return [alert_response(alert) for alert in balance_service.get_alerts(user_id)]


@app.get("/balance/trends", response_model=list[MonthlyTrendResponse])
def get_trends(
    months: int = Query(6, ge=1, le=24),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[MonthlyTrendResponse]:
    user_id = get_user_id(x_user_id)
    return [
        MonthlyTrendResponse(
            month=trend.month,
            income=trend.income,
            expenses=trend.expenses,
            balance=trend.balance,
            planned=trend.planned,
        )
        for trend in balance_service.get_monthly_trends(user_id, months)
    ]


@app.get("/balance/summary", response_model=BalanceSummaryResponse)
def get_summary(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BalanceSummaryResponse:
    user_id = get_user_id(x_user_id)
    summary = balance_service.get_summary(user_id)
    return BalanceSummaryResponse(
        balance=balance_response(summary.balance),
        alerts=[alert_response(alert) for alert in summary.alerts],
        calculated_at=summary.calculated_at,
    )


@app.get("/project-budgets", response_model=list[ProjectBudgetResponse])
def list_project_budgets(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ProjectBudgetResponse]:
    user_id = get_user_id(x_user_id)
    return [project_response(project) for project in project_service.list_projects(user_id)]


@app.post("/project-budgets", response_model=ProjectBudgetResponse)
def create_project_budget(
    payload: ProjectBudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    project = project_service.create_project(
        user_id,
        payload.name,
        payload.target_amount,
        description=payload.description,
        target_date=payload.target_date,
    )
    return project_response(project)


@app.get("/project-budgets/stats", response_model=ProjectBudgetStatsResponse)
def project_budget_stats(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProjectBudgetStatsResponse:
    user_id = get_user_id(x_user_id)
    stats = project_service.get_stats(user_id)
    return ProjectBudgetStatsResponse(
        total_budgets=stats.total_budgets,
        active_budgets=stats.active_budgets,
        completed_budgets=stats.completed_budgets,
        paused_budgets=stats.paused_budgets,
        total_target_amount=stats.total_target_amount,
        total_current_amount=stats.total_current_amount,
        total_contributions=stats.total_contributions,
        completion_rate=stats.completion_rate,
    )


@app.get("/project-budgets/{project_id}", response_model=ProjectBudgetResponse)
def get_project_budget(
    project_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    return project_response(project_service.get_project(user_id, project_id))


@app.put("/project-budgets/{project_id}", response_model=ProjectBudgetResponse)
def update_project_budget(
    project_id: int,
    payload: ProjectBudgetUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    values = payload.model_dump(exclude_none=True)
    if "target_amount" in values and values["target_amount"] <= 0:
        raise HTTPException(status_code=400, detail="Target amount must be greater than zero.")
    return project_response(project_service.update_project(user_id, project_id, values))


@app.delete("/project-budgets/{project_id}")
def delete_project_budget(
    project_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    project_service.remove_project(user_id, project_id)
    return {"status": "deleted"}


@app.post("/project-budgets/{project_id}/contributions", response_model=ProjectBudgetResponse)
def add_project_contribution(
    project_id: int,
    payload: ContributionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    project = project_service.add_contribution(
        user_id, project_id, payload.amount, payload.description
    )
    return project_response(project)


@app.post("/project-budgets/{project_id}/allocate", response_model=ProjectBudgetResponse)
def allocate_to_project(
    project_id: int,
    payload: ContributionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    project = project_service.allocate_monthly_amount(
        user_id, project_id, payload.amount, payload.description
    )
    return project_response(project)


@app.post("/project-budgets/{project_id}/complete", response_model=ProjectBudgetResponse)
def complete_project_budget(
    project_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    return project_response(project_service.complete(user_id, project_id))


@app.post("/project-budgets/{project_id}/pause", response_model=ProjectBudgetResponse)
def pause_project_budget(
    project_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    return project_response(project_service.pause(user_id, project_id))


@app.post("/project-budgets/{project_id}/resume", response_model=ProjectBudgetResponse)
def resume_project_budget(
    project_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ProjectBudgetResponse:
    user_id = get_user_id(x_user_id)
    return project_response(project_service.resume(user_id, project_id))
