from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from budget_backend.frequency import FrequencyRule, Monthly, clamp_day, shift_year_month
from budget_backend.occurrence import (
    calculate_current_month_amount,
    has_occurred_this_month,
    occurs_on,
)

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

INCOME = "income"
EXPENSE = "expense"
SUPPORTED_KINDS = {INCOME, EXPENSE}

MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
CORRECTION = "CORRECTION"
MONTHLY_RESET = "MONTHLY_RESET"
ADJUSTMENT_TYPES = {MANUAL_ADJUSTMENT, CORRECTION, MONTHLY_RESET}

DEFAULT_PROJECTION_DAYS = 30
NEVER_RESET_DAYS = 999
RESET_OVERDUE_DAYS = 30


@dataclass(frozen=True)
class RecurringItem:
    amount: Decimal
    day_of_month: int
    rule: FrequencyRule = Monthly()
    kind: str = INCOME
    label: str = ""
    category: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class PlannedExpense:
    amount: Decimal
    date: date
    spent: bool = False
    label: str = ""
    category: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class BalanceAdjustment:
    amount: Decimal
    description: str
    type: str
    created_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class UserBudgetSettings:
    initial_balance: Decimal
    margin_pct: int = 0
    month_start_day: int = 1


@dataclass(frozen=True)
class BalanceSnapshot:
    current_balance: Decimal
    total_income: Decimal
    total_expenses: Decimal
    total_planned: Decimal
    projected_balance: Decimal
    margin_amount: Decimal
    adjustments: Tuple[BalanceAdjustment, ...] = ()


@dataclass(frozen=True)
class ProjectionEvent:
    label: str
    amount: Decimal


@dataclass(frozen=True)
class ProjectionEvents:
    incomes: Tuple[ProjectionEvent, ...] = ()
    expenses: Tuple[ProjectionEvent, ...] = ()
    planned_expenses: Tuple[ProjectionEvent, ...] = ()


@dataclass(frozen=True)
class ProjectionPoint:
    date: date
    balance: Decimal
    day: int
    events: Optional[ProjectionEvents] = None


@dataclass(frozen=True)
class ResetStatus:
    last_reset: Optional[datetime]
    next_reset: date
    is_reset_due: bool
    days_since_last_reset: int
    month_start_day: int


@dataclass(frozen=True)
class Alert:
    type: str
    title: str
    message: str
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class MonthlyTrend:
    month: str
    income: Decimal
    expenses: Decimal
    balance: Decimal
    planned: Decimal


def aggregate_balance(
    settings: UserBudgetSettings,
    incomes: Iterable[RecurringItem],
    expenses: Iterable[RecurringItem],
    planned_expenses: Iterable[PlannedExpense],
    adjustment_total: Decimal,
    today: date,
    adjustments: Sequence[BalanceAdjustment] = (),
) -> BalanceSnapshot:
    """Compute the current balance snapshot of a user.

    ``adjustment_total`` is the sum of every non-reset adjustment of the
    ledger; ``adjustments`` is only the list shown alongside the snapshot.
    """
    balance = _coerce_amount(settings.initial_balance) + _coerce_amount(adjustment_total)

    total_income = ZERO
    for item in incomes:
        contribution = calculate_current_month_amount(
            item.amount, item.rule, item.day_of_month, today
        )
        balance += contribution
        total_income += contribution

    total_expenses = ZERO
    for item in expenses:
        contribution = calculate_current_month_amount(
            item.amount, item.rule, item.day_of_month, today
        )
        balance -= contribution
        total_expenses += contribution

    total_planned = ZERO
    for expense in planned_expenses:
        amount = _coerce_amount(expense.amount)
        total_planned += amount
        if not expense.spent and expense.date <= today:
            balance -= amount

    margin_amount = balance * Decimal(settings.margin_pct) / HUNDRED
    adjusted_balance = balance - margin_amount

    return BalanceSnapshot(
        current_balance=round_money(adjusted_balance),
        total_income=round_money(total_income),
        total_expenses=round_money(total_expenses),
        total_planned=round_money(total_planned),
        projected_balance=round_money(adjusted_balance),
        margin_amount=round_money(margin_amount),
        adjustments=tuple(adjustments),
    )


def compute_base_balance(
    settings: UserBudgetSettings,
    incomes: Iterable[RecurringItem],
    expenses: Iterable[RecurringItem],
    planned_expenses: Iterable[PlannedExpense],
    adjustment_total: Decimal,
    today: date,
) -> Decimal:
    """Return the unrounded balance at the end of ``today``.

    Recurring items due this month whose day has come, and unspent planned
    expenses dated up to today, are already booked.
    """
    balance = _coerce_amount(settings.initial_balance) + _coerce_amount(adjustment_total)
    for item in incomes:
        if has_occurred_this_month(item.rule, item.day_of_month, today):
            balance += _coerce_amount(item.amount)
    for item in expenses:
        if has_occurred_this_month(item.rule, item.day_of_month, today):
            balance -= _coerce_amount(item.amount)
    for expense in planned_expenses:
        if not expense.spent and expense.date <= today:
            balance -= _coerce_amount(expense.amount)
    return balance


def build_projection(
    base_balance: Decimal,
    incomes: Sequence[RecurringItem],
    expenses: Sequence[RecurringItem],
    planned_expenses: Sequence[PlannedExpense],
    today: date,
    days: int = DEFAULT_PROJECTION_DAYS,
) -> List[ProjectionPoint]:
    if days < 1:
        raise ValueError("days must be at least 1.")

    running_balance = _coerce_amount(base_balance)
    points: List[ProjectionPoint] = []
    for offset in range(days):
        projection_date = today + timedelta(days=offset)
        day_incomes = _items_firing_on(incomes, projection_date)
        day_expenses = _items_firing_on(expenses, projection_date)
        day_planned = [
            expense
            for expense in planned_expenses
            if not expense.spent and expense.date == projection_date
        ]

        # Today's events are part of the base balance already.
        if offset > 0:
            for item in day_incomes:
                running_balance += _coerce_amount(item.amount)
            for item in day_expenses:
                running_balance -= _coerce_amount(item.amount)
            for expense in day_planned:
                running_balance -= _coerce_amount(expense.amount)

        events = None
        if day_incomes or day_expenses or day_planned:
            events = ProjectionEvents(
                incomes=_events_for(day_incomes),
                expenses=_events_for(day_expenses),
                planned_expenses=_events_for(day_planned),
            )
        points.append(
            ProjectionPoint(
                date=projection_date,
                balance=round_money(running_balance),
                day=offset,
                events=events,
            )
        )
    return points


def sum_recurring_amounts(items: Iterable[RecurringItem]) -> Decimal:
    return sum((_coerce_amount(item.amount) for item in items), ZERO)


def normalize_adjustment_type(value: str | None) -> str:
    if not value:
        return MANUAL_ADJUSTMENT
    normalized = value.strip().upper()
    if normalized in ADJUSTMENT_TYPES:
        return normalized
    return MANUAL_ADJUSTMENT


def build_reset_status(
    month_start_day: int | None,
    last_reset_at: datetime | None,
    now: datetime,
) -> ResetStatus:
    start_day = month_start_day or 1
    today = now.date()
    if today.day >= start_day:
        year, month = shift_year_month(today.year, today.month, 1)
        next_reset = clamp_day(year, month, start_day)
    else:
        next_reset = clamp_day(today.year, today.month, start_day)

    if last_reset_at is None:
        days_since_last_reset = NEVER_RESET_DAYS
    else:
        days_since_last_reset = (now - last_reset_at).days

    return ResetStatus(
        last_reset=last_reset_at,
        next_reset=next_reset,
        is_reset_due=days_since_last_reset > RESET_OVERDUE_DAYS or today.day >= start_day,
        days_since_last_reset=days_since_last_reset,
        month_start_day=start_day,
    )


def build_alerts(snapshot: BalanceSnapshot) -> List[Alert]:
    alerts: List[Alert] = []
    if snapshot.current_balance < ZERO:
        alerts.append(
            Alert(
                type="error",
                title="Negative balance",
                message=(
                    f"Your current balance is {snapshot.current_balance}. "
                    "Reduce your expenses or increase your incomes."
                ),
                amount=snapshot.current_balance,
            )
        )
    return alerts


def build_monthly_trends(
    monthly_income: Decimal,
    monthly_expenses: Decimal,
    planned_expenses: Iterable[PlannedExpense],
    today: date,
    months: int = 6,
) -> List[MonthlyTrend]:
    """Repeat today's recurring totals over the last ``months`` months.

    Only the planned expenses differ per month; there is no stored history
    of recurring items to replay.
    """
    planned_expenses = [expense for expense in planned_expenses if not expense.spent]
    trends: List[MonthlyTrend] = []
    for offset in range(months):
        year, month = shift_year_month(today.year, today.month, -offset)
        planned = sum(
            (
                _coerce_amount(expense.amount)
                for expense in planned_expenses
                if expense.date.year == year and expense.date.month == month
            ),
            ZERO,
        )
        balance = monthly_income - monthly_expenses - planned
        trends.insert(
            0,
            MonthlyTrend(
                month=f"{year:04d}-{month:02d}",
                income=round_money(monthly_income),
                expenses=round_money(monthly_expenses),
                balance=round_money(balance),
                planned=round_money(planned),
            ),
        )
    return trends


def round_money(value: Decimal) -> Decimal:
    return _coerce_amount(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _items_firing_on(items: Iterable[RecurringItem], target: date) -> List[RecurringItem]:
    return [item for item in items if occurs_on(item.rule, item.day_of_month, target)]


def _events_for(entries: Iterable[RecurringItem | PlannedExpense]) -> Tuple[ProjectionEvent, ...]:
    return tuple(
        ProjectionEvent(label=entry.label, amount=_coerce_amount(entry.amount))
        for entry in entries
    )


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
