from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from budget_backend.errors import InvalidBudgetInput, UnexpectedExpenseInFuture
from budget_backend.frequency import shift_year_month
from budget_backend.planned_expenses import CategoryTotal, PlannedTotals

ZERO = Decimal("0")
CENT = Decimal("0.01")

DEFAULT_CATEGORY = "other"
UNEXPECTED_EXPENSE_CATEGORIES = (
    "medical",
    "car_repair",
    "home_repair",
    "legal",
    "emergency",
    "technology",
    "family",
    "work",
    DEFAULT_CATEGORY,
)
RECENT_DAYS = 30
RECENT_LIMIT = 10
MONTHLY_WINDOW = 12


@dataclass(frozen=True)
class UnexpectedExpense:
    amount: Decimal
    date: date
    label: str = ""
    category: str = DEFAULT_CATEGORY
    description: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class UnexpectedStatistics:
    total: PlannedTotals
    average: Decimal


@dataclass(frozen=True)
class MonthlyUnexpectedTotal:
    month: str
    count: int
    total_amount: Decimal


def validate_unexpected_date(on: date, today: date) -> date:
    """Reject an unexpected expense dated after today."""
    if on > today:
        raise UnexpectedExpenseInFuture("Cannot record an unexpected expense for a future date.")
    return on


def validate_category(category: str | None) -> str:
    if category is None:
        return DEFAULT_CATEGORY
    normalized = category.strip().lower()
    if normalized not in UNEXPECTED_EXPENSE_CATEGORIES:
        raise InvalidBudgetInput(f"Unsupported unexpected expense category: {category}")
    return normalized


def summarize_unexpected_expenses(expenses: Iterable[UnexpectedExpense]) -> UnexpectedStatistics:
    expenses = list(expenses)
    amount = sum((expense.amount for expense in expenses), ZERO)
    average = ZERO
    if expenses:
        average = (amount / len(expenses)).quantize(CENT, rounding=ROUND_HALF_UP)
    return UnexpectedStatistics(
        total=PlannedTotals(count=len(expenses), amount=amount),
        average=average,
    )


def summarize_unexpected_by_category(expenses: Iterable[UnexpectedExpense]) -> List[CategoryTotal]:
    amounts: Dict[str, Decimal] = {}
    counts: Dict[str, int] = {}
    for expense in expenses:
        category = expense.category or DEFAULT_CATEGORY
        amounts[category] = amounts.get(category, ZERO) + expense.amount
        counts[category] = counts.get(category, 0) + 1
    totals = [
        CategoryTotal(category=category, total_amount=amount, count=counts[category])
        for category, amount in amounts.items()
    ]
    totals.sort(key=lambda entry: entry.total_amount, reverse=True)
    return totals


def recent_unexpected_expenses(
    expenses: Iterable[UnexpectedExpense],
    today: date,
    days: int = RECENT_DAYS,
    limit: int = RECENT_LIMIT,
) -> List[UnexpectedExpense]:
    since = today - timedelta(days=days)
    recent = [expense for expense in expenses if expense.date >= since]
    recent.sort(key=lambda expense: expense.date, reverse=True)
    return recent[:limit]


def monthly_unexpected_totals(
    expenses: Iterable[UnexpectedExpense],
    today: date,
    months: int = MONTHLY_WINDOW,
) -> List[MonthlyUnexpectedTotal]:
    """Group the last ``months`` calendar months of expenses by ``YYYY-MM``.

    Months without any expense are not listed.
    """
    if months < 1:
        raise ValueError("months must be at least 1.")
    year, month = shift_year_month(today.year, today.month, -(months - 1))
    window_start = date(year, month, 1)

    amounts: Dict[str, Decimal] = {}
    counts: Dict[str, int] = {}
    for expense in expenses:
        if expense.date < window_start:
            continue
        key = f"{expense.date.year:04d}-{expense.date.month:02d}"
        amounts[key] = amounts.get(key, ZERO) + expense.amount
        counts[key] = counts.get(key, 0) + 1
    return [
        MonthlyUnexpectedTotal(month=key, count=counts[key], total_amount=amounts[key])
        for key in sorted(amounts)
    ]
