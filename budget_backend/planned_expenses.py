from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List

from budget_backend.balance_engine import PlannedExpense
from budget_backend.errors import PlannedExpenseInPast

ZERO = Decimal("0")


@dataclass(frozen=True)
class PlannedTotals:
    count: int
    amount: Decimal


@dataclass(frozen=True)
class PlannedStatistics:
    total: PlannedTotals
    spent: PlannedTotals
    unspent: PlannedTotals


@dataclass(frozen=True)
class UpcomingPlannedExpense:
    expense: PlannedExpense
    days_until: int


@dataclass(frozen=True)
class OverduePlannedExpense:
    expense: PlannedExpense
    days_past_due: int


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total_amount: Decimal
    count: int


def validate_planned_date(on: date, today: date) -> date:
    """Reject a planned expense dated before today.

    Only checked when the date is set; an existing expense whose date has
    since passed stays valid.
    """
    if on < today:
        raise PlannedExpenseInPast("Cannot plan an expense for a past date.")
    return on


def summarize_planned_expenses(expenses: Iterable[PlannedExpense]) -> PlannedStatistics:
    expenses = list(expenses)
    spent = [expense for expense in expenses if expense.spent]
    unspent = [expense for expense in expenses if not expense.spent]
    return PlannedStatistics(
        total=_totals(expenses),
        spent=_totals(spent),
        unspent=_totals(unspent),
    )


def upcoming_planned_expenses(
    expenses: Iterable[PlannedExpense], today: date, days: int = 30
) -> List[UpcomingPlannedExpense]:
    horizon = today + timedelta(days=days)
    upcoming = [
        UpcomingPlannedExpense(expense=expense, days_until=(expense.date - today).days)
        for expense in expenses
        if not expense.spent and today <= expense.date <= horizon
    ]
    upcoming.sort(key=lambda entry: entry.expense.date)
    return upcoming


def overdue_planned_expenses(
    expenses: Iterable[PlannedExpense], today: date
) -> List[OverduePlannedExpense]:
    overdue = [
        OverduePlannedExpense(expense=expense, days_past_due=(today - expense.date).days)
        for expense in expenses
        if not expense.spent and expense.date < today
    ]
    overdue.sort(key=lambda entry: entry.expense.date)
    return overdue


def summarize_by_category(expenses: Iterable[PlannedExpense]) -> List[CategoryTotal]:
    amounts: Dict[str, Decimal] = {}
    counts: Dict[str, int] = {}
    for expense in expenses:
        category = expense.category or "other"
        amounts[category] = amounts.get(category, ZERO) + expense.amount
        counts[category] = counts.get(category, 0) + 1
    totals = [
        CategoryTotal(category=category, total_amount=amount, count=counts[category])
        for category, amount in amounts.items()
    ]
    totals.sort(key=lambda entry: entry.total_amount, reverse=True)
    return totals


def _totals(expenses: List[PlannedExpense]) -> PlannedTotals:
    return PlannedTotals(
        count=len(expenses),
        amount=sum((expense.amount for expense in expenses), ZERO),
    )
