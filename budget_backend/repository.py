"""Row access for the budget tables.

Every function takes an open connection so callers decide the transaction
boundary, usually one ``engine.begin()`` block per operation.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Mapping

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection

from budget_backend.balance_engine import (
    MONTHLY_RESET,
    BalanceAdjustment,
    PlannedExpense,
    RecurringItem,
    UserBudgetSettings,
)
from budget_backend.errors import RecordNotFound, UserNotFound
from budget_backend.frequency import FrequencyRule, frequency_data_of, parse_frequency
from budget_backend.schema import (
    balance_adjustments,
    planned_expenses,
    recurring_items,
    unexpected_expenses,
    users,
)
from budget_backend.unexpected_expenses import UnexpectedExpense

ADJUSTMENT_DISPLAY_LIMIT = 50


def create_user(
    conn: Connection,
    name: str | None,
    initial_balance: Decimal,
    margin_pct: int = 0,
    month_start_day: int = 1,
) -> int:
    result = conn.execute(
        insert(users)
        .values(
            name=name,
            initial_balance=initial_balance,
            margin_pct=margin_pct,
            month_start_day=month_start_day,
        )
        .returning(users.c.id)
    )
    return result.scalar_one()


def user_exists(conn: Connection, user_id: int) -> bool:
    return conn.execute(select(users.c.id).where(users.c.id == user_id)).first() is not None


def fetch_user_settings(conn: Connection, user_id: int) -> UserBudgetSettings:
    row = conn.execute(
        select(
            users.c.initial_balance,
            users.c.margin_pct,
            users.c.month_start_day,
        ).where(users.c.id == user_id)
    ).mappings().first()
    if not row:
        raise UserNotFound(f"User {user_id} not found.")
    return UserBudgetSettings(
        initial_balance=_coerce_amount(row["initial_balance"]),
        margin_pct=row["margin_pct"] or 0,
        month_start_day=row["month_start_day"] or 1,
    )


def update_user_settings(
    conn: Connection, user_id: int, values: Mapping[str, Any]
) -> UserBudgetSettings:
    if values:
        result = conn.execute(update(users).where(users.c.id == user_id).values(**values))
        if result.rowcount == 0:
            raise UserNotFound(f"User {user_id} not found.")
    return fetch_user_settings(conn, user_id)


def fetch_recurring_items(conn: Connection, user_id: int, kind: str) -> List[RecurringItem]:
    rows = conn.execute(
        select(recurring_items)
        .where(recurring_items.c.user_id == user_id, recurring_items.c.kind == kind)
        .order_by(
            recurring_items.c.day_of_month.asc(),
            recurring_items.c.amount.desc(),
            recurring_items.c.id.asc(),
        )
    ).mappings().all()
    return [_recurring_item_from_row(row) for row in rows]


def fetch_recurring_item(conn: Connection, user_id: int, kind: str, item_id: int) -> RecurringItem:
    row = conn.execute(
        select(recurring_items).where(
            recurring_items.c.id == item_id,
            recurring_items.c.user_id == user_id,
            recurring_items.c.kind == kind,
        )
    ).mappings().first()
    if not row:
        raise RecordNotFound(f"Recurring {kind} not found.")
    return _recurring_item_from_row(row)


def insert_recurring_item(
    conn: Connection,
    user_id: int,
    kind: str,
    label: str,
    amount: Decimal,
    day_of_month: int,
    rule: FrequencyRule,
    category: str | None = None,
) -> RecurringItem:
    item_id = conn.execute(
        insert(recurring_items)
        .values(
            user_id=user_id,
            kind=kind,
            label=label,
            amount=amount,
            day_of_month=day_of_month,
            frequency=rule.name,
            frequency_data=frequency_data_of(rule),
            category=category,
        )
        .returning(recurring_items.c.id)
    ).scalar_one()
    return fetch_recurring_item(conn, user_id, kind, item_id)


def update_recurring_item(
    conn: Connection,
    user_id: int,
    kind: str,
    item_id: int,
    values: Mapping[str, Any],
) -> RecurringItem:
    fetch_recurring_item(conn, user_id, kind, item_id)
    values = dict(values)
    rule = values.pop("rule", None)
    if rule is not None:
        values["frequency"] = rule.name
        values["frequency_data"] = frequency_data_of(rule)
    if values:
        conn.execute(
            update(recurring_items)
            .where(recurring_items.c.id == item_id, recurring_items.c.user_id == user_id)
            .values(**values)
        )
    return fetch_recurring_item(conn, user_id, kind, item_id)


def delete_recurring_item(conn: Connection, user_id: int, kind: str, item_id: int) -> None:
    result = conn.execute(
        delete(recurring_items).where(
            recurring_items.c.id == item_id,
            recurring_items.c.user_id == user_id,
            recurring_items.c.kind == kind,
        )
    )
    if result.rowcount == 0:
        raise RecordNotFound(f"Recurring {kind} not found.")


def fetch_planned_expenses(
    conn: Connection, user_id: int, spent: bool | None = None
) -> List[PlannedExpense]:
    stmt = select(planned_expenses).where(planned_expenses.c.user_id == user_id)
    if spent is not None:
        stmt = stmt.where(planned_expenses.c.spent == spent)
    rows = conn.execute(
        stmt.order_by(
            planned_expenses.c.date.asc(),
            planned_expenses.c.amount.desc(),
            planned_expenses.c.id.asc(),
        )
    ).mappings().all()
    return [_planned_expense_from_row(row) for row in rows]


def fetch_planned_expense(conn: Connection, user_id: int, expense_id: int) -> PlannedExpense:
    row = conn.execute(
        select(planned_expenses).where(
            planned_expenses.c.id == expense_id,
            planned_expenses.c.user_id == user_id,
        )
    ).mappings().first()
    if not row:
        raise RecordNotFound("Planned expense not found.")
    return _planned_expense_from_row(row)


def insert_planned_expense(
    conn: Connection,
    user_id: int,
    label: str,
    amount: Decimal,
    on: date,
    category: str | None = None,
) -> PlannedExpense:
    expense_id = conn.execute(
        insert(planned_expenses)
        .values(
            user_id=user_id,
            label=label,
            amount=amount,
            date=on,
            spent=False,
            category=category or "other",
        )
        .returning(planned_expenses.c.id)
    ).scalar_one()
    return fetch_planned_expense(conn, user_id, expense_id)


def update_planned_expense(
    conn: Connection, user_id: int, expense_id: int, values: Mapping[str, Any]
) -> PlannedExpense:
    fetch_planned_expense(conn, user_id, expense_id)
    if values:
        conn.execute(
            update(planned_expenses)
            .where(
                planned_expenses.c.id == expense_id,
                planned_expenses.c.user_id == user_id,
            )
            .values(**values)
        )
    return fetch_planned_expense(conn, user_id, expense_id)


def delete_planned_expense(conn: Connection, user_id: int, expense_id: int) -> None:
    result = conn.execute(
        delete(planned_expenses).where(
            planned_expenses.c.id == expense_id,
            planned_expenses.c.user_id == user_id,
        )
    )
    if result.rowcount == 0:
        raise RecordNotFound("Planned expense not found.")


def fetch_unexpected_expenses(
    conn: Connection, user_id: int, year: int | None = None
) -> List[UnexpectedExpense]:
    stmt = select(unexpected_expenses).where(unexpected_expenses.c.user_id == user_id)
    if year is not None:
        stmt = stmt.where(
            unexpected_expenses.c.date >= date(year, 1, 1),
            unexpected_expenses.c.date <= date(year, 12, 31),
        )
    rows = conn.execute(
        stmt.order_by(unexpected_expenses.c.date.desc(), unexpected_expenses.c.id.desc())
    ).mappings().all()
    return [_unexpected_expense_from_row(row) for row in rows]


def fetch_unexpected_expense(
    conn: Connection, user_id: int, expense_id: int
) -> UnexpectedExpense:
    row = conn.execute(
        select(unexpected_expenses).where(
            unexpected_expenses.c.id == expense_id,
            unexpected_expenses.c.user_id == user_id,
        )
    ).mappings().first()
    if not row:
        raise RecordNotFound("Unexpected expense not found.")
    return _unexpected_expense_from_row(row)


def insert_unexpected_expense(
    conn: Connection,
    user_id: int,
    label: str,
    amount: Decimal,
    on: date,
    category: str = "other",
    description: str | None = None,
) -> UnexpectedExpense:
    expense_id = conn.execute(
        insert(unexpected_expenses)
        .values(
            user_id=user_id,
            label=label,
            amount=amount,
            date=on,
            category=category,
            description=description,
        )
        .returning(unexpected_expenses.c.id)
    ).scalar_one()
    return fetch_unexpected_expense(conn, user_id, expense_id)


def update_unexpected_expense(
    conn: Connection, user_id: int, expense_id: int, values: Mapping[str, Any]
) -> UnexpectedExpense:
    fetch_unexpected_expense(conn, user_id, expense_id)
    if values:
        conn.execute(
            update(unexpected_expenses)
            .where(
                unexpected_expenses.c.id == expense_id,
                unexpected_expenses.c.user_id == user_id,
            )
            .values(**values)
        )
    return fetch_unexpected_expense(conn, user_id, expense_id)


def delete_unexpected_expense(conn: Connection, user_id: int, expense_id: int) -> None:
    result = conn.execute(
        delete(unexpected_expenses).where(
            unexpected_expenses.c.id == expense_id,
            unexpected_expenses.c.user_id == user_id,
        )
    )
    if result.rowcount == 0:
        raise RecordNotFound("Unexpected expense not found.")


def sum_balance_adjustments(conn: Connection, user_id: int) -> Decimal:
    """Sum the whole ledger of a user, monthly reset entries excluded."""
    total = conn.execute(
        select(func.coalesce(func.sum(balance_adjustments.c.amount), 0)).where(
            balance_adjustments.c.user_id == user_id,
            balance_adjustments.c.type != MONTHLY_RESET,
        )
    ).scalar_one()
    return _coerce_amount(total)


def fetch_balance_adjustments(
    conn: Connection, user_id: int, limit: int | None = ADJUSTMENT_DISPLAY_LIMIT
) -> List[BalanceAdjustment]:
    stmt = (
        select(balance_adjustments)
        .where(balance_adjustments.c.user_id == user_id)
        .order_by(balance_adjustments.c.created_at.desc(), balance_adjustments.c.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    rows = conn.execute(stmt).mappings().all()
    return [_adjustment_from_row(row) for row in rows]


def insert_balance_adjustment(
    conn: Connection,
    user_id: int,
    amount: Decimal,
    description: str,
    adjustment_type: str,
    created_at: datetime,
) -> BalanceAdjustment:
    adjustment_id = conn.execute(
        insert(balance_adjustments)
        .values(
            user_id=user_id,
            amount=amount,
            description=description,
            type=adjustment_type,
            created_at=created_at,
        )
        .returning(balance_adjustments.c.id)
    ).scalar_one()
    return BalanceAdjustment(
        id=adjustment_id,
        amount=_coerce_amount(amount),
        description=description,
        type=adjustment_type,
        created_at=created_at,
    )


def fetch_last_reset_at(conn: Connection, user_id: int) -> datetime | None:
    return conn.execute(
        select(balance_adjustments.c.created_at)
        .where(
            balance_adjustments.c.user_id == user_id,
            balance_adjustments.c.type == MONTHLY_RESET,
        )
        .order_by(balance_adjustments.c.created_at.desc(), balance_adjustments.c.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _recurring_item_from_row(row: Mapping[str, Any]) -> RecurringItem:
    return RecurringItem(
        id=row["id"],
        kind=row["kind"],
        label=row["label"],
        amount=_coerce_amount(row["amount"]),
        day_of_month=row["day_of_month"],
        rule=parse_frequency(row["frequency"], row["frequency_data"]),
        category=row["category"],
    )


def _planned_expense_from_row(row: Mapping[str, Any]) -> PlannedExpense:
    return PlannedExpense(
        id=row["id"],
        label=row["label"],
        amount=_coerce_amount(row["amount"]),
        date=row["date"],
        spent=bool(row["spent"]),
        category=row["category"],
    )


def _unexpected_expense_from_row(row: Mapping[str, Any]) -> UnexpectedExpense:
    return UnexpectedExpense(
        id=row["id"],
        label=row["label"],
        amount=_coerce_amount(row["amount"]),
        date=row["date"],
        category=row["category"],
        description=row["description"],
    )


def _adjustment_from_row(row: Mapping[str, Any]) -> BalanceAdjustment:
    return BalanceAdjustment(
        id=row["id"],
        amount=_coerce_amount(row["amount"]),
        description=row["description"],
        type=row["type"],
        created_at=row["created_at"],
    )


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
