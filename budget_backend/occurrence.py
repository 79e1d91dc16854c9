from __future__ import annotations

from datetime import date
from decimal import Decimal

from budget_backend.frequency import (
    FrequencyRule,
    Monthly,
    OneTime,
    Quarterly,
    Yearly,
    clamp_day,
    is_due_in_month,
)

ZERO = Decimal("0")


def occurs_on(rule: FrequencyRule, day_of_month: int, on: date) -> bool:
    """Return True when an item fires on the calendar day ``on``.

    One-time items fire on their own date whatever ``day_of_month`` holds.
    Other items fire on ``day_of_month`` of each due month, clamped to the
    month's last day.
    """
    if isinstance(rule, OneTime):
        return rule.on is not None and rule.on == on
    if not is_due_in_month(rule, day_of_month, on.month, on.year):
        return False
    return clamp_day(on.year, on.month, day_of_month) == on


def has_occurred_this_month(rule: FrequencyRule, day_of_month: int, today: date) -> bool:
    if isinstance(rule, OneTime):
        if rule.on is None:
            return False
        return (
            rule.on.year == today.year
            and rule.on.month == today.month
            and rule.on.day <= today.day
        )
    if not is_due_in_month(rule, day_of_month, today.month, today.year):
        return False
    return clamp_day(today.year, today.month, day_of_month).day <= today.day


def calculate_current_month_amount(
    amount: Decimal,
    rule: FrequencyRule,
    day_of_month: int,
    today: date,
) -> Decimal:
    """Return what an item adds to the current month, without averaging.

    An item counts in full only when it is due in today's month and its day
    has already come; quarterly and yearly amounts are never spread across
    months.
    """
    if has_occurred_this_month(rule, day_of_month, today):
        return _coerce_amount(amount)
    return ZERO


def has_already_occurred_this_year(
    rule: FrequencyRule,
    day_of_month: int,
    today: date,
) -> bool:
    if isinstance(rule, OneTime):
        return rule.on is not None and rule.on <= today
    if isinstance(rule, Monthly):
        return has_occurred_this_month(rule, day_of_month, today)
    if isinstance(rule, (Quarterly, Yearly)):
        return any(
            month < today.month
            or (month == today.month and has_occurred_this_month(rule, day_of_month, today))
            for month in rule.months
        )
    raise TypeError(f"Unsupported frequency rule: {rule!r}")


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
