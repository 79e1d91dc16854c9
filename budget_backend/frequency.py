from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import json
from typing import Any, Mapping, Tuple, Union
import warnings

ONE_TIME = "ONE_TIME"
MONTHLY = "MONTHLY"
QUARTERLY = "QUARTERLY"
YEARLY = "YEARLY"
SUPPORTED_FREQUENCIES = {ONE_TIME, MONTHLY, QUARTERLY, YEARLY}

DEFAULT_QUARTERLY_MONTHS = (1, 4, 7, 10)
DEFAULT_YEARLY_MONTHS = (1,)


@dataclass(frozen=True)
class OneTime:
    on: date | None = None

    name = ONE_TIME


@dataclass(frozen=True)
class Monthly:
    name = MONTHLY


@dataclass(frozen=True)
class Quarterly:
    months: Tuple[int, ...] = DEFAULT_QUARTERLY_MONTHS

    name = QUARTERLY


@dataclass(frozen=True)
class Yearly:
    months: Tuple[int, ...] = DEFAULT_YEARLY_MONTHS

    name = YEARLY


FrequencyRule = Union[OneTime, Monthly, Quarterly, Yearly]


def parse_frequency(
    frequency: str | None,
    frequency_data: Mapping[str, Any] | str | None = None,
) -> FrequencyRule:
    """Build the frequency rule for a stored frequency name and payload.

    The payload is either a mapping or the JSON text it is stored as. Missing
    or malformed fields fall back to the defaults of the frequency kind; only
    an unknown frequency name is an error.
    """
    normalized = normalize_frequency(frequency or MONTHLY)
    data = _load_frequency_data(frequency_data)

    if normalized == ONE_TIME:
        return OneTime(on=_parse_date(data.get("date")))
    if normalized == MONTHLY:
        return Monthly()
    if normalized == QUARTERLY:
        return Quarterly(months=_parse_months(data.get("months"), DEFAULT_QUARTERLY_MONTHS))
    return Yearly(months=_parse_months(data.get("months"), DEFAULT_YEARLY_MONTHS))


def normalize_frequency(value: str) -> str:
    normalized = "_".join(value.strip().upper().replace("-", " ").split())
    if normalized not in SUPPORTED_FREQUENCIES:
        raise ValueError("Only one-time, monthly, quarterly, or yearly frequencies are supported.")
    return normalized


def frequency_data_of(rule: FrequencyRule) -> dict | None:
    """Return the storable payload for a rule."""
    if isinstance(rule, OneTime):
        return {"date": rule.on.isoformat()} if rule.on else None
    if isinstance(rule, (Quarterly, Yearly)):
        return {"months": list(rule.months)}
    return None


def is_due_in_month(rule: FrequencyRule, day_of_month: int, month: int, year: int) -> bool:
    if isinstance(rule, OneTime):
        if rule.on is None:
            return False
        return rule.on.year == year and rule.on.month == month
    if isinstance(rule, Monthly):
        return True
    if isinstance(rule, (Quarterly, Yearly)):
        return month in rule.months
    raise TypeError(f"Unsupported frequency rule: {rule!r}")


def get_next_due_date(rule: FrequencyRule, day_of_month: int, today: date) -> date | None:
    if isinstance(rule, OneTime):
        if rule.on is None:
            return None
        return rule.on if rule.on > today else None
    if isinstance(rule, Monthly):
        this_month_due = clamp_day(today.year, today.month, day_of_month)
        if this_month_due > today:
            return this_month_due
        next_year, next_month = shift_year_month(today.year, today.month, 1)
        return clamp_day(next_year, next_month, day_of_month)
    if isinstance(rule, (Quarterly, Yearly)):
        months = sorted(rule.months)
        if not months:
            return None
        for month in months:
            due_date = clamp_day(today.year, month, day_of_month)
            if due_date > today:
                return due_date
        return clamp_day(today.year + 1, months[0], day_of_month)
    raise TypeError(f"Unsupported frequency rule: {rule!r}")


def calculate_monthly_equivalent(amount: Decimal, rule: FrequencyRule) -> Decimal:
    """Spread an amount evenly over the months of its period.

    Deprecated: balances use the current-month contribution instead.
    """
    warnings.warn(
        "calculate_monthly_equivalent is deprecated; use calculate_current_month_amount.",
        DeprecationWarning,
        stacklevel=2,
    )
    amount = _coerce_amount(amount)
    if isinstance(rule, OneTime):
        return Decimal("0")
    if isinstance(rule, Monthly):
        return amount
    if isinstance(rule, Quarterly):
        return amount / 3
    if isinstance(rule, Yearly):
        return amount / 12
    raise TypeError(f"Unsupported frequency rule: {rule!r}")


def clamp_day(year: int, month: int, day: int) -> date:
    last_day = monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def shift_year_month(year: int, month: int, months: int) -> tuple[int, int]:
    total_month = month - 1 + months
    return year + total_month // 12, total_month % 12 + 1


def _load_frequency_data(value: Mapping[str, Any] | str | None) -> Mapping[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return {}
    if not isinstance(value, Mapping):
        return {}
    return value


def _parse_months(value: Any, default: Tuple[int, ...]) -> Tuple[int, ...]:
    if value is None or not isinstance(value, (list, tuple)):
        return default
    months = []
    for item in value:
        try:
            month = int(item)
        except (TypeError, ValueError):
            continue
        if 1 <= month <= 12:
            months.append(month)
    return tuple(months)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
