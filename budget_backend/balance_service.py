from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
import re
from typing import Callable, List

from sqlalchemy.engine import Connection, Engine

from budget_backend import repository
from budget_backend.balance_engine import (
    DEFAULT_PROJECTION_DAYS,
    EXPENSE,
    INCOME,
    MONTHLY_RESET,
    Alert,
    BalanceSnapshot,
    MonthlyTrend,
    ProjectionPoint,
    ResetStatus,
    aggregate_balance,
    build_alerts,
    build_monthly_trends,
    build_projection,
    build_reset_status,
    compute_base_balance,
    normalize_adjustment_type,
    round_money,
    sum_recurring_amounts,
)
from budget_backend.errors import (
    AdjustmentFailed,
    BalanceCalculationFailed,
    BudgetError,
    InvalidBudgetInput,
    ProjectionFailed,
    ReportFailed,
    ResetFailed,
)

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
MONTHLY_RESET_DESCRIPTION = "Automatic monthly reset"


@dataclass(frozen=True)
class ResetResult:
    new_balance: BalanceSnapshot
    reset_date: datetime
    previous_balance: Decimal
    monthly_income: Decimal
    monthly_expenses: Decimal
    net_change: Decimal


@dataclass(frozen=True)
class BalanceSummary:
    balance: BalanceSnapshot
    alerts: List[Alert]
    calculated_at: datetime


def snapshot_for(conn: Connection, user_id: int, today: date) -> BalanceSnapshot:
    """Compute the balance snapshot of a user over an open connection."""
    settings = repository.fetch_user_settings(conn, user_id)
    adjustment_total = repository.sum_balance_adjustments(conn, user_id)
    incomes = repository.fetch_recurring_items(conn, user_id, INCOME)
    expenses = repository.fetch_recurring_items(conn, user_id, EXPENSE)
    planned = repository.fetch_planned_expenses(conn, user_id)
    adjustments = repository.fetch_balance_adjustments(conn, user_id)
    return aggregate_balance(
        settings,
        incomes,
        expenses,
        planned,
        adjustment_total,
        today,
        adjustments=adjustments,
    )


class BalanceService:
    """Balance, projection and monthly reset operations for one database.

    ``clock`` supplies the current time; nothing here reads the wall clock
    directly.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime]) -> None:
        self.engine = engine
        self.clock = clock

    def calculate_balance(self, user_id: int, month: str | None = None) -> BalanceSnapshot:
        if month is not None and not MONTH_PATTERN.match(month):
            raise InvalidBudgetInput("Month must use the YYYY-MM format.")
        today = self.clock().date()
        try:
            with self.engine.begin() as conn:
                snapshot = snapshot_for(conn, user_id, today)
        except BudgetError:
            raise
        except Exception as exc:
            logger.exception("Error calculating balance for user %s", user_id)
            raise BalanceCalculationFailed("Failed to calculate balance") from exc
        logger.info(
            "Balance calculated for user %s (month=%s): %s",
            user_id,
            month or today.strftime("%Y-%m"),
            snapshot.current_balance,
        )
        return snapshot

    def adjust_balance(
        self,
        user_id: int,
        amount: Decimal,
        description: str,
        adjustment_type: str | None = None,
    ) -> BalanceSnapshot:
        normalized_type = normalize_adjustment_type(adjustment_type)
        now = self.clock()
        try:
            with self.engine.begin() as conn:
                repository.fetch_user_settings(conn, user_id)
                repository.insert_balance_adjustment(
                    conn, user_id, amount, description, normalized_type, now
                )
                snapshot = snapshot_for(conn, user_id, now.date())
        except BudgetError:
            raise
        except Exception as exc:
            logger.exception("Error adjusting balance for user %s", user_id)
            raise AdjustmentFailed("Failed to adjust balance") from exc
        logger.info(
            "Balance adjusted for user %s: %s (%s) - %s",
            user_id,
            amount,
            normalized_type,
            description,
        )
        return snapshot

    def calculate_projection(
        self, user_id: int, days: int = DEFAULT_PROJECTION_DAYS
    ) -> List[ProjectionPoint]:
        if days < 1:
            raise InvalidBudgetInput("days must be at least 1.")
        today = self.clock().date()
        try:
            with self.engine.begin() as conn:
                settings = repository.fetch_user_settings(conn, user_id)
                adjustment_total = repository.sum_balance_adjustments(conn, user_id)
                incomes = repository.fetch_recurring_items(conn, user_id, INCOME)
                expenses = repository.fetch_recurring_items(conn, user_id, EXPENSE)
                planned = repository.fetch_planned_expenses(conn, user_id, spent=False)
            base_balance = compute_base_balance(
                settings, incomes, expenses, planned, adjustment_total, today
            )
            points = build_projection(base_balance, incomes, expenses, planned, today, days)
        except BudgetError:
            raise
        except Exception as exc:
            logger.exception("Error calculating projection for user %s", user_id)
            raise ProjectionFailed("Failed to calculate projection") from exc
        logger.info("Calculated projection for %s days for user %s", days, user_id)
        return points

    def trigger_monthly_reset(self, user_id: int) -> ResetResult:
        """Book the net of the recurring totals as a MONTHLY_RESET entry.

        Each call books a new entry; callers check
        ``get_monthly_reset_status`` first.
        """
        now = self.clock()
        try:
            with self.engine.begin() as conn:
                previous = snapshot_for(conn, user_id, now.date())
                monthly_income = sum_recurring_amounts(
                    repository.fetch_recurring_items(conn, user_id, INCOME)
                )
                monthly_expenses = sum_recurring_amounts(
                    repository.fetch_recurring_items(conn, user_id, EXPENSE)
                )
                net_change = monthly_income - monthly_expenses
                repository.insert_balance_adjustment(
                    conn,
                    user_id,
                    net_change,
                    MONTHLY_RESET_DESCRIPTION,
                    MONTHLY_RESET,
                    now,
                )
                new_balance = snapshot_for(conn, user_id, now.date())
        except BudgetError:
            raise
        except Exception as exc:
            logger.exception("Error triggering monthly reset for user %s", user_id)
            raise ResetFailed("Failed to trigger monthly reset") from exc
        logger.info("Monthly reset completed for user %s: net change %s", user_id, net_change)
        return ResetResult(
            new_balance=new_balance,
            reset_date=now,
            previous_balance=previous.current_balance,
            monthly_income=round_money(monthly_income),
            monthly_expenses=round_money(monthly_expenses),
            net_change=round_money(net_change),
        )

    def get_monthly_reset_status(self, user_id: int) -> ResetStatus:
        now = self.clock()
        try:
            with self.engine.begin() as conn:
                settings = repository.fetch_user_settings(conn, user_id)
                last_reset_at = repository.fetch_last_reset_at(conn, user_id)
        except BudgetError:
            raise
        except Exception as exc:
            logger.exception("Error getting monthly reset status for user %s", user_id)
            raise ReportFailed("Failed to get monthly reset status") from exc
        return build_reset_status(settings.month_start_day, last_reset_at, now)

    def get_alerts(self, user_id: int) -> List[Alert]:
        snapshot = self.calculate_balance(user_id)
        alerts = build_alerts(snapshot)
        logger.info("Generated %s alerts for user %s", len(alerts), user_id)
        return alerts

    def get_monthly_trends(self, user_id: int, months: int = 6) -> List[MonthlyTrend]:
        """Return ``months`` entries built from today's recurring totals.

        This is not a history: recurring items have no stored past, so every
        month repeats the present totals.
        """
        if months < 1:
            raise InvalidBudgetInput("months must be at least 1.")
        today = self.clock().date()
        try:
            with self.engine.begin() as conn:
                repository.fetch_user_settings(conn, user_id)
                monthly_income = sum_recurring_amounts(
                    repository.fetch_recurring_items(conn, user_id, INCOME)
                )
                monthly_expenses = sum_recurring_amounts(
                    repository.fetch_recurring_items(conn, user_id, EXPENSE)
                )
                planned = repository.fetch_planned_expenses(conn, user_id, spent=False)
        except BudgetError:
            raise
        except Exception as exc:
            logger.exception("Error generating monthly trends for user %s", user_id)
            raise ReportFailed("Failed to generate monthly trends") from exc
        logger.info("Generated trends for %s months for user %s", months, user_id)
        return build_monthly_trends(monthly_income, monthly_expenses, planned, today, months)

    def get_summary(self, user_id: int) -> BalanceSummary:
        calculated_at = self.clock()
        snapshot = self.calculate_balance(user_id)
        return BalanceSummary(
            balance=snapshot,
            alerts=build_alerts(snapshot),
            calculated_at=calculated_at,
        )
