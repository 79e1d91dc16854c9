import unittest
from datetime import date, datetime
from decimal import Decimal

from budget_backend.balance_engine import (
    CORRECTION,
    EXPENSE,
    MANUAL_ADJUSTMENT,
    MONTHLY_RESET,
    BalanceAdjustment,
    BalanceSnapshot,
    PlannedExpense,
    ProjectionEvent,
    RecurringItem,
    UserBudgetSettings,
    aggregate_balance,
    build_alerts,
    build_monthly_trends,
    build_projection,
    build_reset_status,
    compute_base_balance,
    normalize_adjustment_type,
    round_money,
)
from budget_backend.frequency import OneTime, Quarterly

TODAY = date(2025, 7, 20)


def _snapshot(current_balance: str) -> BalanceSnapshot:
    value = Decimal(current_balance)
    return BalanceSnapshot(
        current_balance=value,
        total_income=Decimal("0"),
        total_expenses=Decimal("0"),
        total_planned=Decimal("0"),
        projected_balance=value,
        margin_amount=Decimal("0"),
    )


class AggregateBalanceTests(unittest.TestCase):
    def test_initial_balance_plus_monthly_income_minus_expense(self) -> None:
        snapshot = aggregate_balance(
            UserBudgetSettings(initial_balance=Decimal("1000"), margin_pct=0),
            incomes=[RecurringItem(amount=Decimal("2000"), day_of_month=1, label="Salary")],
            expenses=[
                RecurringItem(amount=Decimal("500"), day_of_month=1, kind=EXPENSE, label="Rent")
            ],
            planned_expenses=[],
            adjustment_total=Decimal("0"),
            today=TODAY,
        )

        self.assertEqual(snapshot.current_balance, Decimal("2500.00"))
        self.assertEqual(snapshot.projected_balance, Decimal("2500.00"))
        self.assertEqual(snapshot.total_income, Decimal("2000.00"))
        self.assertEqual(snapshot.total_expenses, Decimal("500.00"))
        self.assertEqual(snapshot.margin_amount, Decimal("0.00"))

    def test_margin_is_subtracted_from_current_balance(self) -> None:
        snapshot = aggregate_balance(
            UserBudgetSettings(initial_balance=Decimal("1000"), margin_pct=10),
            incomes=[RecurringItem(amount=Decimal("2000"), day_of_month=1)],
            expenses=[RecurringItem(amount=Decimal("500"), day_of_month=1, kind=EXPENSE)],
            planned_expenses=[],
            adjustment_total=Decimal("0"),
            today=TODAY,
        )

        self.assertEqual(snapshot.margin_amount, Decimal("250.00"))
        self.assertEqual(snapshot.current_balance, Decimal("2250.00"))
        self.assertEqual(snapshot.projected_balance, snapshot.current_balance)

    def test_rounds_half_up_to_cents(self) -> None:
        snapshot = aggregate_balance(
            UserBudgetSettings(initial_balance=Decimal("820.4951")),
            incomes=[],
            expenses=[],
            planned_expenses=[],
            adjustment_total=Decimal("0"),
            today=TODAY,
        )

        self.assertEqual(snapshot.current_balance, Decimal("820.50"))
        self.assertEqual(str(snapshot.current_balance), "820.50")

    def test_items_not_yet_due_do_not_count(self) -> None:
        snapshot = aggregate_balance(
            UserBudgetSettings(initial_balance=Decimal("100")),
            incomes=[
                RecurringItem(amount=Decimal("2000"), day_of_month=25),
                RecurringItem(amount=Decimal("300"), day_of_month=5, rule=Quarterly(months=(2, 5, 8, 11))),
            ],
            expenses=[
                RecurringItem(amount=Decimal("120"), day_of_month=15, rule=Quarterly(), kind=EXPENSE),
            ],
            planned_expenses=[],
            adjustment_total=Decimal("0"),
            today=TODAY,
        )

        self.assertEqual(snapshot.total_income, Decimal("0.00"))
        self.assertEqual(snapshot.total_expenses, Decimal("120.00"))
        self.assertEqual(snapshot.current_balance, Decimal("-20.00"))

    def test_only_unspent_past_planned_expenses_reduce_balance(self) -> None:
        planned = [
            PlannedExpense(amount=Decimal("50"), date=date(2025, 7, 20), label="Gift"),
            PlannedExpense(amount=Decimal("30"), date=date(2025, 7, 1), spent=True),
            PlannedExpense(amount=Decimal("200"), date=date(2025, 8, 2), label="Trip"),
        ]

        snapshot = aggregate_balance(
            UserBudgetSettings(initial_balance=Decimal("500")),
            incomes=[],
            expenses=[],
            planned_expenses=planned,
            adjustment_total=Decimal("0"),
            today=TODAY,
        )

        self.assertEqual(snapshot.current_balance, Decimal("450.00"))
        self.assertEqual(snapshot.total_planned, Decimal("280.00"))

    def test_adjustment_total_raises_balance_by_its_amount(self) -> None:
        settings = UserBudgetSettings(initial_balance=Decimal("1000"))

        before = aggregate_balance(settings, [], [], [], Decimal("-40"), TODAY)
        after = aggregate_balance(settings, [], [], [], Decimal("110.50"), TODAY)

        self.assertEqual(after.current_balance - before.current_balance, Decimal("150.50"))

    def test_one_time_income_counts_from_its_own_date(self) -> None:
        income = RecurringItem(
            amount=Decimal("300"),
            day_of_month=25,
            rule=OneTime(on=date(2025, 7, 10)),
            label="Tax refund",
        )
        settings = UserBudgetSettings(initial_balance=Decimal("1000"))

        snapshot = aggregate_balance(settings, [income], [], [], Decimal("0"), TODAY)
        base = compute_base_balance(settings, [income], [], [], Decimal("0"), TODAY)

        self.assertEqual(snapshot.current_balance, Decimal("1300.00"))
        self.assertEqual(round_money(base), snapshot.current_balance)

    def test_day_past_month_end_counts_on_last_day(self) -> None:
        rent = RecurringItem(amount=Decimal("800"), day_of_month=31, kind=EXPENSE, label="Rent")
        settings = UserBudgetSettings(initial_balance=Decimal("1000"))

        before = aggregate_balance(settings, [], [rent], [], Decimal("0"), date(2025, 9, 29))
        on_last_day = aggregate_balance(settings, [], [rent], [], Decimal("0"), date(2025, 9, 30))

        self.assertEqual(before.current_balance, Decimal("1000.00"))
        self.assertEqual(on_last_day.current_balance, Decimal("200.00"))

    def test_keeps_display_adjustments(self) -> None:
        ledger = (
            BalanceAdjustment(Decimal("10"), "Manual", MANUAL_ADJUSTMENT, datetime(2025, 7, 1), id=3),
        )

        snapshot = aggregate_balance(
            UserBudgetSettings(initial_balance=Decimal("0")),
            [],
            [],
            [],
            Decimal("10"),
            TODAY,
            adjustments=ledger,
        )

        self.assertEqual(snapshot.adjustments, ledger)


class ProjectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = UserBudgetSettings(initial_balance=Decimal("1000"))
        self.incomes = [
            RecurringItem(amount=Decimal("2000"), day_of_month=25, label="Salary"),
            RecurringItem(amount=Decimal("300"), day_of_month=20, rule=Quarterly(), label="Bonus"),
        ]
        self.expenses = [
            RecurringItem(amount=Decimal("800"), day_of_month=1, kind=EXPENSE, label="Rent"),
            RecurringItem(
                amount=Decimal("120"),
                day_of_month=22,
                rule=Quarterly(),
                kind=EXPENSE,
                label="Insurance",
            ),
        ]
        self.planned = [
            PlannedExpense(amount=Decimal("50"), date=date(2025, 7, 20), label="Gift"),
            PlannedExpense(amount=Decimal("200"), date=date(2025, 7, 23), label="Trip"),
        ]

    def _base(self) -> Decimal:
        return compute_base_balance(
            self.settings, self.incomes, self.expenses, self.planned, Decimal("0"), TODAY
        )

    def test_base_balance_books_what_already_happened_this_month(self) -> None:
        self.assertEqual(self._base(), Decimal("450"))

    def test_walks_forward_day_by_day(self) -> None:
        points = build_projection(
            self._base(), self.incomes, self.expenses, self.planned, TODAY, days=35
        )

        self.assertEqual(len(points), 35)
        self.assertEqual([point.day for point in points], list(range(35)))
        self.assertEqual(points[0].date, TODAY)
        balances = {point.date: point.balance for point in points}
        self.assertEqual(balances[date(2025, 7, 20)], Decimal("450.00"))
        self.assertEqual(balances[date(2025, 7, 21)], Decimal("450.00"))
        self.assertEqual(balances[date(2025, 7, 22)], Decimal("330.00"))
        self.assertEqual(balances[date(2025, 7, 23)], Decimal("130.00"))
        self.assertEqual(balances[date(2025, 7, 25)], Decimal("2130.00"))
        self.assertEqual(balances[date(2025, 8, 1)], Decimal("1330.00"))
        self.assertEqual(points[-1].date, date(2025, 8, 23))
        self.assertEqual(points[-1].balance, Decimal("1330.00"))

    def test_first_point_matches_base_balance(self) -> None:
        base = self._base()

        points = build_projection(base, self.incomes, self.expenses, self.planned, TODAY, days=5)

        self.assertEqual(points[0].balance, round_money(base))

    def test_day_zero_lists_todays_events(self) -> None:
        points = build_projection(
            self._base(), self.incomes, self.expenses, self.planned, TODAY, days=1
        )

        events = points[0].events
        self.assertEqual(events.incomes, (ProjectionEvent("Bonus", Decimal("300")),))
        self.assertEqual(events.expenses, ())
        self.assertEqual(events.planned_expenses, (ProjectionEvent("Gift", Decimal("50")),))

    def test_quiet_days_have_no_events(self) -> None:
        points = build_projection(
            self._base(), self.incomes, self.expenses, self.planned, TODAY, days=35
        )
        by_date = {point.date: point for point in points}

        self.assertIsNone(by_date[date(2025, 7, 21)].events)
        # Quarterly items are not due in August.
        self.assertIsNone(by_date[date(2025, 8, 20)].events)
        self.assertIsNone(by_date[date(2025, 8, 22)].events)

    def test_spent_planned_expenses_never_fire(self) -> None:
        planned = [
            PlannedExpense(amount=Decimal("200"), date=date(2025, 7, 21), spent=True, label="Paid"),
        ]

        points = build_projection(Decimal("100"), [], [], planned, TODAY, days=3)

        self.assertEqual([point.balance for point in points], [Decimal("100.00")] * 3)
        self.assertTrue(all(point.events is None for point in points))

    def test_one_time_item_fires_on_its_own_date(self) -> None:
        incomes = [
            RecurringItem(
                amount=Decimal("90"),
                day_of_month=5,
                rule=OneTime(on=date(2025, 7, 22)),
                label="Refund",
            )
        ]

        points = build_projection(Decimal("0"), incomes, [], [], TODAY, days=40)

        fired = [point.date for point in points if point.events]
        self.assertEqual(fired, [date(2025, 7, 22)])
        self.assertEqual(points[-1].balance, Decimal("90.00"))

    def test_past_one_time_item_with_mismatched_day_starts_in_base(self) -> None:
        settings = UserBudgetSettings(initial_balance=Decimal("1000"))
        incomes = [
            RecurringItem(
                amount=Decimal("300"),
                day_of_month=25,
                rule=OneTime(on=date(2025, 7, 10)),
                label="Tax refund",
            )
        ]
        snapshot = aggregate_balance(settings, incomes, [], [], Decimal("0"), TODAY)
        base = compute_base_balance(settings, incomes, [], [], Decimal("0"), TODAY)

        points = build_projection(base, incomes, [], [], TODAY, days=10)

        self.assertEqual(points[0].balance, snapshot.current_balance)
        self.assertEqual(points[0].balance, Decimal("1300.00"))
        self.assertTrue(all(point.events is None for point in points))
        self.assertEqual(points[-1].balance, Decimal("1300.00"))

    def test_day_past_month_end_fires_on_last_day(self) -> None:
        expenses = [RecurringItem(amount=Decimal("800"), day_of_month=31, kind=EXPENSE, label="Rent")]

        points = build_projection(
            Decimal("1000"), [], expenses, [], date(2025, 9, 20), days=45
        )

        fired = [point.date for point in points if point.events]
        self.assertEqual(fired, [date(2025, 9, 30), date(2025, 10, 31)])
        self.assertEqual(points[-1].balance, Decimal("-600.00"))

    def test_does_not_round_between_days(self) -> None:
        incomes = [RecurringItem(amount=Decimal("0.004"), day_of_month=21, label="Interest")]
        expenses = [
            RecurringItem(amount=Decimal("0.003"), day_of_month=22, kind=EXPENSE, label="Fee")
        ]

        points = build_projection(Decimal("10.003"), incomes, expenses, [], TODAY, days=3)

        self.assertEqual(
            [point.balance for point in points],
            [Decimal("10.00"), Decimal("10.01"), Decimal("10.00")],
        )

    def test_rejects_empty_horizon(self) -> None:
        with self.assertRaises(ValueError):
            build_projection(Decimal("0"), [], [], [], TODAY, days=0)


class ResetStatusTests(unittest.TestCase):
    def test_never_reset_is_due(self) -> None:
        status = build_reset_status(1, None, datetime(2025, 7, 20, 9, 0))

        self.assertEqual(status.days_since_last_reset, 999)
        self.assertTrue(status.is_reset_due)
        self.assertEqual(status.next_reset, date(2025, 8, 1))
        self.assertIsNone(status.last_reset)

    def test_recent_reset_before_start_day_is_not_due(self) -> None:
        last_reset = datetime(2025, 7, 1, 10, 0)

        status = build_reset_status(25, last_reset, datetime(2025, 7, 20, 12, 0))

        self.assertEqual(status.days_since_last_reset, 19)
        self.assertFalse(status.is_reset_due)
        self.assertEqual(status.next_reset, date(2025, 7, 25))
        self.assertEqual(status.last_reset, last_reset)

    def test_old_reset_is_due_before_start_day(self) -> None:
        status = build_reset_status(25, datetime(2025, 6, 1), datetime(2025, 7, 20))

        self.assertEqual(status.days_since_last_reset, 49)
        self.assertTrue(status.is_reset_due)

    def test_next_reset_clamps_to_month_end(self) -> None:
        status = build_reset_status(31, None, datetime(2025, 2, 10))

        self.assertEqual(status.next_reset, date(2025, 2, 28))
        self.assertEqual(status.month_start_day, 31)


class AlertsAndTrendsTests(unittest.TestCase):
    def test_negative_balance_raises_one_alert(self) -> None:
        alerts = build_alerts(_snapshot("-12.50"))

        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].type, "error")
        self.assertEqual(alerts[0].amount, Decimal("-12.50"))

    def test_positive_balance_has_no_alert(self) -> None:
        self.assertEqual(build_alerts(_snapshot("0.00")), [])

    def test_trends_repeat_present_totals_oldest_first(self) -> None:
        planned = [
            PlannedExpense(amount=Decimal("100"), date=date(2025, 6, 10)),
            PlannedExpense(amount=Decimal("40"), date=date(2025, 6, 28), spent=True),
            PlannedExpense(amount=Decimal("60"), date=date(2024, 6, 10)),
        ]

        trends = build_monthly_trends(
            Decimal("3000"), Decimal("1200"), planned, date(2025, 7, 20), months=3
        )

        self.assertEqual([trend.month for trend in trends], ["2025-05", "2025-06", "2025-07"])
        self.assertTrue(all(trend.income == Decimal("3000.00") for trend in trends))
        self.assertTrue(all(trend.expenses == Decimal("1200.00") for trend in trends))
        self.assertEqual(trends[1].planned, Decimal("100.00"))
        self.assertEqual(trends[1].balance, Decimal("1700.00"))
        self.assertEqual(trends[2].balance, Decimal("1800.00"))

    def test_trends_cross_year_boundary(self) -> None:
        trends = build_monthly_trends(Decimal("0"), Decimal("0"), [], date(2025, 2, 3), months=3)

        self.assertEqual([trend.month for trend in trends], ["2024-12", "2025-01", "2025-02"])


class AdjustmentTypeTests(unittest.TestCase):
    def test_normalizes_known_types(self) -> None:
        self.assertEqual(normalize_adjustment_type("correction"), CORRECTION)
        self.assertEqual(normalize_adjustment_type("MONTHLY_RESET"), MONTHLY_RESET)

    def test_defaults_to_manual_adjustment(self) -> None:
        self.assertEqual(normalize_adjustment_type(None), MANUAL_ADJUSTMENT)
        self.assertEqual(normalize_adjustment_type("bonus"), MANUAL_ADJUSTMENT)


if __name__ == "__main__":
    unittest.main()
