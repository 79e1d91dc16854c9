import unittest
from datetime import date
from decimal import Decimal

from budget_backend.errors import InvalidBudgetInput, UnexpectedExpenseInFuture
from budget_backend.unexpected_expenses import (
    UnexpectedExpense,
    monthly_unexpected_totals,
    recent_unexpected_expenses,
    summarize_unexpected_by_category,
    summarize_unexpected_expenses,
    validate_category,
    validate_unexpected_date,
)

TODAY = date(2025, 7, 20)


class UnexpectedExpenseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.expenses = [
            UnexpectedExpense(
                amount=Decimal("450"), date=date(2025, 7, 18), label="Brakes", category="car_repair", id=1
            ),
            UnexpectedExpense(
                amount=Decimal("90"), date=date(2025, 7, 2), label="Pharmacy", category="medical", id=2
            ),
            UnexpectedExpense(
                amount=Decimal("60"), date=date(2025, 5, 14), label="Doctor", category="medical", id=3
            ),
            UnexpectedExpense(
                amount=Decimal("700"), date=date(2024, 6, 30), label="Boiler", category="home_repair", id=4
            ),
            UnexpectedExpense(amount=Decimal("25"), date=date(2025, 6, 25), label="Locksmith", id=5),
        ]

    def test_future_date_is_rejected(self) -> None:
        with self.assertRaises(UnexpectedExpenseInFuture):
            validate_unexpected_date(date(2025, 7, 21), TODAY)

    def test_future_date_error_is_client_input_error(self) -> None:
        with self.assertRaises(InvalidBudgetInput):
            validate_unexpected_date(date(2026, 1, 1), TODAY)

    def test_today_and_past_dates_are_accepted(self) -> None:
        self.assertEqual(validate_unexpected_date(TODAY, TODAY), TODAY)
        self.assertEqual(validate_unexpected_date(date(2020, 2, 29), TODAY), date(2020, 2, 29))

    def test_category_defaults_to_other_and_is_normalized(self) -> None:
        self.assertEqual(validate_category(None), "other")
        self.assertEqual(validate_category(" Car_Repair "), "car_repair")

    def test_unknown_category_is_rejected(self) -> None:
        with self.assertRaises(InvalidBudgetInput):
            validate_category("groceries")

    def test_statistics_total_and_average(self) -> None:
        stats = summarize_unexpected_expenses(self.expenses)

        self.assertEqual(stats.total.count, 5)
        self.assertEqual(stats.total.amount, Decimal("1325"))
        self.assertEqual(stats.average, Decimal("265.00"))

    def test_average_is_rounded_to_cents(self) -> None:
        stats = summarize_unexpected_expenses(
            [
                UnexpectedExpense(amount=Decimal("10"), date=TODAY),
                UnexpectedExpense(amount=Decimal("10"), date=TODAY),
                UnexpectedExpense(amount=Decimal("5"), date=TODAY),
            ]
        )

        self.assertEqual(stats.average, Decimal("8.33"))

    def test_statistics_of_no_expenses_are_zero(self) -> None:
        stats = summarize_unexpected_expenses([])

        self.assertEqual(stats.total.count, 0)
        self.assertEqual(stats.total.amount, Decimal("0"))
        self.assertEqual(stats.average, Decimal("0"))

    def test_by_category_sorted_by_amount(self) -> None:
        totals = summarize_unexpected_by_category(self.expenses)

        self.assertEqual(
            [(entry.category, entry.total_amount, entry.count) for entry in totals],
            [
                ("home_repair", Decimal("700"), 1),
                ("car_repair", Decimal("450"), 1),
                ("medical", Decimal("150"), 2),
                ("other", Decimal("25"), 1),
            ],
        )

    def test_recent_keeps_window_newest_first(self) -> None:
        recent = recent_unexpected_expenses(self.expenses, TODAY)

        self.assertEqual([expense.id for expense in recent], [1, 2, 5])

    def test_recent_is_capped(self) -> None:
        many = [
            UnexpectedExpense(amount=Decimal("1"), date=date(2025, 7, day), id=day)
            for day in range(1, 16)
        ]

        recent = recent_unexpected_expenses(many, TODAY)

        self.assertEqual(len(recent), 10)
        self.assertEqual(recent[0].id, 15)
        self.assertEqual(recent[-1].id, 6)

    def test_monthly_totals_only_list_months_with_data(self) -> None:
        totals = monthly_unexpected_totals(self.expenses, TODAY)

        self.assertEqual(
            [(entry.month, entry.count, entry.total_amount) for entry in totals],
            [
                ("2025-05", 1, Decimal("60")),
                ("2025-06", 1, Decimal("25")),
                ("2025-07", 2, Decimal("540")),
            ],
        )

    def test_monthly_window_starts_on_first_day_of_month(self) -> None:
        totals = monthly_unexpected_totals(self.expenses, TODAY, months=3)

        self.assertEqual([entry.month for entry in totals], ["2025-05", "2025-06", "2025-07"])
        self.assertEqual(
            [entry.month for entry in monthly_unexpected_totals(self.expenses, TODAY, months=2)],
            ["2025-06", "2025-07"],
        )

    def test_monthly_window_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            monthly_unexpected_totals(self.expenses, TODAY, months=0)


if __name__ == "__main__":
    unittest.main()
