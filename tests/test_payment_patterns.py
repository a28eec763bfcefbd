"""Tests for payment pattern statistics."""
from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from bookkeeper.xero.patterns import calculate_payment_pattern

DUE = date(2024, 3, 1)


def paid(days_after_due, **extra):
    values = {"due_date": DUE, "fully_paid_on_date": DUE + timedelta(days=days_after_due)}
    values.update(extra)
    return SimpleNamespace(**values)


class TestCalculatePaymentPattern:
    """Timing statistics for one contact."""

    def test_needs_minimum_sample(self):
        assert calculate_payment_pattern([paid(5), paid(6)]) is None

    def test_rates_and_average(self):
        stats = calculate_payment_pattern([paid(-2), paid(0), paid(2), paid(10)])

        assert stats.sample_size == 4
        assert stats.early_rate == Decimal("50.00")
        assert stats.on_time_rate == Decimal("25.00")
        assert stats.late_rate == Decimal("25.00")
        # Absolute days: 2 + 0 + 2 + 10
        assert stats.average_days_to_pay == Decimal("3.50")

    def test_grace_boundary_is_on_time(self):
        stats = calculate_payment_pattern([paid(3), paid(3), paid(4)])

        assert stats.on_time_rate == Decimal("66.67")
        assert stats.late_rate == Decimal("33.33")

    def test_falls_back_to_last_update(self):
        invoices = [
            paid(0, fully_paid_on_date=None, updated_at=datetime(2024, 3, 8, 12, 0)),
            paid(7),
            paid(7),
        ]

        stats = calculate_payment_pattern(invoices)

        assert stats.sample_size == 3
        assert stats.average_days_to_pay == Decimal("7.00")

    def test_rows_without_dates_are_ignored(self):
        invoices = [
            SimpleNamespace(due_date=None, fully_paid_on_date=DUE),
            paid(1),
            paid(1),
        ]

        assert calculate_payment_pattern(invoices) is None
