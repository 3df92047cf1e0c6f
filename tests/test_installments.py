"""
Tests for installment calculation, due schedules and watermark paid status
"""

import pytest

from qard_fund.exceptions import ValidationError
from qard_fund.installments import (
    build_installment_schedule, compute_due_schedule, compute_installment,
    first_due_date, is_month_paid, last_due_date
)


class TestComputeInstallment:
    """Test the fixed monthly installment"""

    def test_even_division(self):
        assert compute_installment(1_200_000, 12) == 100_000

    def test_floor_division(self):
        assert compute_installment(1_000_000, 3) == 333_333

    def test_term_below_one_treated_as_one(self):
        assert compute_installment(500_000, 0) == 500_000
        assert compute_installment(500_000, -4) == 500_000

    def test_zero_principal(self):
        assert compute_installment(0, 10) == 0

    def test_negative_principal_rejected(self):
        with pytest.raises(ValidationError):
            compute_installment(-1, 10)


class TestDueSchedule:
    """Test due dates"""

    def test_three_month_loan(self):
        schedule = compute_due_schedule("1400-01-15", 3)
        assert [e.due_date for e in schedule] == ["1400-02-15", "1400-03-15", "1400-04-15"]
        assert [e.month_index for e in schedule] == [1, 2, 3]

    def test_crosses_year(self):
        schedule = compute_due_schedule("1400-11-20", 3)
        assert [e.due_date for e in schedule] == ["1400-12-20", "1401-01-20", "1401-02-20"]

    def test_day_31_capped(self):
        schedule = compute_due_schedule("1400-01-31", 2)
        assert [e.due_date for e in schedule] == ["1400-02-30", "1400-03-30"]

    def test_first_and_last_due(self):
        assert first_due_date("1400-01-15") == "1400-02-15"
        assert last_due_date("1400-01-15", 12) == "1401-01-15"
        assert last_due_date("1400-01-15", 0) is None


class TestWatermark:
    """Test paid status inference from cumulative repayments"""

    def test_exact_watermark(self):
        installment = 100_000
        assert is_month_paid(2, 2 * installment, installment)

    def test_just_below_watermark(self):
        installment = 100_000
        assert not is_month_paid(2, installment + 1, installment)

    def test_overpayment_covers_later_months(self):
        assert is_month_paid(3, 350_000, 100_000)
        assert not is_month_paid(4, 350_000, 100_000)

    def test_schedule_rows(self):
        rows = build_installment_schedule("1400-01-15", 3, 100_000, 150_000)
        assert [row.is_paid for row in rows] == [True, False, False]
        assert [row.threshold for row in rows] == [100_000, 200_000, 300_000]
