"""
Test suite for schedule module

Tests due date derivation for monthly and weekly loans, including month-end
clamping, and full schedule generation.
"""

import pytest
from decimal import Decimal
from datetime import date
from types import SimpleNamespace

from microfinance.enums import PeriodStatus, RepaymentType
from microfinance.schedule import (
    Period, add_months, due_date_for_period, generate_schedule, generate_loan_schedule
)


class TestAddMonths:
    """Test calendar month arithmetic"""

    def test_simple_month_step(self):
        assert add_months(date(2024, 1, 1), 1) == date(2024, 2, 1)
        assert add_months(date(2024, 1, 15), 3) == date(2024, 4, 15)

    def test_year_rollover(self):
        assert add_months(date(2024, 11, 10), 2) == date(2025, 1, 10)
        assert add_months(date(2024, 12, 1), 12) == date(2025, 12, 1)

    def test_month_end_clamped(self):
        """Day 31 falls back to the last day of shorter months"""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)  # leap year
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)

    def test_clamping_does_not_drift(self):
        """Each period is computed from disbursement, not from the previous due date"""
        assert add_months(date(2024, 1, 31), 2) == date(2024, 3, 31)


class TestDueDates:
    """Test per-period due dates"""

    def test_monthly_due_dates(self):
        disbursed = date(2024, 1, 1)
        assert due_date_for_period(disbursed, RepaymentType.MONTHLY, 1) == date(2024, 2, 1)
        assert due_date_for_period(disbursed, RepaymentType.MONTHLY, 3) == date(2024, 4, 1)

    def test_weekly_due_dates(self):
        disbursed = date(2024, 1, 1)
        assert due_date_for_period(disbursed, RepaymentType.WEEKLY, 1) == date(2024, 1, 8)
        assert due_date_for_period(disbursed, RepaymentType.WEEKLY, 2) == date(2024, 1, 15)
        assert due_date_for_period(disbursed, RepaymentType.WEEKLY, 11) == date(2024, 3, 18)

    def test_unknown_cadence_rejected(self):
        with pytest.raises(ValueError):
            due_date_for_period(date(2024, 1, 1), "Daily", 1)


class TestGenerateSchedule:
    """Test schedule generation"""

    def test_monthly_schedule(self):
        """Test a ten period monthly schedule"""
        periods = generate_schedule(date(2024, 1, 1), 10, RepaymentType.MONTHLY, Decimal('1200.00'))

        assert len(periods) == 10
        assert [p.period for p in periods] == list(range(1, 11))
        assert periods[0].due_date == date(2024, 2, 1)
        assert periods[-1].due_date == date(2024, 11, 1)
        assert all(p.amount == Decimal('1200.00') for p in periods)
        assert all(p.status == PeriodStatus.PENDING for p in periods)
        assert all(p.repayment is None for p in periods)

    def test_weekly_schedule_is_strictly_increasing(self):
        periods = generate_schedule(date(2024, 1, 1), 11, RepaymentType.WEEKLY, Decimal('500.00'))

        assert len(periods) == 11
        for earlier, later in zip(periods, periods[1:]):
            assert (later.due_date - earlier.due_date).days == 7

    def test_schedule_from_loan_record(self):
        loan = SimpleNamespace(
            disbursement_date=date(2024, 3, 31),
            duration=3,
            repayment_type=RepaymentType.MONTHLY,
            installment_amount=Decimal('100.00')
        )

        periods = generate_loan_schedule(loan)

        assert [p.due_date for p in periods] == [
            date(2024, 4, 30), date(2024, 5, 31), date(2024, 6, 30)
        ]

    def test_period_with_match_returns_copy(self):
        period = Period(period=1, due_date=date(2024, 2, 1), amount=Decimal('10'))
        matched = period.with_match(PeriodStatus.PAID, "repayment")

        assert matched.status == PeriodStatus.PAID
        assert matched.repayment == "repayment"
        assert period.status == PeriodStatus.PENDING
        assert period.repayment is None
