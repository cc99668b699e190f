"""
Test suite for repayment matching

Tests weekly analytic matching, the monthly closest-due-date window, explicit
period assignment, and latest-payment-wins resolution independent of input order.
"""

import itertools
import logging
from decimal import Decimal
from datetime import datetime, timezone, date

from microfinance.enums import PaymentType, RepaymentType
from microfinance.loans import Repayment
from microfinance.matching import (
    closest_period, match_repayments, resolve_period, weekly_period_for
)
from microfinance.schedule import generate_schedule


DISBURSED = date(2024, 1, 1)


def make_repayment(repayment_id, paid_date, amount='100.00', payment_type=PaymentType.FULL, period=None):
    now = datetime.now(timezone.utc)
    return Repayment(
        id=repayment_id,
        created_at=now,
        updated_at=now,
        loan_id=1,
        amount=Decimal(amount),
        paid_date=paid_date,
        payment_type=payment_type,
        period=period
    )


class TestWeeklyMatching:
    """Test analytic week assignment"""

    def setup_method(self):
        self.periods = generate_schedule(DISBURSED, 11, RepaymentType.WEEKLY, Decimal('500.00'))

    def test_week_number(self):
        assert weekly_period_for(DISBURSED, date(2024, 1, 1)) == 1
        assert weekly_period_for(DISBURSED, date(2024, 1, 7)) == 1
        assert weekly_period_for(DISBURSED, date(2024, 1, 8)) == 2
        assert weekly_period_for(DISBURSED, date(2024, 1, 11)) == 2

    def test_payment_before_disbursement_is_week_one(self):
        assert weekly_period_for(DISBURSED, date(2023, 12, 20)) == 1

    def test_ten_days_after_disbursement_matches_period_two(self):
        """floor(10 / 7) + 1 = 2, whatever the insertion order"""
        target = make_repayment(1, date(2024, 1, 11))
        others = [make_repayment(2, date(2024, 1, 2)), make_repayment(3, date(2024, 1, 20))]

        for ordering in itertools.permutations([target] + others):
            result = match_repayments(self.periods, ordering, DISBURSED, RepaymentType.WEEKLY)
            assert result.matched[2].id == 1
            assert result.period_of(1) == 2

    def test_payment_beyond_last_week_is_unmatched(self):
        late = make_repayment(1, date(2024, 6, 1))

        result = match_repayments(self.periods, [late], DISBURSED, RepaymentType.WEEKLY)

        assert result.matched == {}
        assert [r.id for r in result.unmatched] == [1]


class TestMonthlyMatching:
    """Test closest due date matching within the window"""

    def setup_method(self):
        self.periods = generate_schedule(DISBURSED, 3, RepaymentType.MONTHLY, Decimal('1200.00'))

    def test_exact_due_date(self):
        assert closest_period(self.periods, date(2024, 3, 1), 14) == 2

    def test_early_and_late_payments_within_window(self):
        assert closest_period(self.periods, date(2024, 1, 25), 14) == 1
        assert closest_period(self.periods, date(2024, 2, 10), 14) == 1
        assert closest_period(self.periods, date(2024, 2, 20), 14) == 2

    def test_twenty_days_from_nearest_due_date_is_unmatched(self, caplog):
        """Payments outside the window are reported, never force-matched"""
        stray = make_repayment(7, date(2024, 4, 21))

        with caplog.at_level(logging.WARNING, logger="microfinance.matching"):
            result = match_repayments(
                self.periods, [stray], DISBURSED, RepaymentType.MONTHLY, loan_id=1
            )

        assert result.matched == {}
        assert [r.id for r in result.unmatched] == [7]
        assert any("matches no period" in record.getMessage() for record in caplog.records)

    def test_window_is_configurable(self):
        assert closest_period(self.periods, date(2024, 4, 21), 20) == 3
        assert closest_period(self.periods, date(2024, 4, 21), 19) is None

    def test_equidistant_due_dates_prefer_earlier_period(self):
        periods = generate_schedule(date(2024, 3, 1), 3, RepaymentType.MONTHLY, Decimal('1'))
        # Due dates 2024-04-01 and 2024-05-01 are 30 days apart
        assert closest_period(periods, date(2024, 4, 16), 15) == 1


class TestExplicitPeriod:
    """Test payments recorded against a specific period"""

    def setup_method(self):
        self.periods = generate_schedule(DISBURSED, 3, RepaymentType.MONTHLY, Decimal('1200.00'))

    def test_explicit_period_overrides_date(self):
        repayment = make_repayment(1, date(2024, 2, 1), period=3)
        assert resolve_period(repayment, self.periods, DISBURSED, RepaymentType.MONTHLY) == 3

    def test_explicit_period_out_of_range(self):
        repayment = make_repayment(1, date(2024, 2, 1), period=4)
        assert resolve_period(repayment, self.periods, DISBURSED, RepaymentType.MONTHLY) is None


class TestConflictResolution:
    """Test latest-payment-wins when several repayments share a period"""

    def setup_method(self):
        self.periods = generate_schedule(DISBURSED, 3, RepaymentType.MONTHLY, Decimal('1200.00'))

    def test_latest_paid_date_wins(self):
        early = make_repayment(1, date(2024, 1, 30), payment_type=PaymentType.INTEREST_ONLY)
        late = make_repayment(2, date(2024, 2, 3))

        result = match_repayments(self.periods, [late, early], DISBURSED, RepaymentType.MONTHLY)

        assert result.matched[1].id == 2
        assert [r.id for r in result.superseded] == [1]

    def test_same_paid_date_higher_id_wins_in_any_order(self):
        repayments = [
            make_repayment(4, date(2024, 2, 1)),
            make_repayment(9, date(2024, 2, 1)),
            make_repayment(6, date(2024, 2, 1)),
        ]

        outcomes = set()
        for ordering in itertools.permutations(repayments):
            result = match_repayments(self.periods, ordering, DISBURSED, RepaymentType.MONTHLY)
            outcomes.add((result.matched[1].id, tuple(r.id for r in result.superseded)))

        assert outcomes == {(9, (4, 6))}

    def test_matched_repayments_in_period_order(self):
        repayments = [
            make_repayment(1, date(2024, 4, 1)),
            make_repayment(2, date(2024, 2, 1)),
        ]

        result = match_repayments(self.periods, repayments, DISBURSED, RepaymentType.MONTHLY)

        assert [r.id for r in result.matched_repayments] == [2, 1]
        assert result.period_of(1) == 3
        assert result.period_of(42) is None
