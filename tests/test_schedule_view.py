"""
Test suite for the payment schedule view

Tests period visibility, status filtering, descending order and pagination.
"""

import pytest
from decimal import Decimal
from datetime import date, timedelta

from microfinance.enums import PeriodStatus, RepaymentType
from microfinance.exceptions import InvalidInputError
from microfinance.schedule import generate_schedule
from microfinance.schedule_view import build_schedule_view, is_visible, next_pending_period


def reconciled_periods(statuses, disbursed=date(2024, 1, 1)):
    """Weekly periods carrying the given statuses, in order"""
    periods = generate_schedule(disbursed, len(statuses), RepaymentType.WEEKLY, Decimal('500.00'))
    return [p.with_match(status, None) for p, status in zip(periods, statuses)]


class TestVisibility:
    """Test which periods are shown by default"""

    def test_next_pending_period(self):
        periods = reconciled_periods([PeriodStatus.PAID, PeriodStatus.MISSED] + [PeriodStatus.PENDING] * 3)
        # Period 3 is due 2024-01-22
        assert next_pending_period(periods, date(2024, 1, 16)) == 3
        assert next_pending_period(periods, date(2024, 3, 1)) is None

    def test_far_future_pending_period_hidden(self):
        periods = reconciled_periods([PeriodStatus.PENDING] * 5)
        today = date(2024, 1, 1)
        horizon = today + timedelta(days=7)
        next_pending = next_pending_period(periods, today)

        assert is_visible(periods[0], horizon, next_pending)
        assert not is_visible(periods[3], horizon, next_pending)

    def test_default_view_contents(self):
        """Paid, missed, due-soon and the next pending period are shown"""
        statuses = [
            PeriodStatus.PAID,           # 01-08
            PeriodStatus.MISSED,         # 01-15
            PeriodStatus.INTEREST_ONLY,  # 01-22
            PeriodStatus.PENDING,        # 01-29
            PeriodStatus.PENDING,        # 02-05
            PeriodStatus.PENDING,        # 02-12
        ]
        view = build_schedule_view(reconciled_periods(statuses), date(2024, 1, 24))

        assert [row.period for row in view.schedules] == [4, 3, 2, 1]
        assert view.total_count == 4
        assert view.total_pages == 1

    def test_next_pending_shown_beyond_window(self):
        statuses = [PeriodStatus.PAID] + [PeriodStatus.PENDING] * 4
        view = build_schedule_view(reconciled_periods(statuses), date(2024, 1, 9), upcoming_days=0)

        assert [row.period for row in view.schedules] == [2, 1]

    def test_include_all_shows_every_period(self):
        view = build_schedule_view(
            reconciled_periods([PeriodStatus.PENDING] * 25), date(2024, 1, 1), include_all=True
        )

        assert view.total_count == 25
        assert len(view.schedules) == 25
        assert view.schedules[0].period == 25


class TestFilteringAndPaging:
    """Test status filter and pagination"""

    def setup_method(self):
        statuses = [PeriodStatus.PAID] * 12 + [PeriodStatus.MISSED] * 3 + [PeriodStatus.PENDING] * 5
        self.periods = reconciled_periods(statuses)
        self.today = date(2024, 4, 16)

    def test_status_filter(self):
        view = build_schedule_view(self.periods, self.today, status="Missed")

        assert [row.period for row in view.schedules] == [15, 14, 13]
        assert all(row.status == PeriodStatus.MISSED for row in view.schedules)

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidInputError):
            build_schedule_view(self.periods, self.today, status="Late")

    def test_pages(self):
        first = build_schedule_view(self.periods, self.today, page=1, page_size=10)
        second = build_schedule_view(self.periods, self.today, page=2, page_size=10)

        assert first.total_count == second.total_count
        assert first.total_pages == 2
        assert len(first.schedules) == 10
        assert first.schedules[0].period > second.schedules[0].period
        assert len(first.schedules) + len(second.schedules) == first.total_count

    def test_page_past_end_is_empty(self):
        view = build_schedule_view(self.periods, self.today, page=9, page_size=10)

        assert view.schedules == []
        assert view.page == 9

    def test_invalid_paging_falls_back_to_defaults(self):
        view = build_schedule_view(self.periods, self.today, page=0, page_size=0)

        assert view.page == 1
        assert view.page_size == 10

    def test_row_serialization(self):
        view = build_schedule_view(self.periods, self.today, page_size=1)
        row = view.to_dict()["schedules"][0]

        assert row["amount"] == "500.00"
        assert row["status"] in {s.value for s in PeriodStatus}
        assert row["repayment"] is None
        assert row["actual_payment_date"] is None
