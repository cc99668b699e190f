"""
Schedule View Module

Builds the paginated payment-schedule listing shown for a loan. By default a
loan's listing shows:

- every past-due period;
- every period that is paid, interest-only or missed;
- periods due within the upcoming window (7 days);
- the next pending period, even when it falls outside that window.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union
import math

from .enums import PeriodStatus
from .exceptions import InvalidInputError


DEFAULT_PAGE_SIZE = 10
DEFAULT_UPCOMING_DAYS = 7

_ALWAYS_SHOWN = (PeriodStatus.PAID, PeriodStatus.INTEREST_ONLY, PeriodStatus.MISSED)


@dataclass(frozen=True)
class ScheduleRow:
    """One displayed schedule period"""
    loan_id: Optional[int]
    period: int
    due_date: date
    amount: Any
    status: PeriodStatus
    repayment: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        repayment = None
        if self.repayment is not None:
            repayment = {
                "id": self.repayment.id,
                "amount": str(self.repayment.amount),
                "paid_date": self.repayment.paid_date.isoformat(),
                "payment_type": self.repayment.payment_type.value
            }
        return {
            "id": self.period,
            "loan_id": self.loan_id,
            "period": self.period,
            "due_date": self.due_date.isoformat(),
            "amount": str(self.amount),
            "status": self.status.value,
            "actual_payment_date": repayment["paid_date"] if repayment else None,
            "repayment": repayment
        }


@dataclass
class ScheduleView:
    """A page of schedule rows with pagination metadata"""
    schedules: List[ScheduleRow] = field(default_factory=list)
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    total_count: int = 0
    total_pages: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedules": [row.to_dict() for row in self.schedules],
            "page": self.page,
            "page_size": self.page_size,
            "total_count": self.total_count,
            "total_pages": self.total_pages
        }


def _coerce_status(status: Union[str, PeriodStatus, None]) -> Optional[PeriodStatus]:
    if status is None or status == "":
        return None
    if isinstance(status, PeriodStatus):
        return status
    try:
        return PeriodStatus(status)
    except ValueError:
        raise InvalidInputError(
            f"status must be one of {[s.value for s in PeriodStatus]}, got {status!r}"
        )


def next_pending_period(periods: Sequence, today: date) -> Optional[int]:
    """Earliest pending period due on or after today"""
    upcoming = [
        entry for entry in periods
        if entry.status == PeriodStatus.PENDING and entry.due_date >= today
    ]
    if not upcoming:
        return None
    return min(upcoming, key=lambda entry: entry.due_date).period


def is_visible(entry, horizon: date, next_pending: Optional[int]) -> bool:
    return (
        entry.status in _ALWAYS_SHOWN
        or entry.due_date <= horizon
        or entry.period == next_pending
    )


def build_schedule_view(
    periods: Sequence,
    today: date,
    status: Union[str, PeriodStatus, None] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    include_all: bool = False,
    upcoming_days: int = DEFAULT_UPCOMING_DAYS,
    loan_id: Optional[int] = None
) -> ScheduleView:
    """
    Filter, order and paginate reconciled periods for display

    Args:
        periods: Periods with status and repayment already applied
        today: Reference date
        status: Only include periods with this status
        page: 1-based page number (values below 1 become 1)
        page_size: Rows per page (values below 1 become the default)
        include_all: Show every period and skip pagination
        upcoming_days: Width of the upcoming window
        loan_id: Copied onto each row

    Returns:
        ScheduleView with rows in descending period order
    """
    page = page if page and page > 0 else 1
    page_size = page_size if page_size and page_size > 0 else DEFAULT_PAGE_SIZE
    wanted = _coerce_status(status)

    horizon = today + timedelta(days=upcoming_days)
    next_pending = next_pending_period(periods, today)

    rows = [
        ScheduleRow(
            loan_id=loan_id,
            period=entry.period,
            due_date=entry.due_date,
            amount=entry.amount,
            status=entry.status,
            repayment=entry.repayment
        )
        for entry in periods
        if (include_all or is_visible(entry, horizon, next_pending))
        and (wanted is None or entry.status == wanted)
    ]
    rows.sort(key=lambda row: row.period, reverse=True)

    total_count = len(rows)
    if not include_all:
        rows = rows[(page - 1) * page_size:page * page_size]

    return ScheduleView(
        schedules=rows,
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=math.ceil(total_count / page_size)
    )
