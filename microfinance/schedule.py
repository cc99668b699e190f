"""
Schedule Module

Derives a loan's installment schedule from its terms. Schedules are never
stored: they are regenerated on every read, so they cannot go stale.
"""

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, List, Optional
import calendar

from .enums import PeriodStatus, RepaymentType


@dataclass(frozen=True)
class Period:
    """One scheduled installment opportunity"""
    period: int
    due_date: date
    amount: Decimal
    status: PeriodStatus = PeriodStatus.PENDING
    repayment: Optional[Any] = None     # Matched Repayment, set by reconciliation

    def with_match(self, status: PeriodStatus, repayment) -> 'Period':
        return replace(self, status=status, repayment=repayment)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for_period(disbursement_date: date, repayment_type: RepaymentType, period: int) -> date:
    """Due date of the given period number (1-based)"""
    if repayment_type == RepaymentType.MONTHLY:
        return add_months(disbursement_date, period)
    if repayment_type == RepaymentType.WEEKLY:
        return disbursement_date + timedelta(days=7 * period)
    raise ValueError(f"Unsupported repayment type: {repayment_type}")


def generate_schedule(
    disbursement_date: date,
    duration: int,
    repayment_type: RepaymentType,
    installment_amount: Decimal
) -> List[Period]:
    """
    Generate the full installment schedule for a loan

    Args:
        disbursement_date: Date the loan was disbursed
        duration: Number of periods (>= 1)
        repayment_type: Monthly or Weekly
        installment_amount: Amount due each period

    Returns:
        Periods 1..duration in order, all PENDING
    """
    return [
        Period(
            period=number,
            due_date=due_date_for_period(disbursement_date, repayment_type, number),
            amount=installment_amount
        )
        for number in range(1, duration + 1)
    ]


def generate_loan_schedule(loan) -> List[Period]:
    """Schedule for a Loan record"""
    return generate_schedule(
        loan.disbursement_date, loan.duration, loan.repayment_type, loan.installment_amount
    )
