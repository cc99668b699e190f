"""
Reconciliation Module

Derives a loan's aggregate state from its matched repayments:

- remaining principal and completion status
- overdue amount and missed-payment count
- next payment date
- per-period status

Everything here is pure arithmetic on its arguments. "Today" is always passed
in, so the same loan, repayments and date give the same aggregate every time.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .enums import LoanStatus, PaymentType, PeriodStatus, RepaymentType
from .loans import quantize_amount
from .matching import MatchResult


ZERO = Decimal('0')


@dataclass(frozen=True)
class LoanAggregate:
    """Derived loan state; the only values written back to a loan's aggregate fields"""
    remaining_amount: Decimal
    status: LoanStatus
    overdue_amount: Decimal
    missed_payments: int
    next_payment_date: Optional[date]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remaining_amount": str(self.remaining_amount),
            "status": self.status.value,
            "overdue_amount": str(self.overdue_amount),
            "missed_payments": self.missed_payments,
            "next_payment_date": self.next_payment_date.isoformat() if self.next_payment_date else None
        }

    @classmethod
    def from_loan(cls, loan) -> 'LoanAggregate':
        """Aggregate currently cached on a loan record"""
        return cls(
            remaining_amount=loan.remaining_amount,
            status=loan.status,
            overdue_amount=loan.overdue_amount,
            missed_payments=loan.missed_payments,
            next_payment_date=loan.next_payment_date
        )


def period_status(repayment, due_date: date, today: date) -> PeriodStatus:
    """Status of a period given its matched repayment (or None)"""
    if repayment is not None:
        if repayment.payment_type == PaymentType.INTEREST_ONLY:
            return PeriodStatus.INTEREST_ONLY
        return PeriodStatus.PAID
    if due_date < today:
        return PeriodStatus.MISSED
    return PeriodStatus.PENDING


def apply_matches(periods: Sequence, matched: Mapping[int, Any], today: date) -> List:
    """Periods with their status and matched repayment filled in"""
    result = []
    for entry in periods:
        repayment = matched.get(entry.period)
        result.append(entry.with_match(period_status(repayment, entry.due_date, today), repayment))
    return result


def count_expected_payments(
    disbursement_date: date,
    repayment_type: RepaymentType,
    duration: int,
    today: date
) -> int:
    """
    Number of installments that should have fallen due by today

    Monthly: whole months elapsed since disbursement, one fewer while today's
    day-of-month is still before the disbursement day. Weekly: whole weeks
    elapsed. Clamped to [0, duration].
    """
    if repayment_type == RepaymentType.MONTHLY:
        expected = (today.year - disbursement_date.year) * 12 + (today.month - disbursement_date.month)
        if today.day < disbursement_date.day:
            expected -= 1
    else:
        expected = (today - disbursement_date).days // 7
    return max(0, min(expected, duration))


def principal_per_period(amount: Decimal, duration: int, repayment_type: RepaymentType) -> Decimal:
    """Principal component of one installment

    Weekly loans collect principal over duration - 1 installments.
    """
    if repayment_type == RepaymentType.MONTHLY:
        divisor = duration
    else:
        divisor = max(1, duration - 1)
    return amount / Decimal(divisor)


def calculate_remaining_amount(amount: Decimal, matched: Mapping[int, Any]) -> Decimal:
    """Principal less every active full repayment, floored at zero"""
    paid = sum(
        (repayment.amount for repayment in matched.values()
         if repayment.payment_type == PaymentType.FULL),
        ZERO
    )
    return quantize_amount(max(ZERO, amount - paid))


def calculate_overdue(
    matched: Mapping[int, Any],
    expected_payments: int,
    installment_amount: Decimal,
    principal_component: Decimal,
    status: LoanStatus
) -> tuple:
    """
    Overdue amount and missed-payment count over periods 1..expected_payments

    An unpaid period owes the full installment, an interest-only period owes
    its principal component. Both count as missed. Loans that are not active
    have nothing overdue.

    Returns:
        (overdue_amount, missed_payments)
    """
    if status != LoanStatus.ACTIVE:
        return ZERO, 0

    overdue = ZERO
    missed = 0
    for period in range(1, expected_payments + 1):
        repayment = matched.get(period)
        if repayment is None:
            overdue += installment_amount
            missed += 1
        elif repayment.payment_type == PaymentType.INTEREST_ONLY:
            overdue += principal_component
            missed += 1
    return quantize_amount(overdue), missed


def calculate_next_payment_date(
    periods: Sequence,
    matched: Mapping[int, Any],
    today: date,
    status: LoanStatus,
    has_repayments: bool
) -> Optional[date]:
    """
    Next date a payment is expected

    The earliest past-due period without a full payment takes priority,
    then the earliest such period due on or after today. A loan without any
    repayment yet is next due on its first period. Completed loans and loans
    with every period fully paid have no next payment date.
    """
    if status == LoanStatus.COMPLETED or not periods:
        return None
    if not has_repayments:
        return periods[0].due_date

    unpaid = [
        entry for entry in periods
        if not (entry.period in matched and matched[entry.period].payment_type == PaymentType.FULL)
    ]
    overdue = [entry.due_date for entry in unpaid if entry.due_date < today]
    if overdue:
        return min(overdue)
    upcoming = [entry.due_date for entry in unpaid if entry.due_date >= today]
    if upcoming:
        return min(upcoming)
    return None


def recalculate(loan, periods: Sequence, match: MatchResult, today: date,
                has_repayments: Optional[bool] = None) -> LoanAggregate:
    """
    Derive a loan's full aggregate from its schedule and matched repayments

    Args:
        loan: Loan record supplying the static terms
        periods: Generated schedule for the loan
        match: Output of match_repayments for the loan's repayments
        today: Reference date
        has_repayments: Whether the loan has any repayment at all, matched or
            not; defaults to what the match result saw

    Returns:
        LoanAggregate
    """
    if has_repayments is None:
        has_repayments = bool(match.matched or match.unmatched or match.superseded)

    remaining = calculate_remaining_amount(loan.amount, match.matched)
    status = LoanStatus.COMPLETED if remaining <= ZERO else LoanStatus.ACTIVE

    expected = count_expected_payments(
        loan.disbursement_date, loan.repayment_type, loan.duration, today
    )
    overdue_amount, missed_payments = calculate_overdue(
        match.matched,
        expected,
        loan.installment_amount,
        principal_per_period(loan.amount, loan.duration, loan.repayment_type),
        status
    )
    next_payment_date = calculate_next_payment_date(
        periods, match.matched, today, status, has_repayments
    )

    return LoanAggregate(
        remaining_amount=remaining,
        status=status,
        overdue_amount=overdue_amount,
        missed_payments=missed_payments,
        next_payment_date=next_payment_date
    )
