"""Enumerations shared by loan records and the schedule computations."""

from enum import Enum


class RepaymentType(Enum):
    """Repayment cadence, fixing the due-date formula"""
    MONTHLY = "Monthly"
    WEEKLY = "Weekly"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "Active"
    COMPLETED = "Completed"


class PaymentType(Enum):
    """Kinds of repayment"""
    FULL = "full"                   # Reduces outstanding principal
    INTEREST_ONLY = "interestOnly"  # Services interest only


class PeriodStatus(Enum):
    """Status of one scheduled installment"""
    PENDING = "Pending"
    PAID = "Paid"
    INTEREST_ONLY = "InterestOnly"
    MISSED = "Missed"
