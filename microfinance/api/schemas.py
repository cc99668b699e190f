"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..loans import Loan, Repayment


class CreateLoanRequest(BaseModel):
    amount: Decimal = Field(..., description="Principal")
    interest_rate: Decimal = Field(Decimal('0'), description="Interest amount per period")
    duration: int = Field(..., description="Number of repayment periods")
    disbursement_date: str  # ISO date string
    repayment_type: str = Field(..., description="Monthly or Weekly")
    installment_amount: Optional[Decimal] = None
    document_charge: Decimal = Decimal('0')
    borrower_name: Optional[str] = None


class RecordRepaymentRequest(BaseModel):
    amount: Decimal
    paid_date: str  # ISO date string
    payment_type: str = Field("full", description="full or interestOnly")
    period: Optional[int] = None


class UpdateRepaymentRequest(BaseModel):
    amount: Optional[Decimal] = None
    paid_date: Optional[str] = None
    payment_type: Optional[str] = None
    period: Optional[int] = None
    clear_period: bool = Field(False, description="Remove an explicit period")


class ScheduleActionRequest(BaseModel):
    action: str = Field(..., description="recordPayment or updateOverdue")
    period: Optional[int] = None
    amount: Optional[Decimal] = None
    paid_date: Optional[str] = None
    payment_type: str = "full"


class LoanResponse(BaseModel):
    id: int
    borrower_name: Optional[str] = None
    amount: str
    interest_rate: str
    installment_amount: str
    document_charge: str
    repayment_type: str
    duration: int
    disbursement_date: str
    remaining_amount: str
    status: str
    overdue_amount: str
    missed_payments: int
    next_payment_date: Optional[str] = None

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanResponse':
        return cls(
            id=loan.id,
            borrower_name=loan.borrower_name,
            amount=str(loan.amount),
            interest_rate=str(loan.interest_rate),
            installment_amount=str(loan.installment_amount),
            document_charge=str(loan.document_charge),
            repayment_type=loan.repayment_type.value,
            duration=loan.duration,
            disbursement_date=loan.disbursement_date.isoformat(),
            remaining_amount=str(loan.remaining_amount),
            status=loan.status.value,
            overdue_amount=str(loan.overdue_amount),
            missed_payments=loan.missed_payments,
            next_payment_date=loan.next_payment_date.isoformat() if loan.next_payment_date else None
        )


class RepaymentResponse(BaseModel):
    id: int
    loan_id: int
    amount: str
    paid_date: str
    payment_type: str
    period: Optional[int] = None

    @classmethod
    def from_repayment(cls, repayment: Repayment) -> 'RepaymentResponse':
        return cls(
            id=repayment.id,
            loan_id=repayment.loan_id,
            amount=str(repayment.amount),
            paid_date=repayment.paid_date.isoformat(),
            payment_type=repayment.payment_type.value,
            period=repayment.period
        )


class RepaymentChangeResponse(BaseModel):
    """A repayment change together with the loan it left behind"""
    repayment: RepaymentResponse
    loan: LoanResponse
    message: str


class ScheduleResponse(BaseModel):
    schedules: List[Dict[str, Any]]
    page: int
    page_size: int
    total_count: int
    total_pages: int
