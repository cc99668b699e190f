"""
Loan Module

Loan and repayment records, input validation for loan terms and repayment
events, and loan creation and lookup. The aggregate fields on a loan
(remaining amount, status, overdue amount, missed payments, next payment date)
are a cache owned by the reconciliation in repayments.py and are never edited
by hand.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .enums import LoanStatus, PaymentType, RepaymentType
from .schedule import due_date_for_period
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError, LoanNotFoundError
from .logging_config import get_logger, log_action


AMOUNT_QUANTUM = Decimal('0.01')


def quantize_amount(value: Decimal) -> Decimal:
    """Round a monetary value to two decimal places"""
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, field_name: str = "amount", allow_zero: bool = False) -> Decimal:
    """Convert user input to a positive Decimal amount"""
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(f"{field_name} is required")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field_name} must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite number")
    if amount < 0:
        raise InvalidInputError(f"{field_name} must not be negative")
    try:
        amount = quantize_amount(amount)
    except InvalidOperation:
        raise InvalidInputError(f"{field_name} is too large: {value!r}")
    # Checked after rounding so sub-cent amounts cannot become zero
    if amount == 0 and not allow_zero:
        raise InvalidInputError(f"{field_name} must be greater than zero")
    return amount


def parse_date(value: Any, field_name: str = "date") -> date:
    """Accept a date or an ISO-8601 date string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise InvalidInputError(f"{field_name} is not a valid date: {value!r}")
    raise InvalidInputError(f"{field_name} is required")


def parse_payment_type(value: Union[str, PaymentType, None]) -> PaymentType:
    if value is None:
        return PaymentType.FULL
    if isinstance(value, PaymentType):
        return value
    try:
        return PaymentType(value)
    except ValueError:
        raise InvalidInputError(
            f"payment_type must be one of {[t.value for t in PaymentType]}, got {value!r}"
        )


def parse_repayment_type(value: Union[str, RepaymentType]) -> RepaymentType:
    if isinstance(value, RepaymentType):
        return value
    try:
        return RepaymentType(value)
    except ValueError:
        raise InvalidInputError(
            f"repayment_type must be one of {[t.value for t in RepaymentType]}, got {value!r}"
        )


def calculate_installment_amount(
    amount: Decimal,
    interest_rate: Decimal,
    duration: int,
    repayment_type: RepaymentType
) -> Decimal:
    """
    Default installment for a loan

    Monthly loans repay principal/duration plus the per-period interest each
    month. Weekly loans spread the principal over duration - 1 installments,
    the interest having been taken up front.
    """
    if repayment_type == RepaymentType.MONTHLY:
        return quantize_amount(amount / Decimal(duration) + interest_rate)
    return quantize_amount(amount / Decimal(max(1, duration - 1)))


@dataclass
class Loan(StorageRecord):
    """Loan with static terms and the cached reconciliation aggregate"""
    amount: Decimal                     # Principal
    interest_rate: Decimal              # Interest amount per period
    repayment_type: RepaymentType
    duration: int                       # Number of periods
    disbursement_date: date
    installment_amount: Decimal
    document_charge: Decimal = Decimal('0')
    borrower_name: Optional[str] = None

    # Aggregate, recomputed on every repayment change
    remaining_amount: Optional[Decimal] = None
    status: LoanStatus = LoanStatus.ACTIVE
    overdue_amount: Decimal = Decimal('0')
    missed_payments: int = 0
    next_payment_date: Optional[date] = None

    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = self.amount

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = cls._parse_timestamps(data)
        for field_name in ('amount', 'interest_rate', 'installment_amount', 'document_charge',
                           'remaining_amount', 'overdue_amount'):
            if data.get(field_name) is not None:
                data[field_name] = Decimal(data[field_name])
        data['repayment_type'] = RepaymentType(data['repayment_type'])
        data['status'] = LoanStatus(data['status'])
        data['disbursement_date'] = date.fromisoformat(data['disbursement_date'])
        if data.get('next_payment_date'):
            data['next_payment_date'] = date.fromisoformat(data['next_payment_date'])
        return cls(**data)


@dataclass
class Repayment(StorageRecord):
    """A single repayment event; it belongs to exactly one loan"""
    loan_id: int
    amount: Decimal
    paid_date: date
    payment_type: PaymentType = PaymentType.FULL
    period: Optional[int] = None        # Set when the payment was recorded against a period

    @property
    def is_full(self) -> bool:
        return self.payment_type == PaymentType.FULL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Repayment':
        data = cls._parse_timestamps(data)
        data['amount'] = Decimal(data['amount'])
        data['paid_date'] = date.fromisoformat(data['paid_date'])
        data['payment_type'] = PaymentType(data['payment_type'])
        return cls(**data)


class LoanManager:
    """
    Creates and looks up loans and persists their reconciliation aggregate
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans_table = "loans"
        self.logger = get_logger("microfinance.loans")

    def create_loan(
        self,
        amount: Any,
        interest_rate: Any,
        duration: int,
        disbursement_date: Any,
        repayment_type: Union[str, RepaymentType],
        installment_amount: Any = None,
        document_charge: Any = Decimal('0'),
        borrower_name: Optional[str] = None,
        today: Optional[date] = None
    ) -> Loan:
        """
        Create a new active loan

        Args:
            amount: Principal
            interest_rate: Interest amount charged per period
            duration: Number of repayment periods
            disbursement_date: Date the money was handed over
            repayment_type: Monthly or Weekly
            installment_amount: Amount due per period; derived from the terms if omitted
            document_charge: One-off processing charge
            borrower_name: Borrower's name for display
            today: Reference date for the initial overdue figures

        Returns:
            Created Loan object
        """
        principal = parse_amount(amount, "amount")
        interest = parse_amount(interest_rate, "interest_rate", allow_zero=True)
        charge = parse_amount(document_charge, "document_charge", allow_zero=True)
        cadence = parse_repayment_type(repayment_type)
        disbursed = parse_date(disbursement_date, "disbursement_date")
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
            raise InvalidInputError(f"duration must be a whole number of periods >= 1, got {duration!r}")

        if installment_amount is None:
            installment = calculate_installment_amount(principal, interest, duration, cadence)
        else:
            installment = parse_amount(installment_amount, "installment_amount")

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            loan = Loan(
                id=self.storage.next_id(self.loans_table),
                created_at=now,
                updated_at=now,
                amount=principal,
                interest_rate=interest,
                repayment_type=cadence,
                duration=duration,
                disbursement_date=disbursed,
                installment_amount=installment,
                document_charge=charge,
                borrower_name=borrower_name,
                remaining_amount=principal,
                status=LoanStatus.ACTIVE,
                next_payment_date=due_date_for_period(disbursed, cadence, 1)
            )
            # A backdated loan starts with its missed periods already counted
            self._apply_aggregate(loan, self._initial_aggregate(loan, today or date.today()))
            self.storage.save(self.loans_table, loan.id, loan.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "amount": principal,
                    "interest_rate": interest,
                    "installment_amount": installment,
                    "repayment_type": cadence,
                    "duration": duration,
                    "disbursement_date": disbursed,
                    "overdue_amount": loan.overdue_amount,
                    "missed_payments": loan.missed_payments
                }
            )

        log_action(
            self.logger, "info", f"Loan created: {cadence.value} x{duration}",
            action="create_loan", resource=f"loan:{loan.id}", loan_id=loan.id,
            extra={"amount": str(principal), "installment_amount": str(installment)}
        )
        return loan

    def find_loan(self, loan_id: int) -> Optional[Loan]:
        """Get loan by ID, or None"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return Loan.from_dict(loan_dict)
        return None

    def get_loan(self, loan_id: int) -> Loan:
        """Get loan by ID; raises LoanNotFoundError"""
        loan = self.find_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, optionally restricted to one status, in id order"""
        if status is None:
            loans_data = self.storage.load_all(self.loans_table)
        else:
            loans_data = self.storage.find(self.loans_table, {"status": status.value})
        loans = [Loan.from_dict(data) for data in loans_data]
        loans.sort(key=lambda x: x.id)
        return loans

    def save_aggregate(self, loan: Loan, aggregate) -> Loan:
        """
        Write the full reconciliation aggregate onto a loan

        All five aggregate fields are written together or not at all.
        """
        self._apply_aggregate(loan, aggregate)
        loan.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
        return loan

    @staticmethod
    def _apply_aggregate(loan: Loan, aggregate) -> None:
        loan.remaining_amount = aggregate.remaining_amount
        loan.status = aggregate.status
        loan.overdue_amount = aggregate.overdue_amount
        loan.missed_payments = aggregate.missed_payments
        loan.next_payment_date = aggregate.next_payment_date

    @staticmethod
    def _initial_aggregate(loan: Loan, today: date):
        """Aggregate of a loan that has no repayments yet"""
        from .matching import match_repayments
        from .reconciliation import recalculate
        from .schedule import generate_loan_schedule

        periods = generate_loan_schedule(loan)
        match = match_repayments(periods, [], loan.disbursement_date, loan.repayment_type,
                                 loan_id=loan.id)
        return recalculate(loan, periods, match, today, has_repayments=False)
