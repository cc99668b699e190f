"""
Loan, repayment and payment schedule endpoints
"""

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status

from .system import LendingSystem, get_lending_system
from .schemas import (
    CreateLoanRequest, LoanResponse, RecordRepaymentRequest, RepaymentChangeResponse,
    RepaymentResponse, ScheduleActionRequest, ScheduleResponse, UpdateRepaymentRequest
)
from ..exceptions import InvalidInputError, MicrofinanceError
from ..loans import parse_date
from ..logging_config import get_logger


router = APIRouter()
logger = get_logger("microfinance.api")


def _http_error(error: MicrofinanceError) -> HTTPException:
    """Translate a domain error into the matching HTTP error"""
    if isinstance(error, LookupError):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def _as_of(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    return parse_date(value, "as_of")


def _change_response(system: LendingSystem, repayment, message: str) -> RepaymentChangeResponse:
    loan = system.loan_manager.get_loan(repayment.loan_id)
    return RepaymentChangeResponse(
        repayment=RepaymentResponse.from_repayment(repayment),
        loan=LoanResponse.from_loan(loan),
        message=message
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=LoanResponse)
async def create_loan(
    request: CreateLoanRequest,
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a new loan"""
    try:
        loan = system.loan_manager.create_loan(
            amount=request.amount,
            interest_rate=request.interest_rate,
            duration=request.duration,
            disbursement_date=request.disbursement_date,
            repayment_type=request.repayment_type,
            installment_amount=request.installment_amount,
            document_charge=request.document_charge,
            borrower_name=request.borrower_name,
            today=_as_of(as_of)
        )
    except MicrofinanceError as e:
        raise _http_error(e)
    return LoanResponse.from_loan(loan)


# Declared before /{loan_id} routes so "update-overdue" is not read as a loan id
@router.post("/update-overdue")
async def update_all_overdue(
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Reconcile every active loan"""
    try:
        results = system.repayment_manager.refresh_active_loans(today=_as_of(as_of))
    except MicrofinanceError as e:
        raise _http_error(e)
    return dict(results, message=f"Updated overdue amounts for {results['loans_processed']} loans")


@router.get("/{loan_id}", response_model=LoanResponse)
async def get_loan(
    loan_id: int,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
    except MicrofinanceError as e:
        raise _http_error(e)
    return LoanResponse.from_loan(loan)


@router.get("/{loan_id}/repayments", response_model=List[RepaymentResponse])
async def list_repayments(
    loan_id: int,
    system: LendingSystem = Depends(get_lending_system)
):
    """List a loan's repayments"""
    try:
        repayments = system.repayment_manager.get_repayments(loan_id)
    except MicrofinanceError as e:
        raise _http_error(e)
    return [RepaymentResponse.from_repayment(r) for r in repayments]


@router.post("/{loan_id}/repayments", status_code=status.HTTP_201_CREATED,
             response_model=RepaymentChangeResponse)
async def record_repayment(
    loan_id: int,
    request: RecordRepaymentRequest,
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a repayment"""
    try:
        repayment = system.repayment_manager.record_repayment(
            loan_id=loan_id,
            amount=request.amount,
            paid_date=request.paid_date,
            payment_type=request.payment_type,
            period=request.period,
            today=_as_of(as_of)
        )
        return _change_response(system, repayment, "Repayment recorded successfully")
    except MicrofinanceError as e:
        raise _http_error(e)


@router.put("/{loan_id}/repayments/{repayment_id}", response_model=RepaymentChangeResponse)
async def update_repayment(
    loan_id: int,
    repayment_id: int,
    request: UpdateRepaymentRequest,
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Edit a repayment"""
    try:
        repayment = system.repayment_manager.update_repayment(
            loan_id=loan_id,
            repayment_id=repayment_id,
            amount=request.amount,
            paid_date=request.paid_date,
            payment_type=request.payment_type,
            period=request.period,
            today=_as_of(as_of),
            clear_period=request.clear_period
        )
        return _change_response(system, repayment, "Repayment updated successfully")
    except MicrofinanceError as e:
        raise _http_error(e)


@router.delete("/{loan_id}/repayments/{repayment_id}", response_model=RepaymentChangeResponse)
async def delete_repayment(
    loan_id: int,
    repayment_id: int,
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Delete a repayment"""
    try:
        repayment = system.repayment_manager.delete_repayment(
            loan_id, repayment_id, today=_as_of(as_of)
        )
        return _change_response(system, repayment, "Repayment deleted successfully")
    except MicrofinanceError as e:
        raise _http_error(e)


@router.delete("/{loan_id}/repayments")
async def delete_repayments(
    loan_id: int,
    ids: str = Query(..., description="Comma-separated repayment ids"),
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Delete several repayments at once"""
    try:
        try:
            repayment_ids = [int(part) for part in ids.split(",") if part.strip()]
        except ValueError:
            raise InvalidInputError(f"ids must be comma-separated integers, got {ids!r}")
        deleted = system.repayment_manager.delete_repayments(
            loan_id, repayment_ids, today=_as_of(as_of)
        )
        loan = system.loan_manager.get_loan(loan_id)
    except MicrofinanceError as e:
        raise _http_error(e)

    return {
        "deleted": [r.id for r in deleted],
        "count": len(deleted),
        "loan": LoanResponse.from_loan(loan),
        "message": f"{len(deleted)} repayment(s) deleted successfully"
    }


@router.get("/{loan_id}/payment-schedules", response_model=ScheduleResponse)
async def get_payment_schedules(
    loan_id: int,
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    schedule_status: Optional[str] = Query(None, alias="status"),
    include_all: bool = Query(False, alias="includeAll"),
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Paginated payment schedule of a loan"""
    try:
        view = system.repayment_manager.get_payment_schedule(
            loan_id,
            today=_as_of(as_of),
            status=schedule_status,
            page=page,
            page_size=page_size,
            include_all=include_all
        )
    except MicrofinanceError as e:
        raise _http_error(e)
    return ScheduleResponse(**view.to_dict())


@router.post("/{loan_id}/payment-schedules")
async def payment_schedule_action(
    loan_id: int,
    request: ScheduleActionRequest,
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a payment for a period, or refresh the loan's overdue figures"""
    try:
        today = _as_of(as_of)
        if request.action == "recordPayment":
            if request.period is None or request.amount is None or not request.paid_date:
                raise InvalidInputError("period, amount and paid_date are required")
            repayment = system.repayment_manager.record_payment_for_period(
                loan_id,
                request.period,
                request.amount,
                request.paid_date,
                payment_type=request.payment_type,
                today=today
            )
            return _change_response(system, repayment, "Payment recorded successfully")

        if request.action == "updateOverdue":
            aggregate = system.repayment_manager.reconcile_loan(loan_id, today=today)
            return dict(aggregate.to_dict(), message="Overdue amount updated successfully")

        raise InvalidInputError(f"Invalid action specified: {request.action!r}")
    except MicrofinanceError as e:
        logger.warning(f"Schedule action {request.action!r} failed for loan {loan_id}: {e}")
        raise _http_error(e)


@router.get("/{loan_id}/update-overdue")
async def update_overdue(
    loan_id: int,
    as_of: Optional[str] = Query(None, description="Reference date, defaults to today"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Reconcile one loan and return its aggregate"""
    try:
        aggregate = system.repayment_manager.reconcile_loan(loan_id, today=_as_of(as_of))
    except MicrofinanceError as e:
        raise _http_error(e)
    return dict(aggregate.to_dict(), loan_id=loan_id, message="Overdue amount updated successfully")
