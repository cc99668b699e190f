"""
Repayment Module

Records, edits and deletes repayments and keeps each loan's cached aggregate
in step with its repayment log. Every change re-runs the full reconciliation:

    schedule -> matching -> aggregate

The reconciliation runs under a per-loan lock and inside one storage
transaction, so the repayment change and the aggregate write land together or
not at all, and concurrent changes to the same loan cannot interleave.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union
import threading

from .audit import AuditTrail, AuditEventType
from .config import MicrofinanceConfig, get_config
from .enums import LoanStatus, PaymentType
from .exceptions import InvalidInputError, RepaymentNotFoundError
from .loans import (
    Loan, LoanManager, Repayment,
    parse_amount, parse_date, parse_payment_type
)
from .logging_config import get_logger, log_action
from .matching import MatchResult, match_repayments
from .reconciliation import LoanAggregate, apply_matches, calculate_remaining_amount, recalculate
from .schedule import Period, generate_loan_schedule
from .schedule_view import ScheduleView, build_schedule_view
from .storage import StorageInterface


@dataclass
class Reconciliation:
    """Snapshot of a loan's reconciled state"""
    loan: Loan
    periods: List[Period]       # with status and matched repayment applied
    match: MatchResult
    aggregate: LoanAggregate


class RepaymentManager:
    """
    Repayment lifecycle and loan reconciliation
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        audit_trail: AuditTrail,
        config: Optional[MicrofinanceConfig] = None
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.repayments_table = "repayments"
        self.logger = get_logger("microfinance.repayments")

        self._loan_locks: Dict[int, threading.RLock] = {}
        self._loan_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------

    def _loan_lock(self, loan_id: int) -> threading.RLock:
        with self._loan_locks_guard:
            lock = self._loan_locks.get(loan_id)
            if lock is None:
                lock = threading.RLock()
                self._loan_locks[loan_id] = lock
            return lock

    @contextmanager
    def _loan_transaction(self, loan_id: int):
        """Serialize work on one loan and make it atomic"""
        # Loans are never deleted, so only ids that exist ever get a lock
        self.loan_manager.get_loan(loan_id)
        # Loan lock first, storage lock second; never the other way round
        with self._loan_lock(loan_id):
            with self.storage.atomic():
                yield

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_repayments(self, loan_id: int) -> List[Repayment]:
        """All repayments of a loan, ordered by paid date then id"""
        self.loan_manager.get_loan(loan_id)
        return self._load_repayments(loan_id)

    def get_repayment(self, loan_id: int, repayment_id: int) -> Repayment:
        data = self.storage.load(self.repayments_table, repayment_id)
        if not data or data.get('loan_id') != loan_id:
            raise RepaymentNotFoundError(repayment_id, loan_id)
        return Repayment.from_dict(data)

    def get_reconciliation(self, loan_id: int, today: Optional[date] = None) -> Reconciliation:
        """Reconcile a loan in memory without persisting anything"""
        loan = self.loan_manager.get_loan(loan_id)
        return self._compute(loan, self._load_repayments(loan_id), today or date.today())

    def get_payment_schedule(
        self,
        loan_id: int,
        today: Optional[date] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        include_all: bool = False
    ) -> ScheduleView:
        """
        Paginated schedule listing for a loan

        Args:
            loan_id: Loan ID
            today: Reference date (defaults to the current date)
            status: Only show periods with this status (Pending, Paid, InterestOnly, Missed)
            page: 1-based page number
            page_size: Rows per page (defaults to the configured page size)
            include_all: Show every period without pagination

        Returns:
            ScheduleView
        """
        today = today or date.today()
        reconciliation = self.get_reconciliation(loan_id, today)
        return build_schedule_view(
            reconciliation.periods,
            today,
            status=status,
            page=page,
            page_size=page_size or self.config.default_page_size,
            include_all=include_all,
            upcoming_days=self.config.upcoming_window_days,
            loan_id=loan_id
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_repayment(
        self,
        loan_id: int,
        amount: Any,
        paid_date: Any,
        payment_type: Union[str, PaymentType, None] = PaymentType.FULL,
        period: Optional[int] = None,
        today: Optional[date] = None
    ) -> Repayment:
        """
        Record a repayment and reconcile the loan

        Args:
            loan_id: Loan the payment belongs to
            amount: Amount paid (> 0)
            paid_date: Date paid (date or ISO string)
            payment_type: "full" or "interestOnly"
            period: Period the payment is confirmed for, if known
            today: Reference date for the reconciliation

        Returns:
            Created Repayment
        """
        today = today or date.today()
        with self._loan_transaction(loan_id):
            loan = self.loan_manager.get_loan(loan_id)
            repayments = self._load_repayments(loan_id)

            value = parse_amount(amount, "amount")
            paid = parse_date(paid_date, "paid_date")
            kind = parse_payment_type(payment_type)
            self._validate_period(loan, period)
            self._validate_balance(loan, repayments, value, kind)

            now = datetime.now(timezone.utc)
            repayment = Repayment(
                id=self.storage.next_id(self.repayments_table),
                created_at=now,
                updated_at=now,
                loan_id=loan_id,
                amount=value,
                paid_date=paid,
                payment_type=kind,
                period=period
            )
            self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.REPAYMENT_RECORDED,
                entity_type="repayment",
                entity_id=repayment.id,
                metadata=self._repayment_snapshot(repayment)
            )

            self._reconcile(loan, repayments + [repayment], today,
                            trigger=f"repayment_recorded:{repayment.id}")

        log_action(
            self.logger, "info", f"Repayment recorded: {kind.value} {value}",
            action="record_repayment", resource=f"repayment:{repayment.id}", loan_id=loan_id,
            extra={"paid_date": paid.isoformat(), "period": period}
        )
        return repayment

    def record_payment_for_period(
        self,
        loan_id: int,
        period: int,
        amount: Any,
        paid_date: Any,
        payment_type: Union[str, PaymentType, None] = PaymentType.FULL,
        today: Optional[date] = None
    ) -> Repayment:
        """Record a payment confirmed against a specific period"""
        if period is None:
            raise InvalidInputError("period is required")
        return self.record_repayment(
            loan_id, amount, paid_date, payment_type=payment_type, period=period, today=today
        )

    def update_repayment(
        self,
        loan_id: int,
        repayment_id: int,
        amount: Any = None,
        paid_date: Any = None,
        payment_type: Union[str, PaymentType, None] = None,
        period: Optional[int] = None,
        today: Optional[date] = None,
        clear_period: bool = False
    ) -> Repayment:
        """
        Edit a repayment's amount, date, kind or period and reconcile the loan

        Fields left as None keep their current value. clear_period drops an
        explicit period so the repayment is matched by its paid date again.
        """
        today = today or date.today()
        if clear_period and period is not None:
            raise InvalidInputError("period and clear_period cannot be combined")
        with self._loan_transaction(loan_id):
            loan = self.loan_manager.get_loan(loan_id)
            repayment = self.get_repayment(loan_id, repayment_id)
            before = self._repayment_snapshot(repayment)

            if amount is not None:
                repayment.amount = parse_amount(amount, "amount")
            if paid_date is not None:
                repayment.paid_date = parse_date(paid_date, "paid_date")
            if payment_type is not None:
                repayment.payment_type = parse_payment_type(payment_type)
            if period is not None:
                self._validate_period(loan, period)
                repayment.period = period
            elif clear_period:
                repayment.period = None

            others = [r for r in self._load_repayments(loan_id) if r.id != repayment_id]
            self._validate_balance(loan, others, repayment.amount, repayment.payment_type)

            repayment.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.REPAYMENT_UPDATED,
                entity_type="repayment",
                entity_id=repayment.id,
                metadata={"before": before, "after": self._repayment_snapshot(repayment)}
            )

            self._reconcile(loan, others + [repayment], today,
                            trigger=f"repayment_updated:{repayment.id}")

        log_action(
            self.logger, "info", f"Repayment updated: {repayment.id}",
            action="update_repayment", resource=f"repayment:{repayment.id}", loan_id=loan_id
        )
        return repayment

    def delete_repayment(self, loan_id: int, repayment_id: int, today: Optional[date] = None) -> Repayment:
        """Delete a repayment and reconcile the loan; returns the deleted repayment"""
        return self.delete_repayments(loan_id, [repayment_id], today=today)[0]

    def delete_repayments(
        self,
        loan_id: int,
        repayment_ids: Iterable[int],
        today: Optional[date] = None
    ) -> List[Repayment]:
        """
        Delete several repayments of one loan and reconcile once

        Every id must belong to the loan; otherwise nothing is deleted.
        """
        today = today or date.today()
        ids = list(dict.fromkeys(repayment_ids))
        if not ids:
            raise InvalidInputError("At least one repayment id is required")

        with self._loan_transaction(loan_id):
            loan = self.loan_manager.get_loan(loan_id)
            doomed = [self.get_repayment(loan_id, repayment_id) for repayment_id in ids]

            for repayment in doomed:
                self.storage.delete(self.repayments_table, repayment.id)
                # The snapshot keeps the deleted payment inspectable
                self.audit_trail.log_event(
                    event_type=AuditEventType.REPAYMENT_DELETED,
                    entity_type="repayment",
                    entity_id=repayment.id,
                    metadata=self._repayment_snapshot(repayment)
                )

            self._reconcile(loan, self._load_repayments(loan_id), today,
                            trigger="repayments_deleted:" + ",".join(str(i) for i in ids))

        log_action(
            self.logger, "info", f"Deleted {len(doomed)} repayment(s)",
            action="delete_repayments", resource=f"loan:{loan_id}", loan_id=loan_id,
            extra={"repayment_ids": ids}
        )
        return doomed

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_loan(self, loan_id: int, today: Optional[date] = None) -> LoanAggregate:
        """Recompute and persist a loan's aggregate from its repayments"""
        today = today or date.today()
        with self._loan_transaction(loan_id):
            loan = self.loan_manager.get_loan(loan_id)
            return self._reconcile(loan, self._load_repayments(loan_id), today)

    def refresh_active_loans(self, today: Optional[date] = None) -> Dict[str, int]:
        """
        Reconcile every active loan

        Overdue figures move with the calendar even when no repayment changes,
        so this is run periodically. A failure on one loan is logged and the
        run carries on with the rest.
        """
        today = today or date.today()
        results = {"loans_processed": 0, "loans_failed": 0, "loans_updated": 0}

        for loan in self.loan_manager.list_loans(LoanStatus.ACTIVE):
            try:
                before = LoanAggregate.from_loan(loan)
                after = self.reconcile_loan(loan.id, today)
                results["loans_processed"] += 1
                if after != before:
                    results["loans_updated"] += 1
            except Exception:
                results["loans_failed"] += 1
                self.logger.exception(f"Reconciliation failed for loan {loan.id}")

        self.audit_trail.log_event(
            event_type=AuditEventType.ACTIVE_LOANS_REFRESHED,
            entity_type="system",
            entity_id=0,
            metadata=dict(results, as_of=today)
        )
        log_action(
            self.logger, "info", "Active loans refreshed",
            action="refresh_active_loans", extra=dict(results, as_of=today.isoformat())
        )
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_repayments(self, loan_id: int) -> List[Repayment]:
        repayments = [
            Repayment.from_dict(data)
            for data in self.storage.find(self.repayments_table, {"loan_id": loan_id})
        ]
        repayments.sort(key=lambda r: (r.paid_date, r.id))
        return repayments

    def _compute(self, loan: Loan, repayments: List[Repayment], today: date) -> Reconciliation:
        periods = generate_loan_schedule(loan)
        match = match_repayments(
            periods,
            repayments,
            loan.disbursement_date,
            loan.repayment_type,
            window_days=self.config.match_window_days,
            loan_id=loan.id
        )
        aggregate = recalculate(loan, periods, match, today, has_repayments=bool(repayments))
        return Reconciliation(
            loan=loan,
            periods=apply_matches(periods, match.matched, today),
            match=match,
            aggregate=aggregate
        )

    def _reconcile(
        self,
        loan: Loan,
        repayments: List[Repayment],
        today: date,
        trigger: Optional[str] = None
    ) -> LoanAggregate:
        """Recompute the aggregate and write it if it changed. Caller holds the loan transaction."""
        reconciliation = self._compute(loan, repayments, today)
        before = LoanAggregate.from_loan(loan)
        after = reconciliation.aggregate

        if after == before and trigger is None:
            return after

        if after != before:
            self.loan_manager.save_aggregate(loan, after)

        match = reconciliation.match
        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_RECONCILED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "trigger": trigger or "reconcile",
                "as_of": today,
                "before": before.to_dict(),
                "after": after.to_dict(),
                "matched": {str(p): r.id for p, r in sorted(match.matched.items())},
                "unmatched_repayment_ids": [r.id for r in match.unmatched],
                "superseded_repayment_ids": [r.id for r in match.superseded]
            }
        )

        if before.status != after.status:
            event_type = (AuditEventType.LOAN_COMPLETED if after.status == LoanStatus.COMPLETED
                          else AuditEventType.LOAN_REOPENED)
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"remaining_amount": after.remaining_amount, "as_of": today}
            )
            log_action(
                self.logger, "info", f"Loan status changed to {after.status.value}",
                action="reconcile_loan", resource=f"loan:{loan.id}", loan_id=loan.id
            )

        return after

    def _validate_period(self, loan: Loan, period: Optional[int]) -> None:
        if period is None:
            return
        if isinstance(period, bool) or not isinstance(period, int) or not 1 <= period <= loan.duration:
            raise InvalidInputError(
                f"period must be between 1 and {loan.duration}, got {period!r}"
            )

    def _validate_balance(
        self,
        loan: Loan,
        other_repayments: List[Repayment],
        amount,
        payment_type: PaymentType
    ) -> None:
        """Reject a full payment larger than what the other repayments leave outstanding"""
        if payment_type != PaymentType.FULL or not self.config.validate_remaining_balance:
            return
        periods = generate_loan_schedule(loan)
        match = match_repayments(
            periods, other_repayments, loan.disbursement_date, loan.repayment_type,
            window_days=self.config.match_window_days, loan_id=loan.id
        )
        outstanding = calculate_remaining_amount(loan.amount, match.matched)
        if amount > outstanding:
            raise InvalidInputError(
                f"Payment amount {amount} cannot exceed the remaining balance {outstanding}"
            )

    @staticmethod
    def _repayment_snapshot(repayment: Repayment) -> Dict[str, Any]:
        return {
            "loan_id": repayment.loan_id,
            "amount": repayment.amount,
            "paid_date": repayment.paid_date,
            "payment_type": repayment.payment_type,
            "period": repayment.period
        }
