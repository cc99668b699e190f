"""
Repayment Matching Module

Assigns repayment events to schedule periods. Each repayment is mapped to a
period by, in order of priority:

1. its explicit period number, when the payment was recorded against a period;
2. for weekly loans, the analytic period floor(days since disbursement / 7) + 1;
3. for monthly loans, the period whose due date is closest to the paid date,
   accepted only within the match window (14 days by default).

When several repayments land on the same period the one with the latest paid
date is the active one; ties on paid date go to the higher repayment id. The
result never depends on the order the repayments were supplied in.

The monthly closest-due-date rule is a heuristic: irregular payments near the
midpoint between two due dates can be assigned to the neighbouring period.
Repayments that cannot be placed are reported as unmatched and logged, never
raised.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from .enums import RepaymentType
from .logging_config import get_logger, log_action


DEFAULT_MATCH_WINDOW_DAYS = 14

logger = get_logger("microfinance.matching")


@dataclass
class MatchResult:
    """Outcome of matching a loan's repayments against its schedule"""
    matched: Dict[int, object] = field(default_factory=dict)   # period -> active Repayment
    unmatched: List[object] = field(default_factory=list)      # could not be placed
    superseded: List[object] = field(default_factory=list)     # lost to a later repayment

    def period_of(self, repayment_id: int) -> Optional[int]:
        """Period a repayment is active for, or None"""
        for period, repayment in self.matched.items():
            if repayment.id == repayment_id:
                return period
        return None

    @property
    def matched_repayments(self) -> List[object]:
        return [self.matched[period] for period in sorted(self.matched)]


def weekly_period_for(disbursement_date: date, paid_date: date) -> int:
    """Analytic week number of a payment, never below 1"""
    return max(1, (paid_date - disbursement_date).days // 7 + 1)


def closest_period(periods: Sequence, paid_date: date, window_days: int) -> Optional[int]:
    """
    Period whose due date is nearest the paid date, within window_days

    Equally distant due dates resolve to the earlier period.
    """
    best_period = None
    best_distance = None
    for entry in periods:
        distance = abs((paid_date - entry.due_date).days)
        if best_distance is None or distance < best_distance:
            best_distance = distance
            best_period = entry.period
    if best_period is None or best_distance > window_days:
        return None
    return best_period


def resolve_period(
    repayment,
    periods: Sequence,
    disbursement_date: date,
    repayment_type: RepaymentType,
    window_days: int = DEFAULT_MATCH_WINDOW_DAYS
) -> Optional[int]:
    """Period a single repayment belongs to, or None if it cannot be placed"""
    if repayment.period is not None:
        candidate = repayment.period
    elif repayment_type == RepaymentType.WEEKLY:
        candidate = weekly_period_for(disbursement_date, repayment.paid_date)
    else:
        return closest_period(periods, repayment.paid_date, window_days)

    if 1 <= candidate <= len(periods):
        return candidate
    return None


def _precedence(repayment):
    return (repayment.paid_date, repayment.id)


def match_repayments(
    periods: Sequence,
    repayments: Iterable,
    disbursement_date: date,
    repayment_type: RepaymentType,
    window_days: int = DEFAULT_MATCH_WINDOW_DAYS,
    loan_id: Optional[int] = None
) -> MatchResult:
    """
    Match repayments to schedule periods

    Args:
        periods: The loan's generated schedule, periods 1..N in order
        repayments: All repayment events of the loan, in any order
        disbursement_date: Loan disbursement date
        repayment_type: Monthly or Weekly
        window_days: Maximum distance to a monthly due date
        loan_id: Only used to label log records

    Returns:
        MatchResult with the active repayment per period
    """
    result = MatchResult()
    candidates: Dict[int, List] = {}

    for repayment in sorted(repayments, key=_precedence):
        period = resolve_period(repayment, periods, disbursement_date, repayment_type, window_days)
        if period is None:
            result.unmatched.append(repayment)
            log_action(
                logger, "warning",
                f"Repayment {repayment.id} paid {repayment.paid_date.isoformat()} matches no period",
                action="match_repayment", resource=f"repayment:{repayment.id}", loan_id=loan_id,
                extra={
                    "paid_date": repayment.paid_date.isoformat(),
                    "explicit_period": repayment.period,
                    "repayment_type": repayment_type.value,
                    "window_days": window_days
                }
            )
            continue
        candidates.setdefault(period, []).append(repayment)

    for period in sorted(candidates):
        ranked = candidates[period]  # ascending precedence
        result.matched[period] = ranked[-1]
        result.superseded.extend(ranked[:-1])

    result.superseded.sort(key=_precedence)
    return result
