"""
Microfinance Loan Reconciliation

Loan repayment bookkeeping for a microfinance lender: schedules are derived
from loan terms, repayments are matched to schedule periods, and the loan's
outstanding, overdue and next-due figures are recomputed from that matching
after every repayment change. All money math uses Decimal.
"""

__version__ = "1.0.0"
