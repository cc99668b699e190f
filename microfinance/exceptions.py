"""Exception hierarchy for the microfinance package."""


class MicrofinanceError(Exception):
    """Base exception for all microfinance errors."""


class LoanNotFoundError(MicrofinanceError, LookupError):
    """Raised when a referenced loan does not exist."""

    def __init__(self, loan_id):
        self.loan_id = loan_id
        super().__init__(f"Loan with ID {loan_id} not found")


class RepaymentNotFoundError(MicrofinanceError, LookupError):
    """Raised when a repayment does not exist or belongs to another loan."""

    def __init__(self, repayment_id, loan_id=None):
        self.repayment_id = repayment_id
        self.loan_id = loan_id
        if loan_id is None:
            message = f"Repayment with ID {repayment_id} not found"
        else:
            message = f"Repayment with ID {repayment_id} not found for loan {loan_id}"
        super().__init__(message)


class InvalidInputError(MicrofinanceError, ValueError):
    """Raised when input is rejected before any state change."""
