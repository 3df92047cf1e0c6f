"""
Custom Exceptions for the Qard Fund core
"""

from typing import List, Optional


class FundError(Exception):
    """Base exception for all fund errors"""
    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(FundError):
    """Raised when user input is invalid or exceeds an allowed ceiling"""
    pass


class BusinessRuleError(FundError):
    """Raised when an operation conflicts with the member's loan state"""
    pass


class NotFoundError(FundError):
    """Raised when a referenced member, loan, receipt or request does not exist"""
    pass


class StoreError(FundError):
    """Raised when the backing store cannot be reached or answers with an error.

    The operation may be retried.
    """
    def __init__(self, message: str, error_code: str = "store_unavailable",
                 status_code: Optional[int] = None):
        super().__init__(message, error_code)
        self.status_code = status_code


class StaleStateError(StoreError):
    """Raised when a record changed since it was read (version mismatch)"""
    def __init__(self, message: str = "Stale state, reload and retry",
                 expected_version: Optional[int] = None,
                 actual_version: Optional[int] = None):
        super().__init__(message, error_code="stale_state", status_code=409)
        self.expected_version = expected_version
        self.actual_version = actual_version


class InconsistentStateError(FundError):
    """Raised when a multi-step write failed after some steps were committed.

    Nothing is compensated automatically; an operator has to reconcile the
    records listed in ``completed_steps`` by hand.
    """
    def __init__(self, message: str, completed_steps: List[str], failed_step: str):
        super().__init__(message, error_code="inconsistent_state")
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step
