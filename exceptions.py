"""
Unified exception hierarchy for the budget engine.

This module defines the exception hierarchy with BudgetEngineError as the
base exception, so callers can handle every engine failure in one place
while still telling validation problems apart from upstream outages.
"""

from typing import Optional


class BudgetEngineError(Exception):
    """
    Base exception class for all budget engine errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize BudgetEngineError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(BudgetEngineError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(BudgetEngineError):
    """Raised when the catalog store cannot be initialized."""
    pass


class ValidationError(BudgetEngineError):
    """
    Raised when user input fails validation.

    The failing field is kept on the exception so presentation layers can
    attach the message to the right form field.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        super().__init__(message, details=details, original_error=original_error)
        self.field = field


class NotFoundError(BudgetEngineError):
    """Raised when an envelope, account, rule or transaction id is unknown."""
    pass


class UpstreamUnavailable(BudgetEngineError):
    """Raised when a catalog/store call fails and no trustworthy data exists."""
    pass


class DivisionGuard(BudgetEngineError):
    """Raised when a split would divide by zero and the caller cannot avoid it."""
    pass


class DistributionError(BudgetEngineError):
    """Raised when a distribution cannot be computed or applied."""
    pass
