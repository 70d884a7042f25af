"""
Unit tests for the unified exception hierarchy.

Tests exception creation, attributes, string representations, and error context.
"""

import pytest
from exceptions import (
    BudgetEngineError,
    ConfigError,
    DatabaseError,
    DistributionError,
    DivisionGuard,
    NotFoundError,
    UpstreamUnavailable,
    ValidationError,
)


class TestBudgetEngineError:
    """Test base BudgetEngineError class."""

    def test_basic_exception_creation(self):
        """Test creating a basic BudgetEngineError."""
        error = BudgetEngineError("Test error message")
        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details == {}
        assert error.original_error is None

    def test_exception_with_details(self):
        """Test creating exception with details dictionary."""
        details = {"key1": "value1", "key2": 123}
        error = BudgetEngineError("Test error", details=details)
        assert error.details == details
        assert "key1=value1" in str(error)
        assert "key2=123" in str(error)

    def test_exception_with_original_error(self):
        """Test creating exception with original error chaining."""
        original = ValueError("Original error")
        error = BudgetEngineError("Wrapped error", original_error=original)
        assert error.original_error is original


class TestSubclasses:
    """Every engine error can be caught through the base class."""

    @pytest.mark.parametrize("error_cls", [
        ConfigError,
        DatabaseError,
        NotFoundError,
        UpstreamUnavailable,
        DivisionGuard,
        DistributionError,
    ])
    def test_subclass_of_base(self, error_cls):
        with pytest.raises(BudgetEngineError):
            raise error_cls("boom")

    def test_validation_error_keeps_field(self):
        error = ValidationError("tolerance must be 0-100", field="amount_tolerance")
        assert error.field == "amount_tolerance"
        assert error.details["field"] == "amount_tolerance"
        assert isinstance(error, BudgetEngineError)

    def test_validation_error_without_field(self):
        error = ValidationError("bad input")
        assert error.field is None
        assert error.details == {}
        assert str(error) == "bad input"
