"""
Exception hierarchy for the intake core.

Every failure path in the core maps onto one of these types so callers can
tell a local field problem from a collaborator outage or a failed submission.
"""

from typing import Dict, Optional


class IntakeError(Exception):
    """Base class for all intake errors."""
    pass


class FieldValidationError(IntakeError):
    """Raised by a field validator to reject a value with its own message."""

    def __init__(self, field_key: str, message: str):
        super().__init__(f"{field_key}: {message}")
        self.field_key = field_key
        self.message = message


class RecordValidationError(IntakeError):
    """Raised by a record service when create/update payloads are rejected."""

    def __init__(self, field_errors: Optional[Dict[str, str]] = None, message: str = "Record rejected"):
        self.field_errors = dict(field_errors or {})
        if self.field_errors:
            details = ", ".join(f"{k}: {v}" for k, v in sorted(self.field_errors.items()))
            message = f"{message} ({details})"
        super().__init__(message)


class RecordServiceError(IntakeError):
    """Raised by a record service for transport or server failures."""
    pass


class SearchCollaboratorFailure(RecordServiceError):
    """Raised when the record search collaborator cannot answer."""
    pass


class CircuitOpenError(SearchCollaboratorFailure):
    """Raised when calls are blocked by an open circuit breaker."""
    pass


class RetryError(RecordServiceError):
    """Raised when all retry attempts are exhausted."""
    pass


class SubmissionFailure(IntakeError):
    """A create, update or record fetch that failed; returned on SubmissionResult.error with the cause chained."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = dict(field_errors or {})


class InvalidDecisionError(IntakeError):
    """Raised when a resolution decision does not fit the resolver state."""
    pass
