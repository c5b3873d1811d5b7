"""
Custom Exceptions
Error taxonomy for the eligibility pipeline.

Every failure the pipeline can surface derives from EligibilityError so
callers can catch one base class. A patient without active coverage is a
normal EligibilityResult, never an exception.
"""

from typing import Any, Optional


class EligibilityError(Exception):
    """Base exception for eligibility pipeline errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(EligibilityError):
    """Raised when a query or payer configuration cannot produce a valid 270."""

    def __init__(
        self,
        message: str,
        fields: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.fields = fields or []


class ConfigurationError(EligibilityError):
    """Raised when clearinghouse endpoints or trading partner ids are unusable."""

    pass


class TransportError(EligibilityError):
    """
    Raised when the clearinghouse could not be reached or refused the request.

    Carries the last endpoint tried and its raw HTTP status (None when the
    failure happened below HTTP, e.g. connection refused or timeout).
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        clearinghouse: Optional[str] = None,
        status_code: Optional[int] = None,
        attempts: int = 1,
        failover_eligible: bool = False,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            {
                "endpoint": endpoint,
                "clearinghouse": clearinghouse,
                "status_code": status_code,
                "attempts": attempts,
            },
        )
        self.endpoint = endpoint
        self.clearinghouse = clearinghouse
        self.status_code = status_code
        self.attempts = attempts
        self.failover_eligible = failover_eligible
        self.original_error = original_error


class MalformedResponseError(EligibilityError):
    """Raised when the clearinghouse answered with something other than a 271."""

    def __init__(
        self,
        message: str,
        response_type: str = "unknown",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.response_type = response_type


class AmbiguousBenefitError(EligibilityError):
    """Raised when coverage-type flags conflict and no rule gives precedence."""

    def __init__(
        self,
        message: str,
        conflicts: Optional[dict[str, list[str]]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.conflicts = conflicts or {}
