"""Shared utilities: error taxonomy and logging."""

from x12_eligibility.utils.errors import (
    AmbiguousBenefitError,
    ConfigurationError,
    EligibilityError,
    MalformedResponseError,
    TransportError,
    ValidationError,
)
from x12_eligibility.utils.logging import get_logger, mask_identifier, setup_logging

__all__ = [
    "EligibilityError",
    "ValidationError",
    "ConfigurationError",
    "TransportError",
    "MalformedResponseError",
    "AmbiguousBenefitError",
    "get_logger",
    "mask_identifier",
    "setup_logging",
]
