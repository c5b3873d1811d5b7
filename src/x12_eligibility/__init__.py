"""
x12_eligibility: real-time X12 270/271 insurance eligibility checks.
"""

from x12_eligibility.config import AppConfig, load_config, load_config_from_file
from x12_eligibility.schemas import PayerConfig
from x12_eligibility.services.edi import (
    EligibilityResult,
    EligibilityService,
    PatientQuery,
    PayerConfigRegistry,
    check_eligibility,
)
from x12_eligibility.utils.errors import (
    AmbiguousBenefitError,
    ConfigurationError,
    EligibilityError,
    MalformedResponseError,
    TransportError,
    ValidationError,
)

__version__ = "1.0.0"

__all__ = [
    "AppConfig",
    "AmbiguousBenefitError",
    "ConfigurationError",
    "EligibilityError",
    "EligibilityResult",
    "EligibilityService",
    "MalformedResponseError",
    "PatientQuery",
    "PayerConfig",
    "PayerConfigRegistry",
    "TransportError",
    "ValidationError",
    "check_eligibility",
    "load_config",
    "load_config_from_file",
]
