"""Core enumerations."""

from x12_eligibility.core.enums import (
    BenefitCategory,
    Clearinghouse,
    ConfidenceLevel,
    CoverageType,
    DateFormatQualifier,
    EligibilityOutcome,
    FieldRequirement,
    PayerCategory,
    SubscriberIdQualifier,
)

__all__ = [
    "BenefitCategory",
    "Clearinghouse",
    "ConfidenceLevel",
    "CoverageType",
    "DateFormatQualifier",
    "EligibilityOutcome",
    "FieldRequirement",
    "PayerCategory",
    "SubscriberIdQualifier",
]
