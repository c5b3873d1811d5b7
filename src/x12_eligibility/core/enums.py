"""
Core Enumerations for the Eligibility Pipeline.
"""

from enum import Enum


# =============================================================================
# Clearinghouse Enums
# =============================================================================


class Clearinghouse(str, Enum):
    """Supported real-time CORE clearinghouses."""

    OFFICE_ALLY = "office_ally"  # SOAP 1.2, CDATA payload
    UHIN = "uhin"  # SOAP 1.2, plain payload, mustUnderstand security header


# =============================================================================
# Payer Configuration Enums
# =============================================================================


class PayerCategory(str, Enum):
    """Broad payer category; decides which coverage rules apply."""

    MEDICAID = "medicaid"
    MEDICAID_MANAGED_CARE = "medicaid_managed_care"
    MEDICARE = "medicare"
    COMMERCIAL = "commercial"


class FieldRequirement(str, Enum):
    """How strongly a payer wants a patient field in the 270."""

    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"
    NOT_NEEDED = "not_needed"


class DateFormatQualifier(str, Enum):
    """DTP*291 date format qualifier."""

    SINGLE_DATE = "D8"  # CCYYMMDD
    DATE_RANGE = "RD8"  # CCYYMMDD-CCYYMMDD


class SubscriberIdQualifier(str, Enum):
    """NM1*IL identification code qualifier (NM108)."""

    MEMBER_ID = "MI"
    SSN = "SY"


# =============================================================================
# Coverage Enums
# =============================================================================


class CoverageType(str, Enum):
    """Coverage-type flag carried in EB04."""

    MANAGED_CARE = "HM"
    FEE_FOR_SERVICE = "MC"


class BenefitCategory(str, Enum):
    """Coarse meaning of an EB01 eligibility code."""

    ACTIVE = "active"  # 1-5
    INACTIVE = "inactive"  # 6-8
    LIMITED = "limited"  # exclusions, limitations, non-covered, restricted
    BENEFIT = "benefit"  # copay/deductible/coinsurance and other detail rows


class EligibilityOutcome(str, Enum):
    """Verdict of an eligibility check."""

    ENROLLED = "enrolled"
    NOT_ENROLLED = "not_enrolled"
    MANUAL_REVIEW = "manual_review"


class ConfidenceLevel(str, Enum):
    """How much the verdict can be trusted without a human look."""

    HIGH = "high"
    LOW = "low"
