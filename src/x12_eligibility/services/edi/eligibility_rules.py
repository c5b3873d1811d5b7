"""
Eligibility Rules Engine.

Turns extracted benefit records into an enrolled / not-enrolled decision for
a fee-for-service program.

Medicaid programs carve mental health out of managed care: a patient whose
medical benefits sit with a managed-care organization (EB04 = HM) can still
be fee-for-service (EB04 = MC) for mental health, and that behavioral
signal decides the verdict. Only when the 271 carries no behavioral
coverage-type signal does the general "managed care excludes the program"
heuristic apply to the medical records.

Conflicting HM/MC flags on the same service type inside the deciding group
are never guessed at; they raise AmbiguousBenefitError.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from x12_eligibility.core.enums import (
    ConfidenceLevel,
    CoverageType,
    EligibilityOutcome,
)
from x12_eligibility.schemas.payer import PayerConfig
from x12_eligibility.services.edi.x12_271_parser import (
    BenefitExtraction,
    BenefitRecord,
    SubscriberInfo271,
)
from x12_eligibility.utils.errors import AmbiguousBenefitError
from x12_eligibility.utils.logging import get_logger, mask_identifier

logger = get_logger(__name__)

NO_ACTIVE_COVERAGE = "no active coverage found"
MENTAL_HEALTH_MANAGED_CARE = "mental health services under managed care"
MEDICAL_MANAGED_CARE = "medical services under managed care"
VERIFY_MANUALLY = "verify manually"
NO_MEMBER_ID_RETURNED = "payer did not return a member ID"

# Mental health, psychiatric and substance use service types
BEHAVIORAL_SERVICE_TYPES = frozenset({"MH", "A4", "A5", "A6", "A7", "A8", "AI", "AJ", "AK"})
BEHAVIORAL_KEYWORDS = ("MENTAL HEALTH", "BEHAVIORAL", "SUBSTANCE", "PSYCHIATRIC")

# Dental, transportation and vision carry their own administrators and
# coverage-type flags that say nothing about medical enrollment
ANCILLARY_SERVICE_TYPES = frozenset({
    "23", "24", "25", "26", "27", "28",
    "35", "36", "37", "38", "39", "40", "41",
    "56", "57", "58", "59",
    "AL", "AM", "AN", "AO",
})
ANCILLARY_KEYWORDS = ("TRANSPORTATION", "DENTAL", "VISION")

# Utah Medicaid managed-care plans as reported in 2120C NM1*PR
KNOWN_MANAGED_CARE_ORGS: Dict[str, str] = {
    "2000000": "SelectHealth Community Care",
    "2000001": "Molina Healthcare",
    "2000002": "Health Choice Utah",
}
_MANAGED_CARE_NAME_HINTS = {
    "SELECTHEALTH": "SelectHealth Community Care",
    "SELECT HEALTH": "SelectHealth Community Care",
    "MOLINA": "Molina Healthcare",
    "HEALTH CHOICE": "Health Choice Utah",
    "HEALTHY U": "Healthy U (University of Utah Health Plans)",
}

_PROGRAM_TITLES = {
    "TARGETED ADULT": "Targeted Adult Medicaid",
    "TRADITIONAL ADULT": "Traditional Adult Medicaid",
}


# =============================================================================
# Result
# =============================================================================


@dataclass
class EligibilityResult:
    """Outcome of one eligibility check."""
    enrolled: bool
    status: EligibilityOutcome
    program: Optional[str] = None
    plan_type: Optional[str] = None
    verified: bool = True
    confidence: ConfidenceLevel = ConfidenceLevel.HIGH
    requires_manual_review: bool = False

    copay: Optional[Decimal] = None
    deductible: Optional[Decimal] = None
    coinsurance: Optional[Decimal] = None
    copay_by_service: Dict[str, Decimal] = field(default_factory=dict)

    carve_out_explanation: Optional[str] = None
    managed_care_organization: Optional[str] = None
    error_reason: Optional[str] = None
    details: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    other_payers: List[str] = field(default_factory=list)

    payer_name: Optional[str] = None
    subscriber: Optional[SubscriberInfo271] = None
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    benefits: List[BenefitRecord] = field(default_factory=list)

    # Filled in by the service once the exchange is complete
    clearinghouse: Optional[str] = None
    fallback_used: bool = False
    latency_ms: Optional[float] = None
    control_number: Optional[str] = None
    payload_id: Optional[str] = None
    checked_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        def money(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "enrolled": self.enrolled,
            "status": self.status.value,
            "program": self.program,
            "plan_type": self.plan_type,
            "verified": self.verified,
            "confidence": self.confidence.value,
            "requires_manual_review": self.requires_manual_review,
            "copay": money(self.copay),
            "deductible": money(self.deductible),
            "coinsurance": money(self.coinsurance),
            "copay_by_service": {k: str(v) for k, v in self.copay_by_service.items()},
            "carve_out_explanation": self.carve_out_explanation,
            "managed_care_organization": self.managed_care_organization,
            "error_reason": self.error_reason,
            "details": self.details,
            "warnings": self.warnings,
            "other_payers": self.other_payers,
            "payer_name": self.payer_name,
            "coverage_start": self.coverage_start.isoformat() if self.coverage_start else None,
            "coverage_end": self.coverage_end.isoformat() if self.coverage_end else None,
            "benefits": [record.to_dict() for record in self.benefits],
            "clearinghouse": self.clearinghouse,
            "fallback_used": self.fallback_used,
            "latency_ms": round(self.latency_ms, 1) if self.latency_ms is not None else None,
            "control_number": self.control_number,
            "payload_id": self.payload_id,
            "checked_at": self.checked_at.isoformat(),
        }


# =============================================================================
# Classification helpers
# =============================================================================


def is_behavioral(record: BenefitRecord) -> bool:
    if BEHAVIORAL_SERVICE_TYPES.intersection(record.service_types):
        return True
    text = record.benefit_text.upper()
    return any(keyword in text for keyword in BEHAVIORAL_KEYWORDS)


def is_ancillary(record: BenefitRecord) -> bool:
    if record.service_types and set(record.service_types) <= ANCILLARY_SERVICE_TYPES:
        return True
    text = record.benefit_text.upper()
    return any(keyword in text for keyword in ANCILLARY_KEYWORDS)


def coverage_types(records: Iterable[BenefitRecord]) -> Set[CoverageType]:
    return {r.coverage_type for r in records if r.coverage_type is not None}


def find_conflicts(records: Iterable[BenefitRecord]) -> Dict[str, List[str]]:
    """Service types that carry both HM and MC within one group of records."""
    flags: Dict[str, Set[CoverageType]] = {}
    for record in records:
        if record.coverage_type is None:
            continue
        for code in record.service_types or ["30"]:
            flags.setdefault(code, set()).add(record.coverage_type)
    return {
        code: sorted(flag.value for flag in found)
        for code, found in flags.items()
        if len(found) > 1
    }


def identify_managed_care_org(records: Iterable[BenefitRecord]) -> Optional[str]:
    """Name the managed-care organization administering HM benefits, if any."""
    fallback = None
    for record in records:
        if record.coverage_type != CoverageType.MANAGED_CARE:
            continue
        if record.payer_id and record.payer_id in KNOWN_MANAGED_CARE_ORGS:
            return KNOWN_MANAGED_CARE_ORGS[record.payer_id]
        for source in (record.payer_name, record.plan_description):
            upper = (source or "").upper()
            for hint, name in _MANAGED_CARE_NAME_HINTS.items():
                if hint in upper:
                    return name
        fallback = fallback or record.payer_name
    return fallback


def program_title(records: Iterable[BenefitRecord], payer: Optional[PayerConfig]) -> str:
    """Program label: a recognized plan description wins over the payer's default."""
    for record in records:
        upper = record.plan_description.upper()
        for fragment, title in _PROGRAM_TITLES.items():
            if fragment in upper:
                return title
    if payer is not None:
        return payer.program_name or f"{payer.name} Fee-for-Service"
    return "Fee-for-Service"


# =============================================================================
# Engine
# =============================================================================


class EligibilityRulesEngine:
    """
    Decide enrollment from a BenefitExtraction.

    Usage:
        engine = EligibilityRulesEngine()
        result = engine.evaluate(extraction, payer)
    """

    def evaluate(
        self,
        extraction: BenefitExtraction,
        payer: Optional[PayerConfig] = None,
        as_of: Optional[date] = None,
    ) -> EligibilityResult:
        """
        Apply the coverage rules in order.

        Args:
            extraction: Parsed 271 benefits
            payer: Payer the inquiry went to
            as_of: Date coverage must still be in force on (default: today)

        Raises:
            AmbiguousBenefitError: conflicting coverage-type flags in the
                group of records that decides the verdict
        """
        records = extraction.records

        if not records:
            result = self._not_enrolled(NO_ACTIVE_COVERAGE)
            result.details.extend(r.description for r in extraction.rejections)
            return self._attach(result, extraction, payer)

        active = [r for r in records if r.is_active]
        if not active:
            result = self._not_enrolled(NO_ACTIVE_COVERAGE)
            if any(r.is_inactive for r in records):
                result.details.append("coverage reported inactive")
            return self._attach(result, extraction, payer)

        as_of = as_of or date.today()
        if extraction.coverage_end is not None and extraction.coverage_end < as_of:
            result = self._not_enrolled(NO_ACTIVE_COVERAGE)
            result.warnings.append(f"coverage expired on {extraction.coverage_end.isoformat()}")
            return self._attach(result, extraction, payer)

        if payer is not None and payer.is_commercial:
            result = self._enrolled(self._commercial_program(active, payer), plan_type="Commercial")
            return self._attach(result, extraction, payer)

        behavioral = [r for r in active if is_behavioral(r)]
        ancillary = [r for r in active if not is_behavioral(r) and is_ancillary(r)]
        medical = [r for r in active if r not in behavioral and r not in ancillary]

        behavioral_flags = coverage_types(behavioral)
        if behavioral_flags:
            result = self._decide_behavioral(behavioral, medical, behavioral_flags, payer)
        else:
            result = self._decide_medical(medical, payer)

        if ancillary:
            result.details.append(
                f"{len(ancillary)} dental/transportation/vision benefit(s) ignored for enrollment"
            )
        return self._attach(result, extraction, payer)

    def _decide_behavioral(
        self,
        behavioral: List[BenefitRecord],
        medical: List[BenefitRecord],
        flags: Set[CoverageType],
        payer: Optional[PayerConfig],
    ) -> EligibilityResult:
        conflicts = find_conflicts(behavioral)
        if conflicts:
            raise AmbiguousBenefitError(
                "Mental health benefits are flagged both managed care and fee-for-service",
                conflicts=conflicts,
            )

        if CoverageType.FEE_FOR_SERVICE in flags:
            ffs_records = [r for r in behavioral if r.coverage_type == CoverageType.FEE_FOR_SERVICE]
            result = self._enrolled(
                program_title(ffs_records + medical, payer),
                plan_type="Traditional Fee-for-Service",
            )
            if CoverageType.MANAGED_CARE in flags:
                result.details.append("some behavioral services are administered by managed care")
            if CoverageType.MANAGED_CARE in coverage_types(medical):
                organization = identify_managed_care_org(medical)
                result.managed_care_organization = organization
                result.plan_type = "Mental Health Carve-Out"
                result.carve_out_explanation = (
                    "Mental health services are carved out to fee-for-service; "
                    f"medical services are managed by {organization or 'a managed care plan'}"
                )
            return result

        result = self._not_enrolled(MENTAL_HEALTH_MANAGED_CARE)
        result.plan_type = "Managed Care"
        result.managed_care_organization = identify_managed_care_org(behavioral)
        return result

    def _decide_medical(
        self, medical: List[BenefitRecord], payer: Optional[PayerConfig]
    ) -> EligibilityResult:
        flags = coverage_types(medical)
        if not medical or not flags:
            name = payer.name if payer is not None else None
            source = medical[0].payer_name if medical else None
            return self._enrolled(name or source or "Active coverage", plan_type=None)

        conflicts = find_conflicts(medical)
        if conflicts:
            raise AmbiguousBenefitError(
                "Medical benefits are flagged both managed care and fee-for-service",
                conflicts=conflicts,
            )

        if CoverageType.FEE_FOR_SERVICE in flags:
            result = self._enrolled(
                program_title(medical, payer), plan_type="Traditional Fee-for-Service"
            )
            if CoverageType.MANAGED_CARE in flags:
                result.details.append("some medical services are administered by managed care")
            return result

        result = self._not_enrolled(MEDICAL_MANAGED_CARE)
        result.plan_type = "Managed Care"
        result.managed_care_organization = identify_managed_care_org(medical)
        return result

    @staticmethod
    def _commercial_program(active: List[BenefitRecord], payer: PayerConfig) -> str:
        plan = next((r.plan_description for r in active if r.plan_description), "")
        return f"{payer.name} {plan}".strip()

    @staticmethod
    def _enrolled(program: str, plan_type: Optional[str]) -> EligibilityResult:
        return EligibilityResult(
            enrolled=True,
            status=EligibilityOutcome.ENROLLED,
            program=program,
            plan_type=plan_type,
        )

    @staticmethod
    def _not_enrolled(reason: str) -> EligibilityResult:
        return EligibilityResult(
            enrolled=False,
            status=EligibilityOutcome.NOT_ENROLLED,
            error_reason=reason,
        )

    @staticmethod
    def _attach(
        result: EligibilityResult,
        extraction: BenefitExtraction,
        payer: Optional[PayerConfig],
    ) -> EligibilityResult:
        """Copay/deductible/coinsurance and context ride along with every verdict."""
        result.copay = extraction.copay
        result.deductible = extraction.deductible
        result.coinsurance = extraction.coinsurance
        result.copay_by_service = extraction.copay_by_service
        result.subscriber = extraction.subscriber
        result.coverage_start = extraction.coverage_start
        result.coverage_end = extraction.coverage_end
        result.benefits = list(extraction.records)
        result.other_payers = extraction.other_payers
        result.warnings.extend(
            f"other insurance reported: {name}" for name in result.other_payers
        )
        result.payer_name = extraction.information_source or (payer.name if payer else None)
        logger.info(
            f"Eligibility verdict: {result.status.value} "
            f"program={result.program} reason={result.error_reason}"
        )
        return result


def manual_review_result(
    error: AmbiguousBenefitError,
    extraction: BenefitExtraction,
    payer: Optional[PayerConfig] = None,
) -> EligibilityResult:
    """Low-confidence result for conflicting coverage signals."""
    result = EligibilityResult(
        enrolled=False,
        status=EligibilityOutcome.MANUAL_REVIEW,
        verified=False,
        confidence=ConfidenceLevel.LOW,
        requires_manual_review=True,
        error_reason=f"{VERIFY_MANUALLY}: {error.message}",
    )
    result.details.extend(
        f"service type {code}: {'/'.join(flags)}" for code, flags in sorted(error.conflicts.items())
    )
    return EligibilityRulesEngine._attach(result, extraction, payer)


def member_id_warning(sent: Optional[str], subscriber: Optional[SubscriberInfo271]) -> Optional[str]:
    """Compare the member ID sent in the 270 with the one the payer echoed back."""
    if not sent or not sent.strip():
        return None
    returned = subscriber.member_id.strip() if subscriber is not None else ""
    if not returned:
        return NO_MEMBER_ID_RETURNED
    if returned.upper() != sent.strip().upper():
        return (
            f"member ID mismatch: sent {mask_identifier(sent.strip())}, "
            f"payer returned {mask_identifier(returned)}"
        )
    return None
