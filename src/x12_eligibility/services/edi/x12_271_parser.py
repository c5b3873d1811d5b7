"""
X12 271 Eligibility Response Parser.

Turns a tokenized 271 into typed benefit records. Each EB segment becomes a
BenefitRecord tagged with the payer context it appeared under (the 2100A
information source, or a 2120C NM1*PR inside an LS/LE loop that names the
entity administering that benefit). Copay, deductible and coinsurance come
from the structured EB amounts and from tolerant scanning of free text.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional

from x12_eligibility.core.enums import BenefitCategory, CoverageType
from x12_eligibility.services.edi.x12_base import (
    X12Envelope,
    X12Segment,
    X12Tokenizer,
    parse_x12_date,
    parse_x12_date_range,
)
from x12_eligibility.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Enums
# =============================================================================


class EligibilityStatus(str, Enum):
    """Eligibility or benefit information codes from EB01."""
    ACTIVE = "1"  # Active Coverage
    ACTIVE_FULL_RISK = "2"  # Active - Full Risk Capitation
    ACTIVE_SERVICES = "3"  # Active - Services Capitated
    ACTIVE_SERVICES_PRIMARY = "4"  # Active - Services Capitated Primary Care
    ACTIVE_PENDING = "5"  # Active - Pending Investigation
    INACTIVE = "6"  # Inactive
    INACTIVE_PENDING = "7"  # Inactive - Pending Eligibility Update
    INACTIVE_PENDING_INVESTIGATION = "8"  # Inactive - Pending Investigation
    COINSURANCE = "A"
    COPAYMENT = "B"
    DEDUCTIBLE = "C"
    EXCLUSIONS = "E"
    LIMITATIONS = "F"
    OUT_OF_POCKET_STOP_LOSS = "G"
    NON_COVERED = "I"
    PRIMARY_CARE_PROVIDER = "L"
    MANAGED_CARE_COORDINATOR = "MC"
    SERVICES_RESTRICTED = "N"
    OTHER_UNLISTED = "R"
    CONTACT_PAYER = "U"
    CANNOT_PROCESS = "V"


_ACTIVE_CODES = {"1", "2", "3", "4", "5"}
_INACTIVE_CODES = {"6", "7", "8"}
_LIMITED_CODES = {"E", "F", "I", "N", "V"}


def categorize_eligibility_code(code: str) -> BenefitCategory:
    """Map an EB01 code to active/inactive/limited/benefit."""
    if code in _ACTIVE_CODES:
        return BenefitCategory.ACTIVE
    if code in _INACTIVE_CODES:
        return BenefitCategory.INACTIVE
    if code in _LIMITED_CODES:
        return BenefitCategory.LIMITED
    return BenefitCategory.BENEFIT


SERVICE_TYPE_NAMES: Dict[str, str] = {
    "1": "Medical Care",
    "30": "Health Benefit Plan Coverage",
    "33": "Chiropractic",
    "35": "Dental Care",
    "47": "Hospital",
    "48": "Hospital - Inpatient",
    "50": "Hospital - Outpatient",
    "54": "Long Term Care",
    "56": "Medically Related Transportation",
    "60": "General Benefits",
    "86": "Emergency Services",
    "88": "Pharmacy",
    "98": "Professional (Physician) Visit - Office",
    "A4": "Psychiatric",
    "A6": "Psychotherapy",
    "A7": "Psychiatric - Inpatient",
    "A8": "Psychiatric - Outpatient",
    "AI": "Substance Abuse",
    "AL": "Vision (Optometry)",
    "MH": "Mental Health",
    "UC": "Urgent Care",
}


# =============================================================================
# Tolerant text scanning
# =============================================================================

# Payers write amounts as "COPAY$25", "CO $10.00", "COPAY: 15", "DED 500",
# "COINSURANCE20%". COINSURANCE must not read as a copay.
_COPAY_RE = re.compile(r"(?<![A-Z])CO(?:-?PAY(?:MENT)?)?\s*:?\s*\$?\s*(\d[\d,]*(?:\.\d{1,2})?)(?![\d,.]*\s*%)", re.IGNORECASE)
_DEDUCTIBLE_RE = re.compile(r"(?<![A-Z])DED(?:UCTIBLE)?\s*:?\s*\$?\s*(\d[\d,]*(?:\.\d{1,2})?)", re.IGNORECASE)
_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_CENTS = Decimal("0.01")


@dataclass
class BenefitAmounts:
    """Amounts recovered from one piece of benefit text."""
    copay: Optional[Decimal] = None
    deductible: Optional[Decimal] = None
    coinsurance: Optional[Decimal] = None


def _to_decimal(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value.replace(",", ""))
    except (InvalidOperation, AttributeError):
        return None


def scan_benefit_text(text: Optional[str]) -> BenefitAmounts:
    """
    Pull copay, deductible and coinsurance out of free text.

    >>> scan_benefit_text("COPAY$25").copay
    Decimal('25.00')
    >>> scan_benefit_text("COINSURANCE20%").coinsurance
    Decimal('20')
    """
    amounts = BenefitAmounts()
    if not text:
        return amounts

    copays = [_to_decimal(m.group(1)) for m in _COPAY_RE.finditer(text)]
    copays = [c for c in copays if c is not None]
    if copays:
        amounts.copay = max(copays).quantize(_CENTS)

    deductible = _DEDUCTIBLE_RE.search(text)
    if deductible:
        value = _to_decimal(deductible.group(1))
        amounts.deductible = value.quantize(_CENTS) if value is not None else None

    percent = _PERCENT_RE.search(text)
    if percent:
        amounts.coinsurance = _to_decimal(percent.group(1))

    return amounts


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class BenefitRecord:
    """One EB segment, typed."""
    eligibility_code: str
    category: BenefitCategory
    coverage_level: Optional[str] = None
    service_types: List[str] = field(default_factory=list)
    insurance_type_code: Optional[str] = None
    coverage_type: Optional[CoverageType] = None
    plan_description: str = ""
    time_period: Optional[str] = None
    note: str = ""
    monetary_amount: Optional[Decimal] = None
    percent: Optional[Decimal] = None
    in_plan_network: Optional[bool] = None
    copay: Optional[Decimal] = None
    deductible: Optional[Decimal] = None
    coinsurance: Optional[Decimal] = None
    payer_name: Optional[str] = None
    payer_id: Optional[str] = None
    messages: List[str] = field(default_factory=list)
    position: int = 0

    @property
    def is_active(self) -> bool:
        return self.category == BenefitCategory.ACTIVE

    @property
    def is_inactive(self) -> bool:
        return self.category == BenefitCategory.INACTIVE

    @property
    def benefit_text(self) -> str:
        return " ".join(filter(None, [self.plan_description, self.note, *self.messages]))

    def apply_amounts(self, amounts: BenefitAmounts) -> None:
        if amounts.copay is not None:
            self.copay = amounts.copay if self.copay is None else max(self.copay, amounts.copay)
        if self.deductible is None:
            self.deductible = amounts.deductible
        if self.coinsurance is None:
            self.coinsurance = amounts.coinsurance

    def to_dict(self) -> dict:
        return {
            "eligibility_code": self.eligibility_code,
            "category": self.category.value,
            "coverage_level": self.coverage_level,
            "service_types": self.service_types,
            "coverage_type": self.coverage_type.value if self.coverage_type else None,
            "insurance_type_code": self.insurance_type_code,
            "plan_description": self.plan_description,
            "note": self.note or None,
            "copay": str(self.copay) if self.copay is not None else None,
            "deductible": str(self.deductible) if self.deductible is not None else None,
            "coinsurance": str(self.coinsurance) if self.coinsurance is not None else None,
            "payer_name": self.payer_name,
            "messages": self.messages,
        }


@dataclass
class SubscriberInfo271:
    """Subscriber as echoed back by the payer."""
    member_id: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None


@dataclass
class RequestRejection:
    """AAA segment: the payer could not process the request as sent."""
    reject_reason_code: str
    follow_up_code: str = ""
    loop_level: Optional[str] = None

    @property
    def description(self) -> str:
        return AAA_REJECT_REASONS.get(self.reject_reason_code, f"Reject reason {self.reject_reason_code}")


AAA_REJECT_REASONS = {
    "15": "Required application data missing",
    "41": "Authorization/access restrictions",
    "42": "Unable to respond at current time",
    "43": "Invalid/missing provider identification",
    "57": "Invalid/missing date(s) of service",
    "58": "Invalid/missing date of birth",
    "62": "Date of service not within allowable inquiry period",
    "65": "Invalid/missing patient name",
    "67": "Patient not found",
    "71": "Patient birth date does not match that for the patient on the database",
    "72": "Invalid/missing subscriber/insured ID",
    "73": "Invalid/missing subscriber/insured name",
    "75": "Subscriber/insured not found",
    "76": "Duplicate subscriber/insured ID number",
}


@dataclass
class BenefitExtraction:
    """Everything the rules engine needs from one 271."""
    records: List[BenefitRecord] = field(default_factory=list)
    subscriber: Optional[SubscriberInfo271] = None
    information_source: Optional[str] = None
    rejections: List[RequestRejection] = field(default_factory=list)
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    control_number: str = ""
    trace_number: Optional[str] = None
    interchange: Optional[X12Envelope] = None

    @property
    def copay(self) -> Optional[Decimal]:
        """Headline copay: the largest observed."""
        copays = [r.copay for r in self.records if r.copay is not None]
        return max(copays) if copays else None

    @property
    def deductible(self) -> Optional[Decimal]:
        return next((r.deductible for r in self.records if r.deductible is not None), None)

    @property
    def coinsurance(self) -> Optional[Decimal]:
        return next((r.coinsurance for r in self.records if r.coinsurance is not None), None)

    @property
    def copay_by_service(self) -> Dict[str, Decimal]:
        """Largest copay seen per service type code."""
        breakdown: Dict[str, Decimal] = {}
        for record in self.records:
            if record.copay is None:
                continue
            for code in record.service_types or ["30"]:
                if code not in breakdown or record.copay > breakdown[code]:
                    breakdown[code] = record.copay
        return breakdown

    @property
    def other_payers(self) -> List[str]:
        """Names of other insurers reported through EB*R (coordination of benefits)."""
        names: List[str] = []
        for record in self.records:
            if record.eligibility_code != EligibilityStatus.OTHER_UNLISTED.value:
                continue
            if record.payer_name and record.payer_name != self.information_source:
                name = record.payer_name
            else:
                name = record.plan_description.strip() or "unidentified payer"
            if name not in names:
                names.append(name)
        return names


# =============================================================================
# Parser
# =============================================================================


class X12271Parser:
    """
    X12 271 Eligibility Response Parser.

    Usage:
        parser = X12271Parser()
        extraction = parser.extract(segments)      # already tokenized
        extraction = parser.parse(x12_content)      # raw text
    """

    def __init__(self, repetition_separator: str = "^"):
        self.repetition_separator = repetition_separator

    def parse(self, content: str) -> BenefitExtraction:
        tokenizer = X12Tokenizer()
        segments = tokenizer.tokenize(content)
        self.repetition_separator = tokenizer.repetition_separator
        return self.extract(segments)

    def extract(self, segments: List[X12Segment]) -> BenefitExtraction:
        """Walk segments in order and build the extraction."""
        extraction = BenefitExtraction()
        current_payer_name: Optional[str] = None
        current_payer_id: Optional[str] = None
        in_benefit_entity_loop = False
        level_code: Optional[str] = None
        last_record: Optional[BenefitRecord] = None

        for seg in segments:
            sid = seg.segment_id

            if sid == "ISA":
                extraction.interchange = X12Envelope.from_isa_segment(seg)
                extraction.control_number = extraction.interchange.control_number.strip()

            elif sid == "HL":
                level_code = seg.get_element(2)  # HL03
                last_record = None

            elif sid == "TRN" and extraction.trace_number is None:
                extraction.trace_number = seg.get_element(1)

            elif sid == "LS":
                in_benefit_entity_loop = True

            elif sid == "LE":
                in_benefit_entity_loop = False

            elif sid == "NM1":
                entity_code = seg.get_element(0)
                if entity_code == "PR":
                    name = seg.get_element(2).strip() or None
                    payer_id = seg.get_element(8).strip() or None
                    if in_benefit_entity_loop and last_record is not None:
                        # 2120C names the administrator of the preceding benefit
                        last_record.payer_name = name
                        last_record.payer_id = payer_id
                    else:
                        current_payer_name, current_payer_id = name, payer_id
                        if extraction.information_source is None:
                            extraction.information_source = name
                elif entity_code in ("IL", "03") and level_code in ("22", "23"):
                    if extraction.subscriber is None or entity_code == "IL":
                        extraction.subscriber = SubscriberInfo271(
                            member_id=seg.get_element(8),
                            last_name=seg.get_element(2) or None,
                            first_name=seg.get_element(3) or None,
                        )

            elif sid == "DMG" and extraction.subscriber is not None:
                extraction.subscriber.date_of_birth = parse_x12_date(seg.get_element(1))
                extraction.subscriber.gender = seg.get_element(2) or None

            elif sid == "AAA":
                if seg.get_element(0) == "N":
                    extraction.rejections.append(
                        RequestRejection(
                            reject_reason_code=seg.get_element(2),
                            follow_up_code=seg.get_element(3),
                            loop_level=level_code,
                        )
                    )

            elif sid == "DTP":
                self._parse_dtp(seg, extraction)

            elif sid == "EB":
                last_record = self._parse_eb(seg, current_payer_name, current_payer_id)
                extraction.records.append(last_record)

            elif sid == "MSG" and last_record is not None:
                text = seg.get_element(0)
                if text:
                    last_record.messages.append(text)
                    last_record.apply_amounts(scan_benefit_text(text))

        logger.debug(
            f"Extracted {len(extraction.records)} benefit records, "
            f"{len(extraction.rejections)} rejections"
        )
        return extraction

    def _parse_eb(
        self, seg: X12Segment, payer_name: Optional[str], payer_id: Optional[str]
    ) -> BenefitRecord:
        """Parse EB segment.

        Note: X12Segment uses 0-based indexing for elements.
        EB01 = elements[0] ... EB08 = elements[7], EB12 = elements[11]
        """
        code = seg.get_element(0)
        insurance_type = seg.get_element(3) or None
        try:
            coverage_type = CoverageType(insurance_type) if insurance_type else None
        except ValueError:
            coverage_type = None

        network = seg.get_element(11)
        # EB06 is a two-character period code; some payers put "COPAY$25" there
        time_period = seg.get_element(5).strip()
        record = BenefitRecord(
            eligibility_code=code,
            category=categorize_eligibility_code(code),
            coverage_level=seg.get_element(1) or None,
            service_types=seg.get_repeated(2, self.repetition_separator),
            insurance_type_code=insurance_type,
            coverage_type=coverage_type,
            plan_description=seg.get_element(4),
            time_period=(time_period or None) if len(time_period) <= 2 else None,
            note=time_period if len(time_period) > 2 else "",
            monetary_amount=_to_decimal(seg.get_element(6)) if seg.get_element(6) else None,
            percent=_to_decimal(seg.get_element(7)) if seg.get_element(7) else None,
            in_plan_network={"Y": True, "N": False}.get(network),
            payer_name=payer_name,
            payer_id=payer_id,
            position=seg.position,
        )

        if code == EligibilityStatus.COPAYMENT.value and record.monetary_amount is not None:
            record.copay = record.monetary_amount.quantize(_CENTS)
        elif code == EligibilityStatus.DEDUCTIBLE.value and record.monetary_amount is not None:
            record.deductible = record.monetary_amount.quantize(_CENTS)
        elif code == EligibilityStatus.COINSURANCE.value and record.percent is not None:
            # EB08 is a decimal fraction (0.20 means 20%)
            percent = record.percent * 100 if record.percent <= 1 else record.percent
            record.coinsurance = percent.quantize(_CENTS)

        record.apply_amounts(scan_benefit_text(record.benefit_text))
        return record

    def _parse_dtp(self, seg: X12Segment, extraction: BenefitExtraction) -> None:
        qualifier = seg.get_element(0)
        start, end = parse_x12_date_range(seg.get_element(2))
        if qualifier in ("346", "356"):
            extraction.coverage_start = extraction.coverage_start or start
        elif qualifier in ("347", "357"):
            extraction.coverage_end = extraction.coverage_end or end
        elif qualifier in ("307", "291"):
            extraction.coverage_start = extraction.coverage_start or start
            if seg.get_element(1) == "RD8":
                extraction.coverage_end = extraction.coverage_end or end
