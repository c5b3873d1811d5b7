"""
X12 270 Eligibility Inquiry Generator.

Generates HIPAA 5010 (005010X279A1) X12 270 eligibility inquiries.
One parameterized builder serves every payer; payer differences (identifier
qualifiers, gender in DMG, service date format) come from PayerConfig.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from x12_eligibility.core.enums import (
    Clearinghouse,
    DateFormatQualifier,
    FieldRequirement,
    SubscriberIdQualifier,
)
from x12_eligibility.schemas.payer import PayerConfig
from x12_eligibility.services.edi.x12_base import (
    ControlNumberGenerator,
    format_x12_date,
    format_x12_time,
    sanitize_element,
    shared_control_numbers,
    validate_npi,
)
from x12_eligibility.utils.errors import ConfigurationError, ValidationError
from x12_eligibility.utils.logging import get_logger, mask_identifier

logger = get_logger(__name__)

IMPLEMENTATION_GUIDE = "005010X279A1"
MAX_PATIENT_AGE_YEARS = 120


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class PatientQuery:
    """Patient demographics and identifiers for one eligibility inquiry."""

    first_name: str = ""
    last_name: str = ""
    date_of_birth: Optional[date] = None
    member_id: Optional[str] = None
    ssn: Optional[str] = None  # full 9 digits or last 4
    gender: Optional[str] = None  # M, F, U
    service_date: Optional[date] = None

    @property
    def ssn_digits(self) -> str:
        return "".join(ch for ch in (self.ssn or "") if ch.isdigit())

    @property
    def has_full_ssn(self) -> bool:
        return len(self.ssn_digits) == 9


@dataclass
class InquiryProvider:
    """Information receiver (NM1*1P)."""

    npi: str
    name: str


@dataclass
class TradingPartners:
    """ISA/GS sender and receiver identification for one clearinghouse."""

    sender_id: str
    receiver_id: str
    sender_qualifier: str = "ZZ"
    receiver_qualifier: str = "ZZ"
    usage_indicator: str = "P"


@dataclass
class Transaction:
    """A rendered 270 interchange."""

    control_number: str
    sender_id: str
    receiver_id: str
    segments: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    segment_terminator: str = "~"

    @property
    def content(self) -> str:
        return self.segment_terminator.join(self.segments) + self.segment_terminator

    @property
    def transaction_segment_count(self) -> int:
        """Number of segments from ST through SE inclusive."""
        ids = [segment.split("*", 1)[0] for segment in self.segments]
        return ids.index("SE") - ids.index("ST") + 1

    def __str__(self) -> str:
        return self.content


# =============================================================================
# Validation
# =============================================================================


def validate_patient_query(query: PatientQuery, today: Optional[date] = None) -> None:
    """
    Check a query before anything is built or sent.

    Raises:
        ValidationError: with the offending field names
    """
    today = today or date.today()
    has_identifier = bool((query.member_id or "").strip()) or bool(query.ssn_digits)
    has_demographics = bool(query.first_name.strip() and query.last_name.strip() and query.date_of_birth)

    if not (has_identifier or has_demographics):
        raise ValidationError(
            "A member ID, an SSN, or first name + last name + date of birth is required",
            fields=["member_id", "ssn", "first_name", "last_name", "date_of_birth"],
        )

    if query.date_of_birth is not None:
        if query.date_of_birth > today:
            raise ValidationError("Date of birth cannot be in the future", fields=["date_of_birth"])
        if today.year - query.date_of_birth.year > MAX_PATIENT_AGE_YEARS:
            raise ValidationError("Date of birth is implausibly old", fields=["date_of_birth"])

    if query.ssn:
        digits = query.ssn_digits
        if len(digits) not in (4, 9):
            raise ValidationError("SSN must be 9 digits or the last 4", fields=["ssn"])
        if set(digits) == {"0"}:
            raise ValidationError("SSN cannot be all zeros", fields=["ssn"])

    if query.gender and query.gender.upper() not in ("M", "F", "U"):
        raise ValidationError("Gender must be M, F or U", fields=["gender"])


def choose_subscriber_identifier(
    query: PatientQuery, payer: PayerConfig
) -> Optional[Tuple[SubscriberIdQualifier, str]]:
    """
    Pick the single identifier transmitted in NM1*IL.

    Member ID wins when the payer accepts one; a full SSN is used only for
    payers that search by SSN. None means a name + DOB search.
    """
    member_id = sanitize_element(query.member_id, 80)
    if member_id and payer.supports_member_id_in_nm1:
        return SubscriberIdQualifier.MEMBER_ID, member_id
    if query.has_full_ssn and payer.accepts_ssn:
        return SubscriberIdQualifier.SSN, query.ssn_digits
    return None


# =============================================================================
# Generator
# =============================================================================


class X12270Generator:
    """
    X12 270 Eligibility Inquiry Generator.

    Usage:
        generator = X12270Generator()
        transaction = generator.generate(query, payer, partners, provider)
        body = transaction.content
    """

    def __init__(
        self,
        control_numbers: Optional[ControlNumberGenerator] = None,
        clock: Callable[[], datetime] = datetime.now,
        element_separator: str = "*",
        segment_terminator: str = "~",
        sub_element_separator: str = ":",
        repetition_separator: str = "^",
    ):
        self.control_numbers = control_numbers or shared_control_numbers()
        self.clock = clock
        self.element_sep = element_separator
        self.segment_term = segment_terminator
        self.sub_element_sep = sub_element_separator
        self.repetition_sep = repetition_separator

    def generate(
        self,
        query: PatientQuery,
        payer: PayerConfig,
        partners: TradingPartners,
        provider: InquiryProvider,
        clearinghouse: Optional[Clearinghouse] = None,
    ) -> Transaction:
        """
        Build a 270 inquiry.

        Raises:
            ValidationError: missing DOB, missing payer-required fields,
                no usable identifier, or unresolvable payer code
            ConfigurationError: missing trading partner or provider ids
        """
        now = self.clock()
        payer_code = self._validate(query, payer, partners, provider, clearinghouse, now.date())
        identifier = choose_subscriber_identifier(query, payer)
        control = self.control_numbers.next()
        st_control = "0001"

        segments = [
            self._build_isa(partners, control, now),
            self._build_gs(partners, control, now),
            self._segment("ST", "270", st_control, IMPLEMENTATION_GUIDE),
            self._segment("BHT", "0022", "13", f"ELG{control}", format_x12_date(now), format_x12_time(now)),
            # 2000A Information Source (payer)
            self._segment("HL", "1", "", "20", "1"),
            self._segment("NM1", "PR", "2", sanitize_element(payer.nm1_payer_name, 60), "", "", "", "", "PI", payer_code),
            # 2000B Information Receiver (provider)
            self._segment("HL", "2", "1", "21", "1"),
            self._segment("NM1", "1P", "2", sanitize_element(provider.name, 60).upper(), "", "", "", "", "XX", provider.npi),
            # 2000C Subscriber
            self._segment("HL", "3", "2", "22", "0"),
            self._segment("TRN", "1", control, provider.npi, "ELIGIBILITY"),
            self._build_subscriber_nm1(query, identifier),
            self._build_dmg(query, payer),
            self._build_service_date(query.service_date or now.date(), payer),
        ]
        for code in payer.service_type_codes:
            segments.append(self._segment("EQ", code))

        segment_count = len(segments) - 2 + 1  # ST..last body segment, plus SE
        segments.append(self._segment("SE", str(segment_count), st_control))
        segments.append(self._segment("GE", "1", control))
        segments.append(self._segment("IEA", "1", control))

        logger.debug(
            f"Built 270 control={control} payer={payer.name} "
            f"id_qualifier={identifier[0].value if identifier else 'none'} "
            f"id={mask_identifier(identifier[1]) if identifier else ''}"
        )

        return Transaction(
            control_number=control,
            sender_id=partners.sender_id,
            receiver_id=partners.receiver_id,
            segments=segments,
            created_at=now,
            segment_terminator=self.segment_term,
        )

    def _validate(
        self,
        query: PatientQuery,
        payer: PayerConfig,
        partners: TradingPartners,
        provider: InquiryProvider,
        clearinghouse: Optional[Clearinghouse],
        today: date,
    ) -> str:
        validate_patient_query(query, today)

        if query.date_of_birth is None:
            raise ValidationError("Date of birth is required for a 270 inquiry", fields=["date_of_birth"])

        missing = payer.missing_fields(query)
        if missing:
            raise ValidationError(
                f"{payer.name} requires: {', '.join(missing)}",
                fields=missing,
            )

        if payer.requires_gender_in_dmg and (query.gender or "").upper() not in ("M", "F"):
            raise ValidationError(f"{payer.name} requires gender M or F", fields=["gender"])

        if choose_subscriber_identifier(query, payer) is None:
            if not payer.allows_name_only:
                raise ValidationError(
                    f"{payer.name} does not accept name-only searches; a member ID is required",
                    fields=["member_id"],
                )
            if not (query.first_name.strip() and query.last_name.strip()):
                raise ValidationError(
                    "First and last name are required when no identifier is sent",
                    fields=["first_name", "last_name"],
                )

        payer_code = payer.payer_code_for(clearinghouse)
        if not payer_code:
            where = f" on {clearinghouse.value}" if clearinghouse else ""
            raise ValidationError(f"No payer code for {payer.name}{where}", fields=["payer_code"])

        if not partners.sender_id or not partners.receiver_id:
            raise ConfigurationError("Sender and receiver ids must be configured")
        if len(partners.sender_id) > 15 or len(partners.receiver_id) > 15:
            raise ConfigurationError("ISA sender/receiver ids are limited to 15 characters")
        if not provider.npi:
            raise ConfigurationError("Information receiver NPI must be configured")
        if not validate_npi(provider.npi):
            logger.warning(f"Provider NPI {provider.npi} fails the NPI check digit")

        return sanitize_element(payer_code, 80)

    def _segment(self, *elements) -> str:
        """Build a segment from elements, dropping trailing empty elements."""
        items = list(elements)
        while len(items) > 1 and items[-1] == "":
            items.pop()
        return self.element_sep.join(items)

    def _build_isa(self, partners: TradingPartners, control_number: str, now: datetime) -> str:
        """Build ISA segment (fixed width, 106 characters with terminator)."""
        return self.element_sep.join([
            "ISA",
            "00",  # Authorization Info Qualifier
            " " * 10,  # Authorization Info
            "00",  # Security Info Qualifier
            " " * 10,  # Security Info
            partners.sender_qualifier,
            partners.sender_id.ljust(15),
            partners.receiver_qualifier,
            partners.receiver_id.ljust(15),
            now.strftime("%y%m%d"),
            now.strftime("%H%M"),
            self.repetition_sep,  # Repetition Separator
            "00501",  # Version
            control_number,
            "0",  # Acknowledgment Requested
            partners.usage_indicator,
            self.sub_element_sep,
        ])

    def _build_gs(self, partners: TradingPartners, control_number: str, now: datetime) -> str:
        """Build GS segment."""
        return self._segment(
            "GS",
            "HS",  # Functional ID Code (HS=270)
            partners.sender_id,
            partners.receiver_id,
            format_x12_date(now),
            format_x12_time(now),
            control_number,
            "X",
            IMPLEMENTATION_GUIDE,
        )

    def _build_subscriber_nm1(
        self, query: PatientQuery, identifier: Optional[Tuple[SubscriberIdQualifier, str]]
    ) -> str:
        last_name = sanitize_element(query.last_name, 60).upper()
        first_name = sanitize_element(query.first_name, 35).upper()
        if identifier is None:
            return self._segment("NM1", "IL", "1", last_name, first_name)
        qualifier, value = identifier
        return self._segment("NM1", "IL", "1", last_name, first_name, "", "", "", qualifier.value, value)

    def _build_dmg(self, query: PatientQuery, payer: PayerConfig) -> str:
        gender = (query.gender or "").upper()
        if payer.field_requirements.get("gender") == FieldRequirement.NOT_NEEDED:
            gender = ""
        if gender in ("M", "F"):
            return self._segment("DMG", "D8", format_x12_date(query.date_of_birth), gender)
        return self._segment("DMG", "D8", format_x12_date(query.date_of_birth))

    def _build_service_date(self, service_date: date, payer: PayerConfig) -> str:
        formatted = format_x12_date(service_date)
        if payer.date_format == DateFormatQualifier.DATE_RANGE:
            return self._segment("DTP", "291", "RD8", f"{formatted}-{formatted}")
        return self._segment("DTP", "291", "D8", formatted)
