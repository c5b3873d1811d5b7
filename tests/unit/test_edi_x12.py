"""
Unit Tests for X12 primitives and the 270 inquiry builder.

Tests:
- X12 tokenizer functionality
- Control number generation under concurrency
- 270 segment structure and envelope control numbers
- Payer-driven identifier, gender and date format choices
"""

import threading
from datetime import date

import pytest

from x12_eligibility.core.enums import Clearinghouse, SubscriberIdQualifier
from x12_eligibility.schemas.payer import PayerConfig
from x12_eligibility.services.edi.x12_270_generator import (
    InquiryProvider,
    PatientQuery,
    TradingPartners,
    X12270Generator,
    choose_subscriber_identifier,
    validate_patient_query,
)
from x12_eligibility.services.edi.x12_base import (
    ControlNumberGenerator,
    TransactionType,
    X12ParseError,
    X12Tokenizer,
    format_x12_date,
    parse_x12_date,
    parse_x12_date_range,
    sanitize_element,
    shared_control_numbers,
    validate_npi,
)
from x12_eligibility.utils.errors import ConfigurationError, MalformedResponseError, ValidationError

from conftest import CARVE_OUT_271, PROVIDER_NPI


def segment_ids(transaction):
    return [segment.split("*", 1)[0] for segment in transaction.segments]


def find(transaction, prefix):
    return [segment for segment in transaction.segments if segment.startswith(prefix)]


@pytest.fixture
def generator(fixed_clock):
    return X12270Generator(clock=fixed_clock)


@pytest.fixture
def partners():
    return TradingPartners(sender_id="SENDER01", receiver_id="OFFALLY", receiver_qualifier="01")


@pytest.fixture
def provider():
    return InquiryProvider(npi=PROVIDER_NPI, name="Moonlit PLLC")


# =============================================================================
# Tokenizer
# =============================================================================


@pytest.mark.unit
class TestX12Tokenizer:
    """Tests for X12Tokenizer."""

    def test_detects_delimiters_from_isa(self):
        """Element separator and terminator come from ISA positions."""
        tokenizer = X12Tokenizer()
        segments = tokenizer.tokenize(CARVE_OUT_271)

        assert tokenizer.element_separator == "*"
        assert tokenizer.segment_terminator == "~"
        assert tokenizer.component_separator == ":"
        assert segments[0].segment_id == "ISA"

    def test_tolerates_newlines_between_segments(self):
        """Segments wrapped onto separate lines parse cleanly."""
        segments = X12Tokenizer().tokenize(CARVE_OUT_271)
        ids = [s.segment_id for s in segments]

        assert "\n" not in "".join(ids)
        assert ids.count("EB") == 4

    def test_bare_transaction_uses_default_delimiters(self):
        """Content without ISA still tokenizes."""
        segments = X12Tokenizer().tokenize("ST*271*0001~EB*1*IND*30~SE*3*0001~")

        assert [s.segment_id for s in segments] == ["ST", "EB", "SE"]
        assert segments[1].get_element(2) == "30"

    def test_get_repeated_splits_service_types(self):
        """EB03 repetitions split on the repetition separator."""
        segments = X12Tokenizer().tokenize("EB*1*IND*30^60^MH*MC~")

        assert segments[0].get_repeated(2) == ["30", "60", "MH"]

    def test_short_isa_raises_parse_error(self):
        """A truncated ISA is a malformed response."""
        with pytest.raises(X12ParseError) as exc_info:
            X12Tokenizer().tokenize("ISA*00*short~")

        assert isinstance(exc_info.value, MalformedResponseError)

    def test_empty_content_raises(self):
        with pytest.raises(X12ParseError):
            X12Tokenizer().tokenize("   ")

    def test_transaction_type_detection(self):
        tokenizer = X12Tokenizer()
        segments = tokenizer.tokenize(CARVE_OUT_271)

        assert tokenizer.get_transaction_type(segments) == TransactionType.ELIG_271


# =============================================================================
# Utilities
# =============================================================================


@pytest.mark.unit
class TestX12Utilities:
    """Tests for X12 utility functions."""

    def test_parse_x12_date_ccyymmdd(self):
        assert parse_x12_date("20260115") == date(2026, 1, 15)

    def test_parse_x12_date_invalid(self):
        assert parse_x12_date("20261345") is None

    def test_parse_date_range(self):
        assert parse_x12_date_range("20260101-20261231") == (date(2026, 1, 1), date(2026, 12, 31))

    def test_format_x12_date(self):
        assert format_x12_date(date(1980, 1, 31)) == "19800131"

    def test_sanitize_element_strips_delimiters(self):
        assert sanitize_element("O*Brien~") == "OBrien"
        assert sanitize_element("A^B:C") == "ABC"

    def test_validate_npi(self):
        assert validate_npi(PROVIDER_NPI) is True
        assert validate_npi("1234567890") is False
        assert validate_npi("12345") is False


# =============================================================================
# Control Numbers
# =============================================================================


@pytest.mark.unit
class TestControlNumberGenerator:
    """Control numbers are 9 digits and never repeat."""

    def test_nine_digits(self):
        number = ControlNumberGenerator().next()

        assert len(number) == 9
        assert number.isdigit()

    def test_unique_within_same_millisecond(self):
        """A frozen clock still yields distinct numbers."""
        generator = ControlNumberGenerator(clock=lambda: 1_768_478_400_123_000_000)
        numbers = [generator.next() for _ in range(3000)]

        assert len(set(numbers)) == len(numbers)

    def test_unique_under_concurrent_use(self):
        """Threads sharing one generator never receive duplicates."""
        generator = ControlNumberGenerator()
        results = []
        lock = threading.Lock()

        def worker():
            local = [generator.next() for _ in range(500)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 4000
        assert len(set(results)) == 4000


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.unit
class TestPatientQueryValidation:
    """Tests for validate_patient_query and identifier choice."""

    def test_identifier_alone_is_enough(self):
        validate_patient_query(PatientQuery(member_id="0123456789"))

    def test_demographics_alone_are_enough(self):
        validate_patient_query(PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 31)))

    def test_neither_identifier_nor_demographics_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_patient_query(PatientQuery(first_name="Jane"))

        assert "member_id" in exc_info.value.fields

    def test_future_birth_date_rejected(self):
        query = PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(2030, 1, 1))

        with pytest.raises(ValidationError):
            validate_patient_query(query, today=date(2026, 1, 15))

    def test_all_zero_ssn_rejected(self):
        with pytest.raises(ValidationError):
            validate_patient_query(PatientQuery(ssn="000-00-0000"))

    def test_member_id_preferred(self, utah_medicaid, patient_query):
        assert choose_subscriber_identifier(patient_query, utah_medicaid) == (
            SubscriberIdQualifier.MEMBER_ID,
            "0123456789",
        )

    def test_ssn_used_when_payer_accepts_it(self):
        payer = PayerConfig(name="SSN Payer", payer_code="SSN1", supports_member_id_in_nm1=False, accepts_ssn=True)
        query = PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 31), ssn="123-45-6789")

        assert choose_subscriber_identifier(query, payer) == (SubscriberIdQualifier.SSN, "123456789")

    def test_ssn_last_four_never_transmitted(self):
        payer = PayerConfig(name="SSN Payer", payer_code="SSN1", accepts_ssn=True)
        query = PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 31), ssn="6789")

        assert choose_subscriber_identifier(query, payer) is None


# =============================================================================
# 270 Generator
# =============================================================================


@pytest.mark.unit
class TestX12270Generator:
    """Tests for X12270Generator."""

    def test_segment_order(self, generator, utah_medicaid, patient_query, partners, provider):
        """Segments appear in 005010X279A1 order."""
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert segment_ids(transaction) == [
            "ISA", "GS", "ST", "BHT", "HL", "NM1", "HL", "NM1", "HL",
            "TRN", "NM1", "DMG", "DTP", "EQ", "SE", "GE", "IEA",
        ]

    def test_se_count_matches_segments(self, generator, utah_medicaid, patient_query, partners, provider):
        """SE01 equals the number of segments from ST through SE."""
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)
        se = find(transaction, "SE*")[0].split("*")

        assert int(se[1]) == transaction.transaction_segment_count == 13
        assert se[2] == "0001"

    def test_se_count_with_multiple_service_types(self, generator, partners, provider, patient_query):
        payer = PayerConfig(name="Multi", payer_code="MULTI", service_type_codes=("30", "MH", "98"))
        transaction = generator.generate(patient_query, payer, partners, provider)

        assert find(transaction, "SE*")[0].split("*")[1] == "15"
        assert find(transaction, "EQ*") == ["EQ*30", "EQ*MH", "EQ*98"]

    def test_control_numbers_pair_up(self, generator, utah_medicaid, patient_query, partners, provider):
        """ISA13 == IEA02 and GS06 == GE02."""
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)
        isa = transaction.segments[0].split("*")
        gs = transaction.segments[1].split("*")
        ge = find(transaction, "GE*")[0].split("*")
        iea = find(transaction, "IEA*")[0].split("*")

        assert isa[13] == iea[2] == transaction.control_number
        assert gs[6] == ge[2]

    def test_isa_is_fixed_width(self, generator, utah_medicaid, patient_query, partners, provider):
        """ISA plus terminator is 106 characters so delimiters can be detected."""
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert len(transaction.segments[0]) + 1 == 106
        assert transaction.segments[0].split("*")[5] == "ZZ"
        assert transaction.segments[0].split("*")[7] == "01"

    def test_output_round_trips_through_tokenizer(self, generator, utah_medicaid, patient_query, partners, provider):
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)
        tokenizer = X12Tokenizer()
        segments = tokenizer.tokenize(transaction.content)

        assert tokenizer.get_transaction_type(segments) == TransactionType.ELIG_270
        assert transaction.content.endswith("~")

    def test_names_uppercased_and_dates_ccyymmdd(self, generator, utah_medicaid, patient_query, partners, provider):
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert find(transaction, "NM1*IL")[0] == "NM1*IL*1*DOE*JANE****MI*0123456789"
        assert find(transaction, "DMG*")[0] == "DMG*D8*19800131*F"

    def test_payer_and_provider_loops(self, generator, utah_medicaid, patient_query, partners, provider):
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert find(transaction, "NM1*PR")[0] == "NM1*PR*2*UTAH MEDICAID*****PI*UTMCD"
        assert find(transaction, "NM1*1P")[0] == f"NM1*1P*2*MOONLIT PLLC*****XX*{PROVIDER_NPI}"
        assert find(transaction, "BHT*")[0].startswith("BHT*0022*13*")

    def test_clearinghouse_specific_payer_code(self, generator, utah_medicaid, patient_query, provider):
        partners = TradingPartners(sender_id="HT009582-001", receiver_id="HT000004-001")
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.UHIN)

        assert find(transaction, "NM1*PR")[0].endswith("PI*HT000004-001")

    def test_range_date_format(self, generator, utah_medicaid, patient_query, partners, provider):
        transaction = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert find(transaction, "DTP*291")[0] == "DTP*291*RD8*20260115-20260115"

    def test_single_date_format(self, generator, aetna, patient_query, partners, provider):
        transaction = generator.generate(patient_query, aetna, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert find(transaction, "DTP*291")[0] == "DTP*291*D8*20260115"

    def test_name_only_search(self, generator, utah_medicaid, partners, provider):
        query = PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 31))
        transaction = generator.generate(query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert find(transaction, "NM1*IL")[0] == "NM1*IL*1*DOE*JANE"
        assert find(transaction, "DMG*")[0] == "DMG*D8*19800131"

    def test_delimiters_in_names_are_stripped(self, generator, utah_medicaid, partners, provider):
        query = PatientQuery(first_name="Jo~Ann", last_name="O*Brien", date_of_birth=date(1980, 1, 31))
        transaction = generator.generate(query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert find(transaction, "NM1*IL")[0] == "NM1*IL*1*OBRIEN*JOANN"

    def test_missing_birth_date_rejected(self, generator, utah_medicaid, partners, provider):
        query = PatientQuery(first_name="Jane", last_name="Doe", member_id="0123456789")

        with pytest.raises(ValidationError) as exc_info:
            generator.generate(query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert exc_info.value.fields == ["date_of_birth"]

    def test_payer_required_gender(self, generator, aetna, partners, provider):
        query = PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 31), member_id="W1")

        with pytest.raises(ValidationError) as exc_info:
            generator.generate(query, aetna, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert "gender" in exc_info.value.fields

    def test_name_only_refused_when_payer_needs_id(self, generator, aetna, partners, provider):
        query = PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 31), gender="F")

        with pytest.raises(ValidationError) as exc_info:
            generator.generate(query, aetna, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert exc_info.value.fields == ["member_id"]

    def test_unresolvable_payer_code(self, generator, patient_query, partners, provider):
        payer = PayerConfig(name="Nowhere Health")

        with pytest.raises(ValidationError) as exc_info:
            generator.generate(patient_query, payer, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert exc_info.value.fields == ["payer_code"]

    def test_missing_sender_id(self, generator, utah_medicaid, patient_query, provider):
        partners = TradingPartners(sender_id="", receiver_id="OFFALLY")

        with pytest.raises(ConfigurationError):
            generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

    def test_control_numbers_differ_across_calls(self, generator, utah_medicaid, patient_query, partners, provider):
        first = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)
        second = generator.generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)

        assert first.control_number != second.control_number

    def test_separate_generators_never_repeat_control_numbers(
        self, fixed_clock, utah_medicaid, patient_query, partners, provider
    ):
        """One generator per service still draws from the process-wide sequence."""
        numbers = [
            X12270Generator(clock=fixed_clock)
            .generate(patient_query, utah_medicaid, partners, provider, Clearinghouse.OFFICE_ALLY)
            .control_number
            for _ in range(500)
        ]

        assert len(set(numbers)) == 500
        assert X12270Generator().control_numbers is shared_control_numbers()
