"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

import sys
from datetime import date, datetime
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from x12_eligibility.config.environment import AppConfig, default_clearinghouse  # noqa: E402
from x12_eligibility.core.enums import Clearinghouse  # noqa: E402
from x12_eligibility.services.edi.payer_registry import PayerConfigRegistry  # noqa: E402
from x12_eligibility.services.edi.x12_270_generator import PatientQuery  # noqa: E402

PAYERS_FILE = Path(__file__).parent.parent / "payers.yaml"
PROVIDER_NPI = "1234567893"


# =============================================================================
# X12 / SOAP builders
# =============================================================================


def build_271(body: List[str], control: str = "000000001") -> str:
    """Wrap 271 body segments (HL onward) in a full interchange."""
    isa = "*".join([
        "ISA", "00", " " * 10, "00", " " * 10,
        "ZZ", "OFFALLY".ljust(15), "ZZ", "SENDER01".ljust(15),
        "260115", "1200", "^", "00501", control, "0", "P", ":",
    ])
    transaction = [
        "ST*271*0001*005010X279A1",
        "BHT*0022*11*ELG000000001*20260115*1200",
        *body,
    ]
    transaction.append(f"SE*{len(transaction) + 1}*0001")
    segments = [isa, "GS*HB*OFFALLY*SENDER01*20260115*1200*1*X*005010X279A1", *transaction, "GE*1*1", f"IEA*1*{control}"]
    return "~\n".join(segments) + "~"


def build_999(errors: List[str]) -> str:
    isa = "*".join([
        "ISA", "00", " " * 10, "00", " " * 10,
        "ZZ", "OFFALLY".ljust(15), "ZZ", "SENDER01".ljust(15),
        "260115", "1200", "^", "00501", "000000002", "0", "P", ":",
    ])
    transaction = ["ST*999*0001*005010X231A1", "AK1*HS*1*005010X279A1", "AK2*270*0001*005010X279A1", *errors]
    transaction.append(f"SE*{len(transaction) + 1}*0001")
    return "~".join([isa, "GS*FA*OFFALLY*SENDER01*20260115*1200*2*X*005010X231A1", *transaction, "GE*1*2", "IEA*1*000000002"]) + "~"


def core_response(payload: str, cdata: bool = True, prefix: str = "ns1") -> str:
    """A COREEnvelopeRealTimeResponse carrying the payload."""
    body = f"<![CDATA[{payload}]]>" if cdata else (
        payload.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    )
    return (
        '<soapenv:Envelope xmlns:soapenv="http://www.w3.org/2003/05/soap-envelope">'
        "<soapenv:Body>"
        f'<{prefix}:COREEnvelopeRealTimeResponse xmlns:{prefix}="http://www.caqh.org/SOAP/WSDL/CORERule2.2.0.xsd">'
        "<PayloadType>X12_271_Response_005010X279A1</PayloadType>"
        "<ProcessingMode>RealTime</ProcessingMode>"
        "<PayloadID>8a5f5c3e-0b2d-4b7e-9d8a-1c2b3d4e5f60</PayloadID>"
        "<TimeStamp>2026-01-15T12:00:01Z</TimeStamp>"
        "<SenderID>OFFALLY</SenderID>"
        "<ReceiverID>SENDER01</ReceiverID>"
        "<CORERuleVersion>2.2.0</CORERuleVersion>"
        f"<Payload>{body}</Payload>"
        "<ErrorCode>Success</ErrorCode>"
        "<ErrorMessage>None</ErrorMessage>"
        f"</{prefix}:COREEnvelopeRealTimeResponse>"
        "</soapenv:Body>"
        "</soapenv:Envelope>"
    )


SUBSCRIBER_LOOP = [
    "HL*1**20*1",
    "NM1*PR*2*UTAH MEDICAID*****PI*UTMCD",
    "HL*2*1*21*1",
    f"NM1*1P*2*MOONLIT PLLC*****XX*{PROVIDER_NPI}",
    "HL*3*2*22*0",
    f"TRN*2*000000001*{PROVIDER_NPI}",
    "NM1*IL*1*DOE*JANE****MI*0123456789",
    "DMG*D8*19800131*F",
    "DTP*346*D8*20250101",
]

CARVE_OUT_271 = build_271(SUBSCRIBER_LOOP + [
    "EB*1*IND*30*HM*TARGETED ADULT MEDICAID",
    "LS*2120",
    "NM1*PR*2*SELECTHEALTH*****PI*2000000",
    "LE*2120",
    "EB*1*IND*30^60^MH*MC*MENTAL HEALTH INPATIENT",
    "EB*1*IND*30^60^98^MH*MC*MENTAL HEALTH OUTPATIENT",
    "EB*B*IND*98*MC*COPAY$25",
])

FFS_271 = build_271(SUBSCRIBER_LOOP + [
    "EB*1*IND*30*MC*TRADITIONAL ADULT",
    "EB*B*IND*98**OFFICE VISIT",
    "MSG*CO $4.00 PER VISIT",
])

NO_COVERAGE_271 = build_271(SUBSCRIBER_LOOP[:7] + [
    "NM1*IL*1*DOE*JANE",
    "AAA*N**75*C",
])


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def app_config() -> AppConfig:
    """Office Ally primary with UHIN secondary."""
    return AppConfig(
        provider={"npi": PROVIDER_NPI, "name": "Moonlit PLLC"},
        primary=default_clearinghouse(
            Clearinghouse.OFFICE_ALLY,
            username="oa-user",
            password="oa-pass",
            sender_id="SENDER01",
        ),
        secondary=default_clearinghouse(
            Clearinghouse.UHIN,
            username="uhin-user",
            password="uhin-pass",
            sender_id="HT009582-001",
        ),
    )


@pytest.fixture
def payer_registry() -> PayerConfigRegistry:
    return PayerConfigRegistry.from_yaml(PAYERS_FILE)


@pytest.fixture
def utah_medicaid(payer_registry):
    return payer_registry.get("utah_medicaid")


@pytest.fixture
def aetna(payer_registry):
    return payer_registry.get("aetna")


@pytest.fixture
def patient_query() -> PatientQuery:
    return PatientQuery(
        first_name="Jane",
        last_name="Doe",
        date_of_birth=date(1980, 1, 31),
        member_id="0123456789",
        gender="F",
        service_date=date(2026, 1, 15),
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: datetime(2026, 1, 15, 12, 0, 0)


@pytest.fixture
def mock_client_factory():
    """Build an httpx.Client whose requests are answered by `handler`."""
    def factory(handler) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))
    return factory


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
