"""
CAQH CORE Rule 2.2.0 SOAP envelopes for real-time 270 submission.

Each clearinghouse has its own dialect of the same envelope: namespace
prefixes, the shape of the WS-Security header, and whether the X12 payload
travels as CDATA or as escaped text. Adapters only wrap the payload; the X12
delimiters are never altered.
"""

import secrets
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from xml.sax.saxutils import escape

from x12_eligibility.config.environment import ClearinghouseConfig
from x12_eligibility.core.enums import Clearinghouse
from x12_eligibility.utils.errors import ConfigurationError

PAYLOAD_TYPE_270 = "X12_270_Request_005010X279A1"
PROCESSING_MODE = "RealTime"
CORE_RULE_VERSION = "2.2.0"

SOAP_12_NS = "http://www.w3.org/2003/05/soap-envelope"
CORE_NS = "http://www.caqh.org/SOAP/WSDL/CORERule2.2.0.xsd"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
WSU_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd"
PASSWORD_TEXT = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-username-token-profile-1.0#PasswordText"


@dataclass
class EnvelopeRequest:
    """A 270 wrapped for one clearinghouse, ready to POST."""

    clearinghouse: Clearinghouse
    endpoint_url: str
    payload_id: str
    timestamp: str
    sender_id: str
    receiver_id: str
    payload: str
    body: str
    headers: Dict[str, str] = field(default_factory=dict)
    payload_type: str = PAYLOAD_TYPE_270
    processing_mode: str = PROCESSING_MODE


def core_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp truncated to the second (2026-01-31T14:05:09Z)."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def wrap_cdata(payload: str) -> str:
    """Wrap text in CDATA, splitting any embedded terminator sequence."""
    return "<![CDATA[" + payload.replace("]]>", "]]]]><![CDATA[>") + "]]>"


class CoreEnvelopeAdapter(ABC):
    """Base adapter: generates tracking fields and delegates the XML dialect."""

    clearinghouse: Clearinghouse

    def __init__(
        self,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        payload_ids: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.clock = clock
        self.payload_ids = payload_ids

    def wrap(self, x12: str, endpoint: ClearinghouseConfig) -> EnvelopeRequest:
        if endpoint.name != self.clearinghouse:
            raise ConfigurationError(
                f"{type(self).__name__} cannot wrap for {endpoint.name.value}"
            )
        if not endpoint.has_credentials:
            raise ConfigurationError(f"{endpoint.name.value}: username and password are required")

        payload_id = self.payload_ids()
        if len(payload_id) != 36:
            raise ConfigurationError(f"PayloadID must be 36 characters, got {len(payload_id)}")

        timestamp = core_timestamp(self.clock())
        body = self.render(x12, endpoint, payload_id, timestamp)
        return EnvelopeRequest(
            clearinghouse=self.clearinghouse,
            endpoint_url=endpoint.endpoint_url,
            payload_id=payload_id,
            timestamp=timestamp,
            sender_id=endpoint.sender_id,
            receiver_id=endpoint.receiver_id,
            payload=x12,
            body=body,
            headers=self.headers(),
        )

    @abstractmethod
    def render(self, x12: str, endpoint: ClearinghouseConfig, payload_id: str, timestamp: str) -> str:
        """Render the SOAP envelope text."""

    @abstractmethod
    def headers(self) -> Dict[str, str]:
        """HTTP headers for the POST."""

    @staticmethod
    def _core_fields(endpoint: ClearinghouseConfig, payload_id: str, timestamp: str) -> str:
        return (
            f"<PayloadType>{PAYLOAD_TYPE_270}</PayloadType>\n"
            f"<ProcessingMode>{PROCESSING_MODE}</ProcessingMode>\n"
            f"<PayloadID>{payload_id}</PayloadID>\n"
            f"<TimeStamp>{timestamp}</TimeStamp>\n"
            f"<SenderID>{escape(endpoint.sender_id)}</SenderID>\n"
            f"<ReceiverID>{escape(endpoint.receiver_id)}</ReceiverID>\n"
            f"<CORERuleVersion>{CORE_RULE_VERSION}</CORERuleVersion>\n"
        )


class OfficeAllyEnvelopeAdapter(CoreEnvelopeAdapter):
    """Office Ally: soapenv/ns1 prefixes, plain UsernameToken, CDATA payload."""

    clearinghouse = Clearinghouse.OFFICE_ALLY

    def render(self, x12: str, endpoint: ClearinghouseConfig, payload_id: str, timestamp: str) -> str:
        return (
            f'<soapenv:Envelope xmlns:soapenv="{SOAP_12_NS}">\n'
            "<soapenv:Header>\n"
            f'<wsse:Security xmlns:wsse="{WSSE_NS}">\n'
            "<wsse:UsernameToken>\n"
            f"<wsse:Username>{escape(endpoint.username)}</wsse:Username>\n"
            f"<wsse:Password>{escape(endpoint.password.get_secret_value())}</wsse:Password>\n"
            "</wsse:UsernameToken>\n"
            "</wsse:Security>\n"
            "</soapenv:Header>\n"
            "<soapenv:Body>\n"
            f'<ns1:COREEnvelopeRealTimeRequest xmlns:ns1="{CORE_NS}">\n'
            + self._core_fields(endpoint, payload_id, timestamp)
            + f"<Payload>{wrap_cdata(x12)}</Payload>\n"
            "</ns1:COREEnvelopeRealTimeRequest>\n"
            "</soapenv:Body>\n"
            "</soapenv:Envelope>"
        )

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/soap+xml; charset=utf-8;action=RealTimeTransaction;",
            "Action": "RealTimeTransaction",
        }


class UHINEnvelopeAdapter(CoreEnvelopeAdapter):
    """UHIN: soap/cor prefixes, mustUnderstand security, escaped plain payload."""

    clearinghouse = Clearinghouse.UHIN

    def render(self, x12: str, endpoint: ClearinghouseConfig, payload_id: str, timestamp: str) -> str:
        token_id = f"UsernameToken-{secrets.randbelow(100_000_000)}"
        return (
            f'<soap:Envelope xmlns:soap="{SOAP_12_NS}" xmlns:cor="{CORE_NS}">\n'
            "<soap:Header>\n"
            f'<wsse:Security soap:mustUnderstand="true" xmlns:wsse="{WSSE_NS}">\n'
            f'<wsse:UsernameToken wsu:Id="{token_id}" xmlns:wsu="{WSU_NS}">\n'
            f"<wsse:Username>{escape(endpoint.username)}</wsse:Username>\n"
            f'<wsse:Password Type="{PASSWORD_TEXT}">{escape(endpoint.password.get_secret_value())}</wsse:Password>\n'
            "</wsse:UsernameToken>\n"
            "</wsse:Security>\n"
            "</soap:Header>\n"
            "<soap:Body>\n"
            "<cor:COREEnvelopeRealTimeRequest>\n"
            + self._core_fields(endpoint, payload_id, timestamp)
            + f"<Payload>{escape(x12)}</Payload>\n"
            "</cor:COREEnvelopeRealTimeRequest>\n"
            "</soap:Body>\n"
            "</soap:Envelope>"
        )

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/soap+xml; charset=utf-8",
            "SOAPAction": f"{CORE_NS}/COREEnvelopeRealTimeRequest",
        }


_ADAPTERS = {
    Clearinghouse.OFFICE_ALLY: OfficeAllyEnvelopeAdapter,
    Clearinghouse.UHIN: UHINEnvelopeAdapter,
}


def get_envelope_adapter(clearinghouse: Clearinghouse, **kwargs) -> CoreEnvelopeAdapter:
    """Return a new adapter for the clearinghouse."""
    try:
        adapter_class = _ADAPTERS[Clearinghouse(clearinghouse)]
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"No envelope adapter for clearinghouse: {clearinghouse}") from e
    return adapter_class(**kwargs)
