"""
CORE envelope response parsing.

Pulls the X12 payload out of a clearinghouse SOAP reply (CDATA or escaped
text, any namespace prefix) and confirms it is a 271 before any benefit
extraction happens. Acknowledgments (999/TA1) and envelopes without a
payload become MalformedResponseError.

Replies are parsed with defusedxml so entity expansion and external
references in a clearinghouse body are refused.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from xml.etree.ElementTree import Element

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from x12_eligibility.services.edi.x12_base import (
    TransactionType,
    X12ParseError,
    X12Segment,
    X12Tokenizer,
)
from x12_eligibility.utils.errors import MalformedResponseError
from x12_eligibility.utils.logging import get_logger

logger = get_logger(__name__)

ACKNOWLEDGMENT_SEGMENTS = ("TA1", "AK3", "AK4", "AK5", "AK9", "IK3", "IK4", "IK5", "AAA")


def _parse_xml(body: str) -> Optional[Element]:
    """Parse the reply as XML; None when it is not XML at all."""
    try:
        return ET.fromstring(body.strip())
    except ET.ParseError:
        return None
    except DefusedXmlException as e:
        raise MalformedResponseError(
            "Clearinghouse response contains forbidden XML constructs",
            response_type="unsafe_xml",
            details={"reason": type(e).__name__},
        ) from e


def _tag(root: Optional[Element], name: str) -> Optional[str]:
    """Text of the first element called `name` in any (or no) namespace."""
    if root is None:
        return None
    element = root.find(f".//{{*}}{name}")
    if element is None:
        return None
    return "".join(element.itertext()).strip()


def _bare_x12(body: str) -> Optional[str]:
    # Some clearinghouses answer with bare X12 instead of an envelope
    stripped = body.strip()
    if stripped.startswith("ISA") or stripped.startswith("ST"):
        return stripped
    return None


@dataclass
class EnvelopeResponse:
    """Fields of a COREEnvelopeRealTimeResponse."""

    raw_body: str
    payload: str
    payload_type: Optional[str] = None
    payload_id: Optional[str] = None
    processing_mode: Optional[str] = None
    timestamp: Optional[str] = None
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class AcknowledgmentSummary:
    """What a 999/TA1 says was wrong with the 270."""

    response_type: str
    errors: List[str] = field(default_factory=list)
    accepted: Optional[bool] = None


def extract_payload(body: str) -> Optional[str]:
    """Return the X12 payload text, or None when the reply carries none."""
    root = _parse_xml(body)
    if root is None:
        return _bare_x12(body)
    return _tag(root, "Payload") or None


def parse_envelope_response(body: str) -> EnvelopeResponse:
    """
    Parse the SOAP reply into an EnvelopeResponse.

    Raises:
        MalformedResponseError: no payload in the reply, or XML that is
            unsafe to parse
    """
    if not body or not body.strip():
        raise MalformedResponseError("Empty response from clearinghouse", response_type="empty")

    root = _parse_xml(body)
    payload = _tag(root, "Payload") if root is not None else _bare_x12(body)
    error_code = _tag(root, "ErrorCode")
    error_message = _tag(root, "ErrorMessage")

    if not payload:
        fault = _tag(root, "Text") or _tag(root, "faultstring")
        message = "No X12 payload in clearinghouse response"
        if error_code or error_message or fault:
            message += f": {error_code or ''} {error_message or fault or ''}".rstrip()
        if root is None:
            response_type = "not_xml"
        elif fault:
            response_type = "soap_fault"
        else:
            response_type = "no_payload"
        raise MalformedResponseError(
            message,
            response_type=response_type,
            details={"error_code": error_code, "error_message": error_message or fault},
        )

    return EnvelopeResponse(
        raw_body=body,
        payload=payload,
        payload_type=_tag(root, "PayloadType"),
        payload_id=_tag(root, "PayloadID"),
        processing_mode=_tag(root, "ProcessingMode"),
        timestamp=_tag(root, "TimeStamp"),
        sender_id=_tag(root, "SenderID"),
        receiver_id=_tag(root, "ReceiverID"),
        error_code=error_code,
        error_message=error_message,
    )


def describe_acknowledgment(segments: List[X12Segment], response_type: str) -> AcknowledgmentSummary:
    """Collect the error-bearing segments of a 999/997/TA1."""
    summary = AcknowledgmentSummary(response_type=response_type)
    for segment in segments:
        if segment.segment_id not in ACKNOWLEDGMENT_SEGMENTS:
            continue
        summary.errors.append(str(segment))
        if segment.segment_id in ("IK5", "AK5", "AK9"):
            summary.accepted = segment.get_element(0) == "A"
        elif segment.segment_id == "TA1":
            summary.accepted = segment.get_element(3) == "A"
    return summary


def require_271(payload: str) -> List[X12Segment]:
    """
    Tokenize the payload and confirm it holds an ST*271 transaction.

    Returns:
        The tokenized segments

    Raises:
        MalformedResponseError: for 999/TA1 acknowledgments or anything else
            that is not a 271
    """
    tokenizer = X12Tokenizer()
    try:
        segments = tokenizer.tokenize(payload)
    except X12ParseError:
        logger.error("Clearinghouse payload could not be tokenized")
        raise

    transaction_type = tokenizer.get_transaction_type(segments)
    if transaction_type == TransactionType.ELIG_271:
        return segments

    response_type = transaction_type.value if transaction_type else "unknown"
    summary = describe_acknowledgment(segments, response_type)
    logger.error(
        f"Expected a 271 but received {response_type} "
        f"({len(summary.errors)} acknowledgment segments)"
    )
    raise MalformedResponseError(
        f"Expected X12 271, received {response_type}",
        response_type=response_type,
        details={
            "acknowledgment_errors": summary.errors,
            "accepted": summary.accepted,
            "excerpt": payload[:500],
        },
    )
