"""
X12 EDI services for real-time eligibility.

- x12_base: tokenizer, segment model, control numbers
- x12_270_generator: 270 inquiry builder
- envelope: CORE SOAP envelopes per clearinghouse
- transport: HTTPS POST with primary/secondary failover
- response_parser: payload extraction and 271 confirmation
- x12_271_parser: benefit record extraction
- eligibility_rules: enrollment decision and carve-out rules
- eligibility_service: end-to-end orchestration
"""

from x12_eligibility.services.edi.eligibility_rules import (
    EligibilityResult,
    EligibilityRulesEngine,
)
from x12_eligibility.services.edi.eligibility_service import (
    EligibilityService,
    check_eligibility,
    create_eligibility_service,
)
from x12_eligibility.services.edi.envelope import (
    EnvelopeRequest,
    OfficeAllyEnvelopeAdapter,
    UHINEnvelopeAdapter,
    get_envelope_adapter,
)
from x12_eligibility.services.edi.payer_registry import PayerConfigRegistry
from x12_eligibility.services.edi.response_parser import (
    EnvelopeResponse,
    parse_envelope_response,
    require_271,
)
from x12_eligibility.services.edi.transport import ClearinghouseTransport, TransportResponse
from x12_eligibility.services.edi.x12_270_generator import (
    PatientQuery,
    Transaction,
    X12270Generator,
)
from x12_eligibility.services.edi.x12_271_parser import (
    BenefitExtraction,
    BenefitRecord,
    X12271Parser,
    scan_benefit_text,
)

__all__ = [
    "BenefitExtraction",
    "BenefitRecord",
    "ClearinghouseTransport",
    "EligibilityResult",
    "EligibilityRulesEngine",
    "EligibilityService",
    "EnvelopeRequest",
    "EnvelopeResponse",
    "OfficeAllyEnvelopeAdapter",
    "PatientQuery",
    "PayerConfigRegistry",
    "Transaction",
    "TransportResponse",
    "UHINEnvelopeAdapter",
    "X12270Generator",
    "X12271Parser",
    "check_eligibility",
    "create_eligibility_service",
    "get_envelope_adapter",
    "parse_envelope_response",
    "require_271",
    "scan_benefit_text",
]
