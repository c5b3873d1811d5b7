"""
Eligibility Verification Service.

Orchestrates one real-time X12 270/271 eligibility check:
- Validates the patient query against the payer's rules
- Builds and wraps a 270 per clearinghouse, sending with failover
- Confirms the reply is a 271 and extracts benefit records
- Applies the coverage rules and hands the result to an optional sink
"""

from datetime import date
from typing import Callable, List, Optional
from uuid import uuid4

from x12_eligibility.config.environment import AppConfig, ClearinghouseConfig
from x12_eligibility.schemas.payer import PayerConfig
from x12_eligibility.services.edi.eligibility_rules import (
    EligibilityResult,
    EligibilityRulesEngine,
    manual_review_result,
    member_id_warning,
)
from x12_eligibility.services.edi.response_parser import parse_envelope_response, require_271
from x12_eligibility.services.edi.transport import ClearinghouseTransport
from x12_eligibility.services.edi.x12_270_generator import (
    InquiryProvider,
    PatientQuery,
    TradingPartners,
    Transaction,
    X12270Generator,
    validate_patient_query,
)
from x12_eligibility.services.edi.x12_271_parser import X12271Parser
from x12_eligibility.utils.errors import (
    AmbiguousBenefitError,
    ConfigurationError,
    MalformedResponseError,
    ValidationError,
)
from x12_eligibility.utils.logging import get_logger, mask_identifier

logger = get_logger(__name__)

ResultSink = Callable[[EligibilityResult], None]


def trading_partners_for(endpoint: ClearinghouseConfig) -> TradingPartners:
    return TradingPartners(
        sender_id=endpoint.sender_id,
        receiver_id=endpoint.receiver_id,
        sender_qualifier=endpoint.sender_qualifier,
        receiver_qualifier=endpoint.receiver_qualifier,
        usage_indicator=endpoint.usage_indicator,
    )


class EligibilityService:
    """
    Eligibility Verification Service.

    Usage:
        config = load_config()
        with EligibilityService(config) as service:
            result = service.check_eligibility(
                PatientQuery(first_name="Jane", last_name="Doe", date_of_birth=date(1980, 1, 1)),
                payer,
            )
        if result.enrolled:
            print(result.program)
    """

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[ClearinghouseTransport] = None,
        generator: Optional[X12270Generator] = None,
        parser: Optional[X12271Parser] = None,
        rules_engine: Optional[EligibilityRulesEngine] = None,
        result_sink: Optional[ResultSink] = None,
    ):
        """
        Initialize eligibility service.

        Args:
            config: Application configuration (endpoints, provider, timeouts)
            transport: Clearinghouse transport; built from config when omitted
            generator: 270 builder
            parser: 271 benefit extractor
            rules_engine: Coverage rules
            result_sink: Called with every finished result (e.g. audit logging)
        """
        self.config = config
        self.transport = transport or ClearinghouseTransport(config.transport, config.endpoints())
        self.generator_270 = generator or X12270Generator()
        self.parser_271 = parser or X12271Parser()
        self.rules_engine = rules_engine or EligibilityRulesEngine()
        self.result_sink = result_sink

    def __enter__(self) -> "EligibilityService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    def check_eligibility(self, query: PatientQuery, payer: PayerConfig) -> EligibilityResult:
        """
        Check a patient's eligibility with a payer.

        Returns:
            EligibilityResult; "not enrolled" and "verify manually" are results

        Raises:
            ValidationError: the query cannot be sent to this payer
            ConfigurationError: provider or trading partner ids are missing
            TransportError: no clearinghouse answered usefully
            MalformedResponseError: the reply was not a 271
        """
        check_id = str(uuid4())
        logger.info(
            f"Eligibility check {check_id}: payer={payer.name} "
            f"member={mask_identifier(query.member_id)} ssn={mask_identifier(query.ssn)}"
        )

        validate_patient_query(query)
        missing = [name for name in payer.recommended_fields if not getattr(query, name, None)]
        if missing:
            logger.info(f"Eligibility check {check_id}: recommended fields not supplied: {', '.join(missing)}")
        provider = self._provider_for(payer)
        endpoints = self._endpoints_for(payer)

        def build(endpoint: ClearinghouseConfig) -> Transaction:
            return self.generator_270.generate(
                query,
                payer,
                trading_partners_for(endpoint),
                provider,
                clearinghouse=endpoint.name,
            )

        response = self.transport.send(build, endpoints)

        try:
            envelope = parse_envelope_response(response.body)
            segments = require_271(envelope.payload)
        except MalformedResponseError as e:
            logger.error(
                f"Eligibility check {check_id}: technical failure from "
                f"{response.endpoint.name.value}: {e.message} ({e.response_type})"
            )
            raise

        extraction = self.parser_271.extract(segments)
        try:
            result = self.rules_engine.evaluate(
                extraction, payer, as_of=query.service_date or date.today()
            )
        except AmbiguousBenefitError as e:
            logger.warning(f"Eligibility check {check_id}: {e.message}; manual review required")
            result = manual_review_result(e, extraction, payer)

        sent_member_id = query.member_id if payer.supports_member_id_in_nm1 else None
        warning = member_id_warning(sent_member_id, extraction.subscriber)
        if warning:
            logger.warning(f"Eligibility check {check_id}: {warning}")
            result.warnings.append(warning)

        result.clearinghouse = response.endpoint.name.value
        result.fallback_used = response.fallback_used
        result.latency_ms = response.latency_ms
        result.control_number = response.transaction.control_number
        result.payload_id = response.envelope.payload_id

        logger.info(
            f"Eligibility check {check_id}: {result.status.value} via {result.clearinghouse} "
            f"in {response.latency_ms:.0f}ms"
        )
        self._publish(result)
        return result

    def _provider_for(self, payer: PayerConfig) -> InquiryProvider:
        npi = payer.provider_npi or self.config.provider.npi
        name = payer.provider_name or self.config.provider.name
        if not npi or not name:
            raise ConfigurationError("Provider NPI and name must be configured")
        return InquiryProvider(npi=npi, name=name)

    def _endpoints_for(self, payer: PayerConfig) -> List[ClearinghouseConfig]:
        """Configured endpoints that have a payer code for this payer."""
        endpoints = [e for e in self.transport.endpoints if payer.payer_code_for(e.name)]
        if not endpoints:
            raise ValidationError(
                f"No payer code for {payer.name} on any configured clearinghouse",
                fields=["payer_code"],
            )
        return endpoints

    def _publish(self, result: EligibilityResult) -> None:
        if self.result_sink is None:
            return
        try:
            self.result_sink(result)
        except Exception as e:
            logger.warning(f"Result sink failed (continuing): {e}")


def create_eligibility_service(config: AppConfig, **kwargs) -> EligibilityService:
    """Build a service from an explicit configuration."""
    return EligibilityService(config, **kwargs)


def check_eligibility(
    query: PatientQuery,
    payer: PayerConfig,
    config: AppConfig,
    **kwargs,
) -> EligibilityResult:
    """One-shot eligibility check; the transport is closed afterwards."""
    with create_eligibility_service(config, **kwargs) as service:
        return service.check_eligibility(query, payer)
