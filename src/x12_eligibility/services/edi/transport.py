"""
Clearinghouse transport with primary/secondary failover.

One synchronous HTTPS POST per attempt, one attempt per endpoint, and at most
two attempts per inquiry. Connection failures, timeouts and HTTP 401/403 move
on to the secondary endpoint; any other non-2xx status is final.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import httpx

from x12_eligibility.config.environment import ClearinghouseConfig, TransportConfig
from x12_eligibility.services.edi.envelope import EnvelopeRequest, get_envelope_adapter
from x12_eligibility.services.edi.x12_270_generator import Transaction
from x12_eligibility.utils.errors import ConfigurationError, TransportError
from x12_eligibility.utils.logging import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 2
FAILOVER_STATUS_CODES = frozenset({401, 403})

TransactionFactory = Callable[[ClearinghouseConfig], Transaction]


@dataclass
class TransportResponse:
    """Raw clearinghouse reply plus what was sent to get it."""

    body: str
    status_code: int
    latency_ms: float
    endpoint: ClearinghouseConfig
    transaction: Transaction
    envelope: EnvelopeRequest
    attempts: int = 1
    fallback_used: bool = False


class ClearinghouseTransport:
    """
    Sends wrapped 270s to the configured clearinghouses.

    Usage:
        with ClearinghouseTransport(config.transport, config.endpoints()) as transport:
            response = transport.send(lambda endpoint: generator.generate(...))
    """

    def __init__(
        self,
        config: TransportConfig,
        endpoints: Sequence[ClearinghouseConfig],
        client: Optional[httpx.Client] = None,
        adapter_factory=get_envelope_adapter,
        http_transport: Optional[httpx.BaseTransport] = None,
    ):
        if not endpoints:
            raise ConfigurationError("At least one clearinghouse endpoint is required")
        if len(endpoints) > MAX_ATTEMPTS:
            raise ConfigurationError(f"At most {MAX_ATTEMPTS} endpoints (primary and secondary) are supported")

        self.config = config
        self.endpoints = list(endpoints)
        self.adapter_factory = adapter_factory
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(config.timeout_seconds, connect=config.connect_timeout_seconds),
            verify=config.verify_tls,
            headers={"User-Agent": config.user_agent},
            transport=http_transport,
        )

    def __enter__(self) -> "ClearinghouseTransport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def post(self, envelope: EnvelopeRequest, endpoint: ClearinghouseConfig) -> httpx.Response:
        """
        Single attempt against one endpoint.

        Raises:
            TransportError: with failover_eligible set for connection
                failures, timeouts and authentication rejections
        """
        label = endpoint.name.value
        try:
            response = self._client.post(
                endpoint.endpoint_url,
                content=envelope.body.encode("utf-8"),
                headers=envelope.headers,
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"{label}: timed out after {self.config.timeout_seconds}s",
                endpoint=endpoint.endpoint_url,
                clearinghouse=label,
                failover_eligible=True,
                original_error=e,
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"{label}: connection failed: {e}",
                endpoint=endpoint.endpoint_url,
                clearinghouse=label,
                failover_eligible=True,
                original_error=e,
            ) from e

        if response.status_code in FAILOVER_STATUS_CODES:
            raise TransportError(
                f"{label}: authentication rejected (HTTP {response.status_code})",
                endpoint=endpoint.endpoint_url,
                clearinghouse=label,
                status_code=response.status_code,
                failover_eligible=True,
            )
        if not response.is_success:
            raise TransportError(
                f"{label}: HTTP {response.status_code} {response.reason_phrase}",
                endpoint=endpoint.endpoint_url,
                clearinghouse=label,
                status_code=response.status_code,
            )
        return response

    def send(
        self,
        build_transaction: TransactionFactory,
        endpoints: Optional[Sequence[ClearinghouseConfig]] = None,
    ) -> TransportResponse:
        """
        Build, wrap and POST a 270, failing over to the secondary endpoint.

        The transaction is built per endpoint because trading partner ids and
        payer codes differ between clearinghouses. `endpoints` narrows the
        configured list (e.g. to clearinghouses that know the payer).

        Every endpoint's transaction and envelope are built before the first
        POST, so a misconfigured secondary raises ConfigurationError without
        any request having gone out.
        """
        endpoints = list(endpoints) if endpoints is not None else self.endpoints
        if not endpoints or len(endpoints) > MAX_ATTEMPTS:
            raise ConfigurationError(f"Between 1 and {MAX_ATTEMPTS} endpoints are required")

        last_error: Optional[TransportError] = None
        start_time = time.perf_counter()

        prepared = []
        for endpoint in endpoints:
            transaction = build_transaction(endpoint)
            envelope = self.adapter_factory(endpoint.name).wrap(transaction.content, endpoint)
            prepared.append((endpoint, transaction, envelope))

        for attempt, (endpoint, transaction, envelope) in enumerate(prepared, start=1):
            attempt_start = time.perf_counter()
            try:
                response = self.post(envelope, endpoint)
            except TransportError as e:
                e.attempts = attempt
                e.details["attempts"] = attempt
                last_error = e
                if not e.failover_eligible:
                    logger.error(f"Clearinghouse request failed without failover: {e}")
                    raise
                logger.warning(f"Attempt {attempt}/{len(endpoints)} failed: {e}")
                continue

            latency = (time.perf_counter() - attempt_start) * 1000
            logger.info(
                f"{endpoint.name.value} answered HTTP {response.status_code} in {latency:.1f}ms "
                f"(control={transaction.control_number}, payload_id={envelope.payload_id})"
            )
            return TransportResponse(
                body=response.text,
                status_code=response.status_code,
                latency_ms=(time.perf_counter() - start_time) * 1000,
                endpoint=endpoint,
                transaction=transaction,
                envelope=envelope,
                attempts=attempt,
                fallback_used=attempt > 1,
            )

        logger.error(f"All {len(endpoints)} clearinghouse endpoints failed. Last error: {last_error}")
        raise last_error
