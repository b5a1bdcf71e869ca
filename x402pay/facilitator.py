"""
Facilitator client and resource-server helpers.

A resource server answers unpaid requests with 402 plus payment
requirements, reads the payment header from the retry, then asks the
facilitator to verify and settle it:

    POST {base}/verify  {x402Version, paymentPayload, paymentRequirements}
    POST {base}/settle  {x402Version, paymentPayload, paymentRequirements}
    GET  {base}/health
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import httpx
from loguru import logger

from x402pay.chains import DEFAULT_CHAIN, DEFAULT_FACILITATOR_URL, DEFAULT_REGISTRY, ChainRegistry
from x402pay.envelope import (
    PAYMENT_SIGNATURE_HEADER,
    X_PAYMENT_HEADER,
    X402Header,
    chain_to_caip2,
    decode_x402_header,
    is_caip2_format,
)
from x402pay.utils.exceptions import EnvelopeDecodeError, X402Error, X402ErrorCode
from x402pay.utils.validation import to_atomic_units, validate_amount

X402_CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Headers": "Content-Type, X-PAYMENT, PAYMENT-SIGNATURE, Authorization",
    "Access-Control-Expose-Headers": "X-PAYMENT-RESPONSE, PAYMENT-RESPONSE, PAYMENT-REQUIRED",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

X402_HEADER_NAMES = (
    "X-PAYMENT",
    "PAYMENT-SIGNATURE",
    "X-PAYMENT-RESPONSE",
    "PAYMENT-RESPONSE",
    "PAYMENT-REQUIRED",
)

DEFAULT_DESCRIPTION = "Payment for resource access"
DEFAULT_MIME_TYPE = "application/json"
DEFAULT_TIMEOUT_SECONDS = 300


def get_cors_headers(origin: str = "*") -> Dict[str, str]:
    return {"Access-Control-Allow-Origin": origin, **X402_CORS_HEADERS}


@dataclass
class PaymentRequirements:
    """What a resource server accepts, in atomic units"""
    network: str
    max_amount_required: str
    resource: str
    pay_to: str
    asset: str
    description: str = DEFAULT_DESCRIPTION
    mime_type: str = DEFAULT_MIME_TYPE
    max_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    scheme: str = "exact"
    extra: Optional[Dict[str, Any]] = None

    @property
    def x402_version(self) -> int:
        return 2 if is_caip2_format(self.network) else 1

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
        }
        if self.extra:
            data["extra"] = self.extra
        return data


@dataclass
class VerifyResponse:
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None
    network: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VerifyResponse:
        return cls(
            is_valid=bool(data.get("isValid", False)),
            invalid_reason=data.get("invalidReason"),
            payer=data.get("payer"),
            network=data.get("network"),
        )


@dataclass
class SettleResponse:
    success: bool
    transaction_hash: Optional[str] = None
    network: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_success: bool = True) -> SettleResponse:
        return cls(
            success=bool(data.get("success", default_success)),
            transaction_hash=data.get("transactionHash") or data.get("transaction_hash"),
            network=data.get("network"),
            error=data.get("error") or data.get("errorReason"),
        )


@dataclass
class VerifyAndSettleResult:
    verified: bool
    settled: bool
    transaction_hash: Optional[str] = None
    error: Optional[str] = None


Requirements = Union[PaymentRequirements, Dict[str, Any]]


def _requirements_dict(requirements: Requirements) -> Dict[str, Any]:
    if isinstance(requirements, PaymentRequirements):
        return requirements.to_dict()
    return dict(requirements)


def build_payment_requirements(
    amount: str,
    recipient: str,
    resource: str,
    chain_name: str = DEFAULT_CHAIN,
    description: str = DEFAULT_DESCRIPTION,
    mime_type: str = DEFAULT_MIME_TYPE,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    x402_version: int = 1,
    registry: ChainRegistry | None = None,
) -> PaymentRequirements:
    """
    Build requirements for a resource priced in human units.

    The amount is converted with the chain's USDC decimals; v2 uses the
    CAIP-2 network identifier, v1 the chain name.
    """
    registry = registry or DEFAULT_REGISTRY
    chain = registry.get_chain_by_name(chain_name)
    if chain is None:
        raise X402Error(f"Unsupported chain: {chain_name}", X402ErrorCode.CHAIN_NOT_SUPPORTED)

    atomic = to_atomic_units(validate_amount(amount), chain.usdc.decimals)
    network = chain_to_caip2(chain.name, registry) if x402_version == 2 else chain.name

    return PaymentRequirements(
        network=network,
        max_amount_required=str(atomic),
        resource=resource,
        pay_to=recipient,
        asset=chain.usdc.address,
        description=description,
        mime_type=mime_type,
        max_timeout_seconds=timeout_seconds,
    )


def parse_payment_header(value: Optional[str]) -> Optional[X402Header]:
    """Decode a header value; None when absent or malformed."""
    if not value:
        return None
    try:
        return decode_x402_header(value)
    except EnvelopeDecodeError as e:
        logger.debug(f"Ignoring malformed payment header: {e}")
        return None


def extract_payment_from_headers(
    headers: Mapping[str, Union[str, List[str], None]],
) -> Optional[X402Header]:
    """Find and decode X-PAYMENT, then PAYMENT-SIGNATURE, ignoring case."""
    normalized: Dict[str, str] = {}
    for key, value in headers.items():
        if isinstance(value, str):
            normalized[key.lower()] = value
        elif isinstance(value, (list, tuple)) and value:
            normalized[key.lower()] = value[0]

    value = normalized.get(X_PAYMENT_HEADER.lower()) or normalized.get(PAYMENT_SIGNATURE_HEADER.lower())
    return parse_payment_header(value)


def create_402_response(
    requirements: Requirements,
    error: Optional[str] = None,
    accepts: Optional[List[Dict[str, Any]]] = None,
) -> Tuple[int, Dict[str, Any], Dict[str, str]]:
    """(status, body, headers) for a Payment Required answer."""
    reqs = _requirements_dict(requirements)
    version = 2 if is_caip2_format(reqs.get("network", "")) else 1

    body: Dict[str, Any] = {"x402Version": version, **reqs}
    if accepts:
        body["accepts"] = accepts
    if error:
        body["error"] = error

    headers = {"Content-Type": "application/json", **X402_CORS_HEADERS}
    return 402, body, headers


class FacilitatorClient:
    """
    HTTP client for a facilitator's verify/settle API.

    Timeouts raise PAYMENT_TIMEOUT and other transport failures raise
    NETWORK_ERROR. A non-2xx answer becomes an invalid/failed response.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_FACILITATOR_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> FacilitatorClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @staticmethod
    def _request_body(payment: X402Header, requirements: Requirements) -> Dict[str, Any]:
        return {
            "x402Version": payment.get("x402Version", 1),
            "paymentPayload": payment,
            "paymentRequirements": _requirements_dict(requirements),
        }

    async def _post(self, path: str, body: Dict[str, Any]) -> Tuple[int, Any]:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            resp = await client.post(url, json=body, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise X402Error(
                f"Facilitator request to {path} timed out", X402ErrorCode.PAYMENT_TIMEOUT, cause=e
            ) from e
        except httpx.HTTPError as e:
            raise X402Error(
                f"Facilitator request to {path} failed: {e}", X402ErrorCode.NETWORK_ERROR, cause=e
            ) from e

        try:
            data: Any = resp.json()
        except ValueError:
            data = resp.text
        if not resp.is_success:
            logger.warning(f"Facilitator {path} returned {resp.status_code}")
        return resp.status_code, data

    async def verify(self, payment: X402Header, requirements: Requirements) -> VerifyResponse:
        """Ask the facilitator whether a payment satisfies the requirements."""
        status, data = await self._post("/verify", self._request_body(payment, requirements))
        if isinstance(data, dict):
            result = VerifyResponse.from_dict(data)
            if not 200 <= status < 300:
                result.is_valid = False
                result.invalid_reason = result.invalid_reason or f"Facilitator error: {status}"
            return result
        return VerifyResponse(is_valid=False, invalid_reason=f"Facilitator error: {status} - {data}")

    async def settle(self, payment: X402Header, requirements: Requirements) -> SettleResponse:
        """Submit a verified payment on-chain through the facilitator."""
        status, data = await self._post("/settle", self._request_body(payment, requirements))
        ok = 200 <= status < 300
        if isinstance(data, dict):
            result = SettleResponse.from_dict(data, default_success=ok)
            if not ok:
                result.success = False
                result.error = result.error or f"Facilitator error: {status}"
            return result
        return SettleResponse(success=False, error=f"Facilitator error: {status} - {data}")

    async def verify_and_settle(
        self, payment: X402Header, requirements: Requirements
    ) -> VerifyAndSettleResult:
        """Verify, then settle only when the payment is valid."""
        verified = await self.verify(payment, requirements)
        if not verified.is_valid:
            return VerifyAndSettleResult(verified=False, settled=False, error=verified.invalid_reason)

        settled = await self.settle(payment, requirements)
        return VerifyAndSettleResult(
            verified=True,
            settled=settled.success,
            transaction_hash=settled.transaction_hash,
            error=settled.error,
        )

    async def health(self) -> bool:
        client = await self._get_client()
        try:
            resp = await client.get(f"{self.base_url}/health", timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Facilitator health check failed: {e}")
            return False
        return resp.is_success
