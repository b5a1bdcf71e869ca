"""
Shared builder interface.

A builder turns (PaymentInfo, ChainConfig) into a signed PaymentPayload using
an injected wallet capability, then wraps it into an x402 header. Builders
hold connection state and are not safe for concurrent sign_payment calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, Literal, Optional, Union

import httpx
from loguru import logger

from x402pay.chains import DEFAULT_REGISTRY, ChainConfig, ChainRegistry, NetworkType, TokenConfig
from x402pay.envelope import create_x402_header, encode_x402_header
from x402pay.payloads import PaymentInfo, PaymentPayload
from x402pay.rpc import JsonRpcClient
from x402pay.utils.exceptions import X402Error, X402ErrorCode
from x402pay.utils.validation import to_atomic_units, validate_amount, validate_recipient

Version = Union[Literal[1, 2], Literal["auto"]]


class PaymentBuilder(ABC):
    """Base class for per-network authorization builders"""

    network_type: ClassVar[NetworkType]
    # Key into PaymentInfo.recipients for this network
    recipient_key: ClassVar[str]

    def __init__(
        self,
        wallet: Any,
        *,
        registry: Optional[ChainRegistry] = None,
        rpc_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.wallet = wallet
        self.registry = registry or DEFAULT_REGISTRY
        self.rpc_timeout = rpc_timeout
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._rpc_clients: Dict[str, JsonRpcClient] = {}
        self._address: Optional[str] = None

    # -- connection state -------------------------------------------------

    @abstractmethod
    async def connect(self, chain_name: Optional[str] = None) -> str:
        """Connect the wallet capability and return the payer address."""

    async def disconnect(self) -> None:
        self._address = None
        await self.close()

    def get_address(self) -> Optional[str]:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._address is not None

    # -- payment ----------------------------------------------------------

    @abstractmethod
    async def get_balance(self, chain: ChainConfig) -> str:
        """Token balance formatted with two decimals."""

    @abstractmethod
    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> PaymentPayload:
        """Build, sign and serialize the network-specific authorization."""

    def encode_payment_header(
        self,
        payload: PaymentPayload,
        chain: ChainConfig,
        version: Version = 1,
    ) -> str:
        """Wrap a signed payload into a base64 x402 header."""
        header = create_x402_header(chain, payload.to_dict(), version, registry=self.registry)
        return encode_x402_header(header)

    # -- helpers ----------------------------------------------------------

    def _require_connected(self) -> str:
        if self._address is None:
            raise X402Error("Wallet not connected", X402ErrorCode.WALLET_NOT_CONNECTED)
        return self._address

    def _check_chain(self, chain: ChainConfig) -> None:
        if chain.network_type is not self.network_type:
            raise X402Error(
                f"{chain.name} is not a {self.network_type.value} chain",
                X402ErrorCode.CHAIN_NOT_SUPPORTED,
            )

    def _resolve_chain(self, chain_name: Optional[str], default: str) -> ChainConfig:
        name = chain_name or default
        chain = self.registry.get_chain_by_name(name)
        if chain is None:
            raise X402Error(f"Unsupported chain: {name}", X402ErrorCode.CHAIN_NOT_SUPPORTED)
        self._check_chain(chain)
        return chain

    def _token(self, chain: ChainConfig, token_type: str = "usdc") -> TokenConfig:
        token = chain.get_token(token_type)
        if token is None:
            raise X402Error(
                f"Token {token_type} not supported on {chain.name}",
                X402ErrorCode.CHAIN_NOT_SUPPORTED,
            )
        return token

    def _recipient_for(self, info: PaymentInfo) -> str:
        """Validated recipient, preferring the network-specific entry."""
        recipient = info.recipients.get(self.recipient_key) or info.recipient
        return validate_recipient(recipient, self.network_type)

    def _atomic_amount(self, info: PaymentInfo, decimals: int) -> int:
        return to_atomic_units(validate_amount(info.amount), decimals)

    def _rpc(self, url: str) -> JsonRpcClient:
        """JSON-RPC client for an endpoint, created on first use."""
        client = self._rpc_clients.get(url)
        if client is None:
            logger.debug(f"Creating RPC client for {url}")
            client = JsonRpcClient(url, timeout=self.rpc_timeout, http_client=self._http_client)
            self._rpc_clients[url] = client
        return client

    async def _http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.rpc_timeout)
        return self._http_client

    async def close(self) -> None:
        """Release cached RPC/HTTP clients."""
        for client in self._rpc_clients.values():
            await client.close()
        self._rpc_clients.clear()
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
