"""
X402Client: one entry point over every builder.

The client owns a ChainRegistry snapshot built from its settings, creates
builders lazily per network type, and emits lifecycle events:

    connect, disconnect, chainChanged,
    paymentStarted, paymentSigned, paymentCompleted, paymentFailed
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import httpx
from loguru import logger

from x402pay.builders.base import PaymentBuilder
from x402pay.builders.evm import EvmBuilder
from x402pay.builders.registry import create_builder
from x402pay.chains import ChainConfig, NetworkType
from x402pay.config.schema import X402Settings
from x402pay.envelope import parse_network_identifier, payment_headers
from x402pay.payloads import PaymentInfo, PaymentResult
from x402pay.utils.exceptions import X402Error, X402ErrorCode
from x402pay.utils.validation import validate_amount

EVENTS = frozenset({
    "connect",
    "disconnect",
    "chainChanged",
    "paymentStarted",
    "paymentSigned",
    "paymentCompleted",
    "paymentFailed",
})

EventHandler = Callable[[Any], None]
WalletSpec = Union[Any, Sequence[Any]]


def _wallet_name(wallet: Any) -> str:
    return str(getattr(wallet, "name", None) or type(wallet).__name__)


class X402Client:
    """
    Multi-chain x402 payment client.

    Wallets are injected per network type, e.g.
    ``{"evm": LocalEvmAccount(...), "near": [primary, backup]}``. A list
    gives candidates in order; ``wallet_preference`` reorders them by name.
    """

    def __init__(
        self,
        settings: Optional[X402Settings] = None,
        wallets: Optional[Mapping[Union[NetworkType, str], WalletSpec]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or X402Settings()
        if self.settings.debug:
            logger.enable("x402pay")

        try:
            self.registry = self.settings.build_registry()
        except (TypeError, ValueError, KeyError) as e:
            raise X402Error(
                f"Invalid chain configuration: {e}", X402ErrorCode.INVALID_CONFIG, cause=e
            ) from e

        self._wallets: Dict[NetworkType, List[Any]] = {}
        for key, spec in (wallets or {}).items():
            try:
                network_type = NetworkType(key)
            except ValueError as e:
                raise X402Error(
                    f"Unknown network type for wallet: {key}", X402ErrorCode.INVALID_CONFIG, cause=e
                ) from e
            candidates = list(spec) if isinstance(spec, (list, tuple)) else [spec]
            self._wallets[network_type] = self._ordered(candidates)

        self._http_client = http_client
        self._builders: Dict[NetworkType, PaymentBuilder] = {}
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._chain: Optional[ChainConfig] = None

    async def __aenter__(self) -> X402Client:
        if self.settings.auto_connect:
            await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # -- events -----------------------------------------------------------

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an event; returns a callable that unsubscribes."""
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return unsubscribe

    def _emit(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(data)
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}")

    # -- builders ---------------------------------------------------------

    def _ordered(self, wallets: List[Any]) -> List[Any]:
        preference = [p.lower() for p in self.settings.wallet_preference]
        if not preference:
            return wallets

        def rank(wallet: Any) -> int:
            name = _wallet_name(wallet).lower()
            return preference.index(name) if name in preference else len(preference)

        return sorted(wallets, key=rank)

    def _get_builder(self, network_type: NetworkType) -> PaymentBuilder:
        builder = self._builders.get(network_type)
        if builder is not None:
            return builder

        candidates = self._wallets.get(network_type)
        if not candidates:
            raise X402Error(
                f"No wallet configured for {network_type.value}", X402ErrorCode.WALLET_NOT_FOUND
            )

        kwargs: Dict[str, Any] = {
            "registry": self.registry,
            "rpc_timeout": self.settings.timeout_seconds,
            "http_client": self._http_client,
        }
        if network_type is NetworkType.NEAR:
            wallet: Any = candidates
        else:
            wallet = candidates[0]
            if network_type is NetworkType.ALGORAND and len(candidates) > 1:
                kwargs["fallback_wallet"] = candidates[1]

        logger.debug(f"Creating {network_type.value} builder")
        builder = create_builder(network_type, wallet, **kwargs)
        self._builders[network_type] = builder
        return builder

    def _lookup_chain(self, name: str) -> ChainConfig:
        chain = self.registry.get_chain_by_name(parse_network_identifier(name, self.registry))
        if chain is None:
            raise X402Error(f"Unsupported chain: {name}", X402ErrorCode.CHAIN_NOT_SUPPORTED)
        if not chain.enabled:
            raise X402Error(
                f"Chain {chain.name} is not enabled for x402 payments",
                X402ErrorCode.CHAIN_NOT_SUPPORTED,
            )
        return chain

    # -- connection -------------------------------------------------------

    @property
    def current_chain(self) -> Optional[ChainConfig]:
        return self._chain

    @property
    def address(self) -> Optional[str]:
        if self._chain is None:
            return None
        builder = self._builders.get(self._chain.network_type)
        return builder.get_address() if builder else None

    @property
    def is_connected(self) -> bool:
        return self.address is not None

    async def connect(self, chain_name: Optional[str] = None) -> str:
        """Connect the wallet for a chain's network type; returns the payer address."""
        chain = self._lookup_chain(chain_name or self.settings.default_chain)
        builder = self._get_builder(chain.network_type)
        address = await builder.connect(chain.name)
        self._chain = chain
        logger.info(f"Connected {address} on {chain.display_name}")
        self._emit("connect", {
            "address": address,
            "chain": chain.name,
            "chainId": chain.chain_id,
            "network": chain.network_type.value,
        })
        return address

    async def disconnect(self) -> None:
        for builder in self._builders.values():
            await builder.disconnect()
        self._builders.clear()
        self._chain = None
        self._emit("disconnect", None)

    async def switch_chain(self, chain_name: str) -> None:
        """Move an EVM connection to another EVM chain."""
        chain = self._lookup_chain(chain_name)
        if self._chain is None or not self.is_connected:
            raise X402Error("Wallet not connected", X402ErrorCode.WALLET_NOT_CONNECTED)
        if self._chain.network_type is not NetworkType.EVM or chain.network_type is not NetworkType.EVM:
            raise X402Error(
                f"Cannot switch from {self._chain.name} to {chain.name}; "
                "chain switching is only available between EVM chains",
                X402ErrorCode.CHAIN_NOT_SUPPORTED,
            )
        builder = self._builders.get(NetworkType.EVM)
        if not isinstance(builder, EvmBuilder):
            raise X402Error(
                f"No EVM wallet session to switch to {chain.name}",
                X402ErrorCode.CHAIN_NOT_SUPPORTED,
            )
        await builder.switch_chain(chain)
        self._chain = chain
        self._emit("chainChanged", {"chainId": chain.chain_id, "chainName": chain.name})

    # -- payments ---------------------------------------------------------

    async def get_balance(self) -> str:
        """USDC balance of the connected account on the current chain."""
        if self._chain is None:
            raise X402Error("Wallet not connected", X402ErrorCode.WALLET_NOT_CONNECTED)
        return await self._get_builder(self._chain.network_type).get_balance(self._chain)

    async def create_payment(
        self,
        info: Union[PaymentInfo, Dict[str, Any]],
        chain_name: Optional[str] = None,
    ) -> PaymentResult:
        """
        Sign a payment on the current (or named) chain.

        The chain named explicitly, then ``info.network``, then the connected
        chain is used. The named chain must share the connected wallet's
        network type.
        """
        if isinstance(info, dict):
            info = PaymentInfo.from_dict(info)
        validate_amount(info.amount)

        if self._chain is None:
            raise X402Error("Wallet not connected", X402ErrorCode.WALLET_NOT_CONNECTED)
        target = chain_name or info.network
        chain = self._lookup_chain(target) if target else self._chain

        builder = self._builders.get(chain.network_type)
        if builder is None or not builder.is_connected:
            raise X402Error(
                f"No {chain.network_type.value} wallet connected for {chain.name}",
                X402ErrorCode.WALLET_NOT_CONNECTED,
            )

        self._emit("paymentStarted", {"amount": info.amount, "network": chain.name})
        logger.debug(f"Creating payment of {info.amount} on {chain.name}")

        try:
            payload = await builder.sign_payment(info, chain)
            header = builder.encode_payment_header(payload, chain, self.settings.x402_version)
        except X402Error as e:
            self._emit("paymentFailed", {"error": e.message, "code": e.code.value})
            raise
        except Exception as e:
            error = X402Error(str(e) or type(e).__name__, X402ErrorCode.PAYMENT_FAILED, cause=e)
            self._emit("paymentFailed", {"error": error.message, "code": error.code.value})
            raise error from e

        self._emit("paymentSigned", {"paymentHeader": header})
        result = PaymentResult(
            success=True,
            payment_header=header,
            headers=payment_headers(header),
            network=chain.name,
            payer=builder.get_address(),
            payload=payload,
        )
        logger.info(f"Payment signed on {chain.name} by {result.payer}")
        self._emit("paymentCompleted", result)
        return result
