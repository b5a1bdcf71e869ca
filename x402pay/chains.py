"""
Blockchain Configuration for x402 Payments

Supported networks, token contracts and facilitator fee-payer addresses.
ChainRegistry is an immutable snapshot; overrides produce a new registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

DEFAULT_FACILITATOR_URL = "https://facilitator.ultravioletadao.xyz"
DEFAULT_CHAIN = "base"


class NetworkType(str, Enum):
    """Closed set of signing schemes."""
    EVM = "evm"
    SVM = "svm"
    STELLAR = "stellar"
    NEAR = "near"
    ALGORAND = "algorand"
    SUI = "sui"


@dataclass(frozen=True)
class TokenConfig:
    """Token contract information"""
    address: str
    decimals: int
    name: str
    version: str = "2"


@dataclass(frozen=True)
class NativeCurrency:
    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class ChainConfig:
    """Blockchain configuration"""
    name: str
    display_name: str
    network_type: NetworkType
    rpc_url: str
    usdc: TokenConfig
    native_currency: NativeCurrency
    chain_id: int = 0
    explorer_url: str = ""
    tokens: Mapping[str, TokenConfig] = field(default_factory=dict)
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    enabled: bool = True
    is_testnet: bool = False
    validity_window_seconds: int = 60

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def get_token(self, token_type: str = "usdc") -> Optional[TokenConfig]:
        """Get token config by type (case-insensitive); USDC is always available."""
        key = token_type.lower()
        if key in self.tokens:
            return self.tokens[key]
        if key == "usdc":
            return self.usdc
        return None

    def supported_tokens(self) -> List[str]:
        return list(self.tokens) if self.tokens else ["usdc"]

    def explorer_tx_url(self, tx_hash: str) -> str:
        path = "txns" if self.network_type is NetworkType.NEAR else "tx"
        return f"{self.explorer_url}/{path}/{tx_hash}"

    def explorer_address_url(self, address: str) -> str:
        path = "address" if self.network_type in (NetworkType.EVM, NetworkType.NEAR) else "account"
        return f"{self.explorer_url}/{path}/{address}"


_ETH = NativeCurrency("Ethereum", "ETH", 18)
_AUSD_EVM = TokenConfig("0x00000000eFE302BEAA2b3e6e1b18d08D69a9012a", 6, "Agora Dollar", "1")


def _usd_coin(address: str, name: str = "USD Coin") -> TokenConfig:
    return TokenConfig(address=address, decimals=6, name=name, version="2")


def _evm(
    name: str,
    display_name: str,
    chain_id: int,
    rpc_url: str,
    explorer_url: str,
    usdc: TokenConfig,
    native: NativeCurrency = _ETH,
    validity_window_seconds: int = 60,
    **extra_tokens: TokenConfig,
) -> ChainConfig:
    return ChainConfig(
        name=name,
        display_name=display_name,
        network_type=NetworkType.EVM,
        chain_id=chain_id,
        rpc_url=rpc_url,
        explorer_url=explorer_url,
        native_currency=native,
        usdc=usdc,
        tokens={"usdc": usdc, **extra_tokens},
        validity_window_seconds=validity_window_seconds,
    )


_SUPPORTED: List[ChainConfig] = [
    # Base gets a wider window for slower inclusion.
    _evm(
        "base", "Base", 8453, "https://mainnet.base.org", "https://basescan.org",
        _usd_coin("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"),
        validity_window_seconds=300,
        eurc=TokenConfig("0x60a3E35Cc302bFA44Cb288Bc5a4F316Fdb1adb42", 6, "EURC", "2"),
    ),
    _evm(
        "avalanche", "Avalanche C-Chain", 43114,
        "https://avalanche-c-chain-rpc.publicnode.com", "https://snowtrace.io",
        _usd_coin("0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"),
        native=NativeCurrency("Avalanche", "AVAX", 18),
        eurc=TokenConfig("0xC891EB4cbdEFf6e073e859e987815Ed1505c2ACD", 6, "EURC", "2"),
        ausd=_AUSD_EVM,
    ),
    _evm(
        "ethereum", "Ethereum", 1, "https://eth.llamarpc.com", "https://etherscan.io",
        _usd_coin("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"),
        eurc=TokenConfig("0x1aBaEA1f7C830bD89Acc67eC4af516284b1bC33c", 6, "Euro Coin", "2"),
        ausd=_AUSD_EVM,
        pyusd=TokenConfig("0x6c3ea9036406852006290770BEdFcAbA0e23A0e8", 6, "PayPal USD", "1"),
    ),
    _evm(
        "polygon", "Polygon", 137, "https://polygon-rpc.com", "https://polygonscan.com",
        _usd_coin("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"),
        native=NativeCurrency("Polygon", "POL", 18),
        ausd=_AUSD_EVM,
    ),
    _evm(
        "arbitrum", "Arbitrum One", 42161, "https://arb1.arbitrum.io/rpc", "https://arbiscan.io",
        _usd_coin("0xaf88d065e77c8cC2239327C5EDb3A432268e5831"),
        ausd=_AUSD_EVM,
        usdt=TokenConfig("0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6, "USD₮0", "1"),
    ),
    _evm(
        "optimism", "Optimism", 10, "https://mainnet.optimism.io", "https://optimistic.etherscan.io",
        _usd_coin("0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"),
        usdt=TokenConfig("0x01bff41798a0bcf287b996046ca68b395dbc1071", 6, "USD₮0", "1"),
    ),
    # Celo, HyperEVM, Unichain and Monad sign with the EIP-712 name "USDC".
    _evm(
        "celo", "Celo", 42220, "https://forno.celo.org", "https://celoscan.io",
        _usd_coin("0xcebA9300f2b948710d2653dD7B07f33A8B32118C", name="USDC"),
        native=NativeCurrency("Celo", "CELO", 18),
        usdt=TokenConfig("0x48065fbBE25f71C9282ddf5e1cD6D6A887483D5e", 6, "Tether USD", "1"),
    ),
    _evm(
        "hyperevm", "HyperEVM", 999, "https://rpc.hyperliquid.xyz/evm", "https://hyperevmscan.io",
        _usd_coin("0xb88339CB7199b77E23DB6E890353E22632Ba630f", name="USDC"),
    ),
    _evm(
        "unichain", "Unichain", 130, "https://unichain-rpc.publicnode.com", "https://uniscan.xyz",
        _usd_coin("0x078d782b760474a361dda0af3839290b0ef57ad6", name="USDC"),
    ),
    _evm(
        "monad", "Monad", 143, "https://rpc.monad.xyz", "https://monad.socialscan.io",
        _usd_coin("0x754704bc059f8c67012fed69bc8a327a5aafb603", name="USDC"),
        native=NativeCurrency("Monad", "MON", 18),
        ausd=_AUSD_EVM,
    ),
    ChainConfig(
        name="solana",
        display_name="Solana",
        network_type=NetworkType.SVM,
        rpc_url="https://api.mainnet-beta.solana.com",
        explorer_url="https://solscan.io",
        native_currency=NativeCurrency("Solana", "SOL", 9),
        usdc=TokenConfig("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6, "USD Coin", "1"),
    ),
    ChainConfig(
        name="fogo",
        display_name="Fogo",
        network_type=NetworkType.SVM,
        rpc_url="https://rpc.fogo.nightly.app/",
        explorer_url="https://explorer.fogo.nightly.app",
        native_currency=NativeCurrency("Fogo", "FOGO", 9),
        usdc=TokenConfig("uSd2czE61Evaf76RNbq4KPpXnkiL3irdzgLFUMe3NoG", 6, "USDC", "1"),
    ),
    ChainConfig(
        name="stellar",
        display_name="Stellar",
        network_type=NetworkType.STELLAR,
        rpc_url="https://horizon.stellar.org",
        explorer_url="https://stellar.expert/explorer/public",
        native_currency=NativeCurrency("Lumens", "XLM", 7),
        usdc=TokenConfig("CCW67TSZV3SSS2HXMBQ5JFGCKJNXKZM7UQUWUZPUTHXSTZLEO7SJMI75", 7, "USDC", "1"),
    ),
    ChainConfig(
        name="near",
        display_name="NEAR Protocol",
        network_type=NetworkType.NEAR,
        rpc_url="https://rpc.mainnet.near.org",
        explorer_url="https://nearblocks.io",
        native_currency=NativeCurrency("NEAR", "NEAR", 24),
        usdc=TokenConfig(
            "17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1", 6, "USDC", "1"
        ),
    ),
    ChainConfig(
        name="algorand",
        display_name="Algorand",
        network_type=NetworkType.ALGORAND,
        rpc_url="https://mainnet-api.algonode.cloud",
        explorer_url="https://allo.info",
        native_currency=NativeCurrency("Algo", "ALGO", 6),
        usdc=TokenConfig("31566704", 6, "USDC", "1"),
    ),
    ChainConfig(
        name="algorand-testnet",
        display_name="Algorand Testnet",
        network_type=NetworkType.ALGORAND,
        rpc_url="https://testnet-api.algonode.cloud",
        explorer_url="https://testnet.allo.info",
        native_currency=NativeCurrency("Algo", "ALGO", 6),
        usdc=TokenConfig("10458941", 6, "USDC", "1"),
        is_testnet=True,
    ),
    ChainConfig(
        name="sui",
        display_name="Sui",
        network_type=NetworkType.SUI,
        rpc_url="https://fullnode.mainnet.sui.io:443",
        explorer_url="https://suiscan.xyz/mainnet",
        native_currency=NativeCurrency("Sui", "SUI", 9),
        usdc=TokenConfig(
            "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC",
            6, "USDC", "1",
        ),
    ),
    ChainConfig(
        name="sui-testnet",
        display_name="Sui Testnet",
        network_type=NetworkType.SUI,
        rpc_url="https://fullnode.testnet.sui.io:443",
        explorer_url="https://suiscan.xyz/testnet",
        native_currency=NativeCurrency("Sui", "SUI", 9),
        usdc=TokenConfig(
            "0xa1ec7fc00a6f40db9693ad1415d0c193ad3906494428cf252621037bd7117e29::usdc::USDC",
            6, "USDC", "1",
        ),
        is_testnet=True,
    ),
]

DEFAULT_CHAINS: Mapping[str, ChainConfig] = MappingProxyType({c.name: c for c in _SUPPORTED})


# Fee-payer (relayer) addresses used by the default facilitator.
FACILITATOR_ADDRESSES: Mapping[str, str] = MappingProxyType({
    "solana": "F742C4VfFLQ9zRQyithoj5229ZgtX2WqKCSFKgH2EThq",
    "evm": "0x7c5F3AdB0C7775968Bc7e7cF61b27fECf2e2b500",
    "stellar": "GDUTDNV53WQPOB2JUZPO6SXH4LVT7CJSLCMLFQ7W4CNAXGIX7XYMCNP2",
    "near": "uvd-facilitator.near",
})


def get_facilitator_address(chain: str, network_type: NetworkType | str | None = None) -> Optional[str]:
    """Facilitator address by chain name, falling back to the network type."""
    address = FACILITATOR_ADDRESSES.get(chain.lower())
    if address:
        return address
    if network_type is not None:
        return FACILITATOR_ADDRESSES.get(NetworkType(network_type).value)
    return None


class ChainRegistry:
    """Immutable lookup over a set of chain configurations."""

    def __init__(self, chains: Mapping[str, ChainConfig] | Iterable[ChainConfig] = DEFAULT_CHAINS):
        if isinstance(chains, Mapping):
            items = {name.lower(): cfg for name, cfg in chains.items()}
        else:
            items = {cfg.name.lower(): cfg for cfg in chains}
        self._chains: Mapping[str, ChainConfig] = MappingProxyType(items)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._chains

    def __iter__(self):
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)

    @property
    def names(self) -> List[str]:
        return list(self._chains)

    def get_chain_by_name(self, name: str) -> Optional[ChainConfig]:
        """Get chain config by name (case-insensitive)"""
        return self._chains.get(name.strip().lower())

    def get_chain_by_id(self, chain_id: int) -> Optional[ChainConfig]:
        """Get EVM chain config by numeric chain ID"""
        for chain in self._chains.values():
            if chain.network_type is NetworkType.EVM and chain.chain_id == chain_id:
                return chain
        return None

    def get_token_config(self, name: str, token_type: str = "usdc") -> Optional[TokenConfig]:
        chain = self.get_chain_by_name(name)
        if chain is None:
            return None
        return chain.get_token(token_type)

    def is_chain_supported(self, name_or_id: str | int) -> bool:
        if isinstance(name_or_id, int):
            return self.get_chain_by_id(name_or_id) is not None
        return name_or_id in self

    def get_enabled_chains(self) -> List[ChainConfig]:
        return [c for c in self._chains.values() if c.enabled]

    def get_chains_by_network_type(self, network_type: NetworkType | str) -> List[ChainConfig]:
        wanted = NetworkType(network_type)
        return [c for c in self._chains.values() if c.network_type is wanted and c.enabled]

    def get_chains_by_token(self, token_type: str) -> List[ChainConfig]:
        return [c for c in self.get_enabled_chains() if c.get_token(token_type) is not None]

    def with_overrides(
        self,
        rpc_overrides: Optional[Mapping[str, str]] = None,
        custom_chains: Optional[Mapping[str, Mapping[str, Any]]] = None,
        facilitator_url: Optional[str] = None,
    ) -> "ChainRegistry":
        """
        Return a new registry with RPC URLs and partial chain fields replaced.

        custom_chains values are partial field mappings; entries for unknown
        names must carry enough fields to build a full ChainConfig.
        facilitator_url becomes every chain's facilitator unless a
        custom_chains entry names its own.
        """
        chains: Dict[str, ChainConfig] = dict(self._chains)
        if facilitator_url:
            chains = {key: replace(chain, facilitator_url=facilitator_url) for key, chain in chains.items()}

        for name, changes in (custom_chains or {}).items():
            key = name.lower()
            fields = {k: v for k, v in dict(changes).items() if v is not None}
            if "usdc_address" in fields:
                address = fields.pop("usdc_address")
                base_token = chains[key].usdc if key in chains else TokenConfig(address, 6, "USD Coin")
                fields["usdc"] = replace(base_token, address=address)
            if "network_type" in fields:
                fields["network_type"] = NetworkType(fields["network_type"])
            if key in chains:
                chains[key] = replace(chains[key], **fields)
            else:
                fields.setdefault("name", key)
                fields.setdefault("display_name", key)
                fields.setdefault("native_currency", _ETH)
                if facilitator_url:
                    fields.setdefault("facilitator_url", facilitator_url)
                chains[key] = ChainConfig(**fields)

        for name, url in (rpc_overrides or {}).items():
            key = name.lower()
            if key in chains:
                chains[key] = replace(chains[key], rpc_url=url)

        return ChainRegistry(chains)


DEFAULT_REGISTRY = ChainRegistry()
