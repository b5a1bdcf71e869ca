"""
x402pay - multi-chain x402 payment authorization SDK.

Signs gasless stablecoin transfer authorizations for EVM, Solana/Fogo,
Stellar, NEAR, Algorand and Sui and wraps them in the x402 header.
"""

from loguru import logger

from x402pay.builders import (
    AlgorandBuilder,
    EvmBuilder,
    NearBuilder,
    PaymentBuilder,
    StellarBuilder,
    SuiBuilder,
    SvmBuilder,
    create_builder,
)
from x402pay.chains import DEFAULT_REGISTRY, ChainConfig, ChainRegistry, NetworkType, TokenConfig
from x402pay.client import X402Client
from x402pay.config import X402Settings, load_settings
from x402pay.envelope import (
    caip2_to_chain,
    chain_to_caip2,
    convert_x402_header,
    create_x402_header,
    decode_x402_header,
    detect_x402_version,
    encode_x402_header,
)
from x402pay.facilitator import FacilitatorClient, build_payment_requirements, extract_payment_from_headers
from x402pay.payloads import PaymentInfo, PaymentResult
from x402pay.utils.exceptions import X402Error, X402ErrorCode

__version__ = "0.1.0"

logger.disable("x402pay")

__all__ = [
    "X402Client",
    "X402Settings",
    "load_settings",
    "PaymentInfo",
    "PaymentResult",
    "NetworkType",
    "ChainConfig",
    "ChainRegistry",
    "TokenConfig",
    "DEFAULT_REGISTRY",
    "PaymentBuilder",
    "EvmBuilder",
    "SvmBuilder",
    "StellarBuilder",
    "NearBuilder",
    "AlgorandBuilder",
    "SuiBuilder",
    "create_builder",
    "detect_x402_version",
    "chain_to_caip2",
    "caip2_to_chain",
    "encode_x402_header",
    "decode_x402_header",
    "create_x402_header",
    "convert_x402_header",
    "FacilitatorClient",
    "build_payment_requirements",
    "extract_payment_from_headers",
    "X402Error",
    "X402ErrorCode",
]
