"""
x402 Envelope Codec

The x402 header wraps a chain-specific payment payload:

    v1: {"x402Version": 1, "scheme": "exact", "network": "base", "payload": {...}}
    v2: {"x402Version": 2, "scheme": "exact", "network": "eip155:8453",
         "payload": {...}, "accepts": [...]}

On the wire it travels as base64 of UTF-8 JSON in the X-PAYMENT (v1) or
PAYMENT-SIGNATURE (v2) HTTP header.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

from x402pay.chains import DEFAULT_REGISTRY, ChainConfig, ChainRegistry, NetworkType
from x402pay.utils.exceptions import EnvelopeDecodeError
from x402pay.utils.validation import to_atomic_units

X402Version = Literal[1, 2]
X402Header = Dict[str, Any]

X_PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"

CAIP2_IDENTIFIERS: Mapping[str, str] = {
    # EVM
    "base": "eip155:8453",
    "ethereum": "eip155:1",
    "polygon": "eip155:137",
    "arbitrum": "eip155:42161",
    "optimism": "eip155:10",
    "avalanche": "eip155:43114",
    "celo": "eip155:42220",
    "hyperevm": "eip155:999",
    "unichain": "eip155:130",
    "monad": "eip155:143",
    "scroll": "eip155:534352",
    "skale": "eip155:1187947933",
    "skale-testnet": "eip155:324705682",
    # SVM
    "solana": "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp",
    "fogo": "svm:fogo",
    # Others
    "stellar": "stellar:pubnet",
    "near": "near:mainnet",
    "algorand": "algorand:mainnet",
    "algorand-testnet": "algorand:testnet",
    "sui": "sui:mainnet",
    "sui-testnet": "sui:testnet",
}

CAIP2_TO_CHAIN: Mapping[str, str] = {v: k for k, v in CAIP2_IDENTIFIERS.items()}

_EIP155_RE = re.compile(r"^eip155:(\d+)$")


def detect_x402_version(data: Any) -> X402Version:
    """
    Detect the header version.

    An explicit x402Version of 2 wins, then an accepts list, then a CAIP-2
    network. Anything else, including non-objects, is v1.
    """
    if not isinstance(data, dict):
        return 1
    if data.get("x402Version") == 2:
        return 2
    if isinstance(data.get("accepts"), list):
        return 2
    network = data.get("network")
    if isinstance(network, str) and ":" in network:
        return 2
    return 1


def chain_to_caip2(chain_name: str, registry: ChainRegistry | None = None) -> str:
    """Translate a chain name to CAIP-2; unknown names pass through unchanged."""
    caip2 = CAIP2_IDENTIFIERS.get(chain_name.lower())
    if caip2:
        return caip2

    chain = (registry or DEFAULT_REGISTRY).get_chain_by_name(chain_name)
    if chain is not None:
        if chain.network_type is NetworkType.EVM:
            return f"eip155:{chain.chain_id}"
        return f"{chain.network_type.value}:{chain_name}"

    return chain_name


def caip2_to_chain(caip2: str, registry: ChainRegistry | None = None) -> Optional[str]:
    """Translate a CAIP-2 identifier back to a chain name, or None."""
    name = CAIP2_TO_CHAIN.get(caip2)
    if name:
        return name

    registry = registry or DEFAULT_REGISTRY
    match = _EIP155_RE.match(caip2)
    if match:
        chain = registry.get_chain_by_id(int(match.group(1)))
        if chain is not None:
            return chain.name

    parts = caip2.split(":")
    if len(parts) == 2 and parts[1] in registry:
        return parts[1]

    return None


def is_caip2_format(network: str) -> bool:
    return ":" in network


def parse_network_identifier(network: str, registry: ChainRegistry | None = None) -> str:
    """Plain chain name for either a v1 name or a v2 CAIP-2 identifier."""
    if is_caip2_format(network):
        return caip2_to_chain(network, registry) or network
    return network.lower()


def encode_x402_header(header: X402Header) -> str:
    """base64(UTF-8 JSON)"""
    raw = json.dumps(header, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_x402_header(encoded: str) -> X402Header:
    """
    Decode a base64 header value.

    Raises EnvelopeDecodeError for malformed base64, UTF-8 or JSON and for
    JSON that is not an object. Callers reading inbound requests treat this
    as "no payment present".
    """
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, AttributeError) as e:
        raise EnvelopeDecodeError(f"Malformed x402 header: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeDecodeError("x402 header must decode to a JSON object")
    return data


def create_x402_v1_header(network: str, payload: Dict[str, Any]) -> X402Header:
    return {
        "x402Version": 1,
        "scheme": "exact",
        "network": network,
        "payload": payload,
    }


def create_x402_v2_header(
    network: str,
    payload: Dict[str, Any],
    accepts: Optional[List[Dict[str, Any]]] = None,
    registry: ChainRegistry | None = None,
) -> X402Header:
    header: X402Header = {
        "x402Version": 2,
        "scheme": "exact",
        "network": network if is_caip2_format(network) else chain_to_caip2(network, registry),
        "payload": payload,
    }
    if accepts:
        header["accepts"] = accepts
    return header


def create_x402_header(
    chain: ChainConfig,
    payload: Dict[str, Any],
    version: Union[X402Version, Literal["auto"]] = "auto",
    accepts: Optional[List[Dict[str, Any]]] = None,
    registry: ChainRegistry | None = None,
) -> X402Header:
    """Build a header for a chain; "auto" resolves to v1."""
    effective = 1 if version == "auto" else version
    if effective == 2:
        return create_x402_v2_header(chain.name, payload, accepts, registry)
    return create_x402_v1_header(chain.name, payload)


def convert_x402_header(
    header: X402Header,
    target: X402Version,
    registry: ChainRegistry | None = None,
) -> X402Header:
    """Rewrite the network between v1 and v2; the payload is passed through untouched."""
    if header.get("x402Version") == target:
        return header

    network = header["network"]
    if target == 2:
        new_network = chain_to_caip2(network, registry)
    else:
        new_network = (caip2_to_chain(network, registry) or network) if is_caip2_format(network) else network

    return {
        "x402Version": target,
        "scheme": "exact",
        "network": new_network,
        "payload": header["payload"],
    }


def generate_payment_options(
    chains: Iterable[ChainConfig],
    amount: str,
    facilitator: Optional[str] = None,
    registry: ChainRegistry | None = None,
) -> List[Dict[str, Any]]:
    """Build v2 accepts entries for every enabled chain."""
    options = []
    for chain in chains:
        if not chain.enabled:
            continue
        options.append({
            "network": chain_to_caip2(chain.name, registry),
            "asset": chain.usdc.address,
            "amount": str(to_atomic_units(amount, chain.usdc.decimals)),
            "facilitator": facilitator or chain.facilitator_url,
        })
    return options


def payment_headers(encoded: str) -> Dict[str, str]:
    """Both header names carrying the same encoded value."""
    return {X_PAYMENT_HEADER: encoded, PAYMENT_SIGNATURE_HEADER: encoded}
