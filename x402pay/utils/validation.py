"""
Payment parameter validation.

All checks run before any wallet or network interaction so that bad input
fails fast with INVALID_AMOUNT or INVALID_RECIPIENT.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from algosdk import encoding as algo_encoding

from x402pay.chains import NetworkType
from x402pay.codecs.base58 import b58decode
from x402pay.utils.exceptions import X402Error, X402ErrorCode

EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
STELLAR_ADDRESS_RE = re.compile(r"^G[A-Z2-7]{55}$")
NEAR_ACCOUNT_RE = re.compile(r"^[a-z0-9._-]+$")
SUI_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")

_NEAR_MAX_LEN = 64
# uint256 holds at most 78 decimal digits
_MAX_ATOMIC_DIGITS = 78


def validate_amount(amount: str | None) -> Decimal:
    """Parse a positive decimal amount string."""
    if amount is None or not str(amount).strip():
        raise X402Error("Payment amount is required.", X402ErrorCode.INVALID_AMOUNT)

    trimmed = str(amount).strip()
    try:
        value = Decimal(trimmed)
    except InvalidOperation as e:
        raise X402Error(
            f'Invalid payment amount: "{trimmed}". Expected a valid number.',
            X402ErrorCode.INVALID_AMOUNT,
            cause=e,
        ) from e

    if not value.is_finite() or value <= 0:
        raise X402Error(
            f"Payment amount must be positive. Got: {trimmed}",
            X402ErrorCode.INVALID_AMOUNT,
        )
    return value


def to_atomic_units(amount: str | Decimal, decimals: int) -> int:
    """
    Convert a decimal amount to integer base units.

    "10.00" at 6 decimals is exactly 10000000; no float is involved.
    """
    value = amount if isinstance(amount, Decimal) else validate_amount(amount)
    if value.adjusted() + decimals >= _MAX_ATOMIC_DIGITS:
        raise X402Error(
            f"Payment amount {value} exceeds the largest representable token amount",
            X402ErrorCode.INVALID_AMOUNT,
        )
    with localcontext() as ctx:
        ctx.prec = max(_MAX_ATOMIC_DIGITS, len(value.as_tuple().digits)) + 2
        atomic = int(value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if atomic <= 0:
        raise X402Error(
            f"Payment amount {value} is below the smallest unit for {decimals} decimals",
            X402ErrorCode.INVALID_AMOUNT,
        )
    return atomic


def format_units(atomic: int, decimals: int, places: int = 2) -> str:
    """Render base units as a fixed-point string, e.g. 1234567 -> "1.23"."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(str(abs(atomic))) + places + 2)
        value = Decimal(atomic).scaleb(-decimals)
        return str(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def _is_solana_pubkey(address: str) -> bool:
    return bool(SOLANA_ADDRESS_RE.match(address)) and len(b58decode(address)) == 32


def _invalid(network: str, address: str, expected: str) -> X402Error:
    return X402Error(
        f'Invalid {network} recipient address: "{address}". Expected {expected}.',
        X402ErrorCode.INVALID_RECIPIENT,
    )


def validate_recipient(recipient: str | None, network_type: NetworkType | str | None = None) -> str:
    """Check presence and network-specific format; returns the trimmed address."""
    if not recipient:
        raise X402Error(
            "Recipient address is required. The payTo/recipient field cannot be empty.",
            X402ErrorCode.INVALID_RECIPIENT,
        )

    trimmed = recipient.strip()
    if not trimmed:
        raise X402Error(
            "Recipient address cannot be empty or whitespace.",
            X402ErrorCode.INVALID_RECIPIENT,
        )

    if network_type is None:
        return trimmed

    kind = NetworkType(network_type)
    if kind is NetworkType.EVM and not EVM_ADDRESS_RE.match(trimmed):
        raise _invalid("EVM", trimmed, "a 40-character hexadecimal address starting with 0x")
    if kind is NetworkType.SVM and not _is_solana_pubkey(trimmed):
        raise _invalid("Solana", trimmed, "a base58-encoded public key (32-44 characters)")
    if kind is NetworkType.STELLAR and not STELLAR_ADDRESS_RE.match(trimmed):
        raise _invalid("Stellar", trimmed, "a G-prefixed public key (56 characters)")
    if kind is NetworkType.NEAR and (not NEAR_ACCOUNT_RE.match(trimmed) or len(trimmed) > _NEAR_MAX_LEN):
        raise _invalid("NEAR", trimmed, "a valid NEAR account ID")
    if kind is NetworkType.ALGORAND and not algo_encoding.is_valid_address(trimmed):
        raise _invalid("Algorand", trimmed, "a 58-character base32 address")
    if kind is NetworkType.SUI and not SUI_ADDRESS_RE.match(trimmed):
        raise _invalid("Sui", trimmed, "a 0x-prefixed 32-byte hex address")
    return trimmed
