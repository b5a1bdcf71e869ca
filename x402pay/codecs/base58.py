"""Base58 (Bitcoin alphabet) encoding used for NEAR keys and Sui digests."""

from __future__ import annotations

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: i for i, char in enumerate(ALPHABET)}


def b58encode(data: bytes) -> str:
    """Encode bytes; each leading zero byte becomes a leading '1'."""
    zeros = 0
    while zeros < len(data) and data[zeros] == 0:
        zeros += 1

    digits: list[int] = []
    for byte in data[zeros:]:
        carry = byte
        for i in range(len(digits)):
            carry += digits[i] << 8
            digits[i] = carry % 58
            carry //= 58
        while carry:
            digits.append(carry % 58)
            carry //= 58

    return "1" * zeros + "".join(ALPHABET[d] for d in reversed(digits))


def b58decode(value: str) -> bytes:
    """Decode a Base58 string; each leading '1' becomes a zero byte."""
    zeros = 0
    while zeros < len(value) and value[zeros] == "1":
        zeros += 1

    out: list[int] = []
    for char in value[zeros:]:
        if char not in _INDEX:
            raise ValueError(f"Invalid base58 character: {char!r}")
        carry = _INDEX[char]
        for i in range(len(out)):
            carry += out[i] * 58
            out[i] = carry & 0xFF
            carry >>= 8
        while carry:
            out.append(carry & 0xFF)
            carry >>= 8

    return b"\x00" * zeros + bytes(reversed(out))
