"""
Positional binary writers.

BinaryWriter emits the Borsh layout used by NEAR (little-endian integers,
u32 length prefixes). BcsWriter switches length prefixes to ULEB128 for Sui.
"""

from __future__ import annotations

_U8_MAX = (1 << 8) - 1
_U16_MAX = (1 << 16) - 1
_U32_MAX = (1 << 32) - 1
_U64_MAX = (1 << 64) - 1
_U128_MAX = (1 << 128) - 1


class BinaryWriter:
    """Minimal positional serializer; not a schema system."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def _write_uint(self, value: int, size: int, limit: int) -> "BinaryWriter":
        if not isinstance(value, int) or value < 0 or value > limit:
            raise ValueError(f"Value {value!r} does not fit in u{size * 8}")
        self._buf += value.to_bytes(size, "little")
        return self

    def write_u8(self, value: int) -> "BinaryWriter":
        return self._write_uint(value, 1, _U8_MAX)

    def write_u16(self, value: int) -> "BinaryWriter":
        return self._write_uint(value, 2, _U16_MAX)

    def write_u32(self, value: int) -> "BinaryWriter":
        return self._write_uint(value, 4, _U32_MAX)

    def write_u64(self, value: int) -> "BinaryWriter":
        return self._write_uint(value, 8, _U64_MAX)

    def write_u128(self, value: int) -> "BinaryWriter":
        return self._write_uint(value, 16, _U128_MAX)

    def write_length(self, length: int) -> "BinaryWriter":
        """Length prefix for strings, byte strings and sequences."""
        return self.write_u32(length)

    def write_bytes(self, data: bytes) -> "BinaryWriter":
        """Length-prefixed byte string."""
        self.write_length(len(data))
        self._buf += data
        return self

    def write_string(self, value: str) -> "BinaryWriter":
        """Length-prefixed UTF-8 string."""
        return self.write_bytes(value.encode("utf-8"))

    def write_fixed(self, data: bytes, size: int | None = None) -> "BinaryWriter":
        """Raw fixed-width block, no prefix."""
        if size is not None and len(data) != size:
            raise ValueError(f"Expected {size} bytes, got {len(data)}")
        self._buf += data
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)


class BcsWriter(BinaryWriter):
    """BCS variant: identical integers, ULEB128 lengths and enum tags."""

    def write_uleb128(self, value: int) -> "BcsWriter":
        if value < 0 or value > _U32_MAX:
            raise ValueError(f"ULEB128 value out of range: {value}")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def write_length(self, length: int) -> "BcsWriter":
        return self.write_uleb128(length)

    def write_variant(self, index: int) -> "BcsWriter":
        return self.write_uleb128(index)

    def write_option_none(self) -> "BcsWriter":
        self._buf.append(0)
        return self
