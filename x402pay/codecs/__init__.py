"""Binary and text codecs shared by the network builders."""

from x402pay.codecs.base58 import b58decode, b58encode
from x402pay.codecs.borsh import BcsWriter, BinaryWriter

__all__ = ["BinaryWriter", "BcsWriter", "b58encode", "b58decode"]
