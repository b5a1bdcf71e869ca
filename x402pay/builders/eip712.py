"""
EIP-712 Typed Data

Typed-data hashing for ERC-3009 TransferWithAuthorization, plus the
secp256k1 helpers used to sign and recover digests locally.

Reference: https://eips.ethereum.org/EIPS/eip-712
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from Crypto.Hash import keccak
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, utils
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

SECP256K1_P = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)

Point = Optional[Tuple[int, int]]


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def to_checksum_address(address: str) -> str:
    """EIP-55 mixed-case address"""
    lower = address.lower().removeprefix("0x")
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if c.isalpha() and int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lower)
    )


@dataclass
class TypedDataField:
    """EIP-712 type field definition"""
    name: str
    type: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type}


@dataclass
class EIP712Domain:
    """EIP-712 domain separator"""
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }

    @property
    def fields(self) -> List[TypedDataField]:
        return [
            TypedDataField("name", "string"),
            TypedDataField("version", "string"),
            TypedDataField("chainId", "uint256"),
            TypedDataField("verifyingContract", "address"),
        ]


TRANSFER_WITH_AUTHORIZATION_TYPES: Dict[str, List[TypedDataField]] = {
    "TransferWithAuthorization": [
        TypedDataField("from", "address"),
        TypedDataField("to", "address"),
        TypedDataField("value", "uint256"),
        TypedDataField("validAfter", "uint256"),
        TypedDataField("validBefore", "uint256"),
        TypedDataField("nonce", "bytes32"),
    ]
}


class EIP712Signer:
    """EIP-712 typed data hashing"""

    EIP712_DOMAIN_TYPE = "EIP712Domain"
    EIP712_DOMAIN_PREFIX = b"\x19\x01"

    @staticmethod
    def encode_type(primary_type: str, types: Dict[str, List[TypedDataField]]) -> str:
        """
        Encode type string for hashing.
        Format: TypeName(type1 field1,type2 field2,...) followed by sorted dependencies
        """
        deps = sorted(EIP712Signer._get_dependencies(primary_type, types))
        result = []
        for type_name in [primary_type] + deps:
            if type_name not in types:
                continue
            field_strs = [f"{f.type} {f.name}" for f in types[type_name]]
            result.append(f"{type_name}({','.join(field_strs)})")
        return "".join(result)

    @staticmethod
    def _get_dependencies(
        primary_type: str,
        types: Dict[str, List[TypedDataField]],
        visited: Optional[set] = None,
    ) -> List[str]:
        """Get list of struct types referenced by primary_type, excluding itself"""
        if visited is None:
            visited = {primary_type}
        deps: List[str] = []
        for f in types.get(primary_type, []):
            field_type = f.type.removesuffix("[]")
            if field_type in types and field_type not in visited:
                visited.add(field_type)
                deps.append(field_type)
                deps.extend(EIP712Signer._get_dependencies(field_type, types, visited))
        return deps

    @staticmethod
    def type_hash(primary_type: str, types: Dict[str, List[TypedDataField]]) -> bytes:
        """Compute keccak256 hash of type string"""
        return keccak256(EIP712Signer.encode_type(primary_type, types).encode("utf-8"))

    @staticmethod
    def hash_struct(
        primary_type: str,
        types: Dict[str, List[TypedDataField]],
        value: Dict[str, Any],
    ) -> bytes:
        """Hash a struct according to EIP-712"""
        if primary_type not in types:
            raise ValueError(f"Type {primary_type} not found in types")

        encoded = [EIP712Signer.type_hash(primary_type, types)]
        for f in types[primary_type]:
            encoded.append(EIP712Signer._encode_field(f.type, value.get(f.name), types))
        return keccak256(b"".join(encoded))

    @staticmethod
    def _encode_field(
        field_type: str,
        value: Any,
        types: Dict[str, List[TypedDataField]],
    ) -> bytes:
        """Encode a single field value"""
        if value is None:
            return b"\x00" * 32

        if field_type == "string":
            if isinstance(value, str):
                return keccak256(value.encode("utf-8"))
            return keccak256(value)

        if field_type == "bytes":
            if isinstance(value, str):
                value = bytes.fromhex(value[2:]) if value.startswith("0x") else value.encode("utf-8")
            return keccak256(value)

        if field_type == "bool":
            return (1 if value else 0).to_bytes(32, "big")

        if field_type == "address":
            if isinstance(value, str):
                return bytes.fromhex(value.removeprefix("0x").zfill(64))
            return value.rjust(32, b"\x00")

        if field_type.endswith("[]"):
            item_type = field_type[:-2]
            items = value if isinstance(value, list) else [value]
            return keccak256(b"".join(EIP712Signer._encode_field(item_type, i, types) for i in items))

        if field_type.startswith("uint"):
            return _to_int(value).to_bytes(32, "big")

        if field_type.startswith("int"):
            bits = int(field_type[3:]) if len(field_type) > 3 else 256
            number = _to_int(value)
            if number < 0:
                number += 1 << bits
            return number.to_bytes(32, "big")

        if field_type.startswith("bytes"):
            if isinstance(value, str):
                value = bytes.fromhex(value[2:]) if value.startswith("0x") else value.encode("utf-8")
            return value.ljust(32, b"\x00")[:32]

        if field_type in types:
            return EIP712Signer.hash_struct(field_type, types, value)

        raise ValueError(f"Unsupported field type: {field_type}")

    @staticmethod
    def hash_domain(domain: EIP712Domain) -> bytes:
        """Hash the domain separator"""
        types = {EIP712Signer.EIP712_DOMAIN_TYPE: domain.fields}
        return EIP712Signer.hash_struct(EIP712Signer.EIP712_DOMAIN_TYPE, types, domain.to_dict())

    @staticmethod
    def digest(
        domain: EIP712Domain,
        types: Dict[str, List[TypedDataField]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> bytes:
        """keccak256(0x1901 || domainSeparator || hashStruct(message))"""
        return keccak256(
            EIP712Signer.EIP712_DOMAIN_PREFIX
            + EIP712Signer.hash_domain(domain)
            + EIP712Signer.hash_struct(primary_type, types, message)
        )

    @staticmethod
    def digest_from_json(typed_data: Dict[str, Any]) -> bytes:
        """Digest of an eth_signTypedData_v4 JSON document."""
        types = {
            name: [TypedDataField(f["name"], f["type"]) for f in fields]
            for name, fields in typed_data["types"].items()
            if name != EIP712Signer.EIP712_DOMAIN_TYPE
        }
        d = typed_data["domain"]
        domain = EIP712Domain(d["name"], d["version"], int(d["chainId"]), d["verifyingContract"])
        return EIP712Signer.digest(domain, types, typed_data["primaryType"], typed_data["message"])

    @staticmethod
    def to_typed_data_json(
        domain: EIP712Domain,
        types: Dict[str, List[TypedDataField]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Convert to EIP-712 JSON format.

        Returns format compatible with eth_signTypedData_v4
        """
        types_json = {name: [f.to_dict() for f in fields] for name, fields in types.items()}
        if EIP712Signer.EIP712_DOMAIN_TYPE not in types_json:
            types_json[EIP712Signer.EIP712_DOMAIN_TYPE] = [f.to_dict() for f in domain.fields]

        return {
            "types": types_json,
            "primaryType": primary_type,
            "domain": domain.to_dict(),
            "message": message,
        }


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value[2:], 16) if value.startswith("0x") else int(value)
    return int(value)


def transfer_with_authorization_typed_data(
    token_address: str,
    token_name: str,
    token_version: str,
    chain_id: int,
    from_address: str,
    to_address: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: bytes,
) -> Dict[str, Any]:
    """
    Typed data for USDC-style TransferWithAuthorization (EIP-3009).

    uint256 values are rendered as decimal strings so wallets never see
    JSON numbers beyond 2**53.
    """
    domain = EIP712Domain(
        name=token_name,
        version=token_version,
        chain_id=chain_id,
        verifying_contract=token_address,
    )
    message = {
        "from": from_address,
        "to": to_address,
        "value": str(value),
        "validAfter": str(valid_after),
        "validBefore": str(valid_before),
        "nonce": "0x" + nonce.hex(),
    }
    return EIP712Signer.to_typed_data_json(
        domain, TRANSFER_WITH_AUTHORIZATION_TYPES, "TransferWithAuthorization", message
    )


# -- secp256k1 ------------------------------------------------------------

def _point_add(a: Point, b: Point) -> Point:
    if a is None:
        return b
    if b is None:
        return a
    if a[0] == b[0] and (a[1] + b[1]) % SECP256K1_P == 0:
        return None
    if a == b:
        lam = 3 * a[0] * a[0] * pow(2 * a[1], -1, SECP256K1_P)
    else:
        lam = (b[1] - a[1]) * pow(b[0] - a[0], -1, SECP256K1_P)
    lam %= SECP256K1_P
    x = (lam * lam - a[0] - b[0]) % SECP256K1_P
    return x, (lam * (a[0] - x) - a[1]) % SECP256K1_P


def _point_mul(k: int, point: Point) -> Point:
    result: Point = None
    addend = point
    while k:
        if k & 1:
            result = _point_add(result, addend)
        addend = _point_add(addend, addend)
        k >>= 1
    return result


def _address_from_point(point: Tuple[int, int]) -> str:
    raw = point[0].to_bytes(32, "big") + point[1].to_bytes(32, "big")
    return to_checksum_address("0x" + keccak256(raw)[-20:].hex())


def recover_address(digest: bytes, v: int, r: int, s: int) -> str:
    """Recover the signer address of a 32-byte digest."""
    recid = v - 27 if v >= 27 else v
    if recid not in (0, 1) or not (0 < r < SECP256K1_N and 0 < s < SECP256K1_N):
        raise ValueError("Invalid signature values")

    alpha = (pow(r, 3, SECP256K1_P) + 7) % SECP256K1_P
    beta = pow(alpha, (SECP256K1_P + 1) // 4, SECP256K1_P)
    y = beta if beta % 2 == recid else SECP256K1_P - beta
    if (y * y - alpha) % SECP256K1_P:
        raise ValueError("Signature r is not on the curve")

    e = int.from_bytes(digest, "big")
    r_inv = pow(r, -1, SECP256K1_N)
    q = _point_add(
        _point_mul(s * r_inv % SECP256K1_N, (r, y)),
        _point_mul(-e * r_inv % SECP256K1_N, _G),
    )
    if q is None:
        raise ValueError("Signature recovers to the point at infinity")
    return _address_from_point(q)


def address_from_private_key(private_key: ec.EllipticCurvePrivateKey) -> str:
    uncompressed = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return to_checksum_address("0x" + keccak256(uncompressed[1:])[-20:].hex())


def sign_digest(private_key: ec.EllipticCurvePrivateKey, digest: bytes) -> str:
    """
    Sign a 32-byte digest.

    Returns:
        65-byte signature as hex string (0x + r + s + v), s normalized to
        the lower half order (EIP-2) and v in {27, 28}
    """
    signature_der = private_key.sign(digest, ec.ECDSA(utils.Prehashed(hashes.SHA256())))
    r, s = utils.decode_dss_signature(signature_der)
    if s > SECP256K1_HALF_N:
        s = SECP256K1_N - s

    expected = address_from_private_key(private_key)
    for v in (27, 28):
        if recover_address(digest, v, r, s) == expected:
            return f"0x{r:064x}{s:064x}{v:02x}"
    raise ValueError("Could not determine recovery id")
