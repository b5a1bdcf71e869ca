"""
Payment intents and signed payload variants.

Each payload variant serializes (to_dict) to exactly the shape the
facilitator expects inside the x402 envelope for its network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class PaymentInfo:
    """Caller's payment intent"""
    amount: str
    recipient: str = ""
    recipients: Dict[str, str] = field(default_factory=dict)  # network key -> address
    facilitator: Optional[str] = None  # fee payer / relayer address
    token_type: str = "usdc"
    network: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PaymentInfo:
        """Parse the camelCase shape used by 402 responses"""
        return cls(
            amount=str(data.get("amount", "")),
            recipient=data.get("recipient") or data.get("payTo") or "",
            recipients=dict(data.get("recipients") or {}),
            facilitator=data.get("facilitator"),
            token_type=data.get("tokenType") or "usdc",
            network=data.get("network"),
        )


@dataclass
class EvmPaymentPayload:
    """ERC-3009 authorization with the signature split into (v, r, s)"""
    from_address: str
    to: str
    value: str
    valid_after: int
    valid_before: int
    nonce: str
    v: int
    r: str
    s: str
    chain_id: int
    token: str

    @property
    def signature(self) -> str:
        """Rejoined 65-byte signature: r || s || v"""
        return f"{self.r}{self.s[2:]}{self.v:02x}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "authorization": {
                "from": self.from_address,
                "to": self.to,
                "value": self.value,
                "validAfter": str(self.valid_after),
                "validBefore": str(self.valid_before),
                "nonce": self.nonce,
            },
        }


@dataclass
class SvmPaymentPayload:
    """Partially signed versioned transaction, base64"""
    transaction: str

    def to_dict(self) -> Dict[str, Any]:
        return {"transaction": self.transaction}


@dataclass
class StellarPaymentPayload:
    from_address: str
    to: str
    amount: str
    token_contract: str
    authorization_entry_xdr: str
    nonce: int
    signature_expiration_ledger: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to,
            "amount": self.amount,
            "tokenContract": self.token_contract,
            "authorizationEntryXdr": self.authorization_entry_xdr,
            "nonce": self.nonce,
            "signatureExpirationLedger": self.signature_expiration_ledger,
        }


@dataclass
class NearPaymentPayload:
    """Base64 Borsh-serialized SignedDelegateAction"""
    signed_delegate_action: str

    def to_dict(self) -> Dict[str, Any]:
        return {"signedDelegateAction": self.signed_delegate_action}


@dataclass
class AlgorandPaymentPayload:
    """Atomic group: [unsigned fee txn, signed payment txn], both base64"""
    payment_group: List[str]
    payment_index: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paymentIndex": self.payment_index,
            "paymentGroup": list(self.payment_group),
        }


@dataclass
class SuiPaymentPayload:
    transaction_bytes: str
    sender_signature: str
    from_address: str
    to: str
    amount: str
    coin_object_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionBytes": self.transaction_bytes,
            "senderSignature": self.sender_signature,
            "from": self.from_address,
            "to": self.to,
            "amount": self.amount,
            "coinObjectId": self.coin_object_id,
        }


PaymentPayload = Union[
    EvmPaymentPayload,
    SvmPaymentPayload,
    StellarPaymentPayload,
    NearPaymentPayload,
    AlgorandPaymentPayload,
    SuiPaymentPayload,
]


@dataclass
class PaymentResult:
    """Result of X402Client.create_payment"""
    success: bool
    payment_header: str
    headers: Dict[str, str]
    network: str
    payer: Optional[str] = None
    payload: Optional[PaymentPayload] = None
    error: Optional[str] = None
