"""
NEAR Payment Builder (NEP-366 meta-transactions)

The payer signs a DelegateAction wrapping ft_transfer on the USDC contract;
the facilitator submits it and pays all gas.

Signed bytes:
    SignedDelegateAction = DelegateAction || u8 0 (ED25519) || signature[64]
    hash = sha256(u32le(2**30 + 366) || DelegateAction)
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Dict, Optional, Protocol, Sequence

from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from loguru import logger

from x402pay.builders.base import PaymentBuilder
from x402pay.chains import ChainConfig, NetworkType
from x402pay.codecs.base58 import b58decode, b58encode
from x402pay.codecs.borsh import BinaryWriter
from x402pay.payloads import NearPaymentPayload, PaymentInfo
from x402pay.utils.exceptions import X402Error, X402ErrorCode, wrap_wallet_error
from x402pay.utils.validation import format_units

NEP366_PREFIX = BinaryWriter().write_u32(2**30 + 366).to_bytes()

FT_TRANSFER_GAS = 30_000_000_000_000  # 30 TGas
FT_TRANSFER_DEPOSIT = 1  # 1 yoctoNEAR, required by NEP-141
MAX_BLOCK_HEIGHT_DELTA = 1000
PAYMENT_MEMO = "x402 payment"

_ACTION_FUNCTION_CALL = 2
_KEY_TYPE_ED25519 = 0
_ED25519_SIGNATURE_LEN = 64


class NearWallet(Protocol):
    """
    Wallet capability consumed by NearBuilder.

    Signing needs either sign_delegate_action(delegate_action: bytes) or
    sign_message(message: bytes); both return the raw 64-byte signature.
    """

    async def sign_in(self) -> Any: ...

    async def get_account_id(self) -> Optional[str]: ...


class KeypairNearWallet:
    """NearWallet backed by an in-process ed25519 key."""

    def __init__(self, account_id: str, private_key: ed25519.Ed25519PrivateKey):
        self.account_id = account_id
        self._private_key = private_key

    @property
    def public_key(self) -> str:
        raw = self._private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return "ed25519:" + b58encode(raw)

    async def sign_in(self) -> None:
        return None

    async def get_account_id(self) -> str:
        return self.account_id

    async def sign_delegate_action(self, delegate_action: bytes) -> bytes:
        return self._private_key.sign(delegate_action_hash(delegate_action))


def serialize_ft_transfer_action(receiver_id: str, amount: int, memo: Optional[str] = PAYMENT_MEMO) -> bytes:
    """NonDelegateAction::FunctionCall(ft_transfer)"""
    args: Dict[str, str] = {"receiver_id": receiver_id, "amount": str(amount)}
    if memo:
        args["memo"] = memo
    args_json = json.dumps(args, separators=(",", ":")).encode("utf-8")

    return (
        BinaryWriter()
        .write_u8(_ACTION_FUNCTION_CALL)
        .write_string("ft_transfer")
        .write_bytes(args_json)
        .write_u64(FT_TRANSFER_GAS)
        .write_u128(FT_TRANSFER_DEPOSIT)
        .to_bytes()
    )


def serialize_delegate_action(
    sender_id: str,
    receiver_id: str,
    action: bytes,
    nonce: int,
    max_block_height: int,
    public_key: bytes,
) -> bytes:
    return (
        BinaryWriter()
        .write_string(sender_id)
        .write_string(receiver_id)
        .write_u32(1)  # one action
        .write_fixed(action)
        .write_u64(nonce)
        .write_u64(max_block_height)
        .write_u8(_KEY_TYPE_ED25519)
        .write_fixed(public_key, 32)
        .to_bytes()
    )


def serialize_signed_delegate_action(delegate_action: bytes, signature: bytes) -> bytes:
    return (
        BinaryWriter()
        .write_fixed(delegate_action)
        .write_u8(_KEY_TYPE_ED25519)
        .write_fixed(signature, _ED25519_SIGNATURE_LEN)
        .to_bytes()
    )


def delegate_action_hash(delegate_action: bytes) -> bytes:
    return hashlib.sha256(NEP366_PREFIX + delegate_action).digest()


class NearBuilder(PaymentBuilder):
    """NEP-366 SignedDelegateAction builder"""

    network_type = NetworkType.NEAR
    recipient_key = "near"

    def __init__(self, wallet: NearWallet | Sequence[NearWallet], **kwargs: Any):
        wallets = list(wallet) if isinstance(wallet, (list, tuple)) else [wallet]
        super().__init__(wallets[0] if wallets else None, **kwargs)
        self.wallets = wallets
        self._public_keys: Dict[str, bytes] = {}

    async def connect(self, chain_name: Optional[str] = None) -> str:
        chain = self._resolve_chain(chain_name, "near")
        if not self.wallets:
            raise X402Error("No NEAR wallet available", X402ErrorCode.WALLET_NOT_FOUND)

        last_error: Optional[X402Error] = None
        for wallet in self.wallets:
            try:
                await wallet.sign_in()
                account_id = await wallet.get_account_id()
            except Exception as e:
                last_error = wrap_wallet_error(
                    e,
                    action="NEAR wallet connection",
                    rejected_code=X402ErrorCode.WALLET_CONNECTION_REJECTED,
                    fallback_code=X402ErrorCode.WALLET_CONNECTION_FAILED,
                )
                if last_error.code is X402ErrorCode.WALLET_CONNECTION_REJECTED:
                    raise last_error from e
                continue
            if account_id:
                await self._public_key(chain.rpc_url, account_id)
                self.wallet = wallet
                self._address = account_id
                logger.debug(f"NEAR wallet connected: {account_id}")
                return account_id

        raise last_error or X402Error(
            "Failed to get NEAR account ID", X402ErrorCode.WALLET_CONNECTION_REJECTED
        )

    async def disconnect(self) -> None:
        self._public_keys.clear()
        await super().disconnect()

    async def _query(self, rpc_url: str, params: Dict[str, Any]) -> Any:
        return await self._rpc(rpc_url).call("query", {"finality": "final", **params})

    async def _public_key(self, rpc_url: str, account_id: str) -> bytes:
        """First access key of the account, cached."""
        cached = self._public_keys.get(account_id)
        if cached is not None:
            return cached

        result = await self._query(
            rpc_url, {"request_type": "view_access_key_list", "account_id": account_id}
        )
        keys = (result or {}).get("keys") or []
        if not keys:
            raise X402Error(
                f"No access keys found for {account_id}", X402ErrorCode.WALLET_CONNECTION_FAILED
            )
        public_key = b58decode(keys[0]["public_key"].removeprefix("ed25519:"))
        self._public_keys[account_id] = public_key
        return public_key

    async def _access_key_nonce(self, rpc_url: str, account_id: str, public_key: bytes) -> int:
        result = await self._query(
            rpc_url,
            {
                "request_type": "view_access_key",
                "account_id": account_id,
                "public_key": "ed25519:" + b58encode(public_key),
            },
        )
        return int(result["nonce"])

    async def _block_height(self, rpc_url: str) -> int:
        result = await self._rpc(rpc_url).call("block", {"finality": "final"})
        return int(result["header"]["height"])

    async def _sign(self, delegate_action: bytes) -> bytes:
        wallet = self.wallet
        try:
            if hasattr(wallet, "sign_delegate_action"):
                signature = await wallet.sign_delegate_action(delegate_action)
            elif hasattr(wallet, "sign_message"):
                signature = await wallet.sign_message(delegate_action_hash(delegate_action))
            else:
                raise X402Error(
                    "Connected NEAR wallet cannot sign delegate actions",
                    X402ErrorCode.WALLET_NOT_SUPPORTED,
                )
        except Exception as e:
            raise wrap_wallet_error(e, action="NEAR delegate action signature") from e

        signature = bytes(signature)
        if len(signature) != _ED25519_SIGNATURE_LEN:
            raise X402Error(
                f"Invalid NEAR signature length: {len(signature)}", X402ErrorCode.PAYMENT_FAILED
            )
        return signature

    async def get_balance(self, chain: ChainConfig) -> str:
        account_id = self._require_connected()
        args = base64.b64encode(json.dumps({"account_id": account_id}).encode()).decode()
        try:
            result = await self._query(
                chain.rpc_url,
                {
                    "request_type": "call_function",
                    "account_id": chain.usdc.address,
                    "method_name": "ft_balance_of",
                    "args_base64": args,
                },
            )
            raw = bytes(result["result"]).decode("utf-8").strip('"')
            return format_units(int(raw), chain.usdc.decimals)
        except (X402Error, KeyError, TypeError, ValueError) as e:
            logger.warning(f"NEAR balance lookup failed: {e}")
            return "0.00"

    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> NearPaymentPayload:
        self._check_chain(chain)
        token = self._token(chain, info.token_type)
        recipient = self._recipient_for(info)
        amount = self._atomic_amount(info, token.decimals)
        account_id = self._require_connected()

        public_key = await self._public_key(chain.rpc_url, account_id)
        nonce = await self._access_key_nonce(chain.rpc_url, account_id, public_key) + 1
        max_block_height = await self._block_height(chain.rpc_url) + MAX_BLOCK_HEIGHT_DELTA

        action = serialize_ft_transfer_action(recipient, amount)
        delegate_action = serialize_delegate_action(
            account_id, token.address, action, nonce, max_block_height, public_key
        )
        logger.debug(f"NEAR delegate action: nonce={nonce} max_height={max_block_height}")

        signature = await self._sign(delegate_action)
        signed = serialize_signed_delegate_action(delegate_action, signature)
        return NearPaymentPayload(signed_delegate_action=base64.b64encode(signed).decode("ascii"))
