"""
Algorand Payment Builder

Atomic group with fee pooling:

    Txn#0  relayer -> relayer, 0 ALGO, flat fee covering both transactions
    Txn#1  payer -> recipient, ASA transfer, fee 0

Only Txn#1 is signed here; Txn#0 travels unsigned and the facilitator signs
it before submission.
"""

from __future__ import annotations

import asyncio
import base64
import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from algosdk import account, constants, encoding, transaction
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod
from loguru import logger

from x402pay.builders.base import PaymentBuilder
from x402pay.chains import ChainConfig, NetworkType, get_facilitator_address
from x402pay.payloads import AlgorandPaymentPayload, PaymentInfo
from x402pay.utils.exceptions import X402Error, X402ErrorCode, wrap_wallet_error
from x402pay.utils.validation import format_units, validate_recipient

PAYMENT_NOTE = b"x402 payment"
PAYMENT_INDEX = 1


# -- signed blob normalization ---------------------------------------------

@dataclass(frozen=True)
class RawSignedTxn:
    data: bytes


@dataclass(frozen=True)
class Base64SignedTxn:
    value: str


@dataclass(frozen=True)
class UrlSafeBase64SignedTxn:
    value: str


SignedTxnBlob = Union[RawSignedTxn, Base64SignedTxn, UrlSafeBase64SignedTxn]

_URL_SAFE_MARKERS = frozenset("-_")


def classify_signed_txn(value: Union[bytes, bytearray, str, Sequence[int]]) -> SignedTxnBlob:
    """Tag a wallet's signed result with its encoding."""
    if isinstance(value, (bytes, bytearray)):
        return RawSignedTxn(bytes(value))
    if isinstance(value, str):
        if _URL_SAFE_MARKERS.intersection(value):
            return UrlSafeBase64SignedTxn(value)
        return Base64SignedTxn(value)
    if isinstance(value, (list, tuple)):
        return RawSignedTxn(bytes(value))
    raise TypeError(f"Unsupported signed transaction type: {type(value).__name__}")


def decode_signed_txn(blob: SignedTxnBlob) -> bytes:
    """Normalize any SignedTxnBlob to raw msgpack bytes."""
    if isinstance(blob, RawSignedTxn):
        return blob.data
    if isinstance(blob, Base64SignedTxn):
        return base64.b64decode(blob.value, validate=True)
    if isinstance(blob, UrlSafeBase64SignedTxn):
        padded = blob.value + "=" * (-len(blob.value) % 4)
        return base64.urlsafe_b64decode(padded)
    raise TypeError(f"Unknown signed transaction blob: {blob!r}")


# -- wallets ---------------------------------------------------------------

class AlgorandWallet(Protocol):
    """ARC-0001 style wallet capability"""

    async def connect(self) -> List[str]: ...

    async def sign_txns(self, txns: List[Dict[str, Any]]) -> List[Any]:
        """Sign base64 msgpack txns; entries with signers=[] come back as None."""
        ...


class KeyAlgorandWallet:
    """AlgorandWallet backed by an in-process private key."""

    def __init__(self, private_key: str):
        self.private_key = private_key
        self.address = account.address_from_private_key(private_key)

    @classmethod
    def generate(cls) -> KeyAlgorandWallet:
        private_key, _ = account.generate_account()
        return cls(private_key)

    async def connect(self) -> List[str]:
        return [self.address]

    async def sign_txns(self, txns: List[Dict[str, Any]]) -> List[Optional[bytes]]:
        signed: List[Optional[bytes]] = []
        for entry in txns:
            if entry.get("signers") == []:
                signed.append(None)
                continue
            txn = encoding.msgpack_decode(entry["txn"])
            signed.append(base64.b64decode(encoding.msgpack_encode(txn.sign(self.private_key))))
        return signed


# -- group assembly --------------------------------------------------------

def build_payment_group(
    params: transaction.SuggestedParams,
    relayer: str,
    payer: str,
    recipient: str,
    amount: int,
    asset_id: int,
) -> Tuple[transaction.PaymentTxn, transaction.AssetTransferTxn]:
    """Fee-pooled [relayer self-payment, ASA transfer] sharing one group id."""
    min_fee = getattr(params, "min_fee", None) or constants.MIN_TXN_FEE

    fee_params = copy.copy(params)
    fee_params.flat_fee = True
    fee_params.fee = 2 * min_fee
    fee_txn = transaction.PaymentTxn(relayer, fee_params, relayer, 0)

    transfer_params = copy.copy(params)
    transfer_params.flat_fee = True
    transfer_params.fee = 0
    transfer_txn = transaction.AssetTransferTxn(
        payer, transfer_params, recipient, amount, asset_id, note=PAYMENT_NOTE
    )

    transaction.assign_group_id([fee_txn, transfer_txn])
    return fee_txn, transfer_txn


AlgodFactory = Callable[[str], Any]


def _default_algod(url: str) -> algod.AlgodClient:
    # Public algonode endpoints need no token
    return algod.AlgodClient("", url)


class AlgorandBuilder(PaymentBuilder):
    """Sponsored ASA transfer builder"""

    network_type = NetworkType.ALGORAND
    recipient_key = "algorand"

    def __init__(
        self,
        wallet: AlgorandWallet,
        *,
        fallback_wallet: Optional[AlgorandWallet] = None,
        algod_factory: Optional[AlgodFactory] = None,
        **kwargs: Any,
    ):
        super().__init__(wallet, **kwargs)
        self.preferred_wallet = wallet
        self.fallback_wallet = fallback_wallet
        self._algod_factory = algod_factory or _default_algod
        self._algod_clients: Dict[str, Any] = {}

    def _algod(self, chain: ChainConfig) -> Any:
        client = self._algod_clients.get(chain.rpc_url)
        if client is None:
            logger.debug(f"Creating algod client for {chain.rpc_url}")
            client = self._algod_factory(chain.rpc_url)
            self._algod_clients[chain.rpc_url] = client
        return client

    async def _connect_wallet(self, wallet: AlgorandWallet) -> str:
        accounts = await wallet.connect()
        if not accounts:
            raise X402Error("No Algorand accounts returned", X402ErrorCode.WALLET_CONNECTION_FAILED)
        return accounts[0]

    async def connect(self, chain_name: Optional[str] = None) -> str:
        self._resolve_chain(chain_name, "algorand")
        candidates = [w for w in (self.preferred_wallet, self.fallback_wallet) if w is not None]
        if not candidates:
            raise X402Error("No Algorand wallet available", X402ErrorCode.WALLET_NOT_FOUND)

        last_exc: Optional[BaseException] = None
        for wallet in candidates:
            try:
                address = await self._connect_wallet(wallet)
            except Exception as e:
                logger.warning(f"Algorand wallet {type(wallet).__name__} failed to connect: {e}")
                last_exc = e
                continue
            self.wallet = wallet
            self._address = validate_recipient(address, NetworkType.ALGORAND)
            logger.debug(f"Algorand wallet connected: {self._address}")
            return self._address

        raise wrap_wallet_error(
            last_exc,
            action="Algorand wallet connection",
            rejected_code=X402ErrorCode.WALLET_CONNECTION_REJECTED,
            fallback_code=X402ErrorCode.WALLET_CONNECTION_FAILED,
        ) from last_exc

    async def disconnect(self) -> None:
        self._algod_clients.clear()
        await super().disconnect()

    def _relayer(self, info: PaymentInfo, chain: ChainConfig) -> str:
        address = info.facilitator or get_facilitator_address(chain.name, self.network_type)
        if not address:
            raise X402Error(
                f"No facilitator fee payer configured for {chain.name}",
                X402ErrorCode.INVALID_CONFIG,
            )
        try:
            return validate_recipient(address, NetworkType.ALGORAND)
        except X402Error as e:
            raise X402Error(
                f"Invalid Algorand relayer address for {chain.name}: {address}",
                X402ErrorCode.INVALID_CONFIG,
                cause=e,
            ) from e

    async def get_balance(self, chain: ChainConfig) -> str:
        address = self._require_connected()
        client = self._algod(chain)
        try:
            info = await asyncio.to_thread(client.account_asset_info, address, int(chain.usdc.address))
            amount = int(info["asset-holding"]["amount"])
            return format_units(amount, chain.usdc.decimals)
        except (AlgodHTTPError, OSError, KeyError, ValueError) as e:
            # Not opted in, unknown account or algod failure
            logger.warning(f"Algorand balance lookup failed: {e}")
            return "0.00"

    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> AlgorandPaymentPayload:
        self._check_chain(chain)
        token = self._token(chain, info.token_type)
        recipient = self._recipient_for(info)
        amount = self._atomic_amount(info, token.decimals)
        payer = self._require_connected()
        relayer = self._relayer(info, chain)

        try:
            params = await asyncio.to_thread(self._algod(chain).suggested_params)
        except (AlgodHTTPError, OSError) as e:
            raise X402Error(
                f"Failed to fetch Algorand suggested params: {e}",
                X402ErrorCode.NETWORK_ERROR,
                cause=e,
            ) from e

        fee_txn, transfer_txn = build_payment_group(
            params, relayer, payer, recipient, amount, int(token.address)
        )
        fee_txn_b64 = encoding.msgpack_encode(fee_txn)
        logger.debug(f"Algorand group built: fee {fee_txn.fee}, ASA {token.address} amount {amount}")

        try:
            signed = await self.wallet.sign_txns([
                {"txn": fee_txn_b64, "signers": []},
                {"txn": encoding.msgpack_encode(transfer_txn)},
            ])
        except Exception as e:
            raise wrap_wallet_error(e, action="Algorand transaction signature") from e

        if not signed or len(signed) <= PAYMENT_INDEX or signed[PAYMENT_INDEX] is None:
            raise X402Error("No signed transaction returned", X402ErrorCode.SIGNATURE_REJECTED)

        try:
            signed_bytes = decode_signed_txn(classify_signed_txn(signed[PAYMENT_INDEX]))
        except (TypeError, ValueError) as e:
            raise X402Error(
                f"Unreadable signed transaction: {e}", X402ErrorCode.PAYMENT_FAILED, cause=e
            ) from e

        return AlgorandPaymentPayload(
            payment_group=[fee_txn_b64, base64.b64encode(signed_bytes).decode("ascii")],
            payment_index=PAYMENT_INDEX,
        )
