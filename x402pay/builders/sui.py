"""
Sui Payment Builder

Sponsored programmable transaction: the payer is the sender, the facilitator
is the gas owner, so the payer never spends SUI.

TransactionData is BCS encoded by hand:

    TransactionData::V1 {
        kind: ProgrammableTransaction { inputs, commands },
        sender, gas_data { payment, owner, price, budget }, expiration: None
    }
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from loguru import logger

from x402pay.builders.base import PaymentBuilder
from x402pay.chains import ChainConfig, NetworkType, get_facilitator_address
from x402pay.codecs.base58 import b58decode
from x402pay.codecs.borsh import BcsWriter
from x402pay.payloads import PaymentInfo, SuiPaymentPayload
from x402pay.utils.exceptions import X402Error, X402ErrorCode, wrap_wallet_error
from x402pay.utils.validation import format_units, validate_recipient

SUI_COIN_TYPE = "0x2::sui::SUI"
GAS_BUDGET = 10_000_000  # MIST
MAX_GAS_COINS = 16

# Intent prefix for TransactionData: scope 0, version 0, app Sui
TRANSACTION_INTENT = bytes([0, 0, 0])
ED25519_FLAG = 0x00


@dataclass(frozen=True)
class ObjectRef:
    object_id: str
    version: int
    digest: str  # base58

    @classmethod
    def from_coin(cls, coin: Dict[str, Any]) -> ObjectRef:
        return cls(coin["coinObjectId"], int(coin["version"]), coin["digest"])


@dataclass(frozen=True)
class CoinInfo:
    ref: ObjectRef
    balance: int


# Command arguments
@dataclass(frozen=True)
class Input:
    index: int


@dataclass(frozen=True)
class NestedResult:
    command: int
    result: int


Argument = Union[Input, NestedResult]


class SuiWallet(Protocol):
    """
    Wallet-standard capability.

    Signing needs sign_transaction(transaction=, account=, chain=) returning
    {signature, bytes}, or the older sign_transaction_block(transaction_block=,
    account=, chain=) returning {signature, transactionBlockBytes}.
    """

    async def get_accounts(self) -> List[str]: ...


class KeypairSuiWallet:
    """SuiWallet backed by an in-process ed25519 key."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = "0x" + hashlib.blake2b(bytes([ED25519_FLAG]) + self._public_key, digest_size=32).hexdigest()

    async def get_accounts(self) -> List[str]:
        return [self.address]

    async def sign_transaction(self, *, transaction: bytes, account: str, chain: str) -> Dict[str, str]:
        digest = hashlib.blake2b(TRANSACTION_INTENT + transaction, digest_size=32).digest()
        signature = bytes([ED25519_FLAG]) + self._private_key.sign(digest) + self._public_key
        return {
            "signature": base64.b64encode(signature).decode("ascii"),
            "bytes": base64.b64encode(transaction).decode("ascii"),
        }


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address.removeprefix("0x").zfill(64))


def _write_object_ref(w: BcsWriter, ref: ObjectRef) -> None:
    w.write_fixed(_address_bytes(ref.object_id), 32)
    w.write_u64(ref.version)
    w.write_bytes(b58decode(ref.digest))


def _write_argument(w: BcsWriter, arg: Argument) -> None:
    if isinstance(arg, Input):
        w.write_variant(1).write_u16(arg.index)
    elif isinstance(arg, NestedResult):
        w.write_variant(3).write_u16(arg.command).write_u16(arg.result)
    else:
        raise TypeError(f"Unknown argument: {arg!r}")


def _write_arguments(w: BcsWriter, args: Sequence[Argument]) -> None:
    w.write_length(len(args))
    for arg in args:
        _write_argument(w, arg)


def select_coins(coins: Sequence[CoinInfo], amount: int) -> List[CoinInfo]:
    """One sufficient coin when possible, otherwise every coin to be merged."""
    total = sum(c.balance for c in coins)
    if total < amount:
        raise X402Error(
            f"Insufficient USDC balance. Have: {total}, Need: {amount}",
            X402ErrorCode.INSUFFICIENT_BALANCE,
            details={"have": str(total), "need": str(amount)},
        )
    for coin in coins:
        if coin.balance >= amount:
            return [coin]
    return list(coins)


def build_transfer_transaction(
    sender: str,
    recipient: str,
    amount: int,
    coins: Sequence[CoinInfo],
    gas_owner: str,
    gas_payment: Sequence[ObjectRef],
    gas_price: int,
    gas_budget: int = GAS_BUDGET,
) -> bytes:
    """BCS TransactionData splitting amount from coins and sending it to recipient."""
    if not coins:
        raise ValueError("At least one coin is required")

    w = BcsWriter()
    w.write_variant(0)  # TransactionData::V1
    w.write_variant(0)  # TransactionKind::ProgrammableTransaction

    # inputs: coins..., Pure(amount), Pure(recipient)
    n = len(coins)
    w.write_length(n + 2)
    for coin in coins:
        w.write_variant(1).write_variant(0)  # CallArg::Object(ImmOrOwnedObject)
        _write_object_ref(w, coin.ref)
    w.write_variant(0).write_bytes(BcsWriter().write_u64(amount).to_bytes())
    w.write_variant(0).write_bytes(_address_bytes(recipient))

    amount_input, recipient_input = Input(n), Input(n + 1)
    commands: List[Tuple[int, Any]] = []
    if n > 1:
        commands.append((3, (Input(0), [Input(i) for i in range(1, n)])))  # MergeCoins
    split_index = len(commands)
    commands.append((2, (Input(0), [amount_input])))  # SplitCoins
    commands.append((1, ([NestedResult(split_index, 0)], recipient_input)))  # TransferObjects

    w.write_length(len(commands))
    for tag, (first, second) in commands:
        w.write_variant(tag)
        if tag == 1:
            _write_arguments(w, first)
            _write_argument(w, second)
        else:
            _write_argument(w, first)
            _write_arguments(w, second)

    w.write_fixed(_address_bytes(sender), 32)

    # GasData
    w.write_length(len(gas_payment))
    for ref in gas_payment:
        _write_object_ref(w, ref)
    w.write_fixed(_address_bytes(gas_owner), 32)
    w.write_u64(gas_price)
    w.write_u64(gas_budget)

    w.write_variant(0)  # TransactionExpiration::None
    return w.to_bytes()


class SuiBuilder(PaymentBuilder):
    """Sponsored transfer builder for Sui"""

    network_type = NetworkType.SUI
    recipient_key = "sui"

    async def connect(self, chain_name: Optional[str] = None) -> str:
        self._resolve_chain(chain_name, "sui")
        try:
            if hasattr(self.wallet, "request_permissions"):
                await self.wallet.request_permissions()
            accounts = await self.wallet.get_accounts()
        except Exception as e:
            raise wrap_wallet_error(
                e,
                action="Sui wallet connection",
                rejected_code=X402ErrorCode.WALLET_CONNECTION_REJECTED,
                fallback_code=X402ErrorCode.WALLET_CONNECTION_FAILED,
            ) from e
        if not accounts:
            raise X402Error("No Sui accounts found", X402ErrorCode.WALLET_CONNECTION_FAILED)
        self._address = accounts[0]
        logger.debug(f"Sui wallet connected: {self._address}")
        return self._address

    def _gas_owner(self, info: PaymentInfo, chain: ChainConfig) -> str:
        address = info.facilitator or get_facilitator_address(chain.name, self.network_type)
        if not address:
            raise X402Error("Facilitator address not provided", X402ErrorCode.INVALID_CONFIG)
        return validate_recipient(address, NetworkType.SUI)

    async def _get_coins(self, chain: ChainConfig, owner: str, coin_type: str, limit: Optional[int] = None) -> List[CoinInfo]:
        coins: List[CoinInfo] = []
        cursor = None
        while True:
            page = await self._rpc(chain.rpc_url).call("suix_getCoins", [owner, coin_type, cursor, None])
            for coin in page.get("data") or []:
                coins.append(CoinInfo(ObjectRef.from_coin(coin), int(coin["balance"])))
            if limit is not None and len(coins) >= limit:
                return coins[:limit]
            if not page.get("hasNextPage"):
                return coins
            cursor = page.get("nextCursor")

    async def get_balance(self, chain: ChainConfig) -> str:
        address = self._require_connected()
        try:
            result = await self._rpc(chain.rpc_url).call("suix_getBalance", [address, chain.usdc.address])
            return format_units(int(result["totalBalance"]), chain.usdc.decimals)
        except (X402Error, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Sui balance lookup failed: {e}")
            return "0.00"

    @staticmethod
    def _chain_id(chain: ChainConfig) -> str:
        return "sui:testnet" if chain.name == "sui-testnet" else "sui:mainnet"

    async def _sign(self, tx_bytes: bytes, address: str, chain: ChainConfig) -> Tuple[str, str]:
        wallet = self.wallet
        chain_id = self._chain_id(chain)
        try:
            if hasattr(wallet, "sign_transaction"):
                result = await wallet.sign_transaction(transaction=tx_bytes, account=address, chain=chain_id)
                signed_bytes = result.get("bytes")
            elif hasattr(wallet, "sign_transaction_block"):
                result = await wallet.sign_transaction_block(
                    transaction_block=tx_bytes, account=address, chain=chain_id
                )
                signed_bytes = result.get("transactionBlockBytes")
            else:
                raise X402Error(
                    "Wallet does not support transaction signing", X402ErrorCode.WALLET_NOT_SUPPORTED
                )
        except Exception as e:
            raise wrap_wallet_error(e, action="Sui transaction signature") from e

        if not result.get("signature"):
            raise X402Error("Wallet returned no signature", X402ErrorCode.PAYMENT_FAILED)
        return result["signature"], signed_bytes or base64.b64encode(tx_bytes).decode("ascii")

    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> SuiPaymentPayload:
        self._check_chain(chain)
        token = self._token(chain, info.token_type)
        recipient = self._recipient_for(info)
        amount = self._atomic_amount(info, token.decimals)
        address = self._require_connected()
        gas_owner = self._gas_owner(info, chain)

        coins = await self._get_coins(chain, address, token.address)
        selected = select_coins(coins, amount)

        gas_coins = await self._get_coins(chain, gas_owner, SUI_COIN_TYPE, limit=MAX_GAS_COINS)
        if not gas_coins:
            raise X402Error(f"Sponsor {gas_owner} has no gas coins", X402ErrorCode.PAYMENT_FAILED)
        gas_price = int(await self._rpc(chain.rpc_url).call("suix_getReferenceGasPrice", []))

        tx_bytes = build_transfer_transaction(
            sender=address,
            recipient=recipient,
            amount=amount,
            coins=selected,
            gas_owner=gas_owner,
            gas_payment=[c.ref for c in gas_coins],
            gas_price=gas_price,
        )
        logger.debug(f"Sui transfer of {amount} using {len(selected)} coin(s), gas owner {gas_owner}")

        signature, transaction_bytes = await self._sign(tx_bytes, address, chain)
        return SuiPaymentPayload(
            transaction_bytes=transaction_bytes,
            sender_signature=signature,
            from_address=address,
            to=recipient,
            amount=str(amount),
            coin_object_id=selected[0].ref.object_id,
        )
