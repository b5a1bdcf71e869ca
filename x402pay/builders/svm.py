"""
SVM Payment Builder (Solana, Fogo)

Builds a fee-sponsored SPL TransferChecked transaction. The facilitator is
the fee payer; the connected wallet only partially signs as token owner.

Instruction order is fixed:
    0. ComputeBudget SetComputeUnitLimit
    1. ComputeBudget SetComputeUnitPrice
    2. (optional) CreateIdempotent destination ATA, paid by the payer
    3. TransferChecked
"""

from __future__ import annotations

import base64
from typing import Any, List, Optional, Protocol

from loguru import logger
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from x402pay.builders.base import PaymentBuilder
from x402pay.chains import ChainConfig, NetworkType, get_facilitator_address
from x402pay.codecs.borsh import BinaryWriter
from x402pay.payloads import PaymentInfo, SvmPaymentPayload
from x402pay.utils.exceptions import X402Error, X402ErrorCode, wrap_wallet_error
from x402pay.utils.validation import format_units

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

COMPUTE_UNIT_LIMIT = 20_000
COMPUTE_UNIT_LIMIT_WITH_ATA = 50_000
COMPUTE_UNIT_PRICE_MICROLAMPORTS = 1

_SET_COMPUTE_UNIT_LIMIT = 2
_SET_COMPUTE_UNIT_PRICE = 3
_TRANSFER_CHECKED = 12
_CREATE_IDEMPOTENT = 1


class SolanaWallet(Protocol):
    """Wallet capability consumed by SvmBuilder"""

    async def connect(self) -> str: ...

    async def sign_transaction(self, transaction: VersionedTransaction) -> VersionedTransaction: ...


class KeypairWallet:
    """SolanaWallet backed by an in-process Keypair; signs only its own slot."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())

    async def connect(self) -> str:
        return self.public_key

    async def sign_transaction(self, transaction: VersionedTransaction) -> VersionedTransaction:
        message = transaction.message
        signers = list(message.account_keys)[: message.header.num_required_signatures]
        index = signers.index(self.keypair.pubkey())
        signatures = list(transaction.signatures)
        signatures[index] = self.keypair.sign_message(to_bytes_versioned(message))
        return VersionedTransaction.populate(message, signatures)


def derive_ata(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Associated token account for (owner, mint) under the classic Token program."""
    ata, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return ata


def set_compute_unit_limit(units: int) -> Instruction:
    data = BinaryWriter().write_u8(_SET_COMPUTE_UNIT_LIMIT).write_u32(units).to_bytes()
    return Instruction(COMPUTE_BUDGET_PROGRAM_ID, data, [])


def set_compute_unit_price(micro_lamports: int) -> Instruction:
    data = BinaryWriter().write_u8(_SET_COMPUTE_UNIT_PRICE).write_u64(micro_lamports).to_bytes()
    return Instruction(COMPUTE_BUDGET_PROGRAM_ID, data, [])


def create_ata_idempotent(payer: Pubkey, ata: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(ata, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, bytes([_CREATE_IDEMPOTENT]), accounts)


def transfer_checked(
    source: Pubkey, mint: Pubkey, destination: Pubkey, owner: Pubkey, amount: int, decimals: int
) -> Instruction:
    data = (
        BinaryWriter()
        .write_u8(_TRANSFER_CHECKED)
        .write_u64(amount)
        .write_u8(decimals)
        .to_bytes()
    )
    accounts = [
        AccountMeta(source, is_signer=False, is_writable=True),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(destination, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(TOKEN_PROGRAM_ID, data, accounts)


def build_transfer_instructions(
    payer: Pubkey,
    recipient: Pubkey,
    mint: Pubkey,
    amount: int,
    decimals: int,
    create_destination: bool,
) -> List[Instruction]:
    source_ata = derive_ata(payer, mint)
    dest_ata = derive_ata(recipient, mint)
    limit = COMPUTE_UNIT_LIMIT_WITH_ATA if create_destination else COMPUTE_UNIT_LIMIT

    instructions = [
        set_compute_unit_limit(limit),
        set_compute_unit_price(COMPUTE_UNIT_PRICE_MICROLAMPORTS),
    ]
    if create_destination:
        # The payer funds rent so the relayer is never charged for it.
        instructions.append(create_ata_idempotent(payer, dest_ata, recipient, mint))
    instructions.append(transfer_checked(source_ata, mint, dest_ata, payer, amount, decimals))
    return instructions


class SvmBuilder(PaymentBuilder):
    """Sponsored SPL transfer builder for Solana and Fogo"""

    network_type = NetworkType.SVM
    recipient_key = "solana"

    async def connect(self, chain_name: Optional[str] = None) -> str:
        self._resolve_chain(chain_name, "solana")
        try:
            address = await self.wallet.connect()
        except Exception as e:
            raise wrap_wallet_error(
                e,
                action="Solana wallet connection",
                rejected_code=X402ErrorCode.WALLET_CONNECTION_REJECTED,
                fallback_code=X402ErrorCode.WALLET_CONNECTION_FAILED,
            ) from e
        self._address = str(address)
        logger.debug(f"SVM wallet connected: {self._address}")
        return self._address

    def _fee_payer(self, info: PaymentInfo, chain: ChainConfig) -> Pubkey:
        address = info.facilitator or get_facilitator_address(chain.name, self.network_type)
        if not address:
            raise X402Error(
                f"No facilitator fee payer configured for {chain.name}",
                X402ErrorCode.INVALID_CONFIG,
            )
        try:
            return Pubkey.from_string(address)
        except ValueError as e:
            raise X402Error(
                f"Invalid fee payer address for {chain.name}: {address}",
                X402ErrorCode.INVALID_CONFIG,
                cause=e,
            ) from e

    async def _account_exists(self, chain: ChainConfig, account: Pubkey) -> bool:
        result = await self._rpc(chain.rpc_url).call(
            "getAccountInfo", [str(account), {"encoding": "base64"}]
        )
        return bool(result and result.get("value"))

    async def _latest_blockhash(self, chain: ChainConfig) -> Hash:
        result = await self._rpc(chain.rpc_url).call(
            "getLatestBlockhash", [{"commitment": "finalized"}]
        )
        return Hash.from_string(result["value"]["blockhash"])

    async def get_balance(self, chain: ChainConfig) -> str:
        address = self._require_connected()
        self._check_chain(chain)
        ata = derive_ata(Pubkey.from_string(address), Pubkey.from_string(chain.usdc.address))
        try:
            result = await self._rpc(chain.rpc_url).call("getTokenAccountBalance", [str(ata)])
            return format_units(int(result["value"]["amount"]), chain.usdc.decimals)
        except (X402Error, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Balance lookup on {chain.name} failed: {e}")
            return "0.00"

    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> SvmPaymentPayload:
        self._check_chain(chain)
        token = self._token(chain, info.token_type)
        recipient = Pubkey.from_string(self._recipient_for(info))
        amount = self._atomic_amount(info, token.decimals)
        payer = Pubkey.from_string(self._require_connected())
        fee_payer = self._fee_payer(info, chain)
        mint = Pubkey.from_string(token.address)

        dest_ata = derive_ata(recipient, mint)
        create_destination = not await self._account_exists(chain, dest_ata)
        logger.debug(
            f"SVM transfer {amount} on {chain.name}; destination ATA {dest_ata} "
            f"{'will be created' if create_destination else 'exists'}"
        )

        instructions = build_transfer_instructions(
            payer, recipient, mint, amount, token.decimals, create_destination
        )
        blockhash = await self._latest_blockhash(chain)
        message = MessageV0.try_compile(fee_payer, instructions, [], blockhash)
        unsigned = VersionedTransaction.populate(
            message, [Signature.default()] * message.header.num_required_signatures
        )

        try:
            signed = await self.wallet.sign_transaction(unsigned)
        except Exception as e:
            raise wrap_wallet_error(e, action="Solana transaction signature") from e

        # Fee payer slot stays empty until the facilitator co-signs.
        encoded = base64.b64encode(bytes(signed)).decode("ascii")
        return SvmPaymentPayload(transaction=encoded)
