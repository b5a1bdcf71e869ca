"""Tests for the sponsored SPL transfer builder."""

import base64

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from x402pay.builders.svm import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    KeypairWallet,
    SvmBuilder,
    derive_ata,
)
from x402pay.chains import DEFAULT_REGISTRY, FACILITATOR_ADDRESSES
from x402pay.payloads import PaymentInfo
from x402pay.utils.exceptions import X402Error, X402ErrorCode

SOLANA = DEFAULT_REGISTRY.get_chain_by_name("solana")
FOGO = DEFAULT_REGISTRY.get_chain_by_name("fogo")
FEE_PAYER = Pubkey.from_string(FACILITATOR_ADDRESSES["solana"])
BLOCKHASH = str(Hash.new_unique())


class RejectingWallet(KeypairWallet):
    async def sign_transaction(self, transaction):
        raise RuntimeError("User rejected the request")


def _results(ata_exists: bool):
    return {
        "getAccountInfo": {"context": {"slot": 1}, "value": {"lamports": 1} if ata_exists else None},
        "getLatestBlockhash": {"context": {"slot": 1}, "value": {"blockhash": BLOCKHASH, "lastValidBlockHeight": 9}},
    }


async def _sign(rpc_http, wallet, ata_exists=False, chain=SOLANA, calls=None, **info):
    builder = SvmBuilder(wallet, http_client=rpc_http(_results(ata_exists), calls))
    await builder.connect(chain.name)
    payload = await builder.sign_payment(PaymentInfo(**info), chain)
    return VersionedTransaction.from_bytes(base64.b64decode(payload.transaction))


class TestSvmTransaction:
    """Transaction layout and partial signing"""

    @pytest.mark.asyncio
    async def test_creates_destination_when_missing(self, rpc_http):
        payer = Keypair()
        recipient = Keypair().pubkey()
        calls = []
        tx = await _sign(rpc_http, KeypairWallet(payer), calls=calls, amount="1.5", recipient=str(recipient))

        message = tx.message
        keys = list(message.account_keys)
        programs = [keys[ix.program_id_index] for ix in message.instructions]
        assert programs == [
            COMPUTE_BUDGET_PROGRAM_ID,
            COMPUTE_BUDGET_PROGRAM_ID,
            ASSOCIATED_TOKEN_PROGRAM_ID,
            TOKEN_PROGRAM_ID,
        ]
        assert bytes(message.instructions[0].data) == bytes([2]) + (50_000).to_bytes(4, "little")
        assert bytes(message.instructions[1].data) == bytes([3]) + (1).to_bytes(8, "little")
        assert bytes(message.instructions[3].data) == bytes([12]) + (1_500_000).to_bytes(8, "little") + bytes([6])

        mint = Pubkey.from_string(SOLANA.usdc.address)
        assert calls[0]["method"] == "getAccountInfo"
        assert calls[0]["params"][0] == str(derive_ata(recipient, mint))
        assert str(message.recent_blockhash) == BLOCKHASH

    @pytest.mark.asyncio
    async def test_skips_existing_destination(self, rpc_http):
        payer = Keypair()
        tx = await _sign(rpc_http, KeypairWallet(payer), ata_exists=True, amount="2", recipient=str(Keypair().pubkey()))

        message = tx.message
        assert len(message.instructions) == 3
        assert bytes(message.instructions[0].data) == bytes([2]) + (20_000).to_bytes(4, "little")
        keys = list(message.account_keys)
        assert keys[message.instructions[2].program_id_index] == TOKEN_PROGRAM_ID

    @pytest.mark.asyncio
    async def test_fee_payer_slot_left_empty(self, rpc_http):
        payer = Keypair()
        tx = await _sign(rpc_http, KeypairWallet(payer), amount="1", recipient=str(Keypair().pubkey()))

        message = tx.message
        keys = list(message.account_keys)
        assert message.header.num_required_signatures == 2
        assert keys[0] == FEE_PAYER
        assert keys[1] == payer.pubkey()
        assert tx.signatures[0] == Signature.default()
        assert tx.signatures[1].verify(payer.pubkey(), to_bytes_versioned(message))

    @pytest.mark.asyncio
    async def test_explicit_facilitator_is_fee_payer(self, rpc_http):
        facilitator = Keypair().pubkey()
        tx = await _sign(
            rpc_http,
            KeypairWallet(Keypair()),
            amount="1",
            recipient=str(Keypair().pubkey()),
            facilitator=str(facilitator),
        )
        assert list(tx.message.account_keys)[0] == facilitator

    @pytest.mark.asyncio
    async def test_fogo_without_facilitator(self, rpc_http):
        with pytest.raises(X402Error) as exc:
            await _sign(rpc_http, KeypairWallet(Keypair()), chain=FOGO, amount="1", recipient=str(Keypair().pubkey()))
        assert exc.value.code is X402ErrorCode.INVALID_CONFIG

    @pytest.mark.asyncio
    async def test_invalid_recipient(self, rpc_http):
        with pytest.raises(X402Error) as exc:
            await _sign(rpc_http, KeypairWallet(Keypair()), amount="1", recipient="0x1234")
        assert exc.value.code is X402ErrorCode.INVALID_RECIPIENT

    @pytest.mark.asyncio
    async def test_recipient_wrong_key_length(self, rpc_http):
        calls = []
        with pytest.raises(X402Error) as exc:
            await _sign(rpc_http, KeypairWallet(Keypair()), calls=calls, amount="1", recipient="z" * 44)
        assert exc.value.code is X402ErrorCode.INVALID_RECIPIENT
        assert calls == []

    @pytest.mark.asyncio
    async def test_malformed_fee_payer(self, rpc_http):
        calls = []
        with pytest.raises(X402Error) as exc:
            await _sign(
                rpc_http, KeypairWallet(Keypair()), calls=calls,
                amount="1", recipient=str(Keypair().pubkey()), facilitator="z" * 44,
            )
        assert exc.value.code is X402ErrorCode.INVALID_CONFIG
        assert calls == []

    @pytest.mark.asyncio
    async def test_signature_rejected(self, rpc_http):
        with pytest.raises(X402Error) as exc:
            await _sign(rpc_http, RejectingWallet(Keypair()), amount="1", recipient=str(Keypair().pubkey()))
        assert exc.value.code is X402ErrorCode.SIGNATURE_REJECTED


@pytest.mark.asyncio
async def test_connect_returns_public_key(rpc_http) -> None:
    payer = Keypair()
    builder = SvmBuilder(KeypairWallet(payer), http_client=rpc_http({}))
    assert await builder.connect() == str(payer.pubkey())
    assert builder.is_connected


@pytest.mark.asyncio
async def test_balance(rpc_http) -> None:
    payer = Keypair()
    results = {"getTokenAccountBalance": {"context": {"slot": 1}, "value": {"amount": "2500000", "decimals": 6}}}
    builder = SvmBuilder(KeypairWallet(payer), http_client=rpc_http(results))
    await builder.connect()
    assert await builder.get_balance(SOLANA) == "2.50"


@pytest.mark.asyncio
async def test_balance_missing_account(rpc_http) -> None:
    builder = SvmBuilder(KeypairWallet(Keypair()), http_client=rpc_http({"getTokenAccountBalance": None}))
    await builder.connect()
    assert await builder.get_balance(SOLANA) == "0.00"
