"""Tests for the NEP-366 delegate action builder."""

import base64
import hashlib
import json

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from x402pay.builders.near import (
    FT_TRANSFER_GAS,
    NEP366_PREFIX,
    KeypairNearWallet,
    NearBuilder,
    delegate_action_hash,
    serialize_delegate_action,
    serialize_ft_transfer_action,
)
from x402pay.chains import DEFAULT_REGISTRY
from x402pay.codecs.base58 import b58encode
from x402pay.payloads import PaymentInfo
from x402pay.utils.exceptions import X402Error, X402ErrorCode

NEAR = DEFAULT_REGISTRY.get_chain_by_name("near")
ACCOUNT = "alice.near"


def _raw_public_key(private_key: ed25519.Ed25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def _near_results(public_key: bytes, calls=None):
    def query(params):
        if calls is not None:
            calls.append(params)
        kind = params["request_type"]
        if kind == "view_access_key_list":
            return {"keys": [{"public_key": "ed25519:" + b58encode(public_key), "access_key": {"nonce": 41}}]}
        if kind == "view_access_key":
            return {"nonce": 41, "permission": "FullAccess", "block_height": 4999}
        if kind == "call_function":
            return {"result": list(b'"1500000"'), "logs": []}
        raise AssertionError(kind)

    return {"query": query, "block": {"header": {"height": 5000}}}


class MessageOnlyWallet:
    """Wallet exposing sign_message over the NEP-366 hash."""

    def __init__(self, private_key):
        self.private_key = private_key
        self.messages = []

    async def sign_in(self):
        return None

    async def get_account_id(self):
        return ACCOUNT

    async def sign_message(self, message: bytes) -> bytes:
        self.messages.append(message)
        return self.private_key.sign(message)


class NoSigningWallet:
    async def sign_in(self):
        return None

    async def get_account_id(self):
        return ACCOUNT


class FailingWallet:
    def __init__(self, message):
        self.message = message

    async def sign_in(self):
        raise RuntimeError(self.message)

    async def get_account_id(self):
        return None


class TestSerialization:
    """Borsh layout of actions"""

    def test_nep366_prefix(self):
        assert NEP366_PREFIX == (2**30 + 366).to_bytes(4, "little")

    def test_ft_transfer_action(self):
        action = serialize_ft_transfer_action("bob.near", 1_000_000)
        args = b'{"receiver_id":"bob.near","amount":"1000000","memo":"x402 payment"}'
        expected = (
            bytes([2])
            + (11).to_bytes(4, "little") + b"ft_transfer"
            + len(args).to_bytes(4, "little") + args
            + FT_TRANSFER_GAS.to_bytes(8, "little")
            + (1).to_bytes(16, "little")
        )
        assert action == expected

    def test_ft_transfer_without_memo(self):
        action = serialize_ft_transfer_action("bob.near", 5, memo=None)
        assert b"memo" not in action

    def test_delegate_action_layout(self):
        public_key = bytes(range(32))
        delegate = serialize_delegate_action("a.near", "usdc.near", b"\x02ACTION", 7, 99, public_key)
        expected = (
            (6).to_bytes(4, "little") + b"a.near"
            + (9).to_bytes(4, "little") + b"usdc.near"
            + (1).to_bytes(4, "little") + b"\x02ACTION"
            + (7).to_bytes(8, "little")
            + (99).to_bytes(8, "little")
            + b"\x00" + public_key
        )
        assert delegate == expected

    def test_delegate_action_hash(self):
        assert delegate_action_hash(b"abc") == hashlib.sha256(NEP366_PREFIX + b"abc").digest()


class TestNearBuilder:
    """connect / sign_payment"""

    @pytest.mark.asyncio
    async def test_signed_delegate_action(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        public_key = _raw_public_key(private_key)
        builder = NearBuilder(KeypairNearWallet(ACCOUNT, private_key), http_client=rpc_http(_near_results(public_key)))
        assert await builder.connect() == ACCOUNT

        payload = await builder.sign_payment(PaymentInfo(amount="2", recipient="bob.near"), NEAR)
        signed = base64.b64decode(payload.signed_delegate_action)

        expected = serialize_delegate_action(
            ACCOUNT,
            NEAR.usdc.address,
            serialize_ft_transfer_action("bob.near", 2_000_000),
            42,
            6000,
            public_key,
        )
        delegate, key_type, signature = signed[:-65], signed[-65], signed[-64:]
        assert delegate == expected
        assert key_type == 0
        private_key.public_key().verify(signature, delegate_action_hash(delegate))

    @pytest.mark.asyncio
    async def test_sign_message_fallback(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        wallet = MessageOnlyWallet(private_key)
        builder = NearBuilder(wallet, http_client=rpc_http(_near_results(_raw_public_key(private_key))))
        await builder.connect()
        payload = await builder.sign_payment(PaymentInfo(amount="1", recipient="bob.near"), NEAR)

        signed = base64.b64decode(payload.signed_delegate_action)
        assert wallet.messages == [delegate_action_hash(signed[:-65])]

    @pytest.mark.asyncio
    async def test_wallet_without_signing(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        builder = NearBuilder(NoSigningWallet(), http_client=rpc_http(_near_results(_raw_public_key(private_key))))
        await builder.connect()
        with pytest.raises(X402Error) as exc:
            await builder.sign_payment(PaymentInfo(amount="1", recipient="bob.near"), NEAR)
        assert exc.value.code is X402ErrorCode.WALLET_NOT_SUPPORTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recipient", ["", "   "])
    async def test_empty_recipient_rejected_before_rpc(self, rpc_http, recipient):
        private_key = ed25519.Ed25519PrivateKey.generate()
        wallet = MessageOnlyWallet(private_key)
        calls = []
        builder = NearBuilder(wallet, http_client=rpc_http(_near_results(_raw_public_key(private_key), calls)))
        await builder.connect()
        calls.clear()

        with pytest.raises(X402Error) as exc:
            await builder.sign_payment(PaymentInfo(amount="1", recipient=recipient), NEAR)
        assert exc.value.code is X402ErrorCode.INVALID_RECIPIENT
        assert calls == []
        assert wallet.messages == []

    @pytest.mark.asyncio
    async def test_public_key_is_cached(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        calls = []
        builder = NearBuilder(
            KeypairNearWallet(ACCOUNT, private_key),
            http_client=rpc_http(_near_results(_raw_public_key(private_key), calls)),
        )
        await builder.connect()
        await builder.sign_payment(PaymentInfo(amount="1", recipient="bob.near"), NEAR)
        kinds = [c["request_type"] for c in calls]
        assert kinds == ["view_access_key_list", "view_access_key"]
        assert calls[1]["public_key"] == "ed25519:" + b58encode(_raw_public_key(private_key))
        assert all(c["finality"] == "final" for c in calls)

    @pytest.mark.asyncio
    async def test_connect_falls_through_failing_wallet(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        good = KeypairNearWallet(ACCOUNT, private_key)
        builder = NearBuilder(
            [FailingWallet("extension unavailable"), good],
            http_client=rpc_http(_near_results(_raw_public_key(private_key))),
        )
        assert await builder.connect() == ACCOUNT
        assert builder.wallet is good

    @pytest.mark.asyncio
    async def test_connect_rejection_stops(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        builder = NearBuilder(
            [FailingWallet("User rejected sign in"), KeypairNearWallet(ACCOUNT, private_key)],
            http_client=rpc_http(_near_results(_raw_public_key(private_key))),
        )
        with pytest.raises(X402Error) as exc:
            await builder.connect()
        assert exc.value.code is X402ErrorCode.WALLET_CONNECTION_REJECTED
        assert not builder.is_connected

    @pytest.mark.asyncio
    async def test_no_wallets(self):
        with pytest.raises(X402Error) as exc:
            await NearBuilder([]).connect()
        assert exc.value.code is X402ErrorCode.WALLET_NOT_FOUND

    @pytest.mark.asyncio
    async def test_no_access_keys(self, rpc_http):
        results = {"query": {"keys": []}}
        builder = NearBuilder(
            KeypairNearWallet(ACCOUNT, ed25519.Ed25519PrivateKey.generate()), http_client=rpc_http(results)
        )
        with pytest.raises(X402Error) as exc:
            await builder.connect()
        assert exc.value.code is X402ErrorCode.WALLET_CONNECTION_FAILED

    @pytest.mark.asyncio
    async def test_signature_from_other_key_fails_verification(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        builder = NearBuilder(
            KeypairNearWallet(ACCOUNT, private_key), http_client=rpc_http(_near_results(_raw_public_key(private_key)))
        )
        await builder.connect()
        payload = await builder.sign_payment(PaymentInfo(amount="1", recipient="bob.near"), NEAR)
        signed = base64.b64decode(payload.signed_delegate_action)
        other = ed25519.Ed25519PrivateKey.generate().public_key()
        with pytest.raises(InvalidSignature):
            other.verify(signed[-64:], delegate_action_hash(signed[:-65]))

    @pytest.mark.asyncio
    async def test_balance(self, rpc_http):
        private_key = ed25519.Ed25519PrivateKey.generate()
        calls = []
        builder = NearBuilder(
            KeypairNearWallet(ACCOUNT, private_key),
            http_client=rpc_http(_near_results(_raw_public_key(private_key), calls)),
        )
        await builder.connect()
        assert await builder.get_balance(NEAR) == "1.50"
        call = calls[-1]
        assert call["method_name"] == "ft_balance_of"
        assert json.loads(base64.b64decode(call["args_base64"])) == {"account_id": ACCOUNT}
