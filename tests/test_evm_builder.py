"""Tests for the EVM (ERC-3009) builder."""

import json
import time
from typing import Any, List, Optional, Sequence

import pytest

from x402pay.builders.eip712 import EIP712Signer, recover_address, transfer_with_authorization_typed_data
from x402pay.builders.evm import EvmBuilder, LocalEvmAccount, encode_balance_of, split_signature
from x402pay.chains import DEFAULT_REGISTRY
from x402pay.envelope import decode_x402_header
from x402pay.payloads import PaymentInfo
from x402pay.utils.exceptions import X402Error, X402ErrorCode

RECIPIENT = "0x209693Bc6afc0C5328bA36FaF03C514EF312287C"
BASE = DEFAULT_REGISTRY.get_chain_by_name("base")
POLYGON = DEFAULT_REGISTRY.get_chain_by_name("polygon")


class ProviderError(Exception):
    def __init__(self, message: str, code: int):
        super().__init__(message)
        self.code = code


class RecordingProvider:
    """EIP-1193 provider that records calls and delegates to a local account."""

    def __init__(self, account: LocalEvmAccount, fail: Optional[dict] = None):
        self.account = account
        self.fail = fail or {}
        self.calls: List[str] = []

    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        self.calls.append(method)
        if method in self.fail:
            raise self.fail[method]
        if method == "wallet_addEthereumChain":
            return None
        return await self.account.request(method, params)


async def _connected(provider, **kwargs) -> EvmBuilder:
    builder = EvmBuilder(provider, **kwargs)
    await builder.connect("base")
    return builder


class TestSignatureHelpers:
    """split_signature / encode_balance_of"""

    def test_split(self):
        sig = "0x" + "11" * 32 + "22" * 32 + "1b"
        assert split_signature(sig) == (27, "0x" + "11" * 32, "0x" + "22" * 32)

    def test_split_normalizes_v(self):
        v, _, _ = split_signature("0x" + "00" * 64 + "01")
        assert v == 28

    def test_split_bad_length(self):
        with pytest.raises(X402Error, match="Invalid signature length") as exc:
            split_signature("0x1234")
        assert exc.value.code is X402ErrorCode.PAYMENT_FAILED

    def test_balance_of_calldata(self):
        data = encode_balance_of(RECIPIENT)
        assert data.startswith("0x70a08231")
        assert data.endswith(RECIPIENT[2:].lower())
        assert len(data) == 10 + 64


class TestConnect:
    """connect / switch_chain"""

    @pytest.mark.asyncio
    async def test_connect_switches_chain(self, evm_account):
        provider = RecordingProvider(evm_account)
        builder = await _connected(provider)
        assert builder.get_address() == evm_account.address
        assert builder.current_chain is BASE
        assert provider.calls == ["eth_requestAccounts", "wallet_switchEthereumChain"]

    @pytest.mark.asyncio
    async def test_connect_rejected(self, evm_account):
        provider = RecordingProvider(evm_account, fail={"eth_requestAccounts": ProviderError("User rejected", 4001)})
        with pytest.raises(X402Error) as exc:
            await _connected(provider)
        assert exc.value.code is X402ErrorCode.WALLET_CONNECTION_REJECTED

    @pytest.mark.asyncio
    async def test_connect_non_evm_chain(self, evm_account):
        with pytest.raises(X402Error) as exc:
            await EvmBuilder(evm_account).connect("solana")
        assert exc.value.code is X402ErrorCode.CHAIN_NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_unknown_chain_is_added(self, evm_account):
        provider = RecordingProvider(
            evm_account, fail={"wallet_switchEthereumChain": ProviderError("Unrecognized chain", 4902)}
        )
        builder = await _connected(provider)
        assert "wallet_addEthereumChain" in provider.calls
        assert builder.current_chain is BASE

    @pytest.mark.asyncio
    async def test_switch_rejected(self, evm_account):
        provider = RecordingProvider(evm_account)
        builder = await _connected(provider)
        provider.fail["wallet_switchEthereumChain"] = ProviderError("User rejected", 4001)
        with pytest.raises(X402Error) as exc:
            await builder.switch_chain(POLYGON)
        assert exc.value.code is X402ErrorCode.CHAIN_SWITCH_REJECTED
        assert builder.current_chain is BASE

    @pytest.mark.asyncio
    async def test_switch_updates_wallet_chain(self, evm_account):
        builder = await _connected(evm_account)
        await builder.switch_chain(POLYGON)
        assert evm_account.chain_id == 137
        assert builder.current_chain is POLYGON


class TestSignPayment:
    """ERC-3009 authorization signing"""

    @pytest.mark.asyncio
    async def test_signature_recovers_to_payer(self, evm_account):
        builder = await _connected(evm_account)
        before = int(time.time())
        payload = await builder.sign_payment(PaymentInfo(amount="10.00", recipient=RECIPIENT), BASE)

        assert payload.from_address == evm_account.address
        assert payload.to == RECIPIENT
        assert payload.value == "10000000"
        assert payload.valid_after == 0
        assert before + 300 <= payload.valid_before <= int(time.time()) + 300
        assert len(payload.nonce) == 66
        assert payload.token == BASE.usdc.address

        typed = transfer_with_authorization_typed_data(
            token_address=BASE.usdc.address,
            token_name=BASE.usdc.name,
            token_version=BASE.usdc.version,
            chain_id=8453,
            from_address=payload.from_address,
            to_address=payload.to,
            value=int(payload.value),
            valid_after=payload.valid_after,
            valid_before=payload.valid_before,
            nonce=bytes.fromhex(payload.nonce[2:]),
        )
        digest = EIP712Signer.digest_from_json(typed)
        assert recover_address(digest, payload.v, int(payload.r, 16), int(payload.s, 16)) == evm_account.address

    @pytest.mark.asyncio
    async def test_nonces_are_unique(self, evm_account):
        builder = await _connected(evm_account)
        info = PaymentInfo(amount="1", recipient=RECIPIENT)
        first = await builder.sign_payment(info, BASE)
        second = await builder.sign_payment(info, BASE)
        assert first.nonce != second.nonce

    @pytest.mark.asyncio
    async def test_window_follows_chain(self, evm_account):
        builder = await _connected(evm_account)
        info = PaymentInfo(amount="1", recipient=RECIPIENT)

        on_base = await builder.sign_payment(info, BASE)
        assert abs(on_base.valid_before - (int(time.time()) + 300)) <= 2
        assert on_base.valid_after == 0

        await builder.switch_chain(POLYGON)
        on_polygon = await builder.sign_payment(info, POLYGON)
        assert abs(on_polygon.valid_before - (int(time.time()) + 60)) <= 2

    @pytest.mark.asyncio
    async def test_network_specific_recipient_preferred(self, evm_account):
        builder = await _connected(evm_account)
        info = PaymentInfo(amount="1", recipient="not-an-address", recipients={"evm": RECIPIENT})
        payload = await builder.sign_payment(info, BASE)
        assert payload.to == RECIPIENT

    @pytest.mark.asyncio
    async def test_wire_shape(self, evm_account):
        builder = await _connected(evm_account)
        payload = await builder.sign_payment(PaymentInfo(amount="0.5", recipient=RECIPIENT), BASE)
        wire = payload.to_dict()
        assert wire["signature"] == payload.signature
        assert len(wire["signature"]) == 132
        assert wire["authorization"] == {
            "from": payload.from_address,
            "to": RECIPIENT,
            "value": "500000",
            "validAfter": "0",
            "validBefore": str(payload.valid_before),
            "nonce": payload.nonce,
        }

        header = decode_x402_header(builder.encode_payment_header(payload, BASE, version=2))
        assert header["network"] == "eip155:8453"
        assert header["payload"] == wire

    @pytest.mark.asyncio
    async def test_validation_precedes_wallet(self, evm_account):
        provider = RecordingProvider(evm_account)
        builder = await _connected(provider)
        provider.calls.clear()

        with pytest.raises(X402Error) as exc:
            await builder.sign_payment(PaymentInfo(amount="1", recipient="0x1234"), BASE)
        assert exc.value.code is X402ErrorCode.INVALID_RECIPIENT

        with pytest.raises(X402Error) as exc:
            await builder.sign_payment(PaymentInfo(amount="-3", recipient=RECIPIENT), BASE)
        assert exc.value.code is X402ErrorCode.INVALID_AMOUNT

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_signature_rejected(self, evm_account):
        provider = RecordingProvider(evm_account)
        builder = await _connected(provider)
        provider.fail["eth_signTypedData_v4"] = ProviderError("User denied message signature", 4001)
        with pytest.raises(X402Error) as exc:
            await builder.sign_payment(PaymentInfo(amount="1", recipient=RECIPIENT), BASE)
        assert exc.value.code is X402ErrorCode.SIGNATURE_REJECTED

    @pytest.mark.asyncio
    async def test_requires_connection(self, evm_account):
        with pytest.raises(X402Error) as exc:
            await EvmBuilder(evm_account).sign_payment(PaymentInfo(amount="1", recipient=RECIPIENT), BASE)
        assert exc.value.code is X402ErrorCode.WALLET_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_unsupported_token(self, evm_account):
        builder = await _connected(evm_account)
        with pytest.raises(X402Error) as exc:
            await builder.sign_payment(PaymentInfo(amount="1", recipient=RECIPIENT, token_type="pyusd"), BASE)
        assert exc.value.code is X402ErrorCode.CHAIN_NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_eurc_signs_with_token_domain(self, evm_account):
        provider = RecordingProvider(evm_account)
        seen = {}
        original = evm_account.request

        async def capture(method, params=None):
            if method == "eth_signTypedData_v4":
                seen["typed"] = json.loads(params[1])
            return await original(method, params)

        evm_account.request = capture
        builder = await _connected(provider)
        await builder.sign_payment(PaymentInfo(amount="1", recipient=RECIPIENT, token_type="eurc"), BASE)
        assert seen["typed"]["domain"]["name"] == "EURC"
        assert seen["typed"]["domain"]["verifyingContract"] == BASE.get_token("eurc").address


class TestBalance:
    """balanceOf via eth_call"""

    @pytest.mark.asyncio
    async def test_balance(self, evm_account, rpc_http):
        calls = []
        builder = EvmBuilder(evm_account, http_client=rpc_http({"eth_call": hex(12_345_678)}, calls))
        await builder.connect("base")
        assert await builder.get_balance(BASE) == "12.35"
        params = calls[0]["params"]
        assert params[0]["to"] == BASE.usdc.address
        assert params[1] == "latest"

    @pytest.mark.asyncio
    async def test_balance_error_is_zero(self, evm_account, rpc_http):
        builder = EvmBuilder(evm_account, http_client=rpc_http({"eth_call": "0xzz"}))
        await builder.connect("base")
        assert await builder.get_balance(BASE) == "0.00"
