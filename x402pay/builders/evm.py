"""
EVM Payment Builder

Signs ERC-3009 TransferWithAuthorization through an EIP-1193 style provider.

Flow:
1. eth_requestAccounts, then switch the wallet to the target chain
2. Build EIP-712 typed data {from, to, value, validAfter, validBefore, nonce}
3. eth_signTypedData_v4
4. Split the 65-byte signature into (v, r, s)
"""

from __future__ import annotations

import json
import secrets
import time
from typing import Any, List, Optional, Protocol, Sequence

from cryptography.hazmat.primitives.asymmetric import ec
from loguru import logger

from x402pay.builders.base import PaymentBuilder
from x402pay.builders.eip712 import (
    EIP712Signer,
    address_from_private_key,
    sign_digest,
    to_checksum_address,
    transfer_with_authorization_typed_data,
)
from x402pay.chains import DEFAULT_CHAIN, ChainConfig, NetworkType
from x402pay.payloads import EvmPaymentPayload, PaymentInfo
from x402pay.utils.exceptions import X402Error, X402ErrorCode, wrap_wallet_error
from x402pay.utils.validation import format_units

BALANCE_OF_SELECTOR = "0x70a08231"

# EIP-1193 error codes
USER_REJECTED = 4001
UNRECOGNIZED_CHAIN = 4902


class EthereumProvider(Protocol):
    """EIP-1193 request/response provider"""

    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any: ...


class LocalEvmAccount:
    """
    EthereumProvider backed by an in-process secp256k1 key.

    Answers the subset of methods EvmBuilder uses; useful for agents and
    server-side payers that hold their own key.
    """

    def __init__(self, private_key_hex: str, chain_id: int = 8453):
        key = private_key_hex.removeprefix("0x")
        self._private_key = ec.derive_private_key(int(key, 16), ec.SECP256K1())
        self.address = address_from_private_key(self._private_key)
        self.chain_id = chain_id

    @classmethod
    def generate(cls, chain_id: int = 8453) -> LocalEvmAccount:
        return cls(secrets.token_hex(32), chain_id)

    async def request(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        params = list(params or [])
        if method in ("eth_requestAccounts", "eth_accounts"):
            return [self.address]
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "wallet_switchEthereumChain":
            self.chain_id = int(params[0]["chainId"], 16)
            return None
        if method == "eth_signTypedData_v4":
            signer, typed_json = params
            if signer.lower() != self.address.lower():
                raise ValueError(f"Unknown signer {signer}")
            digest = EIP712Signer.digest_from_json(json.loads(typed_json))
            return sign_digest(self._private_key, digest)
        raise NotImplementedError(f"Unsupported method: {method}")


def split_signature(signature: str) -> tuple[int, str, str]:
    """Split a 65-byte hex signature into (v, r, s); v 0/1 becomes 27/28."""
    sig = signature.removeprefix("0x")
    if len(sig) != 130:
        raise X402Error(
            f"Invalid signature length: expected 65 bytes, got {len(sig) // 2}",
            X402ErrorCode.PAYMENT_FAILED,
        )
    r = "0x" + sig[:64]
    s = "0x" + sig[64:128]
    v = int(sig[128:130], 16)
    if v < 27:
        v += 27
    return v, r, s


def encode_balance_of(owner: str) -> str:
    """eth_call data for balanceOf(address)"""
    return BALANCE_OF_SELECTOR + owner.lower().removeprefix("0x").zfill(64)


class EvmBuilder(PaymentBuilder):
    """ERC-3009 authorization builder for EVM chains"""

    network_type = NetworkType.EVM
    recipient_key = "evm"

    def __init__(self, wallet: EthereumProvider, **kwargs: Any):
        super().__init__(wallet, **kwargs)
        self._chain: Optional[ChainConfig] = None

    @property
    def current_chain(self) -> Optional[ChainConfig]:
        return self._chain

    async def connect(self, chain_name: Optional[str] = None) -> str:
        chain = self._resolve_chain(chain_name, DEFAULT_CHAIN)

        try:
            accounts: List[str] = await self.wallet.request("eth_requestAccounts", [])
        except Exception as e:
            raise wrap_wallet_error(
                e,
                action="Wallet connection",
                rejected_code=X402ErrorCode.WALLET_CONNECTION_REJECTED,
                fallback_code=X402ErrorCode.WALLET_CONNECTION_FAILED,
            ) from e

        if not accounts:
            raise X402Error("No accounts returned by wallet", X402ErrorCode.WALLET_CONNECTION_FAILED)

        await self.switch_chain(chain)
        self._address = to_checksum_address(accounts[0])
        logger.debug(f"EVM wallet connected: {self._address} on {chain.name}")
        return self._address

    async def switch_chain(self, chain: ChainConfig) -> None:
        """Switch the wallet to chain, adding it when the wallet does not know it."""
        self._check_chain(chain)
        try:
            await self.wallet.request("wallet_switchEthereumChain", [{"chainId": chain.chain_id_hex}])
        except Exception as e:
            if getattr(e, "code", None) != UNRECOGNIZED_CHAIN:
                raise wrap_wallet_error(
                    e,
                    action=f"Switch to {chain.display_name}",
                    rejected_code=X402ErrorCode.CHAIN_SWITCH_REJECTED,
                    fallback_code=X402ErrorCode.CHAIN_SWITCH_REJECTED,
                ) from e
            await self._add_chain(chain)
        self._chain = chain

    async def _add_chain(self, chain: ChainConfig) -> None:
        logger.debug(f"Adding {chain.name} to wallet")
        params = {
            "chainId": chain.chain_id_hex,
            "chainName": chain.display_name,
            "nativeCurrency": {
                "name": chain.native_currency.name,
                "symbol": chain.native_currency.symbol,
                "decimals": chain.native_currency.decimals,
            },
            "rpcUrls": [chain.rpc_url],
            "blockExplorerUrls": [chain.explorer_url] if chain.explorer_url else [],
        }
        try:
            await self.wallet.request("wallet_addEthereumChain", [params])
        except Exception as e:
            raise wrap_wallet_error(
                e,
                action=f"Add {chain.display_name}",
                rejected_code=X402ErrorCode.CHAIN_SWITCH_REJECTED,
                fallback_code=X402ErrorCode.CHAIN_SWITCH_REJECTED,
            ) from e

    async def get_balance(self, chain: ChainConfig) -> str:
        address = self._require_connected()
        self._check_chain(chain)
        call = {"to": chain.usdc.address, "data": encode_balance_of(address)}
        try:
            result = await self._rpc(chain.rpc_url).call("eth_call", [call, "latest"])
            return format_units(int(result or "0x0", 16), chain.usdc.decimals)
        except (X402Error, ValueError) as e:
            logger.warning(f"Balance lookup on {chain.name} failed: {e}")
            return "0.00"

    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> EvmPaymentPayload:
        self._check_chain(chain)
        token = self._token(chain, info.token_type)
        recipient = self._recipient_for(info)
        value = self._atomic_amount(info, token.decimals)
        address = self._require_connected()

        nonce = secrets.token_bytes(32)
        valid_after = 0
        valid_before = int(time.time()) + chain.validity_window_seconds

        typed_data = transfer_with_authorization_typed_data(
            token_address=token.address,
            token_name=token.name,
            token_version=token.version,
            chain_id=chain.chain_id,
            from_address=address,
            to_address=recipient,
            value=value,
            valid_after=valid_after,
            valid_before=valid_before,
            nonce=nonce,
        )
        logger.debug(
            f"Requesting TransferWithAuthorization signature: {value} of {token.name} "
            f"on {chain.name}, valid before {valid_before}"
        )

        try:
            signature = await self.wallet.request(
                "eth_signTypedData_v4", [address, json.dumps(typed_data)]
            )
        except Exception as e:
            raise wrap_wallet_error(e, action="EIP-712 signature") from e

        v, r, s = split_signature(signature)
        return EvmPaymentPayload(
            from_address=address,
            to=recipient,
            value=str(value),
            valid_after=valid_after,
            valid_before=valid_before,
            nonce="0x" + nonce.hex(),
            v=v,
            r=r,
            s=s,
            chain_id=chain.chain_id,
            token=token.address,
        )
