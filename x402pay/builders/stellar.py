"""
Stellar Payment Builder

Produces a signed Soroban authorization entry for transfer(from, to, amount)
on the USDC token contract. The wallet signs the HashIDPreimage that binds
network id, nonce, expiration ledger and invocation together, never the bare
invocation.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from decimal import Decimal
from typing import Any, Optional, Protocol

from loguru import logger
from stellar_sdk import Address, Keypair, Network, StrKey, scval
from stellar_sdk import xdr as stellar_xdr

from x402pay.builders.base import PaymentBuilder
from x402pay.chains import ChainConfig, NetworkType
from x402pay.payloads import PaymentInfo, StellarPaymentPayload
from x402pay.utils.exceptions import X402Error, X402ErrorCode, wrap_wallet_error
from x402pay.utils.validation import STELLAR_ADDRESS_RE

NETWORK_PASSPHRASE = Network.PUBLIC_NETWORK_PASSPHRASE
SOROBAN_RPC_URL = "https://mainnet.sorobanrpc.com"
USDC_ISSUER = "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"

# ~5 minutes at ~5s per ledger
EXPIRATION_LEDGERS = 60


class StellarWallet(Protocol):
    """Freighter-style wallet capability"""

    async def request_access(self) -> Any: ...

    async def get_address(self) -> str: ...

    async def sign_auth_entry(self, preimage_xdr: str, *, network_passphrase: str) -> str:
        """Sign a base64 HashIDPreimage; returns the base64 ed25519 signature."""
        ...


class KeypairStellarWallet:
    """StellarWallet backed by an in-process Keypair."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    async def request_access(self) -> None:
        return None

    async def get_address(self) -> str:
        return self.keypair.public_key

    async def sign_auth_entry(self, preimage_xdr: str, *, network_passphrase: str) -> str:
        digest = hashlib.sha256(base64.b64decode(preimage_xdr)).digest()
        return base64.b64encode(self.keypair.sign(digest)).decode("ascii")


def build_transfer_invocation(
    token_contract: str, from_address: str, to_address: str, amount: int
) -> stellar_xdr.SorobanAuthorizedInvocation:
    contract_fn = stellar_xdr.InvokeContractArgs(
        contract_address=Address(token_contract).to_xdr_sc_address(),
        function_name=stellar_xdr.SCSymbol(b"transfer"),
        args=[
            scval.to_address(from_address),
            scval.to_address(to_address),
            scval.to_int128(amount),
        ],
    )
    function = stellar_xdr.SorobanAuthorizedFunction(
        type=stellar_xdr.SorobanAuthorizedFunctionType.SOROBAN_AUTHORIZED_FUNCTION_TYPE_CONTRACT_FN,
        contract_fn=contract_fn,
    )
    return stellar_xdr.SorobanAuthorizedInvocation(function=function, sub_invocations=[])


def build_authorization_preimage(
    invocation: stellar_xdr.SorobanAuthorizedInvocation,
    nonce: int,
    expiration_ledger: int,
    network_passphrase: str = NETWORK_PASSPHRASE,
) -> stellar_xdr.HashIDPreimage:
    return stellar_xdr.HashIDPreimage(
        type=stellar_xdr.EnvelopeType.ENVELOPE_TYPE_SOROBAN_AUTHORIZATION,
        soroban_authorization=stellar_xdr.HashIDPreimageSorobanAuthorization(
            network_id=stellar_xdr.Hash(Network(network_passphrase).network_id()),
            nonce=stellar_xdr.Int64(nonce),
            signature_expiration_ledger=stellar_xdr.Uint32(expiration_ledger),
            invocation=invocation,
        ),
    )


def build_signed_entry(
    invocation: stellar_xdr.SorobanAuthorizedInvocation,
    signer: str,
    signature: bytes,
    nonce: int,
    expiration_ledger: int,
) -> stellar_xdr.SorobanAuthorizationEntry:
    """Attach [{public_key, signature}] credentials to the root invocation."""
    signature_map = stellar_xdr.SCVal(
        stellar_xdr.SCValType.SCV_MAP,
        map=stellar_xdr.SCMap([
            stellar_xdr.SCMapEntry(
                scval.to_symbol("public_key"),
                scval.to_bytes(StrKey.decode_ed25519_public_key(signer)),
            ),
            stellar_xdr.SCMapEntry(scval.to_symbol("signature"), scval.to_bytes(signature)),
        ]),
    )
    credentials = stellar_xdr.SorobanCredentials(
        type=stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS,
        address=stellar_xdr.SorobanAddressCredentials(
            address=Address(signer).to_xdr_sc_address(),
            nonce=stellar_xdr.Int64(nonce),
            signature_expiration_ledger=stellar_xdr.Uint32(expiration_ledger),
            signature=stellar_xdr.SCVal(
                stellar_xdr.SCValType.SCV_VEC, vec=stellar_xdr.SCVec([signature_map])
            ),
        ),
    )
    return stellar_xdr.SorobanAuthorizationEntry(credentials=credentials, root_invocation=invocation)


class StellarBuilder(PaymentBuilder):
    """Soroban authorization-entry builder"""

    network_type = NetworkType.STELLAR
    recipient_key = "stellar"

    def __init__(
        self,
        wallet: StellarWallet,
        *,
        soroban_rpc_url: str = SOROBAN_RPC_URL,
        network_passphrase: str = NETWORK_PASSPHRASE,
        **kwargs: Any,
    ):
        super().__init__(wallet, **kwargs)
        self.soroban_rpc_url = soroban_rpc_url
        self.network_passphrase = network_passphrase

    async def connect(self, chain_name: Optional[str] = None) -> str:
        self._resolve_chain(chain_name, "stellar")
        try:
            await self.wallet.request_access()
            address = await self.wallet.get_address()
        except Exception as e:
            raise wrap_wallet_error(
                e,
                action="Stellar wallet connection",
                rejected_code=X402ErrorCode.WALLET_CONNECTION_REJECTED,
                fallback_code=X402ErrorCode.WALLET_CONNECTION_FAILED,
            ) from e

        if not address or not STELLAR_ADDRESS_RE.match(address):
            raise X402Error(
                "Invalid Stellar public key format",
                X402ErrorCode.WALLET_CONNECTION_REJECTED,
                details={"address": address},
            )
        self._address = address
        logger.debug(f"Stellar wallet connected: {address}")
        return address

    async def _latest_ledger(self) -> int:
        result = await self._rpc(self.soroban_rpc_url).call("getLatestLedger")
        return int(result["sequence"])

    async def get_balance(self, chain: ChainConfig) -> str:
        """USDC trustline balance from Horizon; a missing account is 0."""
        address = self._require_connected()
        client = await self._http()
        try:
            resp = await client.get(f"{chain.rpc_url.rstrip('/')}/accounts/{address}")
            if resp.status_code == 404:
                return "0.00"
            resp.raise_for_status()
            balances = resp.json().get("balances", [])
        except Exception as e:
            logger.warning(f"Stellar balance lookup failed: {e}")
            return "0.00"

        for entry in balances:
            if entry.get("asset_code") == "USDC" and entry.get("asset_issuer") == USDC_ISSUER:
                return f"{Decimal(entry['balance']):.2f}"
        return "0.00"

    async def sign_payment(self, info: PaymentInfo, chain: ChainConfig) -> StellarPaymentPayload:
        self._check_chain(chain)
        token = self._token(chain, info.token_type)
        recipient = self._recipient_for(info)
        amount = self._atomic_amount(info, token.decimals)
        address = self._require_connected()

        ledger = await self._latest_ledger()
        expiration_ledger = ledger + EXPIRATION_LEDGERS
        nonce = secrets.randbits(63)

        invocation = build_transfer_invocation(token.address, address, recipient, amount)
        preimage = build_authorization_preimage(
            invocation, nonce, expiration_ledger, self.network_passphrase
        )
        logger.debug(f"Requesting Soroban auth signature, expires at ledger {expiration_ledger}")

        try:
            signed = await self.wallet.sign_auth_entry(
                preimage.to_xdr(), network_passphrase=self.network_passphrase
            )
        except Exception as e:
            raise wrap_wallet_error(e, action="Soroban authorization signature") from e
        if not signed:
            raise X402Error("Wallet did not return a signed auth entry", X402ErrorCode.PAYMENT_FAILED)

        try:
            signature = base64.b64decode(signed, validate=True)
        except ValueError as e:
            raise X402Error(
                f"Unreadable auth entry signature: {e}", X402ErrorCode.PAYMENT_FAILED, cause=e
            ) from e
        if len(signature) != 64:
            raise X402Error(
                f"Auth entry signature must be 64 bytes, got {len(signature)}",
                X402ErrorCode.PAYMENT_FAILED,
            )

        entry = build_signed_entry(invocation, address, signature, nonce, expiration_ledger)
        return StellarPaymentPayload(
            from_address=address,
            to=recipient,
            amount=str(amount),
            token_contract=token.address,
            authorization_entry_xdr=entry.to_xdr(),
            nonce=nonce,
            signature_expiration_ledger=expiration_ledger,
        )
