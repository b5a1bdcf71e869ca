"""Per-network payment authorization builders."""

from x402pay.builders.algorand import AlgorandBuilder, KeyAlgorandWallet
from x402pay.builders.base import PaymentBuilder
from x402pay.builders.evm import EvmBuilder, LocalEvmAccount
from x402pay.builders.near import KeypairNearWallet, NearBuilder
from x402pay.builders.registry import BUILDER_TYPES, create_builder
from x402pay.builders.stellar import KeypairStellarWallet, StellarBuilder
from x402pay.builders.sui import KeypairSuiWallet, SuiBuilder
from x402pay.builders.svm import KeypairWallet, SvmBuilder

__all__ = [
    "PaymentBuilder",
    "EvmBuilder",
    "SvmBuilder",
    "StellarBuilder",
    "NearBuilder",
    "AlgorandBuilder",
    "SuiBuilder",
    "BUILDER_TYPES",
    "create_builder",
    "LocalEvmAccount",
    "KeypairWallet",
    "KeypairStellarWallet",
    "KeypairNearWallet",
    "KeyAlgorandWallet",
    "KeypairSuiWallet",
]
