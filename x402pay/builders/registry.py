"""NetworkType -> builder class dispatch."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping, Type

from x402pay.builders.algorand import AlgorandBuilder
from x402pay.builders.base import PaymentBuilder
from x402pay.builders.evm import EvmBuilder
from x402pay.builders.near import NearBuilder
from x402pay.builders.stellar import StellarBuilder
from x402pay.builders.sui import SuiBuilder
from x402pay.builders.svm import SvmBuilder
from x402pay.chains import NetworkType
from x402pay.utils.exceptions import X402Error, X402ErrorCode

BUILDER_TYPES: Mapping[NetworkType, Type[PaymentBuilder]] = MappingProxyType({
    NetworkType.EVM: EvmBuilder,
    NetworkType.SVM: SvmBuilder,
    NetworkType.STELLAR: StellarBuilder,
    NetworkType.NEAR: NearBuilder,
    NetworkType.ALGORAND: AlgorandBuilder,
    NetworkType.SUI: SuiBuilder,
})


def create_builder(network_type: NetworkType | str, wallet: Any, **kwargs: Any) -> PaymentBuilder:
    """Instantiate the builder for a network type."""
    try:
        builder_cls = BUILDER_TYPES[NetworkType(network_type)]
    except (KeyError, ValueError) as e:
        raise X402Error(
            f"Unsupported network type: {network_type}",
            X402ErrorCode.CHAIN_NOT_SUPPORTED,
        ) from e
    return builder_cls(wallet, **kwargs)
