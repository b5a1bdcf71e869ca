"""Tests for chain configuration and the registry snapshot."""

import pytest

from x402pay.chains import (
    DEFAULT_CHAINS,
    DEFAULT_REGISTRY,
    FACILITATOR_ADDRESSES,
    ChainRegistry,
    NetworkType,
    get_facilitator_address,
)


class TestChainConfig:
    """ChainConfig helpers"""

    def test_base_mainnet(self):
        chain = DEFAULT_REGISTRY.get_chain_by_name("base")
        assert chain.chain_id == 8453
        assert chain.chain_id_hex == "0x2105"
        assert chain.network_type is NetworkType.EVM
        assert chain.usdc.address == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
        assert chain.usdc.decimals == 6

    def test_validity_window(self):
        assert DEFAULT_REGISTRY.get_chain_by_name("base").validity_window_seconds == 300
        assert DEFAULT_REGISTRY.get_chain_by_name("ethereum").validity_window_seconds == 60

    def test_get_token_case_insensitive(self):
        chain = DEFAULT_REGISTRY.get_chain_by_name("base")
        assert chain.get_token("EURC").address == "0x60a3E35Cc302bFA44Cb288Bc5a4F316Fdb1adb42"
        assert chain.get_token("usdt") is None

    def test_usdc_always_available(self):
        chain = DEFAULT_REGISTRY.get_chain_by_name("solana")
        assert chain.get_token() is chain.usdc
        assert chain.supported_tokens() == ["usdc"]

    def test_celo_signs_as_usdc(self):
        assert DEFAULT_REGISTRY.get_chain_by_name("celo").usdc.name == "USDC"

    def test_explorer_urls(self):
        base = DEFAULT_REGISTRY.get_chain_by_name("base")
        near = DEFAULT_REGISTRY.get_chain_by_name("near")
        assert base.explorer_tx_url("0xabc") == "https://basescan.org/tx/0xabc"
        assert near.explorer_tx_url("abc") == "https://nearblocks.io/txns/abc"
        assert near.explorer_address_url("a.near") == "https://nearblocks.io/address/a.near"


class TestChainRegistry:
    """Lookup and overrides"""

    def test_all_network_types_present(self):
        types = {chain.network_type for chain in DEFAULT_REGISTRY}
        assert types == set(NetworkType)

    def test_lookup_by_name_is_case_insensitive(self):
        assert DEFAULT_REGISTRY.get_chain_by_name(" Polygon ").name == "polygon"
        assert "ARBITRUM" in DEFAULT_REGISTRY
        assert DEFAULT_REGISTRY.get_chain_by_name("dogechain") is None

    def test_lookup_by_id_is_evm_only(self):
        assert DEFAULT_REGISTRY.get_chain_by_id(43114).name == "avalanche"
        # Non-EVM chains carry chain_id 0
        assert DEFAULT_REGISTRY.get_chain_by_id(0) is None

    def test_is_chain_supported(self):
        assert DEFAULT_REGISTRY.is_chain_supported("sui")
        assert DEFAULT_REGISTRY.is_chain_supported(10)
        assert not DEFAULT_REGISTRY.is_chain_supported(12345)

    def test_chains_by_token(self):
        names = {c.name for c in DEFAULT_REGISTRY.get_chains_by_token("ausd")}
        assert names == {"avalanche", "ethereum", "polygon", "arbitrum", "monad"}

    def test_rpc_override_returns_new_snapshot(self):
        registry = DEFAULT_REGISTRY.with_overrides({"base": "https://base.example"})
        assert registry is not DEFAULT_REGISTRY
        assert registry.get_chain_by_name("base").rpc_url == "https://base.example"
        assert DEFAULT_REGISTRY.get_chain_by_name("base").rpc_url == "https://mainnet.base.org"

    def test_partial_chain_override(self):
        registry = DEFAULT_REGISTRY.with_overrides(
            custom_chains={"ethereum": {"validity_window_seconds": 120, "enabled": False}}
        )
        chain = registry.get_chain_by_name("ethereum")
        assert chain.validity_window_seconds == 120
        assert chain not in registry.get_enabled_chains()
        assert chain.usdc == DEFAULT_CHAINS["ethereum"].usdc

    def test_usdc_address_override_keeps_token_metadata(self):
        registry = DEFAULT_REGISTRY.with_overrides(custom_chains={"base": {"usdc_address": "0x" + "22" * 20}})
        usdc = registry.get_chain_by_name("base").usdc
        assert usdc.address == "0x" + "22" * 20
        assert usdc.name == "USD Coin"

    def test_new_chain(self):
        registry = DEFAULT_REGISTRY.with_overrides(
            custom_chains={
                "Zora": {
                    "network_type": "evm",
                    "chain_id": 7777777,
                    "rpc_url": "https://rpc.zora.energy",
                    "usdc_address": "0x" + "33" * 20,
                }
            }
        )
        chain = registry.get_chain_by_name("zora")
        assert chain.network_type is NetworkType.EVM
        assert registry.get_chain_by_id(7777777) is chain
        assert "zora" not in DEFAULT_REGISTRY

    def test_facilitator_url_for_all_chains(self):
        zora = {
            "network_type": "evm",
            "chain_id": 7777777,
            "rpc_url": "https://rpc.zora.energy",
            "usdc_address": "0x" + "33" * 20,
        }
        registry = DEFAULT_REGISTRY.with_overrides(
            custom_chains={"zora": zora},
            facilitator_url="https://fac.example",
        )
        assert {chain.facilitator_url for chain in registry} == {"https://fac.example"}
        assert DEFAULT_REGISTRY.get_chain_by_name("base").facilitator_url != "https://fac.example"

    def test_incomplete_new_chain_fails(self):
        with pytest.raises(TypeError):
            DEFAULT_REGISTRY.with_overrides(custom_chains={"mystery": {"network_type": "evm"}})

    def test_registry_from_iterable(self):
        registry = ChainRegistry([DEFAULT_CHAINS["base"], DEFAULT_CHAINS["sui"]])
        assert len(registry) == 2
        assert registry.names == ["base", "sui"]


class TestFacilitatorAddresses:
    """Fee payer lookup"""

    def test_by_chain_name(self):
        assert get_facilitator_address("solana") == FACILITATOR_ADDRESSES["solana"]

    def test_falls_back_to_network_type(self):
        assert get_facilitator_address("polygon", NetworkType.EVM) == FACILITATOR_ADDRESSES["evm"]

    def test_unknown(self):
        assert get_facilitator_address("fogo") is None
        assert get_facilitator_address("sui", "sui") is None
