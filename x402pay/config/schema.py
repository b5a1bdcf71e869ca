"""Configuration schema using Pydantic.

Settings are read once per client and turned into an immutable ChainRegistry
snapshot; nothing here mutates shared state.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

from x402pay.chains import DEFAULT_CHAIN, DEFAULT_FACILITATOR_URL, DEFAULT_REGISTRY, ChainRegistry


class ChainOverride(BaseModel):
    """Partial chain configuration layered over the defaults."""
    rpc_url: str | None = None
    facilitator_url: str | None = None
    validity_window_seconds: int | None = Field(default=None, gt=0)
    usdc_address: str | None = None
    enabled: bool | None = None
    # Only needed when the override introduces a chain that is not built in
    network_type: Literal["evm", "svm", "stellar", "near", "algorand", "sui"] | None = None
    chain_id: int | None = None
    display_name: str | None = None


class X402Settings(BaseSettings):
    """Root configuration for x402pay clients."""
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    default_chain: str = DEFAULT_CHAIN
    x402_version: Literal[1, 2, "auto"] = "auto"
    debug: bool = False
    auto_connect: bool = False
    timeout_seconds: float = Field(default=30.0, gt=0)
    rpc_overrides: dict[str, str] = Field(default_factory=dict)  # chain name -> RPC URL
    custom_chains: dict[str, ChainOverride] = Field(default_factory=dict)
    wallet_preference: list[str] = Field(default_factory=list)

    model_config = ConfigDict(
        env_prefix="X402_",
        env_nested_delimiter="__",
    )

    @field_validator("x402_version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value

    @field_validator("default_chain")
    @classmethod
    def _lower_chain(cls, value: str) -> str:
        return value.strip().lower()

    def build_registry(self, base: ChainRegistry = DEFAULT_REGISTRY) -> ChainRegistry:
        """Snapshot of the chain registry with this configuration's overrides applied."""
        custom = {
            name: override.model_dump(exclude_none=True)
            for name, override in self.custom_chains.items()
        }
        # Only an explicitly configured URL replaces the per-chain defaults
        facilitator_url = self.facilitator_url if "facilitator_url" in self.model_fields_set else None
        return base.with_overrides(self.rpc_overrides, custom, facilitator_url)
