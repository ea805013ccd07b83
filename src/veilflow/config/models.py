"""Pydantic models for central YAML configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator, model_validator

from veilflow.constants import (
    DEFAULT_STEP_TOGGLES,
    LAMPORTS_PER_SOL,
    ORDERABLE_SPEND_STEPS,
    SCHEMA_VERSION,
    WRAPPED_NATIVE_MINT,
)
from veilflow.schemas.base import StrictSchemaModel
from veilflow.schemas.enums import ClusterMode, SplitFallback, normalize_cluster_mode


class RetryConfig(StrictSchemaModel):
    """Polling controls for waiting on funding to land."""

    max_attempts: int = Field(default=15, ge=1, le=120)
    backoff_seconds: float = Field(default=1.0, ge=0.0)
    multiplier: float = Field(default=1.0, ge=1.0, le=4.0)
    jitter_seconds: float = Field(default=0.0, ge=0.0, le=5.0)


class MintConfig(StrictSchemaModel):
    """Token mint used by the protocol."""

    address: str = ""
    decimals: int | None = Field(default=None, ge=0, le=18)

    @property
    def resolved(self) -> bool:
        return bool(self.address.strip()) and self.decimals is not None

    @property
    def is_wrapped_native(self) -> bool:
        return self.address == WRAPPED_NATIVE_MINT


class FundingConfig(StrictSchemaModel):
    """Pre-funding amounts for the three test identities."""

    lamports_per_wallet: int = Field(default=200_000_000, ge=0)
    airdrop_lamports: int = Field(default=2 * LAMPORTS_PER_SOL, ge=0)
    wrap_amount: str = "1"
    fund_amount: str = "0.3"
    fee_buffer_lamports: int = Field(default=20_000_000, ge=0)


class FlowConfig(StrictSchemaModel):
    """Flow amount, allocation policy, and step selection defaults."""

    amount: str = "1"
    spend_order: list[str] = Field(default_factory=lambda: list(ORDERABLE_SPEND_STEPS))
    split_fallback: SplitFallback = SplitFallback.FULL_AMOUNT
    internal_uses_full_amount: bool = False
    authorization_expiry_slots: int = Field(default=200, gt=0)
    steps: dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_STEP_TOGGLES))

    @field_validator("spend_order")
    @classmethod
    def validate_spend_order(cls, value: list[str]) -> list[str]:
        if sorted(value) != sorted(ORDERABLE_SPEND_STEPS):
            raise ValueError(
                f"spend_order must be a permutation of {list(ORDERABLE_SPEND_STEPS)}"
            )
        return value

    @field_validator("steps")
    @classmethod
    def validate_step_toggles(cls, value: dict[str, bool]) -> dict[str, bool]:
        unknown = sorted(set(value) - set(DEFAULT_STEP_TOGGLES))
        if unknown:
            raise ValueError(f"Unknown step toggles: {', '.join(unknown)}")
        merged = dict(DEFAULT_STEP_TOGGLES)
        merged.update(value)
        return merged


class TimeoutConfig(StrictSchemaModel):
    """Ledger confirmation timeout profile."""

    confirmation_seconds: float = Field(default=60.0, gt=0)


class SandboxConfig(StrictSchemaModel):
    """Seed values for the in-process sandbox backend."""

    operator_lamports: int = Field(default=10 * LAMPORTS_PER_SOL, ge=0)
    operator_tokens: str = "1000"
    fee_lamports: int = Field(default=5_000, ge=0)
    rent_lamports: int = Field(default=2_039_280, ge=0)


class AppConfig(StrictSchemaModel):
    """Central application configuration."""

    schema_version: str = Field(default=SCHEMA_VERSION, min_length=1)
    cluster: ClusterMode = ClusterMode.LOCALNET
    backend: str = "sandbox"
    mint: MintConfig = Field(default_factory=MintConfig)
    operator_keypair_path: Path | None = None
    state_dir: Path = Path(".veilflow")
    funding: FundingConfig = Field(default_factory=FundingConfig)
    funding_wait: RetryConfig = Field(default_factory=RetryConfig)
    flow: FlowConfig = Field(default_factory=FlowConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)

    @field_validator("cluster", mode="before")
    @classmethod
    def normalize_cluster(cls, value: str | ClusterMode) -> ClusterMode:
        return normalize_cluster_mode(value)

    @model_validator(mode="after")
    def validate_backend(self) -> "AppConfig":
        if self.backend != "sandbox":
            raise ValueError(f"Unsupported backend: {self.backend}")
        return self
