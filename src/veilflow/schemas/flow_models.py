"""Flow-state and step schema contracts."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import ConfigDict, Field, field_validator

from veilflow.constants import EMPTY_ROOT, ROOT_SIZE_BYTES
from veilflow.schemas.base import FrozenSchemaModel, StrictSchemaModel
from veilflow.schemas.enums import ClusterMode, TransactionStatus


class FlowState(FrozenSchemaModel):
    """Protocol state threaded through one run: accumulator root and nullifier counter."""

    model_config = ConfigDict(
        extra="forbid", frozen=True, ser_json_bytes="hex", val_json_bytes="hex"
    )

    root: bytes = EMPTY_ROOT
    next_nullifier: int = Field(default=0, ge=0)

    @field_validator("root")
    @classmethod
    def validate_root_size(cls, value: bytes) -> bytes:
        if len(value) != ROOT_SIZE_BYTES:
            raise ValueError(f"root must be {ROOT_SIZE_BYTES} bytes, got {len(value)}")
        return value

    @property
    def root_hex(self) -> str:
        return self.root.hex()


class StepDescriptor(FrozenSchemaModel):
    """Static description of one orchestrated step."""

    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    toggle: str = Field(min_length=1)
    position: int = Field(ge=0)
    requires: tuple[str, ...] = ()
    spend: bool = False
    modes: tuple[ClusterMode, ...] = ()

    def available_in(self, cluster: ClusterMode) -> bool:
        return not self.modes or cluster in self.modes


class AmountAllocation(FrozenSchemaModel):
    """Derived working amounts for one run."""

    requested_units: int = Field(ge=0)
    base_units: int = Field(ge=0)
    per_spend_units: int = Field(ge=0)
    spend_steps: int = Field(ge=0)
    clamped: bool = False
    split_fallback_used: bool = False


class ProtocolResult(FrozenSchemaModel):
    """Outcome of one protocol operation: signature plus the post-operation state."""

    signature: str = Field(min_length=1)
    new_state: FlowState


class AuthorizationIntent(FrozenSchemaModel):
    """Result of creating a payment authorization."""

    signature: str = Field(min_length=1)
    intent_hash: str = Field(min_length=1)


class TransactionRecord(StrictSchemaModel):
    """Append-only log entry for one submitted operation."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    run_id: str | None = None
    flow: str = Field(min_length=1)
    signature: str | None = None
    relayer: bool = False
    status: TransactionStatus = TransactionStatus.CONFIRMED
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = Field(default_factory=dict)
