"""Enum definitions for canonical contracts."""

from __future__ import annotations

from enum import Enum


class StepStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ClusterMode(str, Enum):
    LOCALNET = "localnet"
    DEVNET = "devnet"
    MAINNET = "mainnet"

    @property
    def is_test_mode(self) -> bool:
        return self in (ClusterMode.LOCALNET, ClusterMode.DEVNET)


class TransactionStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SplitFallback(str, Enum):
    FULL_AMOUNT = "full_amount"
    REJECT = "reject"


class IdentityLabel(str, Enum):
    A = "A"
    B = "B"
    C = "C"


LEGACY_CLUSTER_MAP: dict[str, ClusterMode] = {
    "localnet": ClusterMode.LOCALNET,
    "localhost": ClusterMode.LOCALNET,
    "local": ClusterMode.LOCALNET,
    "devnet": ClusterMode.DEVNET,
    "mainnet": ClusterMode.MAINNET,
    "mainnet-beta": ClusterMode.MAINNET,
}


def normalize_cluster_mode(raw_value: str | ClusterMode) -> ClusterMode:
    """Normalize cluster labels into canonical enum values."""
    if isinstance(raw_value, ClusterMode):
        return raw_value
    normalized = LEGACY_CLUSTER_MAP.get(raw_value.strip().lower())
    if normalized is None:
        raise ValueError(f"Unsupported cluster: {raw_value}")
    return normalized
