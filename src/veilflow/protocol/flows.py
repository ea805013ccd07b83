"""Protocol operations consumed by the sequencer."""

from __future__ import annotations

from typing import Protocol

from veilflow.identity.store import Identity
from veilflow.schemas.flow_models import AuthorizationIntent, FlowState, ProtocolResult


class ProtocolFlows(Protocol):
    """Privacy-protocol operations; each submits one ledger transaction.

    State-changing operations take the caller's current ``FlowState`` and
    return the state produced by the confirmed operation.
    """

    async def fetch_state(self, mint: str) -> FlowState:
        """Return the live accumulator root and a nullifier counter hint."""

    async def deposit(
        self,
        identity: Identity,
        mint: str,
        amount: int,
        state: FlowState,
    ) -> ProtocolResult:
        """Move public tokens from ``identity`` into the shielded pool."""

    async def internal_transfer(
        self,
        sender: Identity,
        recipient_view_key: str,
        mint: str,
        amount: int,
        state: FlowState,
    ) -> ProtocolResult:
        """Transfer shielded value to the holder of ``recipient_view_key``."""

    async def external_transfer(
        self,
        sender: Identity,
        recipient_address: str,
        mint: str,
        amount: int,
        state: FlowState,
    ) -> ProtocolResult:
        """Withdraw shielded value to a public address (relayed)."""

    async def create_authorization(
        self,
        payer: Identity,
        payee_address: str,
        mint: str,
        amount: int,
        expiry_slots: int,
    ) -> AuthorizationIntent:
        """Create a payment authorization the payee can later settle."""

    async def settle_authorization(
        self,
        payee: Identity,
        mint: str,
        amount: int,
        intent_hash: str,
        state: FlowState,
    ) -> ProtocolResult:
        """Settle a previously created authorization (relayed)."""
