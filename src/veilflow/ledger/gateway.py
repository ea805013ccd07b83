"""Ledger gateway contract consumed by the sequencer and funding helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from veilflow.identity.store import Identity
from veilflow.schemas.ledger_models import (
    CreateTokenAccount,
    LedgerTransaction,
    SignedTransaction,
)

LOGGER = logging.getLogger(__name__)


class LedgerGateway(Protocol):
    """Capability-bounded facade over the ledger.

    Every submitting call awaits confirmation before returning; failures raise
    ``SubmissionFailed`` or ``ConfirmationTimeout``.
    """

    async def submit_and_confirm(self, transaction: SignedTransaction) -> str:
        """Submit a signed transaction and wait for confirmation."""

    async def request_airdrop(self, address: str, lamports: int) -> str:
        """Request and confirm a native-currency airdrop."""

    async def get_native_balance(self, address: str) -> int:
        """Return native balance in lamports."""

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """Return the owner's token balance in base units (0 if the account is absent)."""

    async def token_account_exists(self, owner: str, mint: str) -> bool:
        """Return whether the owner's associated token account exists."""

    async def estimate_fee(self, transaction: LedgerTransaction) -> int:
        """Return the network fee the transaction would pay."""

    async def fetch_transaction(self, signature: str) -> dict[str, Any] | None:
        """Return ledger-side detail for a confirmed transaction."""


@dataclass(frozen=True)
class EnrichmentResult:
    """Outcome of optional transaction-detail enrichment."""

    value: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None


async def ensure_token_account(
    gateway: LedgerGateway,
    *,
    owner: str,
    payer: Identity,
    mint: str,
) -> str | None:
    """Create the owner's token account if absent; returns the signature when created."""
    if await gateway.token_account_exists(owner, mint):
        return None
    transaction = LedgerTransaction(
        payer=payer.address,
        instructions=(CreateTokenAccount(payer=payer.address, owner=owner, mint=mint),),
    )
    return await gateway.submit_and_confirm(payer.sign_transaction(transaction))


async def fetch_transaction_details(
    gateway: LedgerGateway,
    signature: str,
) -> EnrichmentResult:
    """Fetch display detail for a signature without ever failing the caller."""
    try:
        detail = await gateway.fetch_transaction(signature)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Transaction detail fetch failed for %s: %s", signature, exc)
        return EnrichmentResult(error=str(exc))
    if detail is None:
        return EnrichmentResult(error="no detail available")
    return EnrichmentResult(value=detail)
