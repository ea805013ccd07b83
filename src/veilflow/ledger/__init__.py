"""Ledger gateway exports."""

from veilflow.ledger.gateway import (
    EnrichmentResult,
    LedgerGateway,
    ensure_token_account,
    fetch_transaction_details,
)
from veilflow.ledger.sandbox import SandboxLedger

__all__ = [
    "EnrichmentResult",
    "LedgerGateway",
    "SandboxLedger",
    "ensure_token_account",
    "fetch_transaction_details",
]
