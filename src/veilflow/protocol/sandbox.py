"""Sandbox implementation of the protocol operations.

The accumulator root is a sha256 chain over note commitments and nullifiers
are plain integers kept in a per-mint set. Every operation checks that the
caller's root matches the live root, so a caller holding a stale snapshot is
rejected the same way the on-chain program rejects it.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from veilflow.constants import EMPTY_ROOT
from veilflow.errors import SubmissionFailed
from veilflow.identity.store import Identity, verify_signature
from veilflow.ledger.sandbox import SandboxLedger
from veilflow.schemas.flow_models import AuthorizationIntent, FlowState, ProtocolResult

LOGGER = logging.getLogger(__name__)

RELAYER = "relayer"


@dataclass
class _Intent:
    payer: str
    payee: str
    mint: str
    amount: int
    expiry_slots: int
    settled: bool = False


class SandboxProtocol:
    """Shielded pool simulation backed by a ``SandboxLedger``."""

    def __init__(self, ledger: SandboxLedger) -> None:
        self.ledger = ledger
        self._roots: dict[str, bytes] = {}
        self._commitments: dict[str, int] = {}
        self._nullifiers: dict[str, set[int]] = {}
        self._intents: dict[str, _Intent] = {}

    def root(self, mint: str) -> bytes:
        return self._roots.get(mint, EMPTY_ROOT)

    def nullifiers(self, mint: str) -> set[int]:
        return set(self._nullifiers.get(mint, set()))

    async def fetch_state(self, mint: str) -> FlowState:
        used = self._nullifiers.get(mint, set())
        return FlowState(root=self.root(mint), next_nullifier=max(used) + 1 if used else 0)

    async def deposit(
        self,
        identity: Identity,
        mint: str,
        amount: int,
        state: FlowState,
    ) -> ProtocolResult:
        self._check_amount(amount)
        self._check_root(mint, state)
        self._authorize(identity, f"deposit:{mint}:{amount}:{state.root_hex}")
        balance = await self.ledger.get_token_balance(identity.address, mint)
        if balance < amount:
            raise SubmissionFailed(
                f"Deposit of {amount} exceeds {identity.display_name} balance of {balance}"
            )
        signature = self.ledger.record_external(
            payer=identity.address,
            kind="deposit",
            detail={"mint": mint, "amount": amount},
        )
        self.ledger.move_to_vault(identity.address, mint, amount)
        new_root = self._append_commitment(mint, identity.address, amount)
        return ProtocolResult(
            signature=signature,
            new_state=FlowState(root=new_root, next_nullifier=state.next_nullifier),
        )

    async def internal_transfer(
        self,
        sender: Identity,
        recipient_view_key: str,
        mint: str,
        amount: int,
        state: FlowState,
    ) -> ProtocolResult:
        self._check_amount(amount)
        self._check_root(mint, state)
        self._check_pool(mint, amount)
        nullifier = self._check_nullifier(mint, state)
        self._authorize(sender, f"internal:{mint}:{amount}:{recipient_view_key}:{nullifier}")
        signature = self.ledger.record_external(
            payer=sender.address,
            kind="internal_transfer",
            detail={"mint": mint, "nullifier": nullifier},
        )
        self._nullifiers.setdefault(mint, set()).add(nullifier)
        new_root = self._append_commitment(mint, recipient_view_key, amount)
        return ProtocolResult(
            signature=signature,
            new_state=FlowState(root=new_root, next_nullifier=nullifier + 1),
        )

    async def external_transfer(
        self,
        sender: Identity,
        recipient_address: str,
        mint: str,
        amount: int,
        state: FlowState,
    ) -> ProtocolResult:
        self._check_amount(amount)
        self._check_root(mint, state)
        self._check_pool(mint, amount)
        nullifier = self._check_nullifier(mint, state)
        self._authorize(sender, f"external:{mint}:{amount}:{recipient_address}:{nullifier}")
        signature = self.ledger.record_external(
            payer=RELAYER,
            kind="external_transfer",
            detail={"mint": mint, "recipient": recipient_address, "amount": amount},
        )
        self._nullifiers.setdefault(mint, set()).add(nullifier)
        self.ledger.release_from_vault(mint, recipient_address, amount)
        new_root = self._append_commitment(mint, f"spent:{nullifier}", 0)
        return ProtocolResult(
            signature=signature,
            new_state=FlowState(root=new_root, next_nullifier=nullifier + 1),
        )

    async def create_authorization(
        self,
        payer: Identity,
        payee_address: str,
        mint: str,
        amount: int,
        expiry_slots: int,
    ) -> AuthorizationIntent:
        self._check_amount(amount)
        message = f"authorize:{mint}:{amount}:{payee_address}:{expiry_slots}:{len(self._intents)}"
        self._authorize(payer, message)
        intent_hash = hashlib.sha256(message.encode("utf-8")).hexdigest()
        signature = self.ledger.record_external(
            payer=payer.address,
            kind="create_authorization",
            detail={"mint": mint, "payee": payee_address, "intent_hash": intent_hash},
        )
        self._intents[intent_hash] = _Intent(
            payer=payer.address,
            payee=payee_address,
            mint=mint,
            amount=amount,
            expiry_slots=expiry_slots,
        )
        return AuthorizationIntent(signature=signature, intent_hash=intent_hash)

    async def settle_authorization(
        self,
        payee: Identity,
        mint: str,
        amount: int,
        intent_hash: str,
        state: FlowState,
    ) -> ProtocolResult:
        intent = self._intents.get(intent_hash)
        if intent is None or intent.settled:
            raise SubmissionFailed(f"Unknown or settled authorization: {intent_hash}")
        if intent.payee != payee.address or intent.amount != amount or intent.mint != mint:
            raise SubmissionFailed("Authorization does not match settlement request")
        self._check_root(mint, state)
        self._check_pool(mint, amount)
        nullifier = self._check_nullifier(mint, state)
        self._authorize(payee, f"settle:{intent_hash}:{nullifier}")
        signature = self.ledger.record_external(
            payer=RELAYER,
            kind="settle_authorization",
            detail={"mint": mint, "intent_hash": intent_hash},
        )
        intent.settled = True
        self._nullifiers.setdefault(mint, set()).add(nullifier)
        self.ledger.release_from_vault(mint, payee.address, amount)
        new_root = self._append_commitment(mint, f"settled:{intent_hash}", 0)
        return ProtocolResult(
            signature=signature,
            new_state=FlowState(root=new_root, next_nullifier=nullifier + 1),
        )

    @staticmethod
    def _check_amount(amount: int) -> None:
        if amount <= 0:
            raise SubmissionFailed(f"Amount must be positive, got {amount}")

    def _check_root(self, mint: str, state: FlowState) -> None:
        if state.root != self.root(mint):
            raise SubmissionFailed("Supplied root does not match the on-chain root.")

    def _check_pool(self, mint: str, amount: int) -> None:
        available = self.ledger.vault_balance(mint)
        if available < amount:
            raise SubmissionFailed(
                f"Shielded pool holds {available} base unit(s), cannot spend {amount}"
            )

    def _check_nullifier(self, mint: str, state: FlowState) -> int:
        nullifier = state.next_nullifier
        if nullifier in self._nullifiers.get(mint, set()):
            raise SubmissionFailed(f"Nullifier {nullifier} already spent")
        return nullifier

    @staticmethod
    def _authorize(identity: Identity, message: str) -> None:
        payload = message.encode("utf-8")
        if not verify_signature(identity.address, payload, identity.sign_message(payload)):
            raise SubmissionFailed(f"Authorization signature rejected for {identity.display_name}")

    def _append_commitment(self, mint: str, owner: str, amount: int) -> bytes:
        index = self._commitments.get(mint, 0)
        commitment = hashlib.sha256(f"{owner}:{amount}:{index}".encode("utf-8")).digest()
        new_root = hashlib.sha256(self.root(mint) + commitment).digest()
        self._roots[mint] = new_root
        self._commitments[mint] = index + 1
        LOGGER.debug("Sandbox root for %s advanced to %s", mint, new_root.hex())
        return new_root
