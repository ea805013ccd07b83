"""Deterministic in-process ledger implementing the gateway contract."""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import base58

from veilflow.constants import WRAPPED_NATIVE_MINT
from veilflow.errors import SubmissionFailed, VeilFlowError
from veilflow.identity.store import verify_signature
from veilflow.schemas.ledger_models import (
    CloseTokenAccount,
    CreateTokenAccount,
    LedgerTransaction,
    NativeTransfer,
    SignedTransaction,
    TokenTransfer,
    WrapNative,
)

LOGGER = logging.getLogger(__name__)

VAULT_OWNER = "vault"


@dataclass
class _Balances:
    native: dict[str, int] = field(default_factory=dict)
    tokens: dict[tuple[str, str], int] = field(default_factory=dict)
    rent: dict[tuple[str, str], int] = field(default_factory=dict)


class SandboxLedger:
    """Ledger simulation with fees, rent, signature checks and failure injection."""

    def __init__(self, *, fee_lamports: int = 5_000, rent_lamports: int = 2_039_280) -> None:
        self.fee_lamports = fee_lamports
        self.rent_lamports = rent_lamports
        self._balances = _Balances()
        self._transactions: dict[str, dict[str, Any]] = {}
        self._slot = 0
        self._sequence = 0
        self._failures: deque[VeilFlowError] = deque()

    # Sandbox-only helpers

    def inject_failure(self, error: VeilFlowError) -> None:
        """Make the next submitting call raise ``error``."""
        self._failures.append(error)

    def credit_native(self, address: str, lamports: int) -> None:
        self._balances.native[address] = self._balances.native.get(address, 0) + lamports

    def mint_tokens(self, owner: str, mint: str, amount: int) -> None:
        key = (owner, mint)
        self._balances.tokens[key] = self._balances.tokens.get(key, 0) + amount
        self._balances.rent.setdefault(key, self.rent_lamports)

    def vault_balance(self, mint: str) -> int:
        return self._balances.tokens.get((VAULT_OWNER, mint), 0)

    def move_to_vault(self, owner: str, mint: str, amount: int) -> None:
        source = self._balances.tokens.get((owner, mint))
        if source is None:
            raise SubmissionFailed(f"No token account for {owner}")
        if source < amount:
            raise SubmissionFailed(f"Insufficient token balance: have {source}, need {amount}")
        self._balances.tokens[(owner, mint)] = source - amount
        self.mint_tokens(VAULT_OWNER, mint, amount)

    def release_from_vault(self, mint: str, recipient: str, amount: int) -> None:
        available = self.vault_balance(mint)
        if available < amount:
            raise SubmissionFailed(
                f"Vault balance too low: have {available}, need {amount}"
            )
        self._balances.tokens[(VAULT_OWNER, mint)] = available - amount
        self.mint_tokens(recipient, mint, amount)

    def record_external(self, *, payer: str, kind: str, detail: dict[str, Any]) -> str:
        """Log a transaction produced outside ``submit_and_confirm``."""
        self._take_failure()
        signature = self._next_signature(payer, kind)
        self._record(signature, payer=payer, fee=self.fee_lamports, instructions=[{"kind": kind, **detail}])
        return signature

    # Gateway contract

    async def submit_and_confirm(self, transaction: SignedTransaction) -> str:
        await asyncio.sleep(0)
        self._take_failure()
        unsigned = transaction.transaction
        message = unsigned.message_bytes()
        for signer in unsigned.required_signers():
            encoded = transaction.signatures.get(signer)
            if encoded is None:
                raise SubmissionFailed(f"Missing signature for {signer}")
            if not verify_signature(signer, message, base58.b58decode(encoded)):
                raise SubmissionFailed(f"Invalid signature for {signer}")
        signature = transaction.signatures[unsigned.payer]
        if signature in self._transactions:
            raise SubmissionFailed("Transaction already processed")

        fee = self.fee_lamports * len(unsigned.required_signers())
        staged = copy.deepcopy(self._balances)
        payer_balance = staged.native.get(unsigned.payer, 0)
        if payer_balance < fee:
            raise SubmissionFailed(
                f"Fee payer {unsigned.payer} cannot cover fee of {fee} lamports"
            )
        staged.native[unsigned.payer] = payer_balance - fee
        for instruction in unsigned.instructions:
            self._apply(staged, instruction)
        self._balances = staged
        self._record(
            signature,
            payer=unsigned.payer,
            fee=fee,
            instructions=[instruction.model_dump(mode="json") for instruction in unsigned.instructions],
        )
        return signature

    async def request_airdrop(self, address: str, lamports: int) -> str:
        await asyncio.sleep(0)
        self._take_failure()
        self.credit_native(address, lamports)
        signature = self._next_signature(address, "airdrop")
        self._record(
            signature,
            payer=address,
            fee=0,
            instructions=[{"kind": "airdrop", "destination": address, "lamports": lamports}],
        )
        return signature

    async def get_native_balance(self, address: str) -> int:
        await asyncio.sleep(0)
        return self._balances.native.get(address, 0)

    async def get_token_balance(self, owner: str, mint: str) -> int:
        await asyncio.sleep(0)
        return self._balances.tokens.get((owner, mint), 0)

    async def token_account_exists(self, owner: str, mint: str) -> bool:
        await asyncio.sleep(0)
        return (owner, mint) in self._balances.tokens

    async def estimate_fee(self, transaction: LedgerTransaction) -> int:
        await asyncio.sleep(0)
        return self.fee_lamports * len(transaction.required_signers())

    async def fetch_transaction(self, signature: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        detail = self._transactions.get(signature)
        return copy.deepcopy(detail) if detail is not None else None

    # Internals

    def _apply(self, staged: _Balances, instruction: Any) -> None:
        if isinstance(instruction, NativeTransfer):
            self._debit_native(staged, instruction.source, instruction.lamports)
            staged.native[instruction.destination] = (
                staged.native.get(instruction.destination, 0) + instruction.lamports
            )
        elif isinstance(instruction, CreateTokenAccount):
            key = (instruction.owner, instruction.mint)
            if key in staged.tokens:
                raise SubmissionFailed(f"Token account already in use for {instruction.owner}")
            self._debit_native(staged, instruction.payer, self.rent_lamports)
            staged.tokens[key] = 0
            staged.rent[key] = self.rent_lamports
        elif isinstance(instruction, TokenTransfer):
            source = (instruction.source_owner, instruction.mint)
            destination = (instruction.destination_owner, instruction.mint)
            if source not in staged.tokens:
                raise SubmissionFailed(f"No token account for {instruction.source_owner}")
            if destination not in staged.tokens:
                raise SubmissionFailed(f"No token account for {instruction.destination_owner}")
            if staged.tokens[source] < instruction.amount:
                raise SubmissionFailed(
                    f"Insufficient token balance: have {staged.tokens[source]}, "
                    f"need {instruction.amount}"
                )
            staged.tokens[source] -= instruction.amount
            staged.tokens[destination] += instruction.amount
        elif isinstance(instruction, CloseTokenAccount):
            key = (instruction.owner, instruction.mint)
            if key not in staged.tokens:
                raise SubmissionFailed(f"No token account for {instruction.owner}")
            remaining = staged.tokens[key]
            if remaining and instruction.mint != WRAPPED_NATIVE_MINT:
                raise SubmissionFailed("Cannot close a token account with a non-zero balance")
            refund = staged.rent.pop(key, 0)
            if instruction.mint == WRAPPED_NATIVE_MINT:
                refund += remaining
            del staged.tokens[key]
            staged.native[instruction.destination] = (
                staged.native.get(instruction.destination, 0) + refund
            )
        elif isinstance(instruction, WrapNative):
            if instruction.mint != WRAPPED_NATIVE_MINT:
                raise SubmissionFailed("Only the wrapped native mint can be synced")
            key = (instruction.owner, instruction.mint)
            if key not in staged.tokens:
                raise SubmissionFailed(f"No token account for {instruction.owner}")
            self._debit_native(staged, instruction.owner, instruction.lamports)
            staged.tokens[key] += instruction.lamports
        else:
            raise SubmissionFailed(f"Unsupported instruction: {instruction!r}")

    @staticmethod
    def _debit_native(staged: _Balances, address: str, lamports: int) -> None:
        balance = staged.native.get(address, 0)
        if balance < lamports:
            raise SubmissionFailed(
                f"Insufficient lamports in {address}: have {balance}, need {lamports}"
            )
        staged.native[address] = balance - lamports

    def _take_failure(self) -> None:
        if self._failures:
            raise self._failures.popleft()

    def _next_signature(self, payer: str, kind: str) -> str:
        self._sequence += 1
        digest = hashlib.sha512(f"{payer}:{kind}:{self._sequence}".encode("utf-8")).digest()
        return base58.b58encode(digest).decode("ascii")

    def _record(
        self,
        signature: str,
        *,
        payer: str,
        fee: int,
        instructions: list[dict[str, Any]],
    ) -> None:
        self._slot += 1
        self._transactions[signature] = {
            "slot": self._slot,
            "fee": fee,
            "err": None,
            "payer": payer,
            "instructions": instructions,
        }
        LOGGER.debug("Sandbox slot %s confirmed %s", self._slot, signature)
