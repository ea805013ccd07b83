"""Pre-funding and cleanup of the three test identities."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from veilflow.config.models import AppConfig
from veilflow.constants import NATIVE_DECIMALS
from veilflow.errors import CleanupFailed, FundingFailed, InsufficientBalance
from veilflow.flow.amount_policy import format_base_units, to_base_units
from veilflow.identity.store import Identity
from veilflow.ledger.gateway import LedgerGateway, ensure_token_account
from veilflow.resilience.retry import RetryExecutor, RetryExhausted, RetryPolicy
from veilflow.schemas.ledger_models import (
    CloseTokenAccount,
    CreateTokenAccount,
    LedgerTransaction,
    NativeTransfer,
    TokenTransfer,
    WrapNative,
)

LOGGER = logging.getLogger(__name__)

StatusFn = Callable[[str], None]


def required_operator_lamports(config: AppConfig) -> int:
    """Native balance the operator needs before a devnet funding run."""
    wrap_lamports = 0
    if config.mint.is_wrapped_native:
        wrap_lamports = to_base_units(config.funding.wrap_amount, NATIVE_DECIMALS)
    return (
        3 * config.funding.lamports_per_wallet
        + wrap_lamports
        + config.funding.fee_buffer_lamports
    )


class FundingService:
    """Moves native currency and tokens between the operator and identities."""

    def __init__(
        self,
        *,
        gateway: LedgerGateway,
        config: AppConfig,
        operator: Identity,
        retry_executor: RetryExecutor | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.operator = operator
        wait = config.funding_wait
        self.retry_executor = retry_executor or RetryExecutor(
            RetryPolicy(
                max_attempts=wait.max_attempts,
                backoff_seconds=wait.backoff_seconds,
                multiplier=wait.multiplier,
                jitter_seconds=wait.jitter_seconds,
            )
        )

    @property
    def mint(self) -> str:
        return self.config.mint.address

    @property
    def decimals(self) -> int:
        assert self.config.mint.decimals is not None
        return self.config.mint.decimals

    async def airdrop_and_wrap(
        self,
        identities: list[Identity],
        *,
        wrap_amount: str,
        status: StatusFn,
    ) -> None:
        """Airdrop to every identity concurrently, then wrap for each in order."""
        lamports = self.config.funding.airdrop_lamports
        status(f"Airdropping {format_base_units(lamports, NATIVE_DECIMALS)} SOL to each wallet...")
        await asyncio.gather(
            *(self.gateway.request_airdrop(identity.address, lamports) for identity in identities)
        )
        wrap_lamports = to_base_units(wrap_amount, NATIVE_DECIMALS)
        if self.config.mint.is_wrapped_native and wrap_lamports > 0:
            for identity in identities:
                status(f"Wrapping {wrap_amount} SOL for {identity.display_name}...")
                await self.wrap_native(identity, wrap_lamports)

    async def wrap_native(self, owner: Identity, lamports: int) -> str:
        instructions: list[CreateTokenAccount | WrapNative] = []
        if not await self.gateway.token_account_exists(owner.address, self.mint):
            instructions.append(
                CreateTokenAccount(payer=owner.address, owner=owner.address, mint=self.mint)
            )
        instructions.append(WrapNative(mint=self.mint, owner=owner.address, lamports=lamports))
        transaction = LedgerTransaction(payer=owner.address, instructions=tuple(instructions))
        return await self.gateway.submit_and_confirm(owner.sign_transaction(transaction))

    async def wrap_for_funding(self, *, wrap_amount: str, status: StatusFn) -> str | None:
        """Operator wraps native currency into the wrapped native mint."""
        if not self.config.mint.is_wrapped_native:
            status("Mint is not wrapped SOL; skipping wrap.")
            return None
        lamports = to_base_units(wrap_amount, NATIVE_DECIMALS)
        if lamports <= 0:
            status("Wrap amount is zero; skipping wrap.")
            return None
        status(f"Wrapping {wrap_amount} SOL into the operator token account...")
        return await self.wrap_native(self.operator, lamports)

    async def fund_wallets(
        self,
        identities: list[Identity],
        *,
        fund_amount: str,
        status: StatusFn,
    ) -> int:
        """Send native currency and tokens from the operator; returns tokens per wallet."""
        lamports = self.config.funding.lamports_per_wallet
        if lamports > 0:
            status(f"Sending {format_base_units(lamports, NATIVE_DECIMALS)} SOL to each wallet...")
            transaction = LedgerTransaction(
                payer=self.operator.address,
                instructions=tuple(
                    NativeTransfer(
                        source=self.operator.address,
                        destination=identity.address,
                        lamports=lamports,
                    )
                    for identity in identities
                ),
            )
            await self.gateway.submit_and_confirm(self.operator.sign_transaction(transaction))

        per_wallet = to_base_units(fund_amount, self.decimals)
        if per_wallet <= 0:
            return 0
        available = await self.gateway.get_token_balance(self.operator.address, self.mint)
        needed = per_wallet * len(identities)
        if available < needed:
            per_wallet = available // len(identities)
            if per_wallet <= 0:
                raise InsufficientBalance("Insufficient token balance to fund generated wallets.")
            message = (
                f"Reducing fund amount to {format_base_units(per_wallet, self.decimals)} "
                "per wallet to match operator balance."
            )
            LOGGER.warning(message)
            status(message)

        for identity in identities:
            await ensure_token_account(
                self.gateway, owner=identity.address, payer=self.operator, mint=self.mint
            )
        transaction = LedgerTransaction(
            payer=self.operator.address,
            instructions=tuple(
                TokenTransfer(
                    mint=self.mint,
                    source_owner=self.operator.address,
                    destination_owner=identity.address,
                    amount=per_wallet,
                )
                for identity in identities
            ),
        )
        status(f"Sending {format_base_units(per_wallet, self.decimals)} tokens to each wallet...")
        await self.gateway.submit_and_confirm(self.operator.sign_transaction(transaction))
        return per_wallet

    async def wait_for_funding(self, identity: Identity, *, status: StatusFn) -> None:
        """Poll until ``identity`` holds both native currency and tokens."""
        status(f"Waiting for {identity.display_name} funding to land...")

        async def probe() -> None:
            native = await self.gateway.get_native_balance(identity.address)
            tokens = await self.gateway.get_token_balance(identity.address, self.mint)
            if native <= 0 or tokens <= 0:
                raise FundingFailed(f"{identity.display_name} not funded yet")

        try:
            await self.retry_executor.run(probe, stage_name="funding-wait")
        except RetryExhausted as exc:
            raise FundingFailed(
                f"{identity.display_name} funding not confirmed yet. Try again in a moment."
            ) from exc
        status(f"{identity.display_name} funded.")

    async def cleanup_wallet(self, identity: Identity) -> list[str]:
        """Return tokens then native currency from ``identity`` to the operator."""
        signatures: list[str] = []
        if await self.gateway.token_account_exists(identity.address, self.mint):
            instructions: list[CreateTokenAccount | TokenTransfer | CloseTokenAccount] = []
            if not await self.gateway.token_account_exists(self.operator.address, self.mint):
                instructions.append(
                    CreateTokenAccount(
                        payer=identity.address, owner=self.operator.address, mint=self.mint
                    )
                )
            amount = await self.gateway.get_token_balance(identity.address, self.mint)
            if amount > 0:
                instructions.append(
                    TokenTransfer(
                        mint=self.mint,
                        source_owner=identity.address,
                        destination_owner=self.operator.address,
                        amount=amount,
                    )
                )
            instructions.append(
                CloseTokenAccount(
                    mint=self.mint, owner=identity.address, destination=self.operator.address
                )
            )
            transaction = LedgerTransaction(payer=identity.address, instructions=tuple(instructions))
            signatures.append(
                await self.gateway.submit_and_confirm(identity.sign_transaction(transaction))
            )

        balance = await self.gateway.get_native_balance(identity.address)
        if balance > 0:
            probe = LedgerTransaction(
                payer=identity.address,
                instructions=(
                    NativeTransfer(
                        source=identity.address, destination=self.operator.address, lamports=0
                    ),
                ),
            )
            fee = await self.gateway.estimate_fee(probe)
            lamports = balance - fee
            if lamports > 0:
                sweep = LedgerTransaction(
                    payer=identity.address,
                    instructions=(
                        NativeTransfer(
                            source=identity.address,
                            destination=self.operator.address,
                            lamports=lamports,
                        ),
                    ),
                )
                signatures.append(
                    await self.gateway.submit_and_confirm(identity.sign_transaction(sweep))
                )
        return signatures

    async def cleanup_identities(self, identities: list[Identity], *, status: StatusFn) -> None:
        status("Returning tokens + SOL to operator...")
        for identity in identities:
            try:
                await self.cleanup_wallet(identity)
            except Exception as exc:
                raise CleanupFailed(
                    f"Cleanup failed for {identity.display_name}: {exc}",
                    label=identity.label,
                ) from exc
        status("Cleanup complete.")
