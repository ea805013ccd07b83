"""Multi-wallet step sequencer.

Runs the enabled steps of the plan strictly one after another. Each step is
bracketed by status transitions (idle -> running -> success | error); the
first failure marks its step, sweeps anything still running to error and
aborts the run with ``FlowAborted``. Protocol steps read ``RunContext.flow_state``
at call time so every step sees the state produced by the step before it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping
from uuid import uuid4

from veilflow.config.models import AppConfig
from veilflow.constants import NATIVE_DECIMALS
from veilflow.errors import (
    FlowAborted,
    FlowBusyError,
    FundingFailed,
    InsufficientBalance,
    InvalidAmount,
    MissingConfiguration,
    MissingIdentity,
    ProtocolStateError,
)
from veilflow.flow.amount_policy import (
    allocate,
    format_base_units,
    resolve_working_amount,
    to_base_units,
)
from veilflow.flow.events import (
    AmountAdjusted,
    EventBus,
    RunAborted,
    RunCompleted,
    RunStarted,
    StatusMessage,
    TransactionRecorded,
)
from veilflow.flow.funding import FundingService
from veilflow.flow.state import NullifierCounterStore, RunContext, StepStatusBoard
from veilflow.flow.steps import PROTOCOL_STEP_IDS, build_plan, resolve_selection
from veilflow.flow.transition_store import FlowTransitionStore
from veilflow.identity.store import Identity, IdentitySet, IdentityStore
from veilflow.ledger.gateway import LedgerGateway, fetch_transaction_details
from veilflow.observability.tracing import NoOpTracer, TracerProtocol
from veilflow.observability.transaction_log import TransactionRecorder
from veilflow.protocol.flows import ProtocolFlows
from veilflow.schemas.enums import RunState, StepStatus, TransactionStatus
from veilflow.schemas.flow_models import (
    AmountAllocation,
    FlowState,
    ProtocolResult,
    StepDescriptor,
)
from veilflow.security.redaction import redact_text

LOGGER = logging.getLogger(__name__)

StepHandler = Callable[[RunContext, StepDescriptor], Awaitable[None]]


@dataclass
class RunOutcome:
    """Result of a completed run."""

    run_id: str
    run_state: RunState
    statuses: dict[str, StepStatus]
    allocation: AmountAllocation | None
    flow_state: FlowState
    record_ids: list[str] = field(default_factory=list)


class StepSequencer:
    """Orchestrates funding, protocol steps and cleanup for identities A, B, C."""

    def __init__(
        self,
        *,
        config: AppConfig,
        identity_store: IdentityStore,
        gateway: LedgerGateway,
        protocol: ProtocolFlows,
        recorder: TransactionRecorder,
        operator: Identity,
        funding: FundingService | None = None,
        transition_store: FlowTransitionStore | None = None,
        tracer: TracerProtocol | None = None,
        counter_store: NullifierCounterStore | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config
        self.identity_store = identity_store
        self.gateway = gateway
        self.protocol = protocol
        self.recorder = recorder
        self.operator = operator
        self.funding = funding or FundingService(gateway=gateway, config=config, operator=operator)
        self.tracer = tracer or NoOpTracer()
        self.counter_store = counter_store
        self.events = events or EventBus()
        self._plan = build_plan(config.cluster, config.flow.spend_order)
        self._board = StepStatusBoard(
            [step.id for step in self._plan],
            emit=self.events.emit,
            transition_store=transition_store,
        )
        self._handlers: dict[str, StepHandler] = {
            "wrap-sol": self._wrap_sol,
            "fund-wallets": self._fund_wallets,
            "airdrop-wallets": self._airdrop_wallets,
            "deposit": self._deposit,
            "internal-a-b": self._internal_a_b,
            "authorization": self._authorization,
            "internal-b-c": self._internal_b_c,
            "withdraw": self._withdraw,
            "external": self._external,
            "cleanup-wallets": self._cleanup_wallets,
        }
        self._busy = False
        self._run_state = RunState.IDLE
        self._last_run_id: str | None = None
        self._last_flow_state: FlowState | None = None
        self._last_allocation: AmountAllocation | None = None
        self.configure()

    # Surface consumed by the CLI and runner

    @property
    def plan(self) -> list[StepDescriptor]:
        return list(self._plan)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def run_state(self) -> RunState:
        return self._run_state

    @property
    def statuses(self) -> dict[str, StepStatus]:
        return self._board.snapshot()

    @property
    def selection(self) -> dict[str, bool]:
        return dict(self._enabled)

    @property
    def flow_amount(self) -> str:
        return self._flow_amount

    @property
    def fund_amount(self) -> str:
        return self._fund_amount

    @property
    def wrap_amount(self) -> str:
        return self._wrap_amount

    @property
    def last_run_id(self) -> str | None:
        return self._last_run_id

    @property
    def last_flow_state(self) -> FlowState | None:
        return self._last_flow_state

    @property
    def last_allocation(self) -> AmountAllocation | None:
        return self._last_allocation

    def configure(
        self,
        selection: Mapping[str, bool] | None = None,
        flow_amount: str | None = None,
        fund_amount: str | None = None,
        wrap_amount: str | None = None,
    ) -> None:
        """Resolve step selection and amounts for the next run.

        ``selection`` may use toggle keys (``internal``) or step ids
        (``internal-b-c``); omitted keys keep their configured defaults.
        """
        self._ensure_idle()
        self._enabled = resolve_selection(self._plan, selection, defaults=self.config.flow.steps)
        self._flow_amount = (flow_amount if flow_amount is not None else self.config.flow.amount).strip()
        self._fund_amount = (
            fund_amount if fund_amount is not None else self.config.funding.fund_amount
        ).strip()
        self._wrap_amount = (
            wrap_amount if wrap_amount is not None else self.config.funding.wrap_amount
        ).strip()
        decimals = self.config.mint.decimals
        if decimals is not None:
            to_base_units(self._flow_amount, decimals)
            to_base_units(self._fund_amount, decimals)
        to_base_units(self._wrap_amount, NATIVE_DECIMALS)

    def generate_identities(self) -> IdentitySet:
        self._ensure_idle()
        identities = self.identity_store.generate()
        self._board.reset("")
        self._run_state = RunState.IDLE
        return identities

    def reset_identities(self) -> None:
        self._ensure_idle()
        self.identity_store.reset()
        self._board.reset("")
        self._run_state = RunState.IDLE

    async def run(self) -> RunOutcome:
        """Execute every enabled step in plan order.

        Preflight problems (missing configuration, identities A/B, or an
        invalid amount) raise before any step starts. Step failures raise
        ``FlowAborted``.
        """
        if self._busy:
            raise FlowBusyError("A multi-wallet run is already in progress.")
        self._busy = True
        try:
            run_id = str(uuid4())
            self._board.reset(run_id)
            ctx = await self._prepare(run_id)
            return await self._execute_plan(ctx)
        finally:
            self._busy = False

    # Run phases

    async def _prepare(self, run_id: str) -> RunContext:
        mint = self.config.mint
        if not mint.resolved:
            raise MissingConfiguration(
                "Mint address and decimals must be configured before running the flow."
            )
        assert mint.decimals is not None
        identities = self.identity_store.current
        missing = identities.missing(("A", "B"))
        if missing:
            raise MissingIdentity(missing)

        requested_units = to_base_units(self._flow_amount, mint.decimals)
        if requested_units <= 0:
            raise InvalidAmount(
                f"Flow amount {self._flow_amount!r} resolves to zero base units."
            )

        enabled = dict(self._enabled)
        for step in self._plan:
            if not enabled.get(step.id):
                continue
            absent = identities.missing(step.requires)
            if absent:
                enabled[step.id] = False
                wallets = ", ".join(f"Wallet {label}" for label in absent)
                self._status(run_id, f"Skipping {step.label}: {wallets} missing.", level=logging.WARNING)

        live = await self.protocol.fetch_state(mint.address)
        persisted = self.counter_store.load(mint.address) if self.counter_store else 0
        flow_state = FlowState(
            root=live.root,
            next_nullifier=max(live.next_nullifier, persisted),
        )
        return RunContext(
            run_id=run_id,
            mint=mint.address,
            decimals=mint.decimals,
            identities=identities,
            operator=self.operator,
            flow_state=flow_state,
            requested_units=requested_units,
            enabled=enabled,
            emit=self.events.emit,
        )

    async def _execute_plan(self, ctx: RunContext) -> RunOutcome:
        self._run_state = RunState.RUNNING
        self._last_run_id = ctx.run_id
        enabled_steps = [step.id for step in self._plan if ctx.is_enabled(step.id)]
        self.tracer.start_run(
            run_id=ctx.run_id,
            metadata={
                "cluster": self.config.cluster.value,
                "mint": ctx.mint,
                "amount": self._flow_amount,
                "enabled_steps": enabled_steps,
            },
        )
        self.events.emit(
            RunStarted(run_id=ctx.run_id, enabled_steps=enabled_steps, requested_amount=self._flow_amount)
        )
        current: StepDescriptor | None = None
        try:
            for step in self._plan:
                if not ctx.is_enabled(step.id):
                    continue
                current = step
                await self._execute_step(ctx, step)
            current = None
        except Exception as exc:
            failure = redact_text(str(exc)) or type(exc).__name__
            message = f"Multi-wallet flow failed: {failure}"
            self._board.sweep_running(reason=f"Run aborted: {failure}")
            self._run_state = RunState.ABORTED
            statuses = self._board.snapshot()
            failed_step = current.id if current is not None else None
            self._status(ctx.run_id, message, level=logging.ERROR)
            self.events.emit(
                RunAborted(run_id=ctx.run_id, step_id=failed_step, error=failure, statuses=statuses)
            )
            raise FlowAborted(
                message,
                step_id=failed_step,
                error=exc,
                statuses={key: value.value for key, value in statuses.items()},
            ) from exc
        except BaseException as exc:
            # Cancellation or interrupt: settle statuses, then let it propagate.
            failure = type(exc).__name__
            self._board.sweep_running(reason=f"Run interrupted: {failure}")
            self._run_state = RunState.ABORTED
            statuses = self._board.snapshot()
            self._status(ctx.run_id, f"Multi-wallet flow interrupted: {failure}", level=logging.ERROR)
            self.events.emit(
                RunAborted(
                    run_id=ctx.run_id,
                    step_id=current.id if current is not None else None,
                    error=failure,
                    statuses=statuses,
                )
            )
            raise
        finally:
            await self._drain_enrichments(ctx)
            self._last_flow_state = ctx.flow_state
            self._last_allocation = ctx.allocation
            if self.counter_store is not None:
                self.counter_store.save(ctx.mint, ctx.flow_state.next_nullifier)
            self.tracer.finish_run(
                run_id=ctx.run_id,
                metadata={
                    "run_state": self._run_state.value,
                    "statuses": {key: value.value for key, value in self._board.snapshot().items()},
                },
                output_payload={
                    "root": ctx.flow_state.root_hex,
                    "next_nullifier": ctx.flow_state.next_nullifier,
                },
            )

        self._run_state = RunState.COMPLETED
        statuses = self._board.snapshot()
        self._status(ctx.run_id, "Multi-wallet flow complete.")
        self.events.emit(RunCompleted(run_id=ctx.run_id, statuses=statuses))
        return RunOutcome(
            run_id=ctx.run_id,
            run_state=self._run_state,
            statuses=statuses,
            allocation=ctx.allocation,
            flow_state=ctx.flow_state,
            record_ids=list(ctx.record_ids),
        )

    async def _execute_step(self, ctx: RunContext, step: StepDescriptor) -> None:
        self._board.set(step.id, StepStatus.RUNNING, reason=f"Executing {step.label}")
        self.tracer.record_stage(run_id=ctx.run_id, stage=step.id, metadata={"status": "running"})
        try:
            if step.id in PROTOCOL_STEP_IDS:
                await self._ensure_allocation(ctx)
            await self._handlers[step.id](ctx, step)
        except BaseException as exc:
            error = redact_text(str(exc)) or type(exc).__name__
            self._board.set(step.id, StepStatus.ERROR, reason=f"{step.label} failed: {error}")
            self.tracer.record_stage(
                run_id=ctx.run_id,
                stage=step.id,
                metadata={"status": "error", "error": error},
            )
            raise
        self._board.set(step.id, StepStatus.SUCCESS, reason=f"{step.label} completed")
        self.tracer.record_stage(
            run_id=ctx.run_id,
            stage=step.id,
            metadata={"status": "success"},
            output_payload={"root": ctx.flow_state.root_hex},
        )

    async def _ensure_allocation(self, ctx: RunContext) -> AmountAllocation:
        """Resolve the working and per-spend amounts once, before the first protocol step."""
        if ctx.allocation is not None:
            return ctx.allocation
        base_units, clamped = ctx.requested_units, False
        if ctx.is_enabled("deposit"):
            wallet_a = ctx.identities.require("A")
            available = await self.gateway.get_token_balance(wallet_a.address, ctx.mint)
            base_units, clamped = resolve_working_amount(ctx.requested_units, available)
            if clamped:
                self._adjusted(
                    ctx,
                    "clamped",
                    f"Reducing flow amount to {format_base_units(base_units, ctx.decimals)} "
                    "to match Wallet A balance.",
                    base_units,
                )
        spend_steps = sum(1 for step in self._plan if step.spend and ctx.is_enabled(step.id))
        allocation = allocate(
            requested_units=ctx.requested_units,
            base_units=base_units,
            spend_steps=spend_steps,
            clamped=clamped,
            fallback=self.config.flow.split_fallback,
        )
        if allocation.split_fallback_used:
            self._adjusted(
                ctx,
                "split_fallback",
                "Flow amount is too small to split; using full amount for each spend.",
                allocation.per_spend_units,
            )
        ctx.allocation = allocation
        return allocation

    # Step handlers

    async def _airdrop_wallets(self, ctx: RunContext, step: StepDescriptor) -> None:
        status = self._step_status(ctx, step)
        wallets = self._all_wallets(ctx)
        try:
            await self.funding.airdrop_and_wrap(wallets, wrap_amount=self._wrap_amount, status=status)
            await self.funding.wait_for_funding(wallets[0], status=status)
        except (FundingFailed, InsufficientBalance):
            raise
        except Exception as exc:
            raise FundingFailed(f"Airdrop + wrap failed: {exc}") from exc

    async def _wrap_sol(self, ctx: RunContext, step: StepDescriptor) -> None:
        status = self._step_status(ctx, step)
        try:
            await self.funding.wrap_for_funding(wrap_amount=self._wrap_amount, status=status)
        except Exception as exc:
            raise FundingFailed(f"Wrap SOL failed: {exc}") from exc

    async def _fund_wallets(self, ctx: RunContext, step: StepDescriptor) -> None:
        status = self._step_status(ctx, step)
        wallets = self._all_wallets(ctx)
        try:
            await self.funding.fund_wallets(wallets, fund_amount=self._fund_amount, status=status)
            await self.funding.wait_for_funding(wallets[0], status=status)
        except (FundingFailed, InsufficientBalance):
            raise
        except Exception as exc:
            raise FundingFailed(f"Funding wallets failed: {exc}") from exc

    async def _deposit(self, ctx: RunContext, step: StepDescriptor) -> None:
        assert ctx.allocation is not None
        wallet_a = ctx.identities.require("A")
        amount = ctx.allocation.base_units
        self._step_status(ctx, step)(f"Depositing {format_base_units(amount, ctx.decimals)}...")
        await self._submit(
            ctx,
            step,
            flow="wallet-a:deposit",
            relayer=False,
            details=self._details(ctx, amount, wallet=wallet_a),
            call=lambda: self.protocol.deposit(wallet_a, ctx.mint, amount, ctx.flow_state),
        )

    async def _internal_a_b(self, ctx: RunContext, step: StepDescriptor) -> None:
        await self._internal(ctx, step, sender="A", recipient="B", flow="wallet-a:internal")

    async def _internal_b_c(self, ctx: RunContext, step: StepDescriptor) -> None:
        await self._internal(ctx, step, sender="B", recipient="C", flow="wallet-b:internal")

    async def _internal(
        self,
        ctx: RunContext,
        step: StepDescriptor,
        *,
        sender: str,
        recipient: str,
        flow: str,
    ) -> None:
        assert ctx.allocation is not None
        source = ctx.identities.require(sender)
        target = ctx.identities.require(recipient)
        amount = (
            ctx.allocation.base_units
            if self.config.flow.internal_uses_full_amount
            else ctx.allocation.per_spend_units
        )
        self._step_status(ctx, step)(
            f"Sending {format_base_units(amount, ctx.decimals)} to {target.display_name}..."
        )
        await self._submit(
            ctx,
            step,
            flow=flow,
            relayer=False,
            details=self._details(ctx, amount, wallet=source, recipient=target),
            call=lambda: self.protocol.internal_transfer(
                source, target.view_key, ctx.mint, amount, ctx.flow_state
            ),
        )

    async def _authorization(self, ctx: RunContext, step: StepDescriptor) -> None:
        assert ctx.allocation is not None
        payer = ctx.identities.require("A")
        payee = ctx.identities.require("B")
        amount = ctx.allocation.per_spend_units
        status = self._step_status(ctx, step)
        status("Creating authorization...")
        create_details = self._details(ctx, amount, wallet=payer, recipient=payee)
        try:
            intent = await self.protocol.create_authorization(
                payer,
                payee.address,
                ctx.mint,
                amount,
                self.config.flow.authorization_expiry_slots,
            )
        except Exception as exc:
            self._record(
                ctx,
                flow="wallet-a:auth-create",
                signature=None,
                relayer=False,
                status=TransactionStatus.FAILED,
                details={**create_details, "error": redact_text(str(exc))},
            )
            raise
        self._record(
            ctx,
            flow="wallet-a:auth-create",
            signature=intent.signature,
            relayer=False,
            status=TransactionStatus.CONFIRMED,
            details={**create_details, "intent_hash": intent.intent_hash},
        )
        status("Settling authorization via relayer...")
        await self._submit(
            ctx,
            step,
            flow="wallet-b:auth-settle",
            relayer=True,
            details={**self._details(ctx, amount, wallet=payee), "intent_hash": intent.intent_hash},
            call=lambda: self.protocol.settle_authorization(
                payee, ctx.mint, amount, intent.intent_hash, ctx.flow_state
            ),
        )

    async def _withdraw(self, ctx: RunContext, step: StepDescriptor) -> None:
        assert ctx.allocation is not None
        wallet_c = ctx.identities.require("C")
        amount = ctx.allocation.per_spend_units
        self._step_status(ctx, step)(
            f"Withdrawing {format_base_units(amount, ctx.decimals)} to {wallet_c.display_name}..."
        )
        await self._submit(
            ctx,
            step,
            flow="wallet-c:withdraw",
            relayer=True,
            details=self._details(ctx, amount, wallet=wallet_c, recipient=wallet_c),
            call=lambda: self.protocol.external_transfer(
                wallet_c, wallet_c.address, ctx.mint, amount, ctx.flow_state
            ),
        )

    async def _external(self, ctx: RunContext, step: StepDescriptor) -> None:
        assert ctx.allocation is not None
        wallet_b = ctx.identities.require("B")
        target = ctx.identities.c or ctx.identities.require("A")
        amount = ctx.allocation.per_spend_units
        self._step_status(ctx, step)(
            f"Sending {format_base_units(amount, ctx.decimals)} to {target.display_name}..."
        )
        await self._submit(
            ctx,
            step,
            flow="wallet-b:external",
            relayer=True,
            details=self._details(ctx, amount, wallet=wallet_b, recipient=target),
            call=lambda: self.protocol.external_transfer(
                wallet_b, target.address, ctx.mint, amount, ctx.flow_state
            ),
        )

    async def _cleanup_wallets(self, ctx: RunContext, step: StepDescriptor) -> None:
        await self.funding.cleanup_identities(self._all_wallets(ctx), status=self._step_status(ctx, step))

    # Helpers

    async def _submit(
        self,
        ctx: RunContext,
        step: StepDescriptor,
        *,
        flow: str,
        relayer: bool,
        details: dict[str, Any],
        call: Callable[[], Awaitable[ProtocolResult]],
    ) -> ProtocolResult:
        try:
            result = await call()
        except Exception as exc:
            self._record(
                ctx,
                flow=flow,
                signature=None,
                relayer=relayer,
                status=TransactionStatus.FAILED,
                details={**details, "error": redact_text(str(exc))},
            )
            raise
        record_id = self._record(
            ctx,
            flow=flow,
            signature=result.signature,
            relayer=relayer,
            status=TransactionStatus.CONFIRMED,
            details=details,
        )
        try:
            ctx.merge(step.id, result)
        except ProtocolStateError as exc:
            self.recorder.enrich(record_id, {"state_error": redact_text(str(exc))})
            raise
        return result

    def _record(
        self,
        ctx: RunContext,
        *,
        flow: str,
        signature: str | None,
        relayer: bool,
        status: TransactionStatus,
        details: dict[str, Any],
    ) -> str:
        record_id = self.recorder.append(
            run_id=ctx.run_id,
            flow=flow,
            signature=signature,
            relayer=relayer,
            status=status,
            details=details,
        )
        ctx.record_ids.append(record_id)
        self.events.emit(
            TransactionRecorded(
                run_id=ctx.run_id,
                record_id=record_id,
                flow=flow,
                signature=signature,
                relayer=relayer,
            )
        )
        if signature is not None:
            ctx.pending_enrichments.append(
                asyncio.create_task(self._enrich(record_id, signature))
            )
        return record_id

    async def _enrich(self, record_id: str, signature: str) -> None:
        result = await fetch_transaction_details(self.gateway, signature)
        if not result.ok:
            LOGGER.debug("No detail available for %s: %s", signature, result.error)
            return
        self.recorder.enrich(record_id, {"tx": result.value})

    async def _drain_enrichments(self, ctx: RunContext) -> None:
        if not ctx.pending_enrichments:
            return
        results = await asyncio.gather(*ctx.pending_enrichments, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                LOGGER.warning("Transaction enrichment failed: %s", result)
        ctx.pending_enrichments.clear()

    def _details(
        self,
        ctx: RunContext,
        amount: int,
        *,
        wallet: Identity,
        recipient: Identity | None = None,
    ) -> dict[str, Any]:
        details: dict[str, Any] = {
            "mint": ctx.mint,
            "amount": format_base_units(amount, ctx.decimals),
            "wallet": wallet.address,
        }
        if recipient is not None:
            details["recipient"] = recipient.address
        return details

    @staticmethod
    def _all_wallets(ctx: RunContext) -> list[Identity]:
        return [ctx.identities.require(label) for label in ("A", "B", "C")]

    def _step_status(self, ctx: RunContext, step: StepDescriptor) -> Callable[[str], None]:
        def status(message: str) -> None:
            self._status(ctx.run_id, f"[{step.label}] {message}", step_id=step.id)

        return status

    def _status(
        self,
        run_id: str,
        message: str,
        *,
        step_id: str | None = None,
        level: int = logging.INFO,
    ) -> None:
        LOGGER.log(level, message)
        self.events.emit(StatusMessage(run_id=run_id, message=message, step_id=step_id, level=level))

    def _adjusted(self, ctx: RunContext, kind: str, message: str, base_units: int) -> None:
        self._status(ctx.run_id, message, step_id="deposit", level=logging.WARNING)
        self.events.emit(
            AmountAdjusted(run_id=ctx.run_id, kind=kind, message=message, base_units=base_units)
        )

    def _ensure_idle(self) -> None:
        if self._busy:
            raise FlowBusyError("A multi-wallet run is already in progress.")
