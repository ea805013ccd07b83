"""Runner facade wiring configuration, backend and stores into a sequencer."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Mapping

from veilflow.config import load_app_config
from veilflow.errors import FlowAborted
from veilflow.flow.amount_policy import to_base_units
from veilflow.flow.events import EventBus
from veilflow.flow.sequencer import RunOutcome, StepSequencer
from veilflow.flow.state import NullifierCounterStore
from veilflow.flow.transition_store import FlowTransitionStore
from veilflow.identity.store import (
    Identity,
    IdentityStore,
    generate_identity,
    load_keypair_file,
    write_keypair_file,
)
from veilflow.ledger.sandbox import SandboxLedger
from veilflow.observability import (
    RunManifestStore,
    TransactionRecorder,
    build_run_manifest,
    create_tracer,
)
from veilflow.protocol.sandbox import SandboxProtocol
from veilflow.schemas.enums import RunState

LOGGER = logging.getLogger(__name__)


class VeilFlowRunner:
    """Builds a ready-to-run sequencer against the configured backend."""

    def __init__(
        self,
        *,
        config_path: Path | None = None,
        db_path: Path | None = None,
        env: dict[str, str] | None = None,
        cli_overrides: Mapping[str, Any] | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.env = dict(os.environ) if env is None else env
        self.config = load_app_config(config_path, env=self.env, cli_overrides=cli_overrides)
        self.state_dir = self.config.state_dir
        self.db_path = db_path or self.state_dir / "veilflow.db"
        self.identity_store = IdentityStore(self.state_dir / "wallets")
        self.identity_store.restore()
        self.operator = self._load_operator()
        self.ledger = SandboxLedger(
            fee_lamports=self.config.sandbox.fee_lamports,
            rent_lamports=self.config.sandbox.rent_lamports,
        )
        self.protocol = SandboxProtocol(self.ledger)
        self._seed_sandbox()
        self.recorder = TransactionRecorder(self.db_path)
        self.manifest_store = RunManifestStore(self.db_path)
        self.tracer = create_tracer(self.env)
        self.events = events or EventBus()
        self.sequencer = StepSequencer(
            config=self.config,
            identity_store=self.identity_store,
            gateway=self.ledger,
            protocol=self.protocol,
            recorder=self.recorder,
            operator=self.operator,
            transition_store=FlowTransitionStore(self.db_path),
            tracer=self.tracer,
            counter_store=NullifierCounterStore(self.state_dir / "nullifier_counter.json"),
            events=self.events,
        )

    async def run(
        self,
        *,
        selection: Mapping[str, bool] | None = None,
        flow_amount: str | None = None,
        fund_amount: str | None = None,
        wrap_amount: str | None = None,
    ) -> RunOutcome:
        """Configure and execute one run, persisting its manifest either way."""
        self.sequencer.configure(selection, flow_amount, fund_amount, wrap_amount)
        try:
            outcome = await self.sequencer.run()
        except FlowAborted as exc:
            self._persist_run_manifest(
                run_state=RunState.ABORTED,
                failed_step=exc.step_id,
                failure=str(exc),
            )
            raise
        finally:
            self.tracer.flush()
        self._persist_run_manifest(run_state=RunState.COMPLETED, record_ids=outcome.record_ids)
        return outcome

    def run_sync(self, **kwargs: Any) -> RunOutcome:
        return asyncio.run(self.run(**kwargs))

    def _load_operator(self) -> Identity:
        path = self.config.operator_keypair_path or self.state_dir / "operator.json"
        if path.exists():
            return load_keypair_file(path)
        if self.config.operator_keypair_path is not None:
            raise FileNotFoundError(f"Operator keypair not found: {path}")
        operator = generate_identity("operator")
        write_keypair_file(path, operator)
        LOGGER.info("Generated sandbox operator keypair at %s", path)
        return operator

    def _seed_sandbox(self) -> None:
        self.ledger.credit_native(self.operator.address, self.config.sandbox.operator_lamports)
        mint = self.config.mint
        if mint.resolved:
            assert mint.decimals is not None
            self.ledger.mint_tokens(
                self.operator.address,
                mint.address,
                to_base_units(self.config.sandbox.operator_tokens, mint.decimals),
            )

    def _persist_run_manifest(
        self,
        *,
        run_state: RunState,
        failed_step: str | None = None,
        failure: str | None = None,
        record_ids: list[str] | None = None,
    ) -> None:
        run_id = self.sequencer.last_run_id
        if run_id is None:
            return
        flow_state = self.sequencer.last_flow_state
        manifest = build_run_manifest(
            config=self.config,
            run_id=run_id,
            requested_amount=self.sequencer.flow_amount,
            fund_amount=self.sequencer.fund_amount,
            wrap_amount=self.sequencer.wrap_amount,
            selection=self.sequencer.selection,
            allocation=self.sequencer.last_allocation,
            run_state=run_state,
            step_statuses={key: value.value for key, value in self.sequencer.statuses.items()},
            failed_step=failed_step,
            failure=failure,
            final_root=flow_state.root_hex if flow_state else None,
            next_nullifier=flow_state.next_nullifier if flow_state else None,
            record_ids=record_ids
            if record_ids is not None
            else [record.id for record in self.recorder.list_records(run_id)],
        )
        self.manifest_store.upsert(manifest)
