"""End-to-end acceptance runs against the sandbox backend."""

from __future__ import annotations

from pathlib import Path

import pytest

from veilflow.constants import WRAPPED_NATIVE_MINT
from veilflow.errors import FlowAborted, InsufficientBalance
from veilflow.flow.events import AmountAdjusted, EventBus, FlowEvent, RunCompleted, StepStatusChanged
from veilflow.flow.runner import VeilFlowRunner
from veilflow.schemas.enums import StepStatus, TransactionStatus

TOKEN_MINT = "TestMint11111111111111111111111111111111111"


def _write_config(
    tmp_path: Path,
    *,
    cluster: str,
    mint: str = WRAPPED_NATIVE_MINT,
    decimals: int = 9,
    extra: str = "",
) -> Path:
    config_path = tmp_path / "settings.yaml"
    config_path.write_text(
        f"""
schema_version: "1.0.0"
cluster: "{cluster}"
mint:
  address: "{mint}"
  decimals: {decimals}
state_dir: "{tmp_path / 'state'}"
funding_wait:
  max_attempts: 3
  backoff_seconds: 0.0
{extra}
""".strip(),
        encoding="utf-8",
    )
    return config_path


def _runner(config_path: Path, events: list[FlowEvent] | None = None) -> VeilFlowRunner:
    bus = EventBus()
    if events is not None:
        bus.subscribe(events.append)
    runner = VeilFlowRunner(config_path=config_path, env={}, events=bus)
    if not runner.identity_store.current.is_complete:
        runner.sequencer.generate_identities()
    return runner


def test_localnet_run_spends_pool_and_cleans_up(tmp_path: Path) -> None:
    """Airdrop, four spends and cleanup leave the pool and wallets empty."""
    events: list[FlowEvent] = []
    runner = _runner(_write_config(tmp_path, cluster="localnet"), events)
    operator_before = runner.ledger._balances.native[runner.operator.address]  # noqa: SLF001

    outcome = runner.run_sync()

    assert [step.id for step in runner.sequencer.plan] == [
        "airdrop-wallets",
        "deposit",
        "internal-a-b",
        "authorization",
        "internal-b-c",
        "withdraw",
        "external",
        "cleanup-wallets",
    ]
    assert outcome.statuses["authorization"] == StepStatus.IDLE
    assert all(
        status == StepStatus.SUCCESS
        for step_id, status in outcome.statuses.items()
        if step_id != "authorization"
    )
    assert outcome.flow_state.next_nullifier == 4
    assert runner.protocol.nullifiers(WRAPPED_NATIVE_MINT) == {0, 1, 2, 3}
    assert runner.ledger.vault_balance(WRAPPED_NATIVE_MINT) == 0
    assert outcome.flow_state.root == runner.protocol.root(WRAPPED_NATIVE_MINT)

    for identity in runner.identity_store.current.present:
        assert runner.ledger._balances.native.get(identity.address, 0) == 0  # noqa: SLF001
    assert runner.ledger._balances.native[runner.operator.address] > operator_before  # noqa: SLF001

    records = runner.recorder.list_records(outcome.run_id)
    assert len(records) == 5
    assert all(record.status == TransactionStatus.CONFIRMED for record in records)
    assert all("tx" in record.details for record in records)

    completed = [event for event in events if isinstance(event, RunCompleted)]
    assert len(completed) == 1
    changes = [event for event in events if isinstance(event, StepStatusChanged)]
    assert changes[0].step_id == "airdrop-wallets"
    assert changes[0].status == StepStatus.RUNNING


def test_localnet_authorization_run(tmp_path: Path) -> None:
    """Enabling authorization adds a third spend settled to Wallet B."""
    runner = _runner(_write_config(tmp_path, cluster="localnet"))

    outcome = runner.run_sync(selection={"authorization": True}, flow_amount="0.9")

    assert outcome.allocation is not None
    assert outcome.allocation.spend_steps == 3
    assert outcome.allocation.per_spend_units == 300_000_000
    assert outcome.flow_state.next_nullifier == 5
    flows = [record.flow for record in runner.recorder.list_records(outcome.run_id)]
    assert flows[2:4] == ["wallet-a:auth-create", "wallet-b:auth-settle"]


def test_devnet_run_funds_clamps_and_cleans_up(tmp_path: Path) -> None:
    """Devnet funding sends 0.3 tokens each and the flow amount follows it."""
    events: list[FlowEvent] = []
    runner = _runner(_write_config(tmp_path, cluster="devnet"), events)

    outcome = runner.run_sync()

    assert [step.id for step in runner.sequencer.plan][:2] == ["wrap-sol", "fund-wallets"]
    assert outcome.allocation is not None
    assert outcome.allocation.clamped is True
    assert outcome.allocation.base_units == 300_000_000
    assert outcome.allocation.per_spend_units == 150_000_000
    assert [event.kind for event in events if isinstance(event, AmountAdjusted)] == ["clamped"]
    assert outcome.statuses["cleanup-wallets"] == StepStatus.SUCCESS
    assert runner.ledger.vault_balance(WRAPPED_NATIVE_MINT) == 0


def test_mainnet_run_aborts_at_deposit(tmp_path: Path) -> None:
    """Without funding steps an empty Wallet A stops the run at deposit."""
    runner = _runner(_write_config(tmp_path, cluster="mainnet", mint=TOKEN_MINT, decimals=6))

    with pytest.raises(FlowAborted) as exc_info:
        runner.run_sync()

    assert exc_info.value.step_id == "deposit"
    assert isinstance(exc_info.value.error, InsufficientBalance)
    assert exc_info.value.statuses == {
        "deposit": "error",
        "internal-a-b": "idle",
        "authorization": "idle",
        "internal-b-c": "idle",
        "withdraw": "idle",
        "external": "idle",
    }
    assert runner.recorder.list_records() == []


def test_nullifier_counter_carries_across_runners(tmp_path: Path) -> None:
    """A fresh process resumes the counter saved by the previous run."""
    config_path = _write_config(tmp_path, cluster="localnet")
    first = _runner(config_path).run_sync()
    assert first.flow_state.next_nullifier == 4

    second_runner = _runner(config_path)
    second = second_runner.run_sync()

    assert second.flow_state.next_nullifier == 8
    assert second_runner.protocol.nullifiers(WRAPPED_NATIVE_MINT) == {4, 5, 6, 7}


def test_missing_wallet_c_on_localnet(tmp_path: Path) -> None:
    """Deleting Wallet C disables funding and every step that needs it."""
    config_path = _write_config(tmp_path, cluster="localnet")
    _runner(config_path)
    (tmp_path / "state" / "wallets" / "wallet_c.json").unlink()

    runner = VeilFlowRunner(config_path=config_path, env={})

    with pytest.raises(FlowAborted) as exc_info:
        runner.run_sync()

    assert exc_info.value.step_id == "deposit"
    assert exc_info.value.statuses["airdrop-wallets"] == "idle"
    assert exc_info.value.statuses["cleanup-wallets"] == "idle"
