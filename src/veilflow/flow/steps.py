"""Step catalog, plan construction and toggle resolution."""

from __future__ import annotations

from typing import Mapping

from veilflow.constants import DEFAULT_STEP_TOGGLES
from veilflow.schemas.enums import ClusterMode
from veilflow.schemas.flow_models import StepDescriptor

_TEST_MODES = (ClusterMode.LOCALNET, ClusterMode.DEVNET)

STEP_CATALOG: tuple[StepDescriptor, ...] = (
    StepDescriptor(
        id="wrap-sol",
        label="Wrap SOL for funding",
        toggle="wrapSol",
        position=0,
        modes=(ClusterMode.DEVNET,),
    ),
    StepDescriptor(
        id="fund-wallets",
        label="Fund wallets from operator",
        toggle="fundWallets",
        position=1,
        requires=("A", "B", "C"),
        modes=(ClusterMode.DEVNET,),
    ),
    StepDescriptor(
        id="airdrop-wallets",
        label="Airdrop + wrap wallets",
        toggle="airdropWallets",
        position=2,
        requires=("A", "B", "C"),
        modes=(ClusterMode.LOCALNET,),
    ),
    StepDescriptor(id="deposit", label="Deposit A", toggle="deposit", position=3, requires=("A",)),
    StepDescriptor(
        id="internal-a-b",
        label="Internal A→B",
        toggle="internal",
        position=4,
        requires=("A", "B"),
    ),
    StepDescriptor(
        id="authorization",
        label="Auth A→B",
        toggle="authorization",
        position=5,
        requires=("A", "B"),
        spend=True,
    ),
    StepDescriptor(
        id="internal-b-c",
        label="Internal B→C",
        toggle="internal",
        position=6,
        requires=("B", "C"),
    ),
    StepDescriptor(
        id="withdraw",
        label="Withdraw C",
        toggle="withdraw",
        position=7,
        requires=("C",),
        spend=True,
    ),
    StepDescriptor(
        id="external",
        label="External B→C",
        toggle="external",
        position=8,
        requires=("B",),
        spend=True,
    ),
    StepDescriptor(
        id="cleanup-wallets",
        label="Return tokens + SOL to operator",
        toggle="cleanupWallets",
        position=9,
        requires=("A", "B", "C"),
        modes=_TEST_MODES,
    ),
)

STEPS_BY_ID: dict[str, StepDescriptor] = {step.id: step for step in STEP_CATALOG}
FUNDING_STEP_IDS = frozenset({"wrap-sol", "fund-wallets", "airdrop-wallets"})
PROTOCOL_STEP_IDS = frozenset(
    {"deposit", "internal-a-b", "authorization", "internal-b-c", "withdraw", "external"}
)


def toggle_gates(steps: tuple[StepDescriptor, ...] | list[StepDescriptor] = STEP_CATALOG) -> dict[str, tuple[str, ...]]:
    """Map each toggle key to the step ids it gates."""
    gates: dict[str, list[str]] = {}
    for step in steps:
        gates.setdefault(step.toggle, []).append(step.id)
    return {toggle: tuple(step_ids) for toggle, step_ids in gates.items()}


def build_plan(cluster: ClusterMode, spend_order: list[str] | tuple[str, ...]) -> list[StepDescriptor]:
    """Return the ordered steps that exist for ``cluster``.

    The orderable spend steps keep their shared slots in the sequence but are
    filled in ``spend_order``.
    """
    available = [step for step in STEP_CATALOG if step.available_in(cluster)]
    slots = [index for index, step in enumerate(available) if step.id in spend_order]
    ordered = [STEPS_BY_ID[step_id] for step_id in spend_order if step_id in STEPS_BY_ID]
    plan = list(available)
    for slot, step in zip(slots, ordered):
        plan[slot] = step
    return plan


def resolve_selection(
    plan: list[StepDescriptor],
    selection: Mapping[str, bool] | None = None,
    *,
    defaults: Mapping[str, bool] = DEFAULT_STEP_TOGGLES,
) -> dict[str, bool]:
    """Resolve toggle keys and/or step ids into a per-step enabled map.

    Toggle keys apply to every step they gate; a step id overrides its toggle.
    """
    gates = toggle_gates()
    toggles = dict(defaults)
    step_overrides: dict[str, bool] = {}
    for key, enabled in (selection or {}).items():
        if key in gates:
            toggles[key] = bool(enabled)
        elif key in STEPS_BY_ID:
            step_overrides[key] = bool(enabled)
        else:
            raise ValueError(f"Unknown step or toggle: {key}")
    return {
        step.id: step_overrides.get(step.id, toggles.get(step.toggle, False))
        for step in plan
    }
