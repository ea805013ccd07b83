"""Step catalog, plan and selection tests."""

from __future__ import annotations

import pytest

from veilflow.flow.steps import STEP_CATALOG, build_plan, resolve_selection, toggle_gates
from veilflow.schemas.enums import ClusterMode


def _ids(cluster: ClusterMode, spend_order: tuple[str, ...] = ("withdraw", "external")) -> list[str]:
    return [step.id for step in build_plan(cluster, spend_order)]


def test_catalog_positions_are_unique_and_ordered() -> None:
    """Catalog order follows the declared positions."""
    positions = [step.position for step in STEP_CATALOG]
    assert positions == sorted(positions)
    assert len(set(positions)) == len(positions)


def test_plan_per_cluster() -> None:
    """Funding and cleanup steps exist only in their cluster modes."""
    assert _ids(ClusterMode.LOCALNET) == [
        "airdrop-wallets",
        "deposit",
        "internal-a-b",
        "authorization",
        "internal-b-c",
        "withdraw",
        "external",
        "cleanup-wallets",
    ]
    assert _ids(ClusterMode.DEVNET)[:2] == ["wrap-sol", "fund-wallets"]
    assert "cleanup-wallets" in _ids(ClusterMode.DEVNET)
    assert _ids(ClusterMode.MAINNET) == [
        "deposit",
        "internal-a-b",
        "authorization",
        "internal-b-c",
        "withdraw",
        "external",
    ]


def test_spend_order_swaps_withdraw_and_external() -> None:
    """The orderable spends keep their slots but follow the configured order."""
    ids = _ids(ClusterMode.MAINNET, ("external", "withdraw"))
    assert ids[-2:] == ["external", "withdraw"]
    assert ids[:4] == ["deposit", "internal-a-b", "authorization", "internal-b-c"]


def test_internal_toggle_gates_both_internal_steps() -> None:
    """One toggle can gate several steps."""
    gates = toggle_gates()
    assert gates["internal"] == ("internal-a-b", "internal-b-c")
    assert gates["deposit"] == ("deposit",)


def test_selection_defaults_and_overrides() -> None:
    """Toggles apply to gated steps and step ids override toggles."""
    plan = build_plan(ClusterMode.LOCALNET, ("withdraw", "external"))

    defaults = resolve_selection(plan)
    assert defaults["authorization"] is False
    assert defaults["internal-a-b"] is True

    resolved = resolve_selection(
        plan,
        {"internal": False, "internal-b-c": True, "authorization": True},
    )
    assert resolved["internal-a-b"] is False
    assert resolved["internal-b-c"] is True
    assert resolved["authorization"] is True
    assert set(resolved) == {step.id for step in plan}


def test_selection_ignores_toggles_for_absent_steps() -> None:
    """Toggles for steps outside the plan do not add them."""
    plan = build_plan(ClusterMode.MAINNET, ("withdraw", "external"))
    resolved = resolve_selection(plan, {"airdropWallets": True})
    assert "airdrop-wallets" not in resolved


def test_unknown_selection_key_is_rejected() -> None:
    """Typos in the selection fail loudly."""
    plan = build_plan(ClusterMode.LOCALNET, ("withdraw", "external"))
    with pytest.raises(ValueError, match="Unknown step or toggle: teleport"):
        resolve_selection(plan, {"teleport": True})
