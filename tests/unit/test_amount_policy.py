"""Amount arithmetic and allocation tests."""

from __future__ import annotations

import pytest

from veilflow.errors import InsufficientBalance, InvalidAmount
from veilflow.flow.amount_policy import (
    allocate,
    clamp_to_balance,
    format_base_units,
    resolve_working_amount,
    split_evenly,
    to_base_units,
)
from veilflow.schemas.enums import SplitFallback


@pytest.mark.parametrize(
    ("value", "decimals", "expected"),
    [
        ("1", 6, 1_000_000),
        ("0.5", 6, 500_000),
        (".25", 2, 25),
        ("12.", 0, 12),
        ("0.0000001", 6, 0),
        ("1.23456789", 4, 12_345),
        (" 3 ", 1, 30),
    ],
)
def test_to_base_units_parses_without_floats(value: str, decimals: int, expected: int) -> None:
    """Decimal strings convert exactly, truncating digits past the mint scale."""
    assert to_base_units(value, decimals) == expected


@pytest.mark.parametrize("value", ["", ".", "abc", "1.2.3", "1e6", "-1", "- 0.5"])
def test_to_base_units_rejects_malformed_or_negative(value: str) -> None:
    """Non-numeric and negative input raise InvalidAmount."""
    with pytest.raises(InvalidAmount):
        to_base_units(value, 6)


def test_format_base_units_strips_trailing_zeros() -> None:
    """Formatting is the inverse of parsing for canonical strings."""
    assert format_base_units(1_500_000, 6) == "1.5"
    assert format_base_units(2_000_000, 6) == "2"
    assert format_base_units(7, 0) == "7"
    assert format_base_units(1, 9) == "0.000000001"


@pytest.mark.parametrize(("total", "parts"), [(1, 1), (7, 2), (1_000_000, 3), (5, 7), (999, 10)])
def test_split_evenly_never_invents_units(total: int, parts: int) -> None:
    """The split is non-negative and its multiple never exceeds the total."""
    share = split_evenly(total, parts)
    assert share >= 0
    assert share * parts <= total
    assert share <= total


def test_split_evenly_without_parts_returns_total() -> None:
    """Zero or negative parts means no split."""
    assert split_evenly(42, 0) == 42
    assert split_evenly(42, -1) == 42


def test_clamp_to_balance_reports_reduction() -> None:
    """Clamping returns the smaller value and whether it reduced the request."""
    assert clamp_to_balance(100, 40) == (40, True)
    assert clamp_to_balance(100, 100) == (100, False)
    assert clamp_to_balance(100, 250) == (100, False)


def test_resolve_working_amount_refuses_empty_balance() -> None:
    """A zero balance fails instead of silently depositing nothing."""
    with pytest.raises(InsufficientBalance, match="no tokens available"):
        resolve_working_amount(1_000, 0)
    assert resolve_working_amount(1_000, 250) == (250, True)


def test_allocate_splits_one_token_across_two_spends() -> None:
    """1 token at 6 decimals splits into 500,000 per spend with nothing lost."""
    allocation = allocate(
        requested_units=1_000_000,
        base_units=1_000_000,
        spend_steps=2,
        clamped=False,
        fallback=SplitFallback.FULL_AMOUNT,
    )
    assert allocation.per_spend_units == 500_000
    assert allocation.per_spend_units * allocation.spend_steps == 1_000_000
    assert allocation.split_fallback_used is False


def test_allocate_degenerate_split_uses_full_amount() -> None:
    """When the share floors to zero the full amount is used for each spend."""
    allocation = allocate(
        requested_units=1,
        base_units=1,
        spend_steps=2,
        clamped=False,
        fallback=SplitFallback.FULL_AMOUNT,
    )
    assert allocation.per_spend_units == 1
    assert allocation.split_fallback_used is True


def test_allocate_degenerate_split_can_be_rejected() -> None:
    """The reject policy raises instead of over-spending."""
    with pytest.raises(InvalidAmount, match="too small to split"):
        allocate(
            requested_units=1,
            base_units=1,
            spend_steps=3,
            clamped=False,
            fallback=SplitFallback.REJECT,
        )


def test_allocate_rejects_zero_base_units() -> None:
    """An amount truncated to zero is never submitted."""
    with pytest.raises(InvalidAmount):
        allocate(
            requested_units=0,
            base_units=0,
            spend_steps=2,
            clamped=False,
            fallback=SplitFallback.FULL_AMOUNT,
        )
