"""Integer amount arithmetic for flow allocation.

All amounts are handled in base units (the smallest indivisible token unit).
Decimal strings are converted without floating point, fractional digits past
the mint's decimals are truncated, and splits use floor division so a split
never spends more units than it was given.
"""

from __future__ import annotations

import re

from veilflow.errors import InsufficientBalance, InvalidAmount
from veilflow.schemas.enums import SplitFallback
from veilflow.schemas.flow_models import AmountAllocation

_AMOUNT_PATTERN = re.compile(r"^[0-9]*\.?[0-9]*$")


def to_base_units(value: str, decimals: int) -> int:
    """Parse a decimal token amount into integer base units."""
    if decimals < 0:
        raise InvalidAmount(f"Invalid decimals: {decimals}")
    sanitized = value.strip()
    if sanitized.startswith("-"):
        raise InvalidAmount(f"Amount must not be negative: {value!r}")
    if not sanitized or not _AMOUNT_PATTERN.match(sanitized) or sanitized == ".":
        raise InvalidAmount(f"Invalid amount: {value!r}")
    whole_part, _, frac_part = sanitized.partition(".")
    whole = int(whole_part) if whole_part else 0
    frac = frac_part[:decimals].ljust(decimals, "0")
    frac_value = int(frac) if frac else 0
    return whole * 10**decimals + frac_value


def format_base_units(value: int, decimals: int) -> str:
    """Render base units as a decimal string without trailing zeros."""
    base = 10**decimals
    whole, frac = divmod(value, base)
    if decimals == 0:
        return str(whole)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{frac_str}" if frac_str else str(whole)


def split_evenly(total: int, parts: int) -> int:
    """Floor-divide ``total`` across ``parts``; no split when ``parts <= 0``."""
    if total < 0:
        raise InvalidAmount(f"Cannot split a negative total: {total}")
    if parts <= 0:
        return total
    return total // parts


def clamp_to_balance(requested: int, available: int) -> tuple[int, bool]:
    """Return ``(min(requested, available), requested > available)``."""
    return min(requested, available), requested > available


def resolve_working_amount(requested: int, available: int) -> tuple[int, bool]:
    """Clamp a balance-gated amount, refusing to proceed with nothing available."""
    if available <= 0:
        raise InsufficientBalance("Wallet A has no tokens available for the deposit step.")
    return clamp_to_balance(requested, available)


def allocate(
    *,
    requested_units: int,
    base_units: int,
    spend_steps: int,
    clamped: bool,
    fallback: SplitFallback,
) -> AmountAllocation:
    """Compute per-spend units, applying the degenerate-split policy."""
    if base_units <= 0:
        raise InvalidAmount("Flow amount resolves to zero base units.")
    per_spend = split_evenly(base_units, spend_steps)
    fallback_used = False
    if per_spend == 0 and spend_steps > 0:
        if fallback == SplitFallback.REJECT:
            raise InvalidAmount(
                f"Flow amount of {base_units} base unit(s) is too small to split "
                f"across {spend_steps} spend step(s)."
            )
        per_spend = base_units
        fallback_used = True
    return AmountAllocation(
        requested_units=requested_units,
        base_units=base_units,
        per_spend_units=per_spend,
        spend_steps=spend_steps,
        clamped=clamped,
        split_fallback_used=fallback_used,
    )
