"""Package-wide constants."""

from __future__ import annotations

PACKAGE_VERSION = "0.4.0"
SCHEMA_VERSION = "1.0.0"

LAMPORTS_PER_SOL = 1_000_000_000
NATIVE_DECIMALS = 9
WRAPPED_NATIVE_MINT = "So11111111111111111111111111111111111111112"

ROOT_SIZE_BYTES = 32
EMPTY_ROOT = bytes(ROOT_SIZE_BYTES)

IDENTITY_LABELS = ("A", "B", "C")
VIEW_KEY_MESSAGE = b"veilpay:view-key:0"

DEFAULT_STEP_TOGGLES: dict[str, bool] = {
    "airdropWallets": True,
    "wrapSol": True,
    "fundWallets": True,
    "deposit": True,
    "internal": True,
    "authorization": False,
    "withdraw": True,
    "external": True,
    "cleanupWallets": True,
}
ORDERABLE_SPEND_STEPS = ("withdraw", "external")
