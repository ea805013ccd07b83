"""Error kinds raised by the harness and its collaborators."""

from __future__ import annotations

from typing import Any


class VeilFlowError(Exception):
    """Base class for every harness error."""


class InvalidAmount(VeilFlowError):
    """Amount string is malformed, negative, or resolves to zero base units."""


class InsufficientBalance(VeilFlowError):
    """A balance-gated operation has nothing (or not enough) to work with."""


class SubmissionFailed(VeilFlowError):
    """The ledger rejected a transaction before confirmation."""


class ConfirmationTimeout(VeilFlowError):
    """A submitted transaction was not confirmed in time."""


class FundingFailed(VeilFlowError):
    """Pre-funding of the test identities did not complete."""


class CleanupFailed(VeilFlowError):
    """Returning funds from a test identity to the operator failed."""

    def __init__(self, message: str, *, label: str | None = None) -> None:
        super().__init__(message)
        self.label = label


class MissingIdentity(VeilFlowError):
    """An operation needs an identity that was never generated or restored."""

    def __init__(self, labels: list[str] | tuple[str, ...]) -> None:
        self.labels = tuple(labels)
        joined = ", ".join(f"Wallet {label}" for label in self.labels)
        super().__init__(f"Missing identity: {joined}. Generate test wallets first.")


class MissingConfiguration(VeilFlowError):
    """Mint address or decimals are not resolved yet."""


class ProtocolStateError(VeilFlowError):
    """A protocol operation returned a state delta that breaks flow invariants."""


class FlowBusyError(VeilFlowError):
    """A run is already in progress."""


class FlowAborted(VeilFlowError):
    """Run-level failure surfaced to the caller."""

    def __init__(
        self,
        message: str,
        *,
        step_id: str | None,
        error: BaseException,
        statuses: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.error = error
        self.statuses = dict(statuses or {})
