"""Structured events emitted by the step sequencer.

Presentation layers (the CLI, tests) subscribe to an ``EventBus`` instead of
passing status callbacks into the orchestration code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from veilflow.schemas.enums import RunState, StepStatus

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AmountAdjusted",
    "EventBus",
    "FlowEvent",
    "RootChanged",
    "RunAborted",
    "RunCompleted",
    "RunStarted",
    "StatusMessage",
    "StepStatusChanged",
    "TransactionRecorded",
]


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class FlowEvent:
    """Base class for every sequencer event.

    Attributes:
        run_id: Identifier of the run that produced the event.
        timestamp: When the event was emitted.
    """

    run_id: str
    timestamp: datetime = field(default_factory=_now, kw_only=True)


@dataclass
class RunStarted(FlowEvent):
    """A run passed its preflight checks and is about to execute steps."""

    enabled_steps: list[str]
    requested_amount: str


@dataclass
class StatusMessage(FlowEvent):
    """Human-readable progress or diagnostic text."""

    message: str
    step_id: str | None = None
    level: int = logging.INFO


@dataclass
class StepStatusChanged(FlowEvent):
    """A step moved between idle, running, success and error."""

    step_id: str
    previous: StepStatus
    status: StepStatus
    reason: str = ""


@dataclass
class AmountAdjusted(FlowEvent):
    """The working or per-spend amount differs from what was requested."""

    kind: str
    message: str
    base_units: int


@dataclass
class RootChanged(FlowEvent):
    """A confirmed operation produced a new accumulator root."""

    step_id: str
    root_hex: str
    next_nullifier: int


@dataclass
class TransactionRecorded(FlowEvent):
    """A transaction record was appended to the log."""

    record_id: str
    flow: str
    signature: str | None
    relayer: bool


@dataclass
class RunCompleted(FlowEvent):
    """Every enabled step succeeded."""

    statuses: dict[str, StepStatus]
    state: RunState = RunState.COMPLETED


@dataclass
class RunAborted(FlowEvent):
    """A step failed and the remaining steps were not invoked."""

    step_id: str | None
    error: str
    statuses: dict[str, StepStatus]
    state: RunState = RunState.ABORTED


Subscriber = Callable[[FlowEvent], Any]


class EventBus:
    """Synchronous observer fan-out."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register ``subscriber``; the returned callable unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, event: FlowEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Event subscriber failed on %s", type(event).__name__)
