"""Run-scoped state owned by the sequencer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import orjson

from veilflow.errors import ProtocolStateError
from veilflow.flow.events import FlowEvent, RootChanged, StepStatusChanged
from veilflow.flow.transition_store import FlowTransitionStore
from veilflow.identity.store import Identity, IdentitySet
from veilflow.schemas.enums import StepStatus
from veilflow.schemas.flow_models import AmountAllocation, FlowState, ProtocolResult
from veilflow.security.redaction import redact_text

LOGGER = logging.getLogger(__name__)


class StepStatusBoard:
    """Per-step status map; every change is emitted and persisted."""

    def __init__(
        self,
        step_ids: list[str],
        *,
        emit: Callable[[FlowEvent], None],
        transition_store: FlowTransitionStore | None = None,
    ) -> None:
        self._statuses: dict[str, StepStatus] = {step_id: StepStatus.IDLE for step_id in step_ids}
        self._emit = emit
        self._transition_store = transition_store
        self._run_id = ""

    def reset(self, run_id: str) -> None:
        self._run_id = run_id
        for step_id in self._statuses:
            self._statuses[step_id] = StepStatus.IDLE

    def get(self, step_id: str) -> StepStatus:
        return self._statuses[step_id]

    def set(self, step_id: str, status: StepStatus, *, reason: str = "") -> None:
        previous = self._statuses[step_id]
        if previous == status:
            return
        self._statuses[step_id] = status
        safe_reason = redact_text(reason)
        if self._transition_store is not None:
            self._transition_store.record_transition(
                run_id=self._run_id,
                step_id=step_id,
                from_state=previous.value,
                to_state=status.value,
                reason=safe_reason,
            )
        self._emit(
            StepStatusChanged(
                run_id=self._run_id,
                step_id=step_id,
                previous=previous,
                status=status,
                reason=safe_reason,
            )
        )

    def sweep_running(self, *, reason: str) -> list[str]:
        """Force every step still marked running to error."""
        swept = [step_id for step_id, status in self._statuses.items() if status == StepStatus.RUNNING]
        for step_id in swept:
            self.set(step_id, StepStatus.ERROR, reason=reason)
        return swept

    def snapshot(self) -> dict[str, StepStatus]:
        return dict(self._statuses)


@dataclass
class RunContext:
    """Everything one run threads through its steps.

    ``flow_state`` is the single source of truth for the accumulator root and
    nullifier counter; steps read it at call time and only ``merge`` writes it.
    """

    run_id: str
    mint: str
    decimals: int
    identities: IdentitySet
    operator: Identity
    flow_state: FlowState
    requested_units: int
    enabled: dict[str, bool]
    emit: Callable[[FlowEvent], None]
    allocation: AmountAllocation | None = None
    record_ids: list[str] = field(default_factory=list)
    pending_enrichments: list[asyncio.Task[None]] = field(default_factory=list)

    def is_enabled(self, step_id: str) -> bool:
        return self.enabled.get(step_id, False)

    def merge(self, step_id: str, result: ProtocolResult) -> FlowState:
        """Adopt the state returned by a confirmed operation."""
        current = self.flow_state
        incoming = result.new_state
        if incoming.next_nullifier < current.next_nullifier:
            raise ProtocolStateError(
                f"{step_id} returned nullifier counter {incoming.next_nullifier} "
                f"below current {current.next_nullifier}"
            )
        self.flow_state = incoming
        if incoming.root != current.root:
            self.emit(
                RootChanged(
                    run_id=self.run_id,
                    step_id=step_id,
                    root_hex=incoming.root_hex,
                    next_nullifier=incoming.next_nullifier,
                )
            )
        return incoming


class NullifierCounterStore:
    """Persists the next nullifier counter per mint between runs."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self, mint: str) -> int:
        data = self._read()
        value = data.get(mint, 0)
        return value if isinstance(value, int) and value >= 0 else 0

    def save(self, mint: str, value: int) -> None:
        data = self._read()
        data[mint] = max(value, self.load(mint))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))

    def _read(self) -> dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            data = orjson.loads(self.path.read_bytes())
        except orjson.JSONDecodeError:
            LOGGER.warning("Ignoring unreadable nullifier counter file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}
