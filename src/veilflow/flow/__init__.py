"""Step orchestration exports."""

from veilflow.flow.events import EventBus
from veilflow.flow.funding import FundingService, required_operator_lamports
from veilflow.flow.runner import VeilFlowRunner
from veilflow.flow.sequencer import RunOutcome, StepSequencer
from veilflow.flow.state import NullifierCounterStore, RunContext, StepStatusBoard
from veilflow.flow.steps import STEP_CATALOG, build_plan, resolve_selection
from veilflow.flow.transition_store import FlowTransitionStore

__all__ = [
    "EventBus",
    "FlowTransitionStore",
    "FundingService",
    "NullifierCounterStore",
    "RunContext",
    "RunOutcome",
    "STEP_CATALOG",
    "StepSequencer",
    "StepStatusBoard",
    "VeilFlowRunner",
    "build_plan",
    "required_operator_lamports",
    "resolve_selection",
]
