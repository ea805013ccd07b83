"""Schema contract exports."""

from veilflow.schemas.enums import (
    ClusterMode,
    IdentityLabel,
    RunState,
    SplitFallback,
    StepStatus,
    TransactionStatus,
)
from veilflow.schemas.flow_models import (
    AmountAllocation,
    AuthorizationIntent,
    FlowState,
    ProtocolResult,
    StepDescriptor,
    TransactionRecord,
)
from veilflow.schemas.ledger_models import (
    CloseTokenAccount,
    CreateTokenAccount,
    LedgerTransaction,
    NativeTransfer,
    SignedTransaction,
    TokenTransfer,
    WrapNative,
)

__all__ = [
    "AmountAllocation",
    "AuthorizationIntent",
    "CloseTokenAccount",
    "ClusterMode",
    "CreateTokenAccount",
    "FlowState",
    "IdentityLabel",
    "LedgerTransaction",
    "NativeTransfer",
    "ProtocolResult",
    "RunState",
    "SignedTransaction",
    "SplitFallback",
    "StepDescriptor",
    "StepStatus",
    "TokenTransfer",
    "TransactionRecord",
    "TransactionStatus",
    "WrapNative",
]
