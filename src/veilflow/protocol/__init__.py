"""Protocol operation exports."""

from veilflow.protocol.flows import ProtocolFlows
from veilflow.protocol.sandbox import SandboxProtocol

__all__ = ["ProtocolFlows", "SandboxProtocol"]
