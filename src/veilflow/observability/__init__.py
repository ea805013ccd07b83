"""Observability exports."""

from veilflow.observability.run_manifest import (
    RunManifest,
    RunManifestStore,
    build_run_manifest,
)
from veilflow.observability.tracing import (
    LangfuseTracer,
    NoOpTracer,
    TracerProtocol,
    create_tracer,
)
from veilflow.observability.transaction_log import TransactionRecorder

__all__ = [
    "LangfuseTracer",
    "NoOpTracer",
    "RunManifest",
    "RunManifestStore",
    "TracerProtocol",
    "TransactionRecorder",
    "build_run_manifest",
    "create_tracer",
]
