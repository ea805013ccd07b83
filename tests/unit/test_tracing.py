"""Tracing integration tests."""

from __future__ import annotations

import sys
from types import SimpleNamespace
from typing import Any, cast

from _pytest.monkeypatch import MonkeyPatch

import veilflow.observability.tracing as tracing_module
from veilflow.observability.tracing import NoOpTracer, create_tracer


def test_create_tracer_returns_noop_without_langfuse_keys() -> None:
    """Tracing should gracefully no-op when Langfuse credentials are absent."""
    tracer = create_tracer({})
    assert isinstance(tracer, NoOpTracer)


class _FakeLangfuse:
    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs
        self.started_spans: list[_FakeObservation] = []
        self.flushed = False

    def start_span(self, **kwargs: Any) -> "_FakeObservation":
        observation = _FakeObservation(
            name=kwargs["name"],
            trace_context=kwargs.get("trace_context"),
            metadata=kwargs.get("metadata"),
        )
        self.started_spans.append(observation)
        return observation

    def flush(self) -> None:
        self.flushed = True


class _FakeObservation:
    def __init__(
        self,
        *,
        name: str,
        trace_context: dict[str, str] | None = None,
        metadata: Any = None,
    ) -> None:
        self.name = name
        self.trace_context = trace_context or {}
        self.metadata = metadata
        self.output: Any = None
        self.id = f"{name}-id"
        self.ended = False
        self.updates: list[dict[str, Any]] = []

    def update(self, **kwargs: Any) -> "_FakeObservation":
        self.updates.append(kwargs)
        if "output" in kwargs:
            self.output = kwargs["output"]
        if "metadata" in kwargs:
            self.metadata = kwargs["metadata"]
        return self

    def end(self) -> "_FakeObservation":
        self.ended = True
        return self


def _build_langfuse_tracer(monkeypatch: MonkeyPatch) -> tracing_module.LangfuseTracer:
    monkeypatch.setitem(
        sys.modules, "langfuse", SimpleNamespace(Langfuse=_FakeLangfuse)
    )
    return tracing_module.LangfuseTracer(
        {
            "LANGFUSE_PUBLIC_KEY": "pk-lf-test",
            "LANGFUSE_SECRET_KEY": "sk-lf-test",
            "LANGFUSE_HOST": "http://localhost:3000",
            "LANGFUSE_BASE_URL": "https://cloud.langfuse.com/",
        }
    )


def test_langfuse_tracer_prefers_langfuse_base_url(monkeypatch: MonkeyPatch) -> None:
    """LANGFUSE_BASE_URL should take precedence when both endpoint vars are set."""
    tracer = _build_langfuse_tracer(monkeypatch)
    client = cast(_FakeLangfuse, tracer._client)
    assert isinstance(client, _FakeLangfuse)
    assert client.kwargs["host"] == "https://cloud.langfuse.com"
    configured = create_tracer({"LANGFUSE_PUBLIC_KEY": "pk", "LANGFUSE_SECRET_KEY": "sk"})
    assert isinstance(configured, tracing_module.LangfuseTracer)


def test_langfuse_tracer_records_run_output(monkeypatch: MonkeyPatch) -> None:
    """Run spans should close with redacted output after finish_run."""
    tracer = _build_langfuse_tracer(monkeypatch)
    client = cast(_FakeLangfuse, tracer._client)

    tracer.start_run(run_id="run-123", metadata={"cluster": "localnet"})
    run_observation = client.started_spans[0]
    assert run_observation.name == "veilflow-run"
    assert len(run_observation.trace_context["trace_id"]) == 32

    tracer.finish_run(
        run_id="run-123",
        metadata={"status": "completed"},
        output_payload={"note": "secret_key=abcdefgh12345678"},
    )
    assert run_observation.ended is True
    assert run_observation.updates[-1]["output"] == {"note": "secret_key=[REDACTED]"}

    tracer.flush()
    assert client.flushed is True


def test_langfuse_tracer_tracks_stage_lifecycle(monkeypatch: MonkeyPatch) -> None:
    """Stage spans should start on running and finish with output payloads."""
    tracer = _build_langfuse_tracer(monkeypatch)
    client = cast(_FakeLangfuse, tracer._client)

    tracer.start_run(run_id="run-123", metadata={})
    root_observation = client.started_spans[0]
    tracer.record_stage(run_id="run-123", stage="deposit", metadata={"status": "running"})
    stage_observation = client.started_spans[1]
    assert stage_observation.name == "stage:deposit"
    assert stage_observation.trace_context["parent_span_id"] == root_observation.id

    tracer.record_stage(
        run_id="run-123",
        stage="deposit",
        metadata={"status": "success"},
        output_payload={"signature": "abc"},
    )
    assert stage_observation.ended is True
    assert stage_observation.updates[-1]["output"] == {"signature": "abc"}


def test_finish_run_closes_dangling_stage_spans(monkeypatch: MonkeyPatch) -> None:
    """Stages still open when the run ends are closed with it."""
    tracer = _build_langfuse_tracer(monkeypatch)
    client = cast(_FakeLangfuse, tracer._client)

    tracer.start_run(run_id="run-9", metadata={})
    tracer.record_stage(run_id="run-9", stage="withdraw", metadata={"status": "running"})
    tracer.finish_run(run_id="run-9", metadata={"status": "aborted"})

    assert all(observation.ended for observation in client.started_spans)
