"""Retry executor tests."""

from __future__ import annotations

import asyncio

import pytest

from veilflow.resilience.retry import RetryExecutor, RetryExhausted, RetryPolicy


@pytest.mark.asyncio
async def test_retry_executor_retries_then_succeeds() -> None:
    """Executor should retry failed attempts and eventually return success."""
    attempts = {"count": 0}
    slept: list[float] = []

    async def operation() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise RuntimeError("temporary failure")
        return "ok"

    async def _sleep(delay: float) -> None:
        slept.append(delay)

    executor = RetryExecutor(
        RetryPolicy(max_attempts=3, backoff_seconds=0.1, multiplier=2.0),
        sleep_fn=_sleep,
    )
    result = await executor.run(operation, stage_name="retry-test")
    assert result == "ok"
    assert attempts["count"] == 3
    assert slept == [0.1, 0.2]


@pytest.mark.asyncio
async def test_retry_executor_adds_jitter_when_configured() -> None:
    """Jitter is drawn only when the policy asks for it."""
    slept: list[float] = []

    async def _sleep(delay: float) -> None:
        slept.append(delay)

    async def operation() -> None:
        raise ValueError("never")

    executor = RetryExecutor(
        RetryPolicy(max_attempts=2, backoff_seconds=1.0, jitter_seconds=0.5),
        sleep_fn=_sleep,
        jitter_fn=lambda _low, high: high,
    )
    with pytest.raises(RetryExhausted):
        await executor.run(operation, stage_name="jitter-test")
    assert slept == [1.5]


@pytest.mark.asyncio
async def test_retry_executor_exhaustion_keeps_last_error() -> None:
    """Exhaustion reports attempts and the final underlying error."""

    async def operation() -> None:
        raise ValueError("still not funded")

    async def _sleep(delay: float) -> None:
        return None

    executor = RetryExecutor(RetryPolicy(max_attempts=4, backoff_seconds=0.0), sleep_fn=_sleep)
    with pytest.raises(RetryExhausted) as exc_info:
        await executor.run(operation, stage_name="funding")

    assert exc_info.value.attempts == 4
    assert isinstance(exc_info.value.last_error, ValueError)
    assert "funding failed after 4 attempt(s)" in str(exc_info.value)


@pytest.mark.asyncio
async def test_retry_executor_timeout_raises() -> None:
    """Each attempt is bounded by the timeout."""
    executor = RetryExecutor(RetryPolicy(max_attempts=1, backoff_seconds=0.0))

    async def operation() -> None:
        await asyncio.sleep(1.0)

    with pytest.raises(RetryExhausted) as exc_info:
        await executor.run(operation, stage_name="timeout-test", timeout_seconds=0.01)
    assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_retry_executor_rejects_empty_policy() -> None:
    """A policy without attempts is a configuration error."""
    executor = RetryExecutor(RetryPolicy(max_attempts=0, backoff_seconds=0.0))

    async def operation() -> None:
        return None

    with pytest.raises(ValueError, match="max_attempts"):
        await executor.run(operation, stage_name="empty")
