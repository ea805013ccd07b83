"""Async retry and timeout helpers."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry/backoff policy."""

    max_attempts: int
    backoff_seconds: float
    multiplier: float = 1.0
    jitter_seconds: float = 0.0


class RetryExhausted(RuntimeError):
    """Every attempt failed; ``last_error`` holds the final failure."""

    def __init__(self, message: str, *, attempts: int, last_error: Exception) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class RetryExecutor:
    """Await coroutine factories with retries and an optional per-attempt timeout."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter_fn: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.policy = policy
        self._sleep = sleep_fn
        self._jitter = jitter_fn

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        stage_name: str,
        timeout_seconds: float | None = None,
    ) -> T:
        """Await ``operation()`` until it succeeds or attempts run out."""
        if self.policy.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        last_error: Exception | None = None
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                if timeout_seconds is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=timeout_seconds)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                LOGGER.debug("%s attempt %s failed: %s", stage_name, attempt, exc)
                if attempt >= self.policy.max_attempts:
                    break
                await self._sleep(self._backoff_delay(attempt))

        assert last_error is not None
        raise RetryExhausted(
            f"{stage_name} failed after {self.policy.max_attempts} attempt(s): {last_error}",
            attempts=self.policy.max_attempts,
            last_error=last_error,
        ) from last_error

    def _backoff_delay(self, attempt: int) -> float:
        base_delay = self.policy.backoff_seconds * (self.policy.multiplier ** (attempt - 1))
        jitter = self._jitter(0.0, self.policy.jitter_seconds) if self.policy.jitter_seconds else 0.0
        return max(0.0, base_delay + jitter)
