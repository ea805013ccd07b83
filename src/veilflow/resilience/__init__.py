"""Resilience helpers."""

from veilflow.resilience.retry import RetryExecutor, RetryExhausted, RetryPolicy

__all__ = ["RetryExecutor", "RetryExhausted", "RetryPolicy"]
