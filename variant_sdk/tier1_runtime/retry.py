"""
variant_sdk.tier1_runtime.retry
───────────────────────────────────
Bounded retry with exponential backoff, backed by Tenacity. The delay before
attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` (1x, 2x, 4x ...), capped at
``max_delay``. ``max_attempts`` is a hard ceiling; cancellation is never
retried and propagates immediately.

Usage:
    snapshot = await call_with_backoff(
        fetch_once,
        max_attempts=3,
        base_delay=1.0,
        retry_on=(ConfigError,),
        operation="config.fetch",
    )
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from variant_sdk.tier0_core.logging import get_logger

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

logger = get_logger(__name__)


class RetriesExhausted(Exception):
    """Every allowed attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempts: {last_error!r}")


def backoff_retrying(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    sleep: SleepFn | None = None,
    operation: str = "operation",
) -> AsyncRetrying:
    """Build the Tenacity controller shared by every retried engine call."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retry.scheduled",
            operation=operation,
            attempt=state.attempt_number,
            max_attempts=max_attempts,
            delay=state.next_action.sleep if state.next_action else None,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(max_attempts),
        "wait": wait_exponential(multiplier=base_delay, exp_base=2, max=max_delay),
        "retry": retry_if_exception_type(retry_on),
        "before_sleep": _log_retry,
        "reraise": False,
    }
    if sleep is not None:
        kwargs["sleep"] = sleep
    return AsyncRetrying(**kwargs)


async def call_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    sleep: SleepFn | None = None,
    operation: str = "operation",
) -> T:
    """
    Await ``fn()`` until it succeeds or ``max_attempts`` is reached.

    Non-retryable exceptions propagate unchanged. Exhausting the ceiling
    raises RetriesExhausted chained to the last error.
    """
    retrying = backoff_retrying(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        retry_on=retry_on,
        sleep=sleep,
        operation=operation,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await fn()
    except RetryError as exc:
        last = exc.last_attempt.exception()
        raise RetriesExhausted(exc.last_attempt.attempt_number, last) from last
    raise RuntimeError("unreachable: retry loop exited without outcome")


__all__ = ["RetriesExhausted", "backoff_retrying", "call_with_backoff"]
