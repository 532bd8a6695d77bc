"""Bounded exponential-backoff retry for single network calls.

Every individual request (initiate, each part, complete, abort, delete,
bucket policy calls) is wrapped on its own, so a retried part never restarts
its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from r2drop import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[object]]


class RetryPolicy(BaseModel):
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts, the first one included.
        initial_delay_ms: Delay before the second attempt.
        backoff_multiplier: Factor applied to the delay after each retry.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: float = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2, ge=1)

    def delays_ms(self) -> list[float]:
        """Return the sleep before each retry, in order."""
        delays = []
        delay = self.initial_delay_ms
        for _ in range(self.max_attempts - 1):
            delays.append(delay)
            delay *= self.backoff_multiplier
        return delays


def _is_retryable(exc: BaseException) -> bool:
    # Cancellation is a BaseException and must never be retried.
    return isinstance(exc, Exception) and bool(getattr(exc, "retryable", True))


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    operation_name: str = "request",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    Delays grow as ``initial_delay_ms * backoff_multiplier ** n`` without
    jitter. Errors carrying ``retryable = False`` are re-raised immediately.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Retry configuration (default policy if None).
        operation_name: Label used in logs and metrics.
        sleep: Awaitable sleep taking seconds; injectable for tests.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error once attempts are exhausted.
    """
    policy = policy or RetryPolicy()

    def _before_sleep(retry_state: RetryCallState) -> None:
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.0fms: %s",
            operation_name,
            retry_state.attempt_number,
            policy.max_attempts,
            retry_state.next_action.sleep * 1000,
            retry_state.outcome.exception(),
            extra={"operation": operation_name, "attempt": retry_state.attempt_number},
        )
        metrics.record_retry(operation_name)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay_ms / 1000,
            exp_base=policy.backoff_multiplier,
        ),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)
