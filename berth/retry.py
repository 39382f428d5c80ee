"""Bounded retry with linear backoff."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import RetryExhaustedError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[object]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    backoff_s: float = 0.5

    def delay_for(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based) before the next one."""

        return max(0.0, self.backoff_s * attempt)


async def retry_async(
    fn: Callable[[int], Awaitable[T]],
    *,
    policy: RetryPolicy = RetryPolicy(),
    is_retryable: Optional[Callable[[Exception], bool]] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Call ``fn(attempt)`` until it succeeds or ``policy.max_attempts`` is reached.

    Cancelling the caller interrupts a pending delay immediately; the
    ``CancelledError`` is never retried or wrapped.
    """

    max_attempts = max(1, policy.max_attempts)
    attempt = 1
    while True:
        try:
            return await fn(attempt)
        except Exception as exc:
            if is_retryable is not None and not is_retryable(exc):
                raise
            if attempt >= max_attempts:
                raise RetryExhaustedError(exc, policy, max_attempts) from exc
        await sleep(policy.delay_for(attempt))
        attempt += 1
