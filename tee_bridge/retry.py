"""Bounded retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound and backoff schedule for a retried operation.

    Attributes:
        max_attempts: Total number of attempts, at least 1.
        initial_delay: Seconds to wait after the first failure.
        backoff_multiplier: Factor applied to the delay after each failure.
    """

    max_attempts: int = 3
    initial_delay: float = 0.1
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    def delay_after(self, attempt: int) -> float:
        """Delay before attempt ``attempt + 1``, for 1-based ``attempt``."""
        return self.initial_delay * self.backoff_multiplier ** (attempt - 1)

    def delays(self) -> Iterator[float]:
        """Yield every delay the policy can incur, in order."""
        for attempt in range(1, self.max_attempts):
            yield self.delay_after(attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_retry: Callable[[int, BaseException], None] | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or ``policy`` is exhausted.

    The final failure is re-raised unchanged. Errors that are not instances of
    ``retry_on`` propagate immediately without further attempts.

    Args:
        operation: Zero-argument coroutine function to call.
        policy: Attempt bound and backoff schedule.
        on_retry: Observer called with the attempt number and error after
            each non-final failure. Its own exceptions are logged and dropped.
        retry_on: Exception types that are worth another attempt.
        sleep: Coroutine used to wait between attempts.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as err:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.delay_after(attempt)
            _LOGGER.debug(
                "Attempt %d/%d failed, retrying in %.3fs: %s",
                attempt,
                policy.max_attempts,
                delay,
                err,
            )
            if on_retry is not None:
                try:
                    on_retry(attempt, err)
                except Exception:
                    _LOGGER.exception("Retry observer raised")
            await sleep(delay)
            attempt += 1
