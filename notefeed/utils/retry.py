"""Exponential backoff for the reconcile flow.

After a stream disconnect the feed controller re-fetches and re-subscribes;
RetryHandler spaces failed attempts out so a dead instance is never
busy-looped, and lets tests swap the sleep for a mock.
"""

import asyncio
import random
from typing import Awaitable, Callable, Iterable, Optional, Type, TypeVar

import structlog

from notefeed.models.config import RetryConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, Exception, float], None]


class RetryHandler:
    """Bounded retries with exponential backoff and jitter.

    delay(n) = min(base * 2^n +/- jitter, max_delay), never negative.
    """

    def __init__(
        self,
        config: RetryConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """Backoff after the 0-indexed `attempt` failed."""
        delay = self.config.base_delay_seconds * (2**attempt)
        spread = delay * self.config.jitter_factor
        if spread:
            delay += random.uniform(-spread, spread)
        return max(0.0, min(delay, self.config.max_delay_seconds))

    async def wait(self, attempt: int) -> float:
        """Sleep for the backoff of `attempt` and return the delay used."""
        delay = self.calculate_delay(attempt)
        await self._sleep(delay)
        return delay

    async def execute(
        self,
        func: Callable[[], Awaitable[T]],
        retryable_exceptions: Iterable[Type[Exception]],
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        """Await `func()` until it succeeds or the attempt budget is spent.

        Args:
            func: Zero-argument coroutine function.
            retryable_exceptions: Errors that trigger another attempt.
            on_retry: Called as (attempt, error, delay) before each wait.

        Raises:
            Exception: Anything not retryable at once; the last retryable
                error when max_attempts is reached.
        """
        retryable = tuple(retryable_exceptions)
        failures = 0
        while True:
            try:
                return await func()
            except retryable as e:
                failures += 1
                if failures >= self.config.max_attempts:
                    logger.warning(
                        "retry_budget_spent",
                        attempts=failures,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    raise

                delay = self.calculate_delay(failures - 1)
                logger.info(
                    "retry_scheduled",
                    attempt=failures,
                    max_attempts=self.config.max_attempts,
                    error_type=type(e).__name__,
                    delay_seconds=round(delay, 3),
                )
                if on_retry is not None:
                    on_retry(failures, e, delay)
                await self._sleep(delay)
