"""Exponential backoff for outbound provider calls.

Wraps email sends so a transient provider error costs a short wait rather
than a recipient's report. Callers that also bound the whole call with a
timeout should keep `RetryConfig.max_total_delay()` well below it.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from statmail.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        delay = min(self.backoff_base * (2**attempt), self.backoff_max)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

    def max_total_delay(self) -> float:
        """Upper bound on the time spent sleeping across all retries."""
        ceiling = 1.5 if self.jitter else 1.0
        return sum(
            min(self.backoff_base * (2**attempt), self.backoff_max) * ceiling
            for attempt in range(self.max_attempts - 1)
        )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Await fn(), retrying retryable failures with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        config: Retry configuration, defaults to RetryConfig()
        operation_name: Included in retry log events

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The last failure once attempts are exhausted
    """
    config = config or RetryConfig()
    attempt = 0

    while True:
        try:
            return await fn()
        except config.retryable_exceptions as e:
            attempt += 1
            log = logger.bind(operation=operation_name, attempt=attempt, error=str(e))
            if attempt >= config.max_attempts:
                log.error("retry_exhausted")
                raise

            delay = config.delay_for(attempt - 1)
            log.bind(delay_seconds=round(delay, 2)).warning("retry_attempt")
            await asyncio.sleep(delay)
