"""Exponential backoff retry for asynchronous operations.

Every call that crosses a service boundary (Fusion Tables, Drive, Sheets)
goes through :func:`retry_async`. Errors carrying ``retryable = False`` are
raised immediately; everything else is retried until the policy gives up,
at which point the last error is re-raised unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 60.0
BACKOFF_MULTIPLIER = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        base_delay: Delay in seconds before the first retry.
        multiplier: Growth factor applied to the delay after every retry.
        max_delay: Upper bound for a single un-jittered delay.
        jitter: Bounds of the random factor each delay is multiplied by.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = INITIAL_BACKOFF_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER
    max_delay: float = MAX_BACKOFF_SECONDS
    jitter: Tuple[float, float] = (1.0, 2.0)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        low, high = self.jitter
        if low < 0 or high < low:
            raise ValueError(f"Invalid jitter bounds: {self.jitter}")

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Calculate the delay before retry number ``attempt`` (0-indexed).

        Args:
            attempt: Number of retries already performed.
            rng: Optional random source, mostly for tests.

        Returns:
            Seconds to wait before the next attempt.
        """
        backoff = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        low, high = self.jitter
        if low == high:
            return backoff * low
        return backoff * (rng or random).uniform(low, high)


def is_retryable(error: BaseException) -> bool:
    """Return False for errors explicitly marked as not worth retrying."""
    return getattr(error, "retryable", True)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: Optional[logging.Logger] = None,
    description: str = "operation",
) -> T:
    """Await ``operation()`` and retry it with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per call.
        policy: Retry policy. Defaults to ``RetryPolicy()``.
        sleep: Coroutine used to wait between attempts.
        logger: Optional logger for retry warnings.
        description: Human-readable name of the operation for log messages.

    Returns:
        The value produced by the first successful attempt.

    Raises:
        Exception: The last error raised by ``operation`` once attempts are
            exhausted, or the first non-retryable error.
    """
    policy = policy or RetryPolicy()
    log = logger or logging.getLogger(__name__)

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= policy.max_attempts - 1:
                log.debug(f"{description} failed after {policy.max_attempts} attempt(s): {e}")
                raise

            backoff = policy.delay_for(attempt)
            log.warning(
                f"{description} failed (attempt {attempt + 1}/{policy.max_attempts}): {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            await sleep(backoff)
            attempt += 1
