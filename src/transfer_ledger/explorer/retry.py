"""Bounded retry with exponential backoff for single upstream calls."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from transfer_ledger.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 30.0


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule.

    The delay before retry ``n`` (1-based) is ``base_delay_seconds * 2**(n-1)``,
    capped at ``max_delay_seconds``. With ``jitter`` the actual sleep is drawn
    uniformly from ``[0, delay]``. A zero base delay retries immediately.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY
    max_delay_seconds: float = DEFAULT_RETRY_MAX_DELAY
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Backoff to sleep after failed attempt number ``attempt``."""
        delay = min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))
        if self.jitter and delay > 0:
            return random.uniform(0, delay)
        return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    description: str | None = None,
) -> T:
    """Invoke ``operation`` until it succeeds or the attempt budget is spent.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt budget and backoff. Defaults to 3 attempts.
        retry_on: Exception types that trigger another attempt. Anything else
            propagates immediately.
        description: Name used in log lines and the final error.

    Returns:
        The first successful result.

    Raises:
        RetryExhaustedError: After the final attempt fails, carrying the last
            underlying exception.
    """
    policy = policy or RetryPolicy()
    name = description or getattr(operation, "__name__", "operation")
    last_exception: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_exception = e
            if attempt == policy.max_attempts:
                logger.warning(
                    "%s attempt %d/%d failed: %s",
                    name,
                    attempt,
                    policy.max_attempts,
                    e,
                )
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.2f seconds...",
                name,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise RetryExhaustedError(
        f"All {policy.max_attempts} attempts failed for {name}: {last_exception}",
        last_exception=last_exception,
        attempts=policy.max_attempts,
    )
