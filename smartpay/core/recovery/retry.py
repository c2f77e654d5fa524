"""
Bounded retry with exponential backoff.

A standalone higher-order coroutine, decoupled from whatever it wraps.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from .errors import is_retryable

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException], Any]
SleepFn = Callable[[float], Awaitable[Any]]

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Attempt budget and delay schedule."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        return min(
            self.initial_delay_seconds * (self.exponential_base ** (attempt - 1)),
            self.max_delay_seconds,
        )


async def retry_with_backoff(
    operation: Callable[[], Coroutine[Any, Any, T]],
    config: Optional[RetryConfig] = None,
    *,
    on_retry: Optional[RetryCallback] = None,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: SleepFn = asyncio.sleep,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    After a failed attempt with budget left, ``on_retry(attempt, error)`` is
    called and then the backoff delay is awaited. When the budget is spent,
    or ``should_retry`` refuses the error, the error is re-raised unchanged.
    """
    config = config or RetryConfig()
    if config.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= config.max_attempts:
                logger.error(f"{operation_name} failed after {attempt} attempts: {exc}")
                raise
            if not should_retry(exc):
                logger.warning(f"{operation_name} failed with a non-retryable error: {exc}")
                raise

            delay = config.get_delay(attempt)
            logger.warning(
                f"{operation_name} attempt {attempt}/{config.max_attempts} failed: {exc}. "
                f"Retrying in {delay:.1f}s"
            )
            if on_retry is not None:
                outcome = on_retry(attempt, exc)
                if asyncio.iscoroutine(outcome):
                    await outcome
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
