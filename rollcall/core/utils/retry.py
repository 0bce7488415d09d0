"""Bounded retry with exponential backoff for transient failures."""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from rollcall.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before the retry following ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    return min(base * (2 ** (attempt - 1)), maximum)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    sleep: Sleep = asyncio.sleep,
    description: str = "operation",
    on_failure: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Run ``operation`` until it succeeds or ``attempts`` are exhausted.

    Only exceptions listed in ``retry_on`` are retried; anything else propagates
    immediately. After the last failed attempt the last exception is re-raised.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Maximum number of attempts (>= 1)
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for any single delay
        retry_on: Exception types considered transient
        sleep: Awaitable sleep, injectable for tests
        description: Label used in log events
        on_failure: Called with (attempt, error) after each failed attempt

    Returns:
        Whatever ``operation`` returns on its first successful attempt
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            if on_failure is not None:
                on_failure(attempt, e)
            if attempt >= attempts:
                logger.error(
                    "Giving up after repeated failures",
                    operation=description,
                    attempts=attempt,
                    error=str(e)
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Transient failure, retrying",
                operation=description,
                attempt=attempt,
                max_attempts=attempts,
                retry_in=delay,
                error=str(e)
            )
            await sleep(delay)
