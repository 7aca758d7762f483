import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


def backoff_delays(attempts: int, initial_delay: float, max_delay: float):
    """Yields the sleep before each retry: initial, doubled, capped at max_delay."""
    delay = initial_delay
    for _ in range(max(attempts - 1, 0)):
        yield delay
        delay = min(delay * 2, max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    initial_delay: float,
    max_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    description: str = "operation",
) -> T:
    """Awaits `operation()` until it succeeds, retrying `retry_on` errors with backoff.

    The last error is re-raised once the attempts are used up. Any other
    exception propagates immediately.
    """
    delays = backoff_delays(attempts, initial_delay, max_delay)
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            delay = next(delays, None)
            if delay is None:
                logger.warning(f"{description} failed after {attempt} attempt(s): {e}")
                raise
            logger.info(
                f"{description} failed (attempt {attempt}/{attempts}): {e}; retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1
