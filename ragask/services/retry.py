"""Timeout and exponential backoff for external capability calls."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "call",
) -> T:
    """
    Await ``fn()`` with a per-attempt timeout and exponential backoff.

    A timeout counts as a failed attempt. Cancellation is never retried.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt
        attempts: Maximum number of attempts (at least 1)
        initial_delay: Delay before the second attempt in seconds
        max_delay: Upper bound for the delay between attempts
        timeout: Per-attempt timeout in seconds, None for no timeout
        retry_on: Exception types that trigger another attempt
        label: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once all attempts are exhausted
    """
    attempts = max(1, attempts)
    delay = initial_delay

    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await fn()
            return await asyncio.wait_for(fn(), timeout=timeout)
        except asyncio.TimeoutError as e:
            error: BaseException = TimeoutError(f"{label} timed out after {timeout}s")
            error.__cause__ = e
        except retry_on as e:
            error = e

        if attempt == attempts:
            logger.error(f"{label} failed after {attempts} attempts: {error}")
            raise error

        logger.warning(f"{label} failed on attempt {attempt}/{attempts}: {error}. Retrying in {delay}s...")
        await asyncio.sleep(delay)
        delay = min(delay * 2, max_delay)

    raise RuntimeError("unreachable")  # pragma: no cover
