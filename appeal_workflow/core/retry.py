"""
Retry utilities: bounded exponential backoff for transient collaborator failures.

Delay formula: delay = min(base_delay * (2 ** attempt), max_delay), plus up
to 10% jitter.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[BaseException], ...],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or ``max_retries`` attempts are used.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. The last retryable exception is re-raised once
    the attempts are exhausted.
    """
    last_exception: BaseException | None = None

    for attempt in range(max_retries):
        try:
            return await operation()
        except retry_on as e:
            last_exception = e

            if attempt == max_retries - 1:
                logger.error(f"{description} failed after {max_retries} attempts: {e}")
                raise

            delay = min(base_delay * (2 ** attempt), max_delay)
            delay += random.uniform(0, delay * 0.1)

            logger.warning(
                f"{description} attempt {attempt + 1}/{max_retries} failed: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    # Unreachable unless max_retries < 1
    if last_exception:
        raise last_exception
    raise RuntimeError(f"{description} was not attempted")


async def with_timeout(awaitable: Awaitable[Any], timeout: float) -> Any:
    """Await with an upper bound; raises ``asyncio.TimeoutError`` when exceeded."""
    return await asyncio.wait_for(awaitable, timeout=timeout)
