"""
Retry utilities for the batch worker.

Implements exponential backoff with jitter. Only the exception types the
caller names are retried; anything else propagates on the first failure.
"""

import asyncio
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import structlog

from app.ingestion.config import RetryConfig

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """
    Delay before the retry following ``attempt`` (0-based).

    Args:
        config: Retry configuration
        attempt: Index of the attempt that just failed

    Returns:
        Delay in seconds, capped at ``config.max_delay``
    """
    delay = min(
        config.initial_delay * (config.exponential_base**attempt),
        config.max_delay,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Execute a function with exponential backoff retry.

    Args:
        func: Async function to execute (called again for every attempt)
        config: Retry configuration
        operation_name: Name for logging
        retry_on: Exception types worth another attempt

    Returns:
        Function result

    Raises:
        Exception: The last exception once attempts are exhausted, or the
            first exception that is not in ``retry_on``
    """
    for attempt in range(config.max_attempts):
        try:
            return await func()
        except retry_on as e:
            attempt_num = attempt + 1

            if attempt_num >= config.max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=operation_name,
                    attempts=attempt_num,
                    error=str(e),
                )
                raise

            delay = backoff_delay(config, attempt)
            logger.warning(
                "retry_attempt",
                operation=operation_name,
                attempt=attempt_num,
                max_attempts=config.max_attempts,
                delay_seconds=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry failed without exception")
