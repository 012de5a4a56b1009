"""
Retry utilities for unit functions.

The pipeline retries every unit exactly once by default; the delay and the
set of retryable exceptions are configurable.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 1
    base_delay: float = 0.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = False
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay before next retry attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)

    if config.jitter:
        delay = delay * (0.5 + random.random())

    return delay


def with_retry(
    config: RetryConfig | None = None,
    on_attempt: Callable[[int], None] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for adding retry logic to async functions.

    Args:
        config: Retry configuration (uses defaults if not provided)
        on_attempt: Called with the 1-based attempt number before each call

    Returns:
        Decorated function with retry logic
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                if on_attempt is not None:
                    on_attempt(attempt + 1)
                try:
                    return await func(*args, **kwargs)

                except config.retryable_exceptions as e:
                    if attempt >= config.max_retries:
                        logger.debug(
                            "Retries exhausted",
                            function=getattr(func, "__name__", repr(func)),
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise

                    delay = calculate_delay(attempt, config)

                    logger.debug(
                        "Retrying after error",
                        function=getattr(func, "__name__", repr(func)),
                        attempt=attempt + 1,
                        max_retries=config.max_retries,
                        delay=delay,
                        error=str(e),
                    )

                    if delay > 0:
                        await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    on_attempt: Callable[[int], None] | None = None,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with retry logic.

    Raises:
        Last exception if all retries fail
    """
    decorated = with_retry(config, on_attempt)(func)
    return await decorated(*args, **kwargs)
