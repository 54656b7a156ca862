"""Retry logic with exponential backoff for document store calls.

This module provides a decorator for automatic retry of transient failures
with exponential backoff and jitter to prevent thundering herd problems.
Only ``TransientError`` (and any extra types passed in) is retried; workflow
errors such as ``IllegalTransition`` are raised straight away.
"""

import asyncio
import functools
import logging
import random
from typing import Any, Callable, Type, TypeVar, cast

from marksheet_dispatch.errors import TransientError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Retry configuration
MAX_RETRIES = 3
BASE_DELAY = 0.5  # seconds
MAX_JITTER = 0.5  # seconds


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
    retryable_exceptions: tuple[Type[Exception], ...] = (TransientError,),
) -> Callable[[F], F]:
    """Decorator that retries a coroutine function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 0.5)
        max_jitter: Maximum random jitter in seconds (default: 0.5)
        retryable_exceptions: Tuple of exception types to retry

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt >= max_retries:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} retries: {e}"
                        )
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_jitter)
                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("Unexpected retry loop exit")

        return cast(F, async_wrapper)

    return decorator


def _backoff_delay(attempt: int, base_delay: float, max_jitter: float) -> float:
    return (base_delay * (2**attempt)) + (random.random() * max_jitter)
