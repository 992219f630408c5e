"""Backoff helpers.

backoff_delay() is the single formula for scheduled recording retries.
retry_with_backoff() retries short-lived collaborator calls (persistence,
object storage) in-process before the failure reaches the state machine.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_SECONDS = 60.0
DEFAULT_MAX_DELAY_SECONDS = 3600.0


def backoff_delay(
    retry_index: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    multiplier: float = 2.0,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> float:
    """Return the delay before the next scheduled retry.

    Delay follows the formula: min(base_delay * multiplier^retry_index, max_delay)

    Args:
        retry_index: Number of retries already consumed (0 for the first).
        base_delay: Delay in seconds before the first retry.
        multiplier: Growth factor applied per consumed retry.
        max_delay: Upper bound for the returned delay.

    Returns:
        Delay in seconds, never negative and never above max_delay.
    """
    if retry_index < 0:
        retry_index = 0
    try:
        delay = base_delay * (multiplier**retry_index)
    except OverflowError:
        return max_delay
    return max(0.0, min(delay, max_delay))


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Delay follows the formula: base_delay * 2^attempt

    Args:
        max_retries: Maximum number of retry attempts (default 3).
        base_delay: Base delay in seconds before first retry (default 1.0).
        retryable_exceptions: Tuple of exception types eligible for retry.
            If None, all exceptions are retried. Non-retryable exceptions
            are re-raised immediately with _retry_count attached.

    Returns:
        Decorator that wraps an async function with retry logic.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error: Exception | None = None
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    last_error = exc
                    if retryable_exceptions is not None and not isinstance(
                        exc, retryable_exceptions
                    ):
                        exc._retry_count = attempt  # type: ignore[attr-defined]
                        raise
                    if attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Retry %d/%d for %s after %.1fs: %s",
                            attempt + 1,
                            max_retries,
                            func.__name__,
                            delay,
                            exc,
                        )
                        await asyncio.sleep(delay)
            last_error._retry_count = max_retries  # type: ignore[union-attr]
            raise last_error  # type: ignore[misc]

        return wrapper

    return decorator
