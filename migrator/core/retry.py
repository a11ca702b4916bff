"""
Retry mechanism with exponential backoff for data store calls.

This module provides retry logic for handling transient connectivity failures,
with configurable backoff. Only the exception types passed as retryable are
retried; anything else propagates on the first attempt.
"""
import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from migrator.core.config import settings
from migrator.core.exceptions import RetriesExhaustedError, TransientError
from migrator.log.logging import logger


def calculate_backoff_delay(
    attempt: int, base_delay: float | None = None, max_delay: float | None = None
) -> float:
    """
    Calculate exponential backoff delay for a given attempt.

    Args:
        attempt: Current attempt number (1-indexed).
        base_delay: Base delay in seconds (default from config).
        max_delay: Maximum delay in seconds (default from config).

    Returns:
        Delay in seconds before next retry.
    """
    base = settings.retry_base_delay if base_delay is None else base_delay
    maximum = settings.retry_max_delay if max_delay is None else max_delay

    # Exponential backoff: base * 2^(attempt-1)
    delay = base * (2 ** (attempt - 1))
    return min(delay, maximum)


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = (TransientError,),
    on_retry: Callable[[int, Exception], Any] | None = None,
    **kwargs,
) -> Any:
    """
    Execute a function with retry and exponential backoff.

    Args:
        func: Async function to execute.
        *args: Arguments to pass to the function.
        max_retries: Maximum number of retry attempts (default from config).
        base_delay: Base backoff delay in seconds (default from config).
        max_delay: Upper bound for a single delay (default from config).
        retryable_exceptions: Tuple of exception types that trigger a retry.
        on_retry: Optional callback run after each backoff, before the next
            attempt. May be a coroutine function.
        **kwargs: Keyword arguments to pass to the function.

    Returns:
        Result of the function if successful.

    Raises:
        RetriesExhaustedError: If max retries are exhausted.
        Exception: Any non-retryable error, unchanged.
    """
    retries = settings.max_retries if max_retries is None else max_retries
    max_attempts = retries + 1  # +1 for initial attempt
    func_name = getattr(func, "__name__", repr(func))

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            if attempt >= max_attempts:
                logger.error(
                    "Max retries exceeded for {func_name}",
                    func_name=func_name,
                    attempts=attempt,
                    error=str(e),
                    event_type="retry_exhausted",
                )
                raise RetriesExhaustedError(
                    f"Max retries ({max_attempts}) exceeded: {e}",
                    last_error=e,
                    attempts=attempt,
                ) from e

            delay = calculate_backoff_delay(attempt, base_delay, max_delay)

            logger.warning(
                "Retrying {func_name} after {delay}s (attempt {attempt}/{max_attempts})",
                func_name=func_name,
                delay=delay,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
                event_type="retry_attempt",
            )

            await asyncio.sleep(delay)

            if on_retry:
                outcome = on_retry(attempt, e)
                if inspect.isawaitable(outcome):
                    await outcome

    # Only reachable with a negative max_retries
    raise ValueError(f"max_retries must be >= 0, got {retries}")
