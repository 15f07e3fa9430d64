"""Retry logic with exponential backoff and jitter

Implements smart retry logic that:
1. Only retries transient errors (lock contention, dropped connections, HTTP 5xx)
2. Uses exponential backoff with jitter to prevent thundering herd
3. Bounds each attempt with a timeout so a hung store call cannot stall a submit
"""

import asyncio
import random
import logging
from typing import Callable, Any, Optional, TypeVar
from functools import wraps
import httpx

from progression.config import OPERATION_TIMEOUT_SECONDS, RETRY_BASE_DELAY, STORE_MAX_RETRIES
from progression.exceptions import NotificationError, StorageError, ValidationError
from progression.observability.metrics import record_retry

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Retry configuration
MAX_RETRIES = STORE_MAX_RETRIES
BASE_DELAY = RETRY_BASE_DELAY  # seconds
MAX_DELAY = 5.0  # seconds
JITTER = 0.1  # 10% random jitter


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Retryable errors:
    - ConcurrentModificationError (user lock not acquired in time)
    - Transient StorageError (connection dropped, pool exhausted)
    - asyncio timeouts
    - HTTP 429/5xx and network timeouts from the notification webhook

    Non-retryable errors:
    - ValidationError (malformed event)
    - Non-transient StorageError (bad query, constraint violation)
    - Everything else

    Args:
        exc: The exception to check

    Returns:
        True if error should be retried, False otherwise
    """
    if isinstance(exc, ValidationError):
        return False

    if isinstance(exc, StorageError):
        return exc.transient

    if isinstance(exc, asyncio.TimeoutError):
        return True

    if isinstance(exc, NotificationError) and exc.cause is not None:
        return is_retryable_error(exc.cause)

    # HTTPX errors
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return status_code in [429, 500, 502, 503, 504]

    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError)):
        return True

    # Default: don't retry unknown errors
    return False


def calculate_backoff(attempt: int) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY) + jitter
    Jitter is random value between -10% and +10% of delay

    Args:
        attempt: The retry attempt number (0-indexed)

    Returns:
        Delay in seconds

    Example (BASE_DELAY=0.1):
        Attempt 0: ~0.1s
        Attempt 1: ~0.2s
        Attempt 2: ~0.4s
    """
    delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)

    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    final_delay = delay + jitter_amount

    return max(final_delay, 0.0)


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    timeout: Optional[float] = OPERATION_TIMEOUT_SECONDS,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Only retries transient errors. Gives up after max_retries attempts.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts
        timeout: Per-attempt timeout in seconds (None disables)
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from func

    Raises:
        Last exception if all retries exhausted or non-retryable error

    Example:
        unlocked = await retry_with_backoff(evaluator.evaluate, event, max_retries=3)
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_retries + 1):
        try:
            if timeout is None:
                return await func(*args, **kwargs)
            return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)

        except Exception as e:
            if attempt == max_retries:
                logger.error(f"[RETRY] All {max_retries} retries exhausted for {name}")
                raise

            if not is_retryable_error(e):
                logger.warning(
                    f"[RETRY] Non-retryable error for {name}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            backoff = calculate_backoff(attempt)
            record_retry(name)

            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {name} "
                f"after {backoff:.2f}s (error: {type(e).__name__})"
            )

            await asyncio.sleep(backoff)

    raise RuntimeError("Retry logic failed unexpectedly")


def with_retry(max_retries: int = MAX_RETRIES, timeout: Optional[float] = OPERATION_TIMEOUT_SECONDS) -> Callable:
    """
    Decorator to add retry logic to async functions.

    Example:
        @with_retry(max_retries=3)
        async def post_notification():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(func, *args, max_retries=max_retries, timeout=timeout, **kwargs)
        return wrapper
    return decorator
