"""Retry logic with exponential backoff and jitter

Used for two kinds of transient failure:
1. Row-lock conflicts on shared progress rows (ConcurrentUpdateError)
2. Response provider timeouts, rate limits and 5xx errors

Only retryable errors are retried, attempts are bounded, and the delay
grows exponentially with jitter so concurrent requests spread out.
"""

import asyncio
import random
import logging
from typing import Callable, Any, TypeVar
from functools import wraps
import httpx

from src.exceptions import CompanionError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Retry configuration
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds
MAX_DELAY = 30.0  # seconds
JITTER = 0.1  # 10% random jitter


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Retryable errors:
    - CompanionError subclasses flagged retryable (concurrent update,
      database unavailable, external API failures)
    - Network timeouts
    - HTTP 429 (rate limit)
    - HTTP 500/502/503/504 (server errors)

    Non-retryable errors:
    - Validation errors and other CompanionErrors not flagged retryable
    - HTTP 400/401/403/404 (client errors)

    Args:
        exc: The exception to check

    Returns:
        True if error should be retried, False otherwise
    """
    if isinstance(exc, CompanionError):
        return exc.retryable

    # HTTPX errors
    if isinstance(exc, httpx.HTTPStatusError):
        # Retry on rate limits and server errors
        status_code = exc.response.status_code
        return status_code in [429, 500, 502, 503, 504]

    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    # Default: don't retry unknown errors
    return False


def calculate_backoff(attempt: int, base_delay: float = BASE_DELAY) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: delay = min(base_delay * (2 ** attempt), MAX_DELAY) + jitter
    Jitter is random value between -10% and +10% of delay

    Args:
        attempt: The retry attempt number (0-indexed)
        base_delay: Delay of the first retry in seconds

    Returns:
        Delay in seconds

    Example (base_delay=1.0):
        Attempt 0: ~1s
        Attempt 1: ~2s
        Attempt 2: ~4s
    """
    delay = min(base_delay * (2 ** attempt), MAX_DELAY)

    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    final_delay = delay + jitter_amount

    return max(final_delay, 0.0)


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Only retries transient errors. Gives up after max_retries retries and
    re-raises the last error, so the caller still sees a retryable failure.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Delay of the first retry in seconds
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from func

    Raises:
        Last exception if all retries exhausted or non-retryable error

    Example:
        update = await retry_with_backoff(ledger._apply_once, user_id, ..., max_retries=3, base_delay=0.05)
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if not is_retryable_error(e):
                logger.warning(
                    f"[RETRY] Non-retryable error for {func.__name__}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            if attempt == max_retries:
                logger.error(
                    f"[RETRY] All {max_retries} retries exhausted for {func.__name__}"
                )
                raise

            backoff = calculate_backoff(attempt, base_delay)

            # Metrics must never break the retried call
            try:
                from src.resilience.metrics import record_retry
                record_retry(func.__name__.lstrip('_'))
            except Exception as metrics_error:
                logger.debug(f"Failed to record retry metric: {metrics_error}")

            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {func.__name__} "
                f"after {backoff:.2f}s (error: {type(e).__name__})"
            )

            await asyncio.sleep(backoff)

    raise RuntimeError("Retry loop exited without a result")


def with_retry(max_retries: int = MAX_RETRIES, base_delay: float = BASE_DELAY) -> Callable:
    """
    Decorator to add retry logic to async functions.

    Example:
        @with_retry(max_retries=2)
        async def call_provider():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(
                func, *args, max_retries=max_retries, base_delay=base_delay, **kwargs
            )
        return wrapper
    return decorator
