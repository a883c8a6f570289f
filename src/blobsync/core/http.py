"""
HTTP utilities with fixed-delay retry logic.

This module provides a retry decorator and error classification for the
HTTP calls blobsync makes. Retries are bounded and use a constant delay
between attempts; there is no exponential backoff, so the worst-case
duration of a download is ``max_attempts * (timeout + delay)``.

Example:
    >>> import httpx
    >>> from blobsync.core.http import with_retry
    >>>
    >>> @with_retry(max_attempts=3, delay=2.0)
    >>> def fetch(url: str) -> httpx.Response:
    ...     response = httpx.get(url, timeout=30.0)
    ...     response.raise_for_status()
    ...     return response

Configuration:
    - Default attempts: 3 (one initial try plus two retries)
    - Default delay: 2.0 seconds between attempts
"""

import functools
import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Client errors that are worth another attempt
RETRYABLE_CLIENT_STATUS = frozenset({408, 429})


class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts, including the first (default: 3)
        delay: Seconds to wait between attempts (default: 2.0)
    """

    def __init__(self, max_attempts: int = 3, delay: float = 2.0) -> None:
        """
        Initialize retry configuration.

        Raises:
            ValueError: If parameters are invalid
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay < 0:
            raise ValueError("delay must be non-negative")

        self.max_attempts = max_attempts
        self.delay = delay


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if an exception represents a transient, retryable error.

    Retryable errors include:
    - 5xx server errors, 408 and 429
    - Timeouts, connection and other transport errors
    - Local I/O errors while writing a download

    Non-retryable errors include:
    - Other 4xx client errors (404, 401, 400, ...)
    - Anything else (programming errors, validation errors, etc.)
    """
    # HTTPStatusError is also an HTTPError, so check it first
    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        return status_code >= 500 or status_code in RETRYABLE_CLIENT_STATUS

    if isinstance(exception, httpx.HTTPError):
        return True

    if isinstance(exception, OSError):
        return True

    return False


def with_retry(
    max_attempts: int = 3,
    delay: float = 2.0,
    *,
    retry_on: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator that retries a function on transient errors with a fixed delay.

    Args:
        max_attempts: Total number of attempts (default: 3)
        delay: Seconds between attempts (default: 2.0)
        retry_on: Predicate deciding whether an exception is retryable
        sleep: Sleep function, ``time.sleep`` when None

    Returns:
        Decorator function that wraps the target function with retry logic
    """
    config = RetryConfig(max_attempts=max_attempts, delay=delay)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            func_name = getattr(func, "__name__", repr(func))
            pause = sleep or time.sleep

            for attempt in range(1, config.max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not retry_on(e):
                        logger.debug("%s: non-retryable error on attempt %d: %s", func_name, attempt, e)
                        raise

                    if attempt >= config.max_attempts:
                        logger.warning(
                            "%s: giving up after %d attempts: %s", func_name, attempt, e
                        )
                        raise

                    logger.info(
                        "%s: attempt %d/%d failed, retrying in %.1fs: %s",
                        func_name,
                        attempt,
                        config.max_attempts,
                        config.delay,
                        e,
                    )
                    pause(config.delay)

            raise RuntimeError("Retry loop completed without success or exception")

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "is_retryable_error",
    "with_retry",
]
