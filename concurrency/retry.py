"""
Nudge - Persistence Retry Logic
Exponential backoff retry for transient I/O failures
"""

import time
from typing import TypeVar, Callable, Optional, Tuple, Type
from functools import wraps

from core.logger import log_warning, log_error
import config

T = TypeVar('T')


class RetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def io_retry(
    max_retries: int = config.PERSIST_MAX_RETRIES,
    initial_delay: float = config.PERSIST_RETRY_INITIAL_DELAY,
    backoff_multiplier: float = config.PERSIST_RETRY_BACKOFF_MULTIPLIER,
    max_delay: float = config.PERSIST_RETRY_MAX_DELAY,
    retryable: Tuple[Type[BaseException], ...] = (PermissionError, BlockingIOError, InterruptedError),
    sleep: Optional[Callable[[float], None]] = None
):
    """
    Decorator for retrying I/O operations with exponential backoff.

    Only exceptions listed in `retryable` are retried; anything else
    propagates immediately. After the last attempt the original error
    is re-raised.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        backoff_multiplier: Multiplier for each retry
        max_delay: Maximum delay between retries
        retryable: Exception types that trigger a retry
        sleep: Sleep function (time.sleep when None)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            last_error = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except retryable as e:
                    if attempt >= max_retries:
                        log_error(
                            f"{func.__name__} failed after {attempt + 1} attempts: {e}"
                        )
                        raise

                    last_error = e
                    log_warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.2f}s..."
                    )
                    (sleep or time.sleep)(delay)
                    delay = min(delay * backoff_multiplier, max_delay)

            raise RetryExhausted(
                f"Max retries ({max_retries}) exhausted. Last error: {last_error}"
            )

        return wrapper
    return decorator
