"""
Retry Policy and Decorator with Exponential Backoff
Job-level backoff schedule and automatic retry for transient calls
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Type, Tuple, Optional, Callable

from .logger import get_logger

logger = get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """
    Explicit job retry policy consumed by the queue consumer

    Attributes:
        max_attempts: Total number of deliveries, including the first one
        base_delay: Delay in seconds after the first failed attempt
        multiplier: Growth factor applied per further attempt
    """
    max_attempts: int = 3
    base_delay: float = 10.0
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.multiplier < 1:
            raise ValueError("base_delay must be >= 0 and multiplier >= 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds after `attempt` (1-based) has failed"""
        return self.base_delay * (self.multiplier ** max(0, attempt - 1))

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def is_final(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


def retry_async(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None
):
    """
    Async retry decorator with exponential backoff

    Meant for idempotent reads against external APIs (status polls,
    downloads). Generation requests themselves are never retried here.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries
        exponential_base: Base for exponential backoff calculation
        jitter: Add random jitter to prevent thundering herd
        retryable_exceptions: Tuple of exception types to retry on
        on_retry: Optional callback called on each retry (exception, attempt)
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except retryable_exceptions as e:
                    last_exception = e
                    delay = min(base_delay * (exponential_base ** attempt), max_delay)

                    if jitter:
                        delay = delay * (0.5 + random.random())

                    if attempt < max_retries:
                        logger.warning(
                            f"Retry {attempt + 1}/{max_retries} for {func.__name__} "
                            f"after {delay:.1f}s: {str(e)[:100]}"
                        )

                        if on_retry:
                            on_retry(e, attempt + 1)

                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func.__name__}: {e}"
                        )
                        raise

            raise last_exception

        return wrapper
    return decorator
