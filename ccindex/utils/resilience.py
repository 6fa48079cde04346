"""Retry helper for idempotent storage reads."""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    retries: int = 1,
    delay: float = 0.05,
    backoff: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    max_delay: float = 5.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retry logic with exponential backoff.

    Only apply this to idempotent operations; mutating calls must surface
    their failure instead.

    Args:
        retries: Number of retry attempts after the first call
        delay: Delay before the first retry in seconds
        backoff: Backoff multiplier
        exceptions: Exception types to retry on
        max_delay: Maximum delay between retries

    Returns:
        Decorated function with retry logic

    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            wait = delay
            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == retries:
                        raise
                    logger.warning(
                        "%s failed (%s), retrying in %.2fs",
                        func.__qualname__,
                        e,
                        min(wait, max_delay),
                    )
                    time.sleep(min(wait, max_delay))
                    wait *= backoff
            msg = "All retries failed"  # pragma: no cover
            raise RuntimeError(msg)  # pragma: no cover

        return wrapper

    return decorator
