"""Retry logic with exponential backoff.

This module provides:
- backoff_delay: Delay for the n-th consecutive failure
- retry_with_backoff: Simple exponential backoff retry
- RATE_LIMIT_EXCEPTIONS: Errors that mean "slow down", not "broken"
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from eventsync.client.api import RateLimitError

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

RATE_LIMIT_EXCEPTIONS: tuple[type[Exception], ...] = (RateLimitError,)


def backoff_delay(base: float, consecutive_errors: int) -> float:
    """Exponential backoff: base * 2^(consecutive_errors - 1).

    Args:
        base: Delay after the first error, in seconds.
        consecutive_errors: Number of consecutive errors so far (>= 1).

    Returns:
        Seconds to wait before the next attempt.
    """
    return base * (2 ** max(consecutive_errors - 1, 0))


def retry_with_backoff(
    func: Callable[[], Any],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Execute a function with exponential backoff retry.

    A RateLimitError carrying a larger retry_after than the current backoff
    waits for retry_after instead.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        retryable_exceptions: Tuple of exception types to retry on.
        sleep: Sleep function (injectable for tests).

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    backoff = initial_backoff

    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries} retries failed: {e}")
                raise

            delay = backoff
            retry_after = getattr(e, "retry_after", None)
            if retry_after is not None and retry_after > delay:
                delay = min(retry_after, max_backoff)

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")
