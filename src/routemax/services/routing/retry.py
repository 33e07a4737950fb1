"""Retry with exponential backoff, independent of any transport."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float, multiplier: float = 2.0, max_delay: float | None = None) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    delay = base_delay * (multiplier ** (attempt - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def with_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float | None = 8.0,
    is_retryable: Callable[[BaseException], bool] = lambda exc: True,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

    The last error is re-raised unchanged, so callers see the same exception
    type whether or not retries happened.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= max_attempts or not is_retryable(exc):
                raise
            wait_time = backoff_delay(attempt, base_delay, multiplier, max_delay)
            logger.debug(f"Retrying in {wait_time:.1f}s (attempt {attempt}/{max_attempts}): {exc}")
            sleep(wait_time)
