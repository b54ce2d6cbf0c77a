"""Bounded retry with a fixed backoff, shared by body and attachment downloads."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    context: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` calls have failed.

    Only exceptions in ``retry_on`` are retried; anything else propagates immediately.
    The last retryable exception is re-raised once attempts are exhausted.

    Args:
        fn: Zero-argument callable to execute.
        attempts: Total number of calls, including the first.
        delay: Seconds to wait between attempts.
        retry_on: Exception types that trigger another attempt.
        context: Description for log messages (e.g. "download part 1.2 of UID 42").
        sleep: Sleep function, injectable for tests.

    Returns:
        Whatever ``fn`` returns.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning("%s failed after %d attempts: %s", context, attempts, e)
                raise
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                context, attempt, attempts, delay, e,
            )
            sleep(delay)

    raise AssertionError("unreachable")
