"""Bounded retry with capped exponential backoff."""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from chat_archive.core.errors import is_retryable
from chat_archive.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based): ``min(base * 2^attempt, cap)``."""
    if base_delay <= 0:
        return 0.0
    # Clamp the exponent so unbounded retry loops never overflow.
    return min(base_delay * (2 ** min(attempt, 32)), max_delay)


def retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: RetryPredicate = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
    description: str | None = None,
) -> T:
    """Run ``operation`` until it succeeds or attempts are exhausted.

    ``max_attempts`` counts total calls; ``0`` means retry forever. Errors for
    which ``retry_on`` returns False (rate limits, authorization failures) are
    raised immediately. When attempts run out the last error is raised.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if not retry_on(exc):
                raise
            attempt += 1
            if max_attempts and attempt >= max_attempts:
                logger.warning(
                    "%s failed after %s attempts: %s",
                    description or "operation",
                    attempt,
                    exc,
                )
                raise
            delay = backoff_delay(attempt - 1, base_delay, max_delay)
            logger.debug(
                "Retrying %s in %.2fs (attempt %s): %s",
                description or "operation",
                delay,
                attempt + 1,
                exc,
            )
            sleep(delay)


class RetryPolicy:
    """Retry settings bound once and reused at every remote call site."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        retry_on: RetryPredicate = is_retryable,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_on = retry_on
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, sleep: Callable[[float], None] = time.sleep) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            sleep=sleep,
        )

    def call(self, operation: Callable[[], T], description: str | None = None) -> T:
        return retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            retry_on=self.retry_on,
            sleep=self.sleep,
            description=description,
        )


__all__ = ["retry", "backoff_delay", "RetryPolicy", "RetryPredicate"]
