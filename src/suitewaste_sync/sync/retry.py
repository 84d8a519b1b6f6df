"""Exponential backoff for sync submissions and deferred replays."""

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fraction of the delay added or removed at random
JITTER_FRACTION = 0.25


@dataclass
class RetryConfig:
    """Backoff schedule: ``base_delay * exponential_base ** attempt``, capped."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th failure (0-indexed)."""
        capped = min(self.base_delay * self.exponential_base**attempt, self.max_delay)
        if not self.jitter:
            return max(0.0, capped)
        spread = capped * JITTER_FRACTION
        return max(0.0, capped + random.uniform(-spread, spread))


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


def calculate_delay(attempt: int, config: Optional[RetryConfig] = None) -> float:
    return (config or RetryConfig()).delay(attempt)


def next_attempt_at(
    attempt: int,
    config: Optional[RetryConfig] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """Absolute time of the next attempt after ``attempt`` failures."""
    start = now or datetime.now(timezone.utc)
    return start + timedelta(seconds=calculate_delay(attempt, config))


def retry_with_backoff(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    retryable_exceptions: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or every allowed attempt has failed.

    Args:
        func: Zero-argument callable performing one attempt
        config: Backoff schedule and retry count
        on_retry: Called as (attempt, error, delay) before each wait
        retryable_exceptions: Errors that cost one attempt; anything else propagates
        sleep: Blocking wait between attempts

    Raises:
        RetryExhausted: When ``max_retries + 1`` attempts all failed
    """
    config = config or RetryConfig()
    attempts = config.max_retries + 1
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        try:
            return func()
        except retryable_exceptions as e:
            last_error = e
            if attempt == attempts - 1:
                break
            wait = config.delay(attempt)
            if on_retry is not None:
                on_retry(attempt, e, wait)
            else:
                logger.warning(f"Attempt {attempt + 1}/{attempts} failed ({e}), retrying in {wait:.1f}s")
            sleep(wait)

    raise RetryExhausted(attempts, last_error)
