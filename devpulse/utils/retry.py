"""
Shared retry/backoff helper used by the fetch client and the enrichment engine.
"""

from typing import Callable, Optional
import time
import logging

from devpulse.models.errors import PipelineError, RateLimitError, Result

logger = logging.getLogger(__name__)


def exponential_backoff(base: float, cap: float) -> Callable[[int, PipelineError], float]:
    """Delay of base * 2^attempt, capped; honours a larger Retry-After."""
    def delay_for(attempt: int, error: PipelineError) -> float:
        delay = min(cap, base * (2 ** attempt))
        retry_after = getattr(error, "retry_after", None)
        if isinstance(error, RateLimitError) and retry_after:
            delay = max(delay, min(cap, retry_after))
        return delay
    return delay_for


def linear_backoff(base: float) -> Callable[[int, PipelineError], float]:
    """Delay of base * (attempt + 1)."""
    def delay_for(attempt: int, error: PipelineError) -> float:
        return base * (attempt + 1)
    return delay_for


def is_retryable(error: PipelineError) -> bool:
    return error.retryable


def retry_with_backoff(
    operation: Callable[[], Result],
    max_attempts: int,
    delay_for: Callable[[int, PipelineError], float],
    should_retry: Callable[[PipelineError], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
    label: Optional[str] = None,
) -> Result:
    """
    Run an operation returning a Result until it succeeds or attempts run out.

    Args:
        operation: Zero-argument callable returning a Result
        max_attempts: Total number of attempts (first call included)
        delay_for: Maps (attempt index, error) to a delay in seconds
        should_retry: Decides whether a failed Result is worth another attempt
        sleep: Sleep function (injectable for tests)
        label: Name used in log messages

    Returns:
        The first successful Result, or the last failed one
    """
    attempts = max(1, max_attempts)
    result = operation()
    for attempt in range(attempts - 1):
        if result.ok or not should_retry(result.error):
            return result
        delay = delay_for(attempt, result.error)
        logger.warning(
            f"{label or 'operation'} failed ({result.error}). Retrying in {delay}s... "
            f"(attempt {attempt + 1}/{attempts - 1})"
        )
        sleep(delay)
        result = operation()
    return result
