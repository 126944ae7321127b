"""
Retry policy for the geo resolver.

Exponential backoff for retryable lookup failures. Attempts are 0-indexed:
attempt 0 is the first call, and the delay before attempt n+1 is
``initial_delay * 2**n``.
"""

from .config import RetryConfig


def delay_for(attempt: int, initial_delay_seconds: float) -> float:
    """
    Backoff delay to wait after a failed attempt.

    Args:
        attempt: The attempt that just failed (0-indexed)
        initial_delay_seconds: Delay after the first failure

    Returns:
        The delay in seconds before the next attempt
    """
    if attempt < 0:
        raise ValueError("attempt must be non-negative")
    return initial_delay_seconds * (2 ** attempt)


def is_exhausted(attempt: int, max_attempts: int) -> bool:
    """True once ``attempt`` is the last one ``max_attempts`` allows."""
    return attempt >= max_attempts - 1


class RetryPolicy:
    """RetryConfig bound to the backoff functions above."""

    def __init__(self, config: RetryConfig) -> None:
        if config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._config = config

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def delay_for(self, attempt: int) -> float:
        return delay_for(attempt, self._config.initial_delay_seconds)

    def is_exhausted(self, attempt: int) -> bool:
        return is_exhausted(attempt, self._config.max_attempts)
