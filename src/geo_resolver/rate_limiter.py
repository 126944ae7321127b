"""
Rate Limiter module for the geo resolver.

This module provides sliding-window admission control with:
- A trailing window of admission timestamps, pruned on every check
- An atomic wait-then-record admission step guarded by an asyncio.Lock
- Prune-only introspection that never consumes a permit
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from geo_resolver.audit_logger import AuditLogger
from geo_resolver.config import RateLimitConfig
from geo_resolver.enums import LogLevel


class RateLimiter:
    """
    Sliding-window rate limiter for upstream lookups.

    Ensures that over any rolling ``window_seconds`` interval no more than
    ``max_requests`` admissions are granted. ``clock`` and ``sleep`` are
    injectable so that callers (and tests) can drive time explicitly.
    """

    COMPONENT = "RateLimiter"

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            config: Permit count, window length, and wake-up jitter
            clock: Monotonic time source in seconds
            sleep: Coroutine used to suspend while the window is full
            logger: Optional logger
        """
        if config.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if config.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._logger = logger
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._config.max_requests

    @property
    def window_seconds(self) -> float:
        return self._config.window_seconds

    def _prune(self, now: float) -> None:
        """Drop admissions that have left the trailing window."""
        while self._window and now - self._window[0] >= self._config.window_seconds:
            self._window.popleft()

    def can_admit(self) -> bool:
        """Whether an admission would be granted right now."""
        self._prune(self._clock())
        return len(self._window) < self._config.max_requests

    def record_admission(self) -> None:
        """Record that an upstream call is being made now."""
        self._window.append(self._clock())

    def requests_in_window(self) -> int:
        self._prune(self._clock())
        return len(self._window)

    def remaining_permits(self) -> int:
        return max(0, self._config.max_requests - self.requests_in_window())

    def seconds_until_next_permit(self) -> float:
        """
        Time until the oldest admission exits the window, plus jitter.

        Returns 0.0 when a permit is available now.
        """
        now = self._clock()
        self._prune(now)
        if len(self._window) < self._config.max_requests:
            return 0.0
        oldest = self._window[0]
        wait = self._config.window_seconds - (now - oldest) + self._config.jitter_seconds
        return max(0.0, wait)

    async def await_admission(self) -> float:
        """
        Suspend until a permit is free, then consume it.

        The check and the record happen under one lock so two concurrent
        callers can never both pass on a stale view of the window. The
        window is re-pruned after every wake-up.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while not self.can_admit():
                delay = self.seconds_until_next_permit()
                self._log(
                    LogLevel.DEBUG,
                    f"Rate limit reached, waiting {delay:.3f}s",
                    {
                        "in_window": len(self._window),
                        "max_requests": self._config.max_requests,
                        "wait_seconds": delay,
                    },
                )
                await self._sleep(delay)
                waited += delay
            self.record_admission()
        return waited

    def clear_history(self) -> None:
        """Forget every recorded admission."""
        self._window.clear()

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
