"""
Rate limiter for quota-constrained APIs
=======================================

Serializes outbound calls to one API (the skip-tracing search/detail endpoint)
through a single FIFO admission queue:

- Minimum spacing between admissions: ``base_delay`` (250ms, ~4 req/s with
  two calls per lead)
- Extra delay under throttling: ``min(consecutive_429 * 500ms, 2000ms)``
- "Last admitted" is stamped before the caller is released, so spacing is
  measured from admission, not completion

State is per instance. Each enrichment run owns one limiter; it is not
shared across processes.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 0.25
BACKOFF_STEP_SECONDS = 0.5
MAX_EXTRA_DELAY_SECONDS = 2.0

# Wait before the single retry after an HTTP 429
RETRY_BACKOFF_BASE_SECONDS = 1.0
RETRY_BACKOFF_FACTOR = 1.5
RETRY_BACKOFF_MAX_SECONDS = 5.0


class RateLimiter:
    """FIFO admission queue with minimum spacing and 429-driven backoff."""

    def __init__(
        self,
        base_delay: float = BASE_DELAY_SECONDS,
        step: float = BACKOFF_STEP_SECONDS,
        max_extra: float = MAX_EXTRA_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_delay = base_delay
        self.step = step
        self.max_extra = max_extra
        self._clock = clock
        self._sleep = sleep
        self._consecutive_429 = 0
        self._last_admission: Optional[float] = None
        self._queue_lock: Optional[asyncio.Lock] = None
        self._lock_loop = None

    @property
    def consecutive_429(self) -> int:
        return self._consecutive_429

    @property
    def extra_delay(self) -> float:
        return min(self._consecutive_429 * self.step, self.max_extra)

    @property
    def required_delay(self) -> float:
        return self.base_delay + self.extra_delay

    def increment_429(self) -> None:
        self._consecutive_429 += 1
        logger.warning(
            f"Throttled by upstream ({self._consecutive_429} consecutive 429s), "
            f"extra delay now {self.extra_delay:.2f}s"
        )

    def reset_429(self) -> None:
        if self._consecutive_429:
            logger.info(f"Throttling cleared after {self._consecutive_429} consecutive 429s")
        self._consecutive_429 = 0

    def throttle_backoff(self) -> float:
        """Seconds to wait before retrying a throttled call."""
        return min(
            RETRY_BACKOFF_BASE_SECONDS * RETRY_BACKOFF_FACTOR ** self._consecutive_429,
            RETRY_BACKOFF_MAX_SECONDS,
        )

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._queue_lock is None or self._lock_loop is not loop:
            self._queue_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._queue_lock

    async def wait_if_needed(self) -> float:
        """
        Suspend until this caller may proceed.

        Callers are admitted one at a time in arrival order (asyncio.Lock
        wakes waiters FIFO).

        Returns:
            Admission timestamp (clock units)
        """
        async with self._get_lock():
            now = self._clock()
            if self._last_admission is not None:
                # Loop: the event loop may wake a sleeper up to one clock tick early
                wait = self._last_admission + self.required_delay - now
                while wait > 0:
                    await self._sleep(wait)
                    now = self._clock()
                    wait = self._last_admission + self.required_delay - now
            self._last_admission = now
            return now
