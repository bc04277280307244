"""
Fixed-interval pacing for the outbound transport.

The provider allows `messages_per_minute` sends. The per-message delay is
60000 / rate ms inflated by the safety margin, rounded up to a whole ms:
256/min → ceil(234.375 * 1.1) = 258ms. Only one job is ever in flight, so
a fixed gap between processed jobs is enough to stay under the ceiling.
"""
from __future__ import annotations

import math
import structlog
from typing import Optional

from dispatch_queue.clock import Clock

logger = structlog.get_logger()


def compute_delay_ms(messages_per_minute: int, safety_margin: float = 0.10) -> int:
    if messages_per_minute <= 0:
        raise ValueError("messages_per_minute must be positive")
    # round() first so float noise (1100.0000000000002) doesn't ceil up a whole ms
    return math.ceil(round(60000 * (1 + safety_margin) / messages_per_minute, 6))


class FixedIntervalRateLimiter:
    """Enforces `delay_ms` between the end of one job and the next attempt."""

    def __init__(
        self,
        messages_per_minute: int = 256,
        safety_margin: float = 0.10,
        clock: Optional[Clock] = None,
    ):
        self.messages_per_minute = messages_per_minute
        self.safety_margin = safety_margin
        self.delay_ms = compute_delay_ms(messages_per_minute, safety_margin)
        self._clock = clock or Clock()
        self._last_mark: Optional[float] = None

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0

    def mark(self) -> None:
        """Record that a job has just been processed."""
        self._last_mark = self._clock.monotonic()

    def remaining(self) -> float:
        if self._last_mark is None:
            return 0.0
        elapsed = self._clock.monotonic() - self._last_mark
        return max(0.0, self.delay_seconds - elapsed)

    async def wait(self) -> float:
        """Sleep out whatever is left of the delay. Returns seconds slept."""
        wait = self.remaining()
        if wait > 0:
            logger.debug("rate_limit_wait", wait_ms=round(wait * 1000))
            await self._clock.sleep(wait)
        return wait

    def estimate_ms(self, pending: int) -> int:
        return pending * self.delay_ms
