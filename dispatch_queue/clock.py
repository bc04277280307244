"""Clock abstraction so pacing and timestamps can be driven by tests."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime


class Clock:
    """Real time: monotonic for durations, UTC wall clock for timestamps."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.utcnow()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
