"""Shared test fixtures for the dispatch queue."""
import asyncio
import pytest
from datetime import datetime, timedelta
from typing import Any, Optional

from channels.base import MessageTransport
from config.settings import DispatchConfig
from dispatch_queue.clock import Clock
from dispatch_queue.service import DispatchQueue
from models.schemas import SendResult


class FakeClock(Clock):
    """Virtual time. sleep() advances the clock instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self._start = start
        self._t = start
        self._epoch = datetime(2025, 1, 6, 8, 0, 0)
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._t

    def now(self) -> datetime:
        return self._epoch + timedelta(seconds=self._t - self._start)

    def advance(self, seconds: float):
        self._t += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._t += seconds
        await asyncio.sleep(0)


class ScriptedTransport(MessageTransport):
    """
    Transport whose outcomes are scripted per destination.

    Each outcome is a SendResult, a dict, or an exception to raise. When a
    destination's script runs out, sends succeed. Set `gate` to hold every
    send until the test releases it; `hold_for` limits the gate to some
    destinations.
    """

    name = "scripted"

    def __init__(self, clock: FakeClock, send_duration: float = 0.0):
        self.clock = clock
        self.send_duration = send_duration
        self.scripts: dict[str, list[Any]] = {}
        self.calls: list[dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.hold_for: Optional[set[str]] = None
        self.started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    def script(self, destination: str, *outcomes: Any):
        self.scripts.setdefault(destination, []).extend(outcomes)

    def always_fail(self, destination: str, error: BaseException, times: int = 10):
        self.script(destination, *([error] * times))

    @property
    def destinations(self) -> list[str]:
        return [c["destination"] for c in self.calls]

    async def send(self, destination: str, payload: str, metadata: dict[str, Any]) -> SendResult:
        self.calls.append({
            "destination": destination,
            "payload": payload,
            "metadata": metadata,
            "at": self.clock.monotonic(),
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None and (self.hold_for is None or destination in self.hold_for):
                await self.gate.wait()
            self.clock.advance(self.send_duration)
            script = self.scripts.get(destination)
            outcome = script.pop(0) if script else SendResult.ok(f"wamid.{len(self.calls)}")
        finally:
            self.in_flight -= 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport(clock) -> ScriptedTransport:
    return ScriptedTransport(clock)


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig()


@pytest.fixture
def queue(transport, dispatch_config, clock) -> DispatchQueue:
    return DispatchQueue(transport, dispatch_config, clock=clock)
