"""
Pytest configuration and shared fixtures for the tracking engine tests.

Poll loops and list refreshers accept an injectable ``sleep``; the tests pass
``ManualClock.sleep`` so every scheduled delay is recorded and the test decides
when time "passes".
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

import pytest

from services.operation_tracking.event_emitter import EventEmitter
from services.operation_tracking.models import StatusReport


async def settle(rounds: int = 50) -> None:
    """Let every ready callback run until the loop goes quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], rounds: int = 500) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not reached")


class ManualClock:
    """Sleep replacement: records delays and parks callers until ``tick``."""

    def __init__(self) -> None:
        self.delays: List[float] = []
        self._waiters: List[asyncio.Future] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    @property
    def parked(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def tick(self) -> None:
        """Wake every parked sleeper and let them run until they park again."""
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
        await settle()


class ScriptedFetcher:
    """Status fetcher that replays a script of reports, payloads or exceptions."""

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: List[str] = []

    async def __call__(self, external_id: str) -> Any:
        self.calls.append(external_id)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, BaseException):
            raise step
        return step


class GatedFetcher:
    """Status fetcher whose calls block until the test releases them."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls: List[str] = []
        self.cancelled = 0
        self.gate = asyncio.Event()

    async def __call__(self, external_id: str) -> Any:
        self.calls.append(external_id)
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return self.result


class EventRecorder:
    def __init__(self, emitter: EventEmitter) -> None:
        self.events: List[tuple] = []
        emitter.subscribe(lambda event, data: self.events.append((event, data)))

    def named(self, event: str) -> List[dict]:
        return [data for name, data in self.events if name == event]


def report(status: str, message: Optional[str] = None) -> StatusReport:
    return StatusReport(status=status, message=message)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorder(emitter: EventEmitter) -> EventRecorder:
    return EventRecorder(emitter)
