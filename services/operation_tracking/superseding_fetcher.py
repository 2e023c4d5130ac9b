"""
Superseding Fetcher
===================

One "current attempt" slot. Starting a new attempt cancels the previous one and
bumps the slot generation; results that come back for an older generation are
dropped instead of being delivered.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from utils.logger import get_module_logger

logger = get_module_logger("OperationTracking.SupersedingFetcher")


class _Superseded:
    """Marker returned by ``SupersedingFetcher.run`` for stale attempts."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "SUPERSEDED"

    def __bool__(self):
        return False


SUPERSEDED = _Superseded()


class SupersedingFetcher:
    """
    Wraps a single outstanding request per logical slot.

    - run(): cancel previous attempt, tag the new one with a generation,
      deliver its result only while that generation is still current
    - dispose(): cancel the current attempt and refuse any further delivery
    """

    def __init__(self, name: str = "slot"):
        self.name = name
        self.logger = logger
        self._generation = 0
        self._current: Optional[asyncio.Future] = None
        self._disposed = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    def is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    def cancel_current(self) -> bool:
        """Abort the in-flight attempt, if any. Returns True when something was cancelled."""
        attempt = self._current
        self._current = None
        if attempt is not None and not attempt.done():
            attempt.cancel()
            self.logger.debug("Cancelled in-flight attempt on %s (generation %s)", self.name, self._generation)
            return True
        return False

    async def run(self, fn: Callable[[], Awaitable[Any]], timeout: Optional[float] = None) -> Any:
        """
        Start a new attempt in this slot.

        Args:
            fn: Zero-argument callable returning an awaitable
            timeout: Optional bound on the attempt in seconds

        Returns:
            The attempt's result, or SUPERSEDED when a newer attempt (or dispose)
            took over the slot before it settled.

        Raises:
            Whatever the current attempt raised (asyncio.TimeoutError on timeout).
        """
        if self._disposed:
            return SUPERSEDED

        self.cancel_current()
        self._generation += 1
        generation = self._generation

        awaitable = fn()
        if timeout is not None:
            awaitable = asyncio.wait_for(awaitable, timeout)
        attempt = asyncio.ensure_future(awaitable)
        self._current = attempt

        try:
            await asyncio.wait({attempt})
        except asyncio.CancelledError:
            # The caller itself was cancelled; take the request down with it
            attempt.cancel()
            raise
        finally:
            if self._current is attempt:
                self._current = None

        if attempt.cancelled() or not self.is_current(generation):
            if not attempt.cancelled():
                # Mark a stale exception as retrieved so asyncio does not warn about it
                attempt.exception()
            self.logger.debug("Dropped stale result on %s (generation %s)", self.name, generation)
            return SUPERSEDED

        return attempt.result()

    def dispose(self):
        """Cancel the current attempt and forbid future deliveries."""
        self._disposed = True
        self.cancel_current()
