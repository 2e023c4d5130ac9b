"""
List Refresher
==============

Aggregate poll loop for "refresh the whole collection" views such as the
background-tasks table:
- one fetch at a time through its own superseding slot
- timer re-armed only after the previous fetch settled
- manual refresh supersedes an in-flight automatic one
- failures are recorded and the cadence continues indefinitely
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from utils.logger import get_module_logger

from .event_emitter import EventEmitter
from .models import OperationStatus, utc_now
from .poll_loop import describe_error
from .superseding_fetcher import SUPERSEDED, SupersedingFetcher

logger = get_module_logger("OperationTracking.ListRefresher")

ACTIVE_STATUSES = (OperationStatus.PENDING.value, OperationStatus.RUNNING.value)


class ListRefresher:
    """Periodically refreshes one list; ``refresh_now`` forces an immediate fetch."""

    def __init__(
        self,
        fetch_list: Callable[[], Awaitable[List[Dict[str, Any]]]],
        *,
        name: str = "list",
        interval: float = 300.0,
        request_timeout: Optional[float] = 15.0,
        event_emitter: Optional[EventEmitter] = None,
        sleep=asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.name = name
        self.interval = float(interval)
        self.request_timeout = request_timeout
        self.event_emitter = event_emitter
        self.fetcher = SupersedingFetcher(name=f"list:{name}")
        self.logger = logger

        self.items: List[Dict[str, Any]] = []
        self.error: Optional[str] = None
        self.last_updated: Optional[str] = None
        self.is_refreshing = False
        self.refresh_count = 0

        self._fetch_list = fetch_list
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        return sum(1 for item in self.items if item.get('status') in ACTIVE_STATUSES)

    def start(self) -> asyncio.Task:
        """Start the automatic cadence with an immediate first fetch."""
        if self._running and self._task is not None and not self._task.done():
            return self._task
        return self._restart_cycle()

    def refresh_now(self) -> asyncio.Task:
        """Fetch immediately, superseding any in-flight fetch; restarts a stopped refresher."""
        self.logger.debug("[%s] Manual refresh requested", self.name)
        task = self._restart_cycle()
        # Callers reading snapshot() right away must see the pending fetch
        self.is_refreshing = True
        self._emit()
        return task

    def stop(self):
        """Stop the cadence and abort any in-flight fetch."""
        self._running = False
        self.fetcher.cancel_current()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self.is_refreshing:
            self.is_refreshing = False
            self._emit()

    async def close(self):
        task = self._task
        self.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def snapshot(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'items': [dict(item) for item in self.items],
            'error': self.error,
            'last_updated': self.last_updated,
            'is_refreshing': self.is_refreshing,
            'active_count': self.active_count,
            'interval': self.interval,
            'running': self._running,
            'generation': self.fetcher.generation,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _restart_cycle(self) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        previous = self._task
        if previous is not None and not previous.done():
            previous.cancel()
        self._running = True
        self._task = loop.create_task(self._cycle(), name=f"list:{self.name}")
        return self._task

    async def _cycle(self):
        while self._running:
            await self._refresh_once()
            await self._sleep(self.interval)

    async def _refresh_once(self):
        self.is_refreshing = True
        self._emit()

        try:
            outcome = await self.fetcher.run(self._fetch_list, timeout=self.request_timeout)
        except Exception as exc:
            self.error = describe_error(exc)
            self.is_refreshing = False
            self.logger.warning("[%s] Refresh failed: %s", self.name, self.error)
            self._emit()
            return

        if outcome is SUPERSEDED:
            return

        if not isinstance(outcome, list):
            self.error = f"Malformed list response ({type(outcome).__name__})"
            self.is_refreshing = False
            self.logger.warning("[%s] %s", self.name, self.error)
            self._emit()
            return

        self.items = list(outcome)
        self.error = None
        self.last_updated = utc_now()
        self.is_refreshing = False
        self.refresh_count += 1
        self.logger.debug("[%s] Refreshed %s item(s)", self.name, len(self.items))
        self._emit()

    def _emit(self):
        if self.event_emitter is not None:
            self.event_emitter.emit_list_updated(self.name, self.snapshot())

