"""
Tracking Service
================

Owns the asyncio event loop that drives every registry and list refresher, and
exposes a thread-safe facade for Flask request threads.

Collections:
- downloads       episode downloads (torrent status endpoint)
- tasks           backend task queue entries (torrent scans)
- quarters        quarter update tasks (long-poll endpoint)
- tasks-monitor   background tasks table, refreshed on a slow cadence
- quarter-tasks   pending/running quarter update tasks for the seasons table
"""

import asyncio
import threading
from typing import Any, Callable, Dict, List, Optional

from utils.logger import get_module_logger

from .event_emitter import EventEmitter
from .list_refresher import ListRefresher
from .models import TrackingOptions
from .operation_registry import OperationRegistry
from .retry_policy import RetryPolicy

logger = get_module_logger("OperationTracking.Service")

DEFAULT_SETTINGS: Dict[str, Any] = {
    'enabled': True,
    'poll_interval': 2.0,
    'list_refresh_interval': 300.0,
    'task_list_limit': 20,
    'quarter_tasks_refresh_interval': 5.0,
    'quarter_tasks_limit': 100,
    'max_attempts': 5,
    'backoff_strategy': 'exponential',
    'max_backoff': 60.0,
    'clear_on_terminal': False,
    'quarter_long_poll_ms': 1000,
    'shutdown_timeout': 5.0,
}


class OperationTrackingError(RuntimeError):
    """Raised when the tracking service cannot serve a request."""


class UnknownCollectionError(OperationTrackingError):
    """Raised for a collection name that is not tracked by the service."""

    def __init__(self, collection: str):
        super().__init__(f"Unknown collection: {collection}")
        self.collection = collection


class TrackingService:
    """
    Single owner of all tracking state.

    Registries are only touched from the service's loop thread; every public
    method marshals its work there with ``run_coroutine_threadsafe``.
    """

    DOWNLOADS = 'downloads'
    TASKS = 'tasks'
    QUARTERS = 'quarters'
    COLLECTIONS = (DOWNLOADS, TASKS, QUARTERS)
    TASKS_MONITOR = 'tasks-monitor'
    QUARTER_TASKS = 'quarter-tasks'
    QUARTER_TASK_TYPE = 'UPDATE_QUARTER'

    def __init__(
        self,
        client,
        settings: Optional[Dict[str, Any]] = None,
        *,
        event_emitter: Optional[EventEmitter] = None,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.settings = {**DEFAULT_SETTINGS, **(settings or {})}
        self.event_emitter = event_emitter or EventEmitter()
        self.retry_policy = RetryPolicy.from_settings(self.settings)
        self.logger = logger

        request_timeout = float(getattr(client, 'timeout', 15.0))
        self.options = TrackingOptions(
            interval=float(self.settings['poll_interval']),
            request_timeout=request_timeout,
            clear_on_terminal=bool(self.settings['clear_on_terminal']),
        )
        # Long-poll requests are held open by the server for up to quarter_long_poll_ms
        self.quarter_options = TrackingOptions(
            interval=self.options.interval,
            request_timeout=request_timeout + self.settings['quarter_long_poll_ms'] / 1000.0,
            clear_on_terminal=self.options.clear_on_terminal,
        )

        self.registries: Dict[str, OperationRegistry] = {
            name: OperationRegistry(
                name,
                options=self.quarter_options if name == self.QUARTERS else self.options,
                retry_policy=self.retry_policy,
                event_emitter=self.event_emitter,
                sleep=sleep,
            )
            for name in self.COLLECTIONS
        }
        self.tasks_monitor = ListRefresher(
            self._fetch_task_list,
            name=self.TASKS_MONITOR,
            interval=float(self.settings['list_refresh_interval']),
            request_timeout=request_timeout,
            event_emitter=self.event_emitter,
            sleep=sleep,
        )
        self.quarter_tasks = ListRefresher(
            self._fetch_quarter_tasks,
            name=self.QUARTER_TASKS,
            interval=float(self.settings['quarter_tasks_refresh_interval']),
            request_timeout=request_timeout,
            event_emitter=self.event_emitter,
            sleep=sleep,
        )

        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the loop thread and the task list cadence. Returns False if already running."""
        with self._lock:
            if self.running:
                self.logger.debug("Tracking service already running")
                return False

            ready = threading.Event()
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._loop, ready),
                name="OperationTracking",
                daemon=True
            )
            self._thread.start()
            ready.wait(timeout=5)

        if self.settings.get('enabled', True):
            self._call(self._start_monitor)
        self.logger.info("Operation tracking started (poll interval %.1fs)", self.options.interval)
        return True

    def shutdown(self, timeout: Optional[float] = None):
        """Stop every loop, wait for them to unwind, then stop the loop thread."""
        timeout = self.settings['shutdown_timeout'] if timeout is None else timeout
        with self._lock:
            loop, thread = self._loop, self._thread
            if loop is None or thread is None:
                return

            if thread.is_alive():
                future = asyncio.run_coroutine_threadsafe(self._close_all(), loop)
                try:
                    future.result(timeout)
                except Exception as exc:
                    self.logger.warning("Tracking shutdown did not complete cleanly: %s", exc)
                loop.call_soon_threadsafe(loop.stop)
                thread.join(timeout)

            if not thread.is_alive():
                loop.close()
            self._loop = None
            self._thread = None
        self.logger.info("Operation tracking stopped")

    # ------------------------------------------------------------------
    # Tracking facade
    # ------------------------------------------------------------------
    def track_download(self, anime_id: Any, torrent_id: Any, torrent_url: Optional[str] = None) -> Dict[str, Any]:
        key = f"{anime_id}:{torrent_id}"

        async def fetch(_external_id):
            return await asyncio.to_thread(self.client.get_torrent_status, anime_id, torrent_id, torrent_url)

        return self._track(self.DOWNLOADS, key, torrent_id, fetch)

    def track_task(self, task_id: Any, key: Optional[str] = None) -> Dict[str, Any]:
        async def fetch(external_id):
            return await asyncio.to_thread(self.client.get_task_status, external_id)

        return self._track(self.TASKS, key or str(task_id), task_id, fetch)

    def track_quarter_update(self, quarter: str, year: Any) -> Dict[str, Any]:
        from services.pipeline_client import normalize_quarter, normalize_year

        quarter, year = normalize_quarter(quarter), normalize_year(year)
        key = f"{quarter}-{year}"
        wait_ms = int(self.settings['quarter_long_poll_ms'])

        async def fetch(_external_id):
            return await asyncio.to_thread(self.client.get_quarter_update_status, quarter, year, wait_ms)

        return self._track(self.QUARTERS, key, key, fetch)

    def stop(self, collection: str, key: str) -> bool:
        registry = self._registry(collection)
        return self._call(lambda: registry.stop(key))

    def dismiss(self, collection: str, key: str) -> bool:
        registry = self._registry(collection)
        return self._call(lambda: registry.dismiss(key))

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        registry = self._registry(collection)
        operation = self._call(lambda: registry.get(key))
        return operation.to_dict() if operation else None

    def list_operations(self, collection: str) -> List[Dict[str, Any]]:
        registry = self._registry(collection)
        return [operation.to_dict() for operation in self._call(registry.snapshot)]

    def refresh_tasks(self) -> Dict[str, Any]:
        """Force an immediate task list fetch (supersedes one in flight)."""
        def refresh():
            self.tasks_monitor.refresh_now()
            return self.tasks_monitor.snapshot()

        return self._call(refresh)

    def tasks_snapshot(self) -> Dict[str, Any]:
        return self._call(self.tasks_monitor.snapshot)

    def quarter_task_statuses(self) -> Dict[str, Any]:
        """Active quarter update tasks keyed by ``"<Q>-<year>"``."""
        state = self._call(self.quarter_tasks.snapshot)
        statuses: Dict[str, str] = {}
        for task in state['items']:
            if task.get('type') != self.QUARTER_TASK_TYPE:
                continue
            payload = task.get('payload') if isinstance(task.get('payload'), dict) else {}
            quarter, year, status = payload.get('quarter'), payload.get('year'), task.get('status')
            if quarter and year and status:
                statuses[f"{quarter}-{year}"] = status
        state['statuses'] = statuses
        return state

    def summary(self) -> Dict[str, Any]:
        def collect():
            return {
                'running': True,
                'collections': {
                    name: {
                        'tracked': len(registry),
                        'active': registry.pending_loops,
                    }
                    for name, registry in self.registries.items()
                },
                'tasks_monitor': {
                    'running': self.tasks_monitor.running,
                    'last_updated': self.tasks_monitor.last_updated,
                    'error': self.tasks_monitor.error,
                },
                'quarter_tasks': {
                    'running': self.quarter_tasks.running,
                    'last_updated': self.quarter_tasks.last_updated,
                    'error': self.quarter_tasks.error,
                },
            }

        if not self.running:
            return {'running': False}
        return self._call(collect)

    # ------------------------------------------------------------------
    # Backend triggers that start tracking when accepted
    # ------------------------------------------------------------------
    def begin_download(self, anime_id: Any, torrent_id: Any, torrent_link: str, torrent_title: Optional[str] = None) -> Dict[str, Any]:
        response = self.client.start_download(anime_id, torrent_id, torrent_link, torrent_title)
        operation = self.track_download(anime_id, torrent_id, torrent_link)
        return {'response': response, 'operation': operation}

    def scan_torrents(self, anime_id: Any, wipe_previous: bool = False) -> Dict[str, Any]:
        response = self.client.scan_torrents(anime_id, wipe_previous=wipe_previous)
        operation = self.track_task(response['taskId'], key=f"scan:{anime_id}")
        return {'response': response, 'operation': operation}

    def update_quarter(self, quarter: str, year: Any) -> Dict[str, Any]:
        response = self.client.update_quarter(quarter, year)
        operation = self.track_quarter_update(quarter, year)
        return {'response': response, 'operation': operation}

    def run_scheduled_job(self, job_id: Any) -> Dict[str, Any]:
        response = self.client.run_scheduled_job(job_id)
        tasks = self.refresh_tasks()
        return {'response': response, 'tasks': tasks}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _registry(self, collection: str) -> OperationRegistry:
        try:
            return self.registries[collection]
        except KeyError:
            raise UnknownCollectionError(collection) from None

    def _track(self, collection: str, key: str, external_id: Any, fetch) -> Dict[str, Any]:
        registry = self._registry(collection)

        def start():
            handle = registry.start_tracking(key, external_id, fetch)
            return handle.operation

        operation = self._call(start)
        self.logger.info("Tracking %s %s", collection, key)
        return operation.to_dict()

    def _call(self, fn: Callable[[], Any], timeout: Optional[float] = 10.0) -> Any:
        loop = self._loop
        if loop is None or not self.running:
            raise OperationTrackingError("Tracking service is not running")
        if threading.current_thread() is self._thread:
            raise OperationTrackingError("Tracking service facade called from its own loop thread")

        async def invoke():
            return fn()

        return asyncio.run_coroutine_threadsafe(invoke(), loop).result(timeout)

    def _start_monitor(self):
        self.tasks_monitor.start()
        self.quarter_tasks.start()

    async def _fetch_task_list(self):
        return await asyncio.to_thread(self.client.list_tasks, int(self.settings['task_list_limit']))

    async def _fetch_quarter_tasks(self):
        return await asyncio.to_thread(
            self.client.list_tasks,
            int(self.settings['quarter_tasks_limit']),
            ('pending', 'running'),
        )

    async def _close_all(self):
        await self.tasks_monitor.close()
        await self.quarter_tasks.close()
        for registry in self.registries.values():
            await registry.close()

    def _run_loop(self, loop: asyncio.AbstractEventLoop, ready: threading.Event):
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        try:
            loop.run_forever()
        finally:
            pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self.logger.debug("Tracking loop thread exited")
