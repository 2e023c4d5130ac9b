"""
Operation Registry
==================

Single source of truth for one collection of tracked operations:
key → Operation plus the poll loop currently owning that key.

All methods must be called from the event loop that runs the poll loops.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

from utils.logger import get_module_logger

from .event_emitter import EventEmitter
from .models import Operation, StatusFetcher, TrackingOptions, utc_now
from .poll_loop import PollLoop
from .retry_policy import RetryPolicy
from .state_machine import StateMachine

logger = get_module_logger("OperationTracking.Registry")


class TrackingHandle:
    """
    Disposable handle returned by ``start_tracking``.

    Stopping a handle whose loop was already superseded is a no-op, so an old
    handle can never stop a newer loop for the same key.
    """

    def __init__(self, registry: "OperationRegistry", poll_loop: PollLoop):
        self._registry = registry
        self._loop = poll_loop

    @property
    def key(self) -> str:
        return self._loop.key

    @property
    def operation(self) -> Optional[Operation]:
        return self._registry.get(self.key)

    @property
    def active(self) -> bool:
        return self._registry.owns(self._loop) and self._loop.running

    def stop(self) -> bool:
        if self._registry.owns(self._loop):
            return self._registry.stop(self.key)
        self._loop.cancel()
        return False

    async def wait(self) -> Optional[Operation]:
        """Wait until this handle's loop has exited and return the latest snapshot."""
        task = self._loop.task
        if task is not None:
            await asyncio.wait({task})
        return self.operation

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.stop()
        return False


class OperationRegistry:
    """
    Keyed arena of tracked operations.

    - start_tracking(): register or replace an entry and start polling it
    - stop(): cancel a key's loop, keep its last status
    - stop_all(): teardown; nothing mutates state afterwards
    - get(): snapshot of one operation
    """

    def __init__(
        self,
        name: str = "operations",
        *,
        options: Optional[TrackingOptions] = None,
        retry_policy: Optional[RetryPolicy] = None,
        state_machine: Optional[StateMachine] = None,
        event_emitter: Optional[EventEmitter] = None,
        sleep=asyncio.sleep,
    ):
        self.name = name
        self.options = options or TrackingOptions()
        self.retry_policy = retry_policy or RetryPolicy()
        self.state_machine = state_machine or StateMachine()
        self.event_emitter = event_emitter
        self.logger = logger

        self._sleep = sleep
        self._operations: Dict[str, Operation] = {}
        self._loops: Dict[str, PollLoop] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def start_tracking(
        self,
        key: str,
        external_id: Optional[Any],
        status_fetcher: StatusFetcher,
        options: Optional[TrackingOptions] = None,
    ) -> TrackingHandle:
        """
        Register (or replace) ``key`` and start polling it immediately.

        Args:
            key: Registry key, unique within this registry
            external_id: Identifier understood by the status endpoint (defaults to key)
            status_fetcher: ``async fetch(external_id) -> StatusReport``
            options: Overrides for this key only

        Raises:
            ValueError: empty key
            TypeError: status_fetcher is not callable
            RuntimeError: called outside a running event loop
        """
        if not isinstance(key, str) or not key.strip():
            raise ValueError("Operation key must be a non-empty string")
        if not callable(status_fetcher):
            raise TypeError("status_fetcher must be callable")
        asyncio.get_running_loop()

        if key in self._loops:
            self.logger.debug("[%s] Superseding existing loop for %s", self.name, key)
            self._loops.pop(key).cancel()

        operation = Operation(
            key=key,
            external_id=str(external_id) if external_id is not None else key,
            active=True,
        )
        self._operations[key] = operation

        poll_loop = PollLoop(
            key,
            operation.external_id,
            status_fetcher,
            options=options or self.options,
            retry_policy=self.retry_policy,
            state_machine=self.state_machine,
            commit=self._commit,
            on_exit=self._loop_exited,
            sleep=self._sleep,
        )
        self._loops[key] = poll_loop

        self._emit_updated(operation)
        task = poll_loop.start()
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self.logger.debug("[%s] Tracking %s (external id %s)", self.name, key, operation.external_id)
        return TrackingHandle(self, poll_loop)

    def stop(self, key: str) -> bool:
        """Stop polling ``key``; status is left as-is. Returns False if nothing was active."""
        poll_loop = self._loops.pop(key, None)
        if poll_loop is not None:
            poll_loop.cancel()

        operation = self._operations.get(key)
        if operation is None or not operation.active:
            return False

        operation.active = False
        operation.updated_at = utc_now()
        self.logger.debug("[%s] Stopped tracking %s", self.name, key)
        self._emit_updated(operation)
        return True

    def stop_all(self) -> int:
        stopped = 0
        for key in list(self._loops.keys()) + [k for k, op in self._operations.items() if op.active]:
            if self.stop(key):
                stopped += 1
        if stopped:
            self.logger.info("[%s] Stopped %s tracked operation(s)", self.name, stopped)
        return stopped

    def dismiss(self, key: str) -> bool:
        """Stop and forget ``key``."""
        self.stop(key)
        if self._operations.pop(key, None) is None:
            return False
        self._emit_removed(key)
        return True

    async def close(self):
        """stop_all() and wait for every cancelled loop to unwind."""
        self.stop_all()
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def get(self, key: str) -> Optional[Operation]:
        operation = self._operations.get(key)
        return operation.snapshot() if operation else None

    def snapshot(self) -> List[Operation]:
        return [operation.snapshot() for operation in self._operations.values()]

    def keys(self) -> List[str]:
        return list(self._operations.keys())

    def owns(self, poll_loop: PollLoop) -> bool:
        return self._loops.get(poll_loop.key) is poll_loop

    @property
    def pending_loops(self) -> int:
        """Loops still owning a key (each holds at most one timer or request)."""
        return len(self._loops)

    @property
    def pending_tasks(self) -> int:
        """Loop tasks that have not finished unwinding yet."""
        return sum(1 for task in self._tasks if not task.done())

    def __len__(self):
        return len(self._operations)

    def __contains__(self, key):
        return key in self._operations

    # ------------------------------------------------------------------
    # Poll loop callbacks
    # ------------------------------------------------------------------
    def _commit(self, poll_loop: PollLoop, changes: Dict[str, Any]) -> bool:
        if not self.owns(poll_loop):
            return False
        operation = self._operations.get(poll_loop.key)
        if operation is None:
            return False

        for field_name, value in changes.items():
            setattr(operation, field_name, value)
        operation.updated_at = utc_now()

        if not operation.active:
            self._loops.pop(poll_loop.key, None)

        self._emit_updated(operation)

        # A subscriber may have restarted the key while the update was emitted
        if (
            operation.status.is_terminal
            and poll_loop.options.clear_on_terminal
            and self._operations.get(poll_loop.key) is operation
        ):
            self._operations.pop(poll_loop.key)
            self._emit_removed(poll_loop.key)
        return True

    def _loop_exited(self, poll_loop: PollLoop):
        # A loop that ended without a final commit (crash) must not stay active
        if not self.owns(poll_loop):
            return
        self._loops.pop(poll_loop.key, None)
        operation = self._operations.get(poll_loop.key)
        if operation is not None and operation.active:
            operation.active = False
            operation.updated_at = utc_now()
            self._emit_updated(operation)

    def _emit_updated(self, operation: Operation):
        if self.event_emitter is not None:
            self.event_emitter.emit_operation_updated(self.name, operation.to_dict())

    def _emit_removed(self, key: str):
        if self.event_emitter is not None:
            self.event_emitter.emit_operation_removed(self.name, key)
