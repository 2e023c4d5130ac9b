"""
Poll Loop
=========

Per-key scheduling unit: fetch status, interpret it, then reschedule, stop or
back off.

IDLE → POLLING → STOPPED
- terminal status (completed/failed)  → STOPPED, active=False
- pending/running                     → commit, attempt=0, sleep interval
- not_found                           → STOPPED, status reset to unknown
- transport/protocol failure          → attempt+1, backoff, or give up at the ceiling
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from utils.logger import get_module_logger

from .models import (
    EXHAUSTED_MESSAGE,
    LoopState,
    OperationStatus,
    StatusContractError,
    StatusFetcher,
    StatusReport,
    TrackingOptions,
)
from .retry_policy import RetryPolicy
from .state_machine import StateMachine
from .superseding_fetcher import SUPERSEDED, SupersedingFetcher

logger = get_module_logger("OperationTracking.PollLoop")

# commit(loop, changes) -> False once the loop no longer owns its key
CommitCallback = Callable[["PollLoop", Dict[str, Any]], bool]


class PollLoop:
    """
    Polls one operation until it reaches a terminal state.

    Polls are strictly sequential: the next one is scheduled only after the
    previous one settled (delivered, failed or dropped as stale).
    """

    def __init__(
        self,
        key: str,
        external_id: str,
        status_fetcher: StatusFetcher,
        *,
        options: TrackingOptions,
        retry_policy: RetryPolicy,
        commit: CommitCallback,
        on_exit: Optional[Callable[["PollLoop"], None]] = None,
        state_machine: Optional[StateMachine] = None,
        sleep=asyncio.sleep,
    ):
        self.key = key
        self.external_id = external_id
        self.options = options
        self.retry_policy = retry_policy
        self.state = LoopState.IDLE
        self.attempt = 0
        self.fetcher = SupersedingFetcher(name=f"poll:{key}")
        self.logger = logger

        self._status_fetcher = status_fetcher
        self._commit = commit
        self._on_exit = on_exit
        self._state_machine = state_machine or StateMachine()
        self._sleep = sleep
        self._status = OperationStatus.UNKNOWN
        self._task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Begin polling; the first fetch is not delayed."""
        if self.state is not LoopState.IDLE:
            raise RuntimeError(f"Poll loop for {self.key} was already started")

        self.state = LoopState.POLLING
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"poll:{self.key}")
        self._task.add_done_callback(self._on_done)
        return self._task

    def cancel(self) -> bool:
        """Cancel pending sleep and in-flight request. Returns False if already stopped."""
        was_live = self.state is not LoopState.STOPPED
        self.state = LoopState.STOPPED
        self.fetcher.dispose()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return was_live

    async def _run(self):
        try:
            while self.state is LoopState.POLLING:
                delay = await self._poll_once()
                if delay is None:
                    break
                await self._sleep(delay)
        finally:
            self.state = LoopState.STOPPED
            self.fetcher.dispose()

    async def _poll_once(self) -> Optional[float]:
        """Run one fetch. Returns the delay before the next one, or None to stop."""
        try:
            outcome = await self.fetcher.run(
                lambda: self._status_fetcher(self.external_id),
                timeout=self.options.request_timeout,
            )
        except Exception as exc:
            return self._handle_failure(exc)

        if outcome is SUPERSEDED:
            return None

        if isinstance(outcome, dict):
            try:
                outcome = StatusReport.from_payload(outcome)
            except StatusContractError as exc:
                return self._handle_failure(exc)

        if not isinstance(outcome, StatusReport):
            return self._handle_failure(
                StatusContractError(f"Status fetcher returned {type(outcome).__name__}")
            )

        return self._handle_report(outcome)

    def _handle_report(self, report: StatusReport) -> Optional[float]:
        if report.is_not_found:
            self.logger.info("Operation %s unknown to server; stopped watching", self.key)
            self._apply(
                status=OperationStatus.UNKNOWN,
                message=report.message,
                attempt=0,
                active=False,
                details=dict(report.details),
            )
            return None

        new_status = OperationStatus(report.status)
        if not self._state_machine.is_valid_transition(self._status, new_status):
            return self._handle_failure(
                StatusContractError(f"Invalid status transition {self._status.value} -> {new_status.value}")
            )

        self.attempt = 0
        if new_status.is_terminal:
            self.logger.debug("Operation %s reached %s", self.key, new_status.value)
            self._apply(
                status=new_status,
                message=report.message,
                attempt=0,
                active=False,
                exhausted=False,
                details=dict(report.details),
            )
            return None

        if not self._apply(status=new_status, message=report.message, attempt=0, details=dict(report.details)):
            return None
        return self.options.interval

    def _handle_failure(self, exc: BaseException) -> Optional[float]:
        self.attempt += 1
        error = describe_error(exc)

        if self.retry_policy.is_exhausted(self.attempt):
            self.logger.warning(
                "Giving up on %s after %s consecutive errors: %s", self.key, self.attempt, error
            )
            self._apply(
                status=OperationStatus.FAILED,
                message=f"{EXHAUSTED_MESSAGE}: {error}",
                attempt=self.attempt,
                active=False,
                exhausted=True,
            )
            return None

        delay = self.retry_policy.delay(self.attempt, self.options.interval)
        self.logger.debug(
            "Poll of %s failed (attempt %s/%s), retrying in %.1fs: %s",
            self.key, self.attempt, self.retry_policy.max_attempts, delay, error
        )
        if not self._apply(message=error, attempt=self.attempt):
            return None
        return delay

    def _apply(self, **changes) -> bool:
        if self.state is not LoopState.POLLING:
            return False
        if changes.get('active') is False:
            self.state = LoopState.STOPPED
        owned = self._commit(self, changes)
        if owned and 'status' in changes:
            self._status = changes['status']
        if not owned:
            self.state = LoopState.STOPPED
        return owned

    def _on_done(self, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Poll loop for %s crashed: %s", self.key, task.exception())
        if self._on_exit is not None:
            self._on_exit(self)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "request timed out"
    text = str(exc).strip()
    return text or exc.__class__.__name__
