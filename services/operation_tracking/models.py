"""
Operation Models
================

Data types shared by the operation tracking engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional


class OperationStatus(str, Enum):
    """Lifecycle status of a tracked operation as reported by the backend."""
    UNKNOWN = "unknown"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED)


# Wire-only status: the backend has no record of the operation.
NOT_FOUND = "not_found"

REMOTE_STATUSES = frozenset({
    OperationStatus.PENDING.value,
    OperationStatus.RUNNING.value,
    OperationStatus.COMPLETED.value,
    OperationStatus.FAILED.value,
    NOT_FOUND,
})


class LoopState(str, Enum):
    """Scheduling state of a single poll loop."""
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


EXHAUSTED_MESSAGE = "tracking aborted after repeated errors"


def utc_now() -> str:
    return datetime.utcnow().isoformat()


class StatusContractError(ValueError):
    """Raised when a status payload does not follow the status-query contract."""


@dataclass(frozen=True)
class StatusReport:
    """One parsed response of a status endpoint."""

    status: str
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_not_found(self) -> bool:
        return self.status == NOT_FOUND

    @classmethod
    def from_payload(cls, payload: Any) -> "StatusReport":
        """Build a report from ``{status, message?, error?}``."""
        if not isinstance(payload, dict):
            raise StatusContractError(f"Status payload must be an object, got {type(payload).__name__}")

        status = payload.get("status")
        if not isinstance(status, str) or status.strip().lower() not in REMOTE_STATUSES:
            raise StatusContractError(f"Missing or unsupported status: {status!r}")

        message = payload.get("message") or payload.get("error")
        if message is not None and not isinstance(message, str):
            message = str(message)

        details = {k: v for k, v in payload.items() if k not in ("status", "message")}
        return cls(status=status.strip().lower(), message=message, details=details)


# A status fetcher receives the operation's external id and resolves to a StatusReport.
StatusFetcher = Callable[[str], Awaitable[StatusReport]]


@dataclass
class Operation:
    """One tracked asynchronous unit (scan task, episode download, quarter update)."""

    key: str
    external_id: str
    status: OperationStatus = OperationStatus.UNKNOWN
    message: Optional[str] = None
    attempt: int = 0
    active: bool = False
    exhausted: bool = False
    details: Dict[str, Any] = field(default_factory=dict)
    started_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def snapshot(self) -> "Operation":
        return replace(self, details=dict(self.details))

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


@dataclass
class TrackingOptions:
    """Per-registry (or per-call) polling settings."""

    interval: float = 2.0
    request_timeout: Optional[float] = 15.0
    clear_on_terminal: bool = False

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive or None")
