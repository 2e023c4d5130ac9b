"""
Operation Tracking Module
=========================

Client-side engine that follows long-running backend operations (torrent
scans, episode downloads, quarter updates) until they reach a terminal state.

Architecture:
- OperationRegistry keeps key → Operation and owns one PollLoop per key
- PollLoop polls through a SupersedingFetcher and backs off via RetryPolicy
- ListRefresher polls a whole collection on a slow cadence
- TrackingService runs everything on one asyncio loop thread
"""

from .event_emitter import EventEmitter
from .list_refresher import ListRefresher
from .models import (
    NOT_FOUND,
    LoopState,
    Operation,
    OperationStatus,
    StatusContractError,
    StatusReport,
    TrackingOptions,
)
from .operation_registry import OperationRegistry, TrackingHandle
from .poll_loop import PollLoop
from .retry_policy import RetryPolicy
from .state_machine import StateMachine
from .superseding_fetcher import SUPERSEDED, SupersedingFetcher
from .tracking_service import OperationTrackingError, TrackingService, UnknownCollectionError

__all__ = [
    'EventEmitter',
    'ListRefresher',
    'LoopState',
    'NOT_FOUND',
    'Operation',
    'OperationRegistry',
    'OperationStatus',
    'OperationTrackingError',
    'PollLoop',
    'RetryPolicy',
    'StateMachine',
    'StatusContractError',
    'StatusReport',
    'SUPERSEDED',
    'SupersedingFetcher',
    'TrackingHandle',
    'TrackingOptions',
    'TrackingService',
    'UnknownCollectionError',
]
