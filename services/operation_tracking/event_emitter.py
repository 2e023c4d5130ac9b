"""
Event Emitter
=============

Pushes tracking state changes to in-process subscribers and, when attached,
to SocketIO clients.

Events:
- operation:updated   {collection, operation}
- operation:removed   {collection, key}
- tasks:updated       {name, state}
"""

import logging
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("OperationTracking.EventEmitter")

Subscriber = Callable[[str, Dict[str, Any]], None]


class EventEmitter:
    """Fan-out of tracking events; subscriber failures are logged, never raised."""

    OPERATION_UPDATED = 'operation:updated'
    OPERATION_REMOVED = 'operation:removed'
    TASKS_UPDATED = 'tasks:updated'

    def __init__(self):
        self.logger = logging.getLogger("OperationTracking.EventEmitter")
        self._subscribers: List[Subscriber] = []
        self._lock = Lock()
        self._socketio = None

    # ------------------------------------------------------------------
    # Wiring helpers
    # ------------------------------------------------------------------
    def attach_socketio(self, socketio: Optional[Any]):
        """Forward every event to a Flask-SocketIO server."""
        self._socketio = socketio

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def emit(self, event: str, data: Dict[str, Any]):
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event, data)
            except Exception:
                self.logger.exception("Subscriber failed while handling %s", event)

        if self._socketio is not None:
            try:
                self._socketio.emit(event, data)
                self.logger.debug("Emitted event: %s", event)
            except Exception as e:
                self.logger.error("Error emitting event %s: %s", event, e)

    def emit_operation_updated(self, collection: str, operation: Dict[str, Any]):
        self.emit(self.OPERATION_UPDATED, {
            'collection': collection,
            'operation': operation
        })

    def emit_operation_removed(self, collection: str, key: str):
        self.emit(self.OPERATION_REMOVED, {
            'collection': collection,
            'key': key
        })

    def emit_list_updated(self, name: str, state: Dict[str, Any]):
        self.emit(self.TASKS_UPDATED, {
            'name': name,
            'state': state
        })
