"""
State Machine
=============

Valid operation status flow:
UNKNOWN → PENDING ⇄ RUNNING → COMPLETED
                           ↓
                         FAILED

UNKNOWN may jump straight to a terminal state (an operation that finished before
the first poll, or the local give-up after repeated errors). PENDING/RUNNING fall
back to UNKNOWN only when the backend stops knowing the operation (not_found).
"""

import logging
from typing import Dict, Set

from .models import OperationStatus

logger = logging.getLogger("OperationTracking.StateMachine")


class StateMachine:
    """
    Enforces valid status transitions for tracked operations.

    Terminal states have no outgoing transitions; a loop that reached one
    never commits again.
    """

    ALLOWED_TRANSITIONS: Dict[OperationStatus, Set[OperationStatus]] = {
        OperationStatus.UNKNOWN: {
            OperationStatus.UNKNOWN,
            OperationStatus.PENDING,
            OperationStatus.RUNNING,
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
        },
        OperationStatus.PENDING: {
            OperationStatus.PENDING,
            OperationStatus.RUNNING,
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
            OperationStatus.UNKNOWN,
        },
        OperationStatus.RUNNING: {
            OperationStatus.RUNNING,
            OperationStatus.PENDING,  # paused torrents report as queued
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
            OperationStatus.UNKNOWN,
        },
        OperationStatus.COMPLETED: set(),
        OperationStatus.FAILED: set(),
    }

    def __init__(self):
        self.logger = logger

    def is_valid_transition(self, current_status: OperationStatus, new_status: OperationStatus) -> bool:
        """
        Check if a status transition is valid.

        Args:
            current_status: Current operation status
            new_status: Target status

        Returns:
            True if transition is allowed
        """
        allowed = self.ALLOWED_TRANSITIONS.get(current_status)
        if allowed is None:
            self.logger.warning("Unknown current status: %s", current_status)
            return False
        return new_status in allowed

    def is_terminal(self, status: OperationStatus) -> bool:
        return not self.ALLOWED_TRANSITIONS.get(status)

    def get_allowed_transitions(self, current_status: OperationStatus) -> Set[OperationStatus]:
        return set(self.ALLOWED_TRANSITIONS.get(current_status, set()))
