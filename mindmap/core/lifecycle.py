"""
Layout Lifecycle State Machine
==============================

SEEDED -> RUNNING -> CONVERGED | STOPPED_AT_MAX_ITERATIONS
SEEDED | RUNNING -> CANCELLED

All transitions are explicit and deterministic.
Invalid transitions are rejected with InvalidStateTransition.
"""

from __future__ import annotations
import threading
from typing import Dict, List, Set, Tuple

from ..contracts.base import LayoutState, InvalidStateTransition


class LayoutLifecycle:
    """Thread-safe holder of the current layout state."""

    # Valid transitions: from_state -> set of valid to_states
    _VALID_TRANSITIONS: Dict[LayoutState, Set[LayoutState]] = {
        LayoutState.SEEDED: {
            LayoutState.RUNNING,
            LayoutState.CANCELLED,
        },
        LayoutState.RUNNING: {
            LayoutState.CONVERGED,
            LayoutState.STOPPED_AT_MAX_ITERATIONS,
            LayoutState.CANCELLED,
        },
        LayoutState.CONVERGED: set(),  # Terminal state
        LayoutState.STOPPED_AT_MAX_ITERATIONS: set(),  # Terminal state
        LayoutState.CANCELLED: set(),  # Terminal state
    }

    def __init__(self, initial: LayoutState = LayoutState.SEEDED):
        self._state = initial
        self._history: List[Tuple[LayoutState, LayoutState]] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> LayoutState:
        with self._lock:
            return self._state

    @property
    def history(self) -> Tuple[Tuple[LayoutState, LayoutState], ...]:
        with self._lock:
            return tuple(self._history)

    @classmethod
    def validate_transition(cls, from_state: LayoutState, to_state: LayoutState) -> bool:
        """Check if a state transition is valid."""
        return to_state in cls._VALID_TRANSITIONS.get(from_state, set())

    def transition(self, to_state: LayoutState) -> LayoutState:
        """Move to to_state or raise. Returns the previous state."""
        with self._lock:
            from_state = self._state
            if not self.validate_transition(from_state, to_state):
                raise InvalidStateTransition(
                    f"cannot move from {from_state.value} to {to_state.value}",
                    from_state=from_state.value,
                    to_state=to_state.value
                )
            self._state = to_state
            self._history.append((from_state, to_state))
            return from_state

    def try_transition(self, to_state: LayoutState) -> bool:
        """Transition if allowed; returns whether the state changed."""
        with self._lock:
            if not self.validate_transition(self._state, to_state):
                return False
            self._history.append((self._state, to_state))
            self._state = to_state
            return True
