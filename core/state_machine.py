"""
State Machine
-------------
Per-thread turn state with validated transitions.
All state transitions are logged and auditable.

    IDLE -> PLANNING -> DECIDING -> EXECUTING -> PLANNING ...
                           |            |
                           v            v
                      SUMMARIZING   CYCLE_LIMIT_EXCEEDED
                           |            |
                           v            v
                          IDLE         IDLE
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Set
import logging


class State(Enum):
    """Valid states of a turn."""
    IDLE = auto()                  # Waiting for a user message
    PLANNING = auto()              # Awaiting the planner
    DECIDING = auto()              # Final answer or plan screening
    EXECUTING = auto()             # Running accepted invocations
    SUMMARIZING = auto()           # Emitting the final answer
    CYCLE_LIMIT_EXCEEDED = auto()  # Loop bound hit
    ERROR = auto()                 # Planning failure or cancellation


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: State
    to_state: State
    timestamp: datetime
    reason: str
    metadata: Dict = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"StateTransition({self.from_state.name} → {self.to_state.name}, "
            f"reason='{self.reason}')"
        )


VALID_TRANSITIONS: Dict[State, Set[State]] = {
    State.IDLE: {State.PLANNING},
    State.PLANNING: {State.DECIDING, State.ERROR},
    State.DECIDING: {State.SUMMARIZING, State.EXECUTING, State.CYCLE_LIMIT_EXCEEDED, State.ERROR},
    State.EXECUTING: {State.PLANNING, State.ERROR},
    State.SUMMARIZING: {State.IDLE},
    State.CYCLE_LIMIT_EXCEEDED: {State.IDLE},
    State.ERROR: {State.IDLE},  # Can only recover to IDLE
}


class InvalidTransitionError(ValueError):
    """Raised on a transition not listed in VALID_TRANSITIONS."""
    pass


class StateMachine:
    """
    Turn state machine for one conversation thread.

    Responsibilities:
    - Track current state
    - Validate state transitions
    - Log all transitions
    - Notify listeners of state changes
    """

    def __init__(self, name: str = "-", initial_state: State = State.IDLE, max_history: int = 200):
        self.name = name
        self._state = initial_state
        self._history: List[StateTransition] = []
        self._max_history = max_history
        self._listeners: List[Callable[[StateTransition], None]] = []
        self._logger = logging.getLogger("echo.state")

    @property
    def state(self) -> State:
        return self._state

    @property
    def history(self) -> List[StateTransition]:
        return self._history.copy()

    def can_transition(self, to_state: State) -> bool:
        return to_state in VALID_TRANSITIONS.get(self._state, set())

    def transition(
        self,
        to_state: State,
        reason: str,
        metadata: Optional[Dict] = None
    ) -> StateTransition:
        """
        Transition to a new state.

        Raises:
            InvalidTransitionError: If transition is not valid
        """
        if not self.can_transition(to_state):
            valid_names = sorted(s.name for s in VALID_TRANSITIONS.get(self._state, set()))
            raise InvalidTransitionError(
                f"Invalid transition: {self._state.name} → {to_state.name}. "
                f"Valid targets: {valid_names}"
            )

        transition = StateTransition(
            from_state=self._state,
            to_state=to_state,
            timestamp=datetime.now(),
            reason=reason,
            metadata=metadata or {}
        )

        old_state = self._state
        self._state = to_state

        self._history.append(transition)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        self._logger.debug(
            f"[{self.name}] State transition: {old_state.name} → {to_state.name} "
            f"(reason: {reason})"
        )

        for listener in self._listeners:
            try:
                listener(transition)
            except Exception as e:
                self._logger.warning(f"Listener error: {e}")

        return transition

    def add_listener(self, callback: Callable[[StateTransition], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[StateTransition], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def abort(self, reason: str) -> None:
        """Move to ERROR then IDLE from any busy state."""
        if self._state == State.IDLE:
            return
        if self._state in (State.SUMMARIZING, State.CYCLE_LIMIT_EXCEEDED):
            self.transition(State.IDLE, reason)
            return
        if self._state != State.ERROR:
            self.transition(State.ERROR, reason)
        self.transition(State.IDLE, "Recovered from error")

    def is_busy(self) -> bool:
        return self._state != State.IDLE

    def get_history_summary(self) -> str:
        """Get a human-readable summary of recent transitions."""
        if not self._history:
            return "No transitions recorded."

        lines = ["State Transition History:", "-" * 40]

        for t in self._history[-10:]:
            lines.append(
                f"  {t.timestamp.strftime('%H:%M:%S')} | "
                f"{t.from_state.name:20} → {t.to_state.name:20} | "
                f"{t.reason}"
            )

        return "\n".join(lines)
