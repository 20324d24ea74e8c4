"""Lifecycle state machine for a mounted form.

States and the transitions between them:

    initial    -> rendering                first render()
    rendering  -> idle                     tree built, dependents recomputed
    idle       -> rendering                page switch, instance add/remove, reload, reset
    idle       -> submitting               submit passed whole-form validation
    submitting -> idle                     callback failed, retry allowed
    submitting -> submitted                callback succeeded, success shown
    submitted  -> rendering                reset()
    any        -> destroyed                destroy()

Usage:
    >>> sm = RuntimeStateMachine(form_id="contact")
    >>> sm.state
    <RuntimeState.INITIAL: 'initial'>
    >>> sm.transition_to(RuntimeState.RENDERING)
    >>> sm.transition_to(RuntimeState.IDLE)
    >>> sm.can_transition_to(RuntimeState.SUBMITTING)
    True
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from formruntime.events import EventEmitter, RuntimeEvent
from formruntime.types import EventType, RuntimeState

logger = logging.getLogger(__name__)


class InvalidStateTransitionError(Exception):
    """Raised when attempting a transition the lifecycle does not allow.

    Attributes:
        current_state: The state before the attempted transition
        target_state: The state that was requested
    """

    def __init__(self, current_state: RuntimeState, target_state: RuntimeState, message: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(message)


# Events recorded when entering a state; intermediate states emit nothing
STATE_TO_EVENT_TYPE: Dict[RuntimeState, EventType] = {
    RuntimeState.SUBMITTING: EventType.SUBMISSION_STARTED,
    RuntimeState.SUBMITTED: EventType.SUBMISSION_SUCCEEDED,
    RuntimeState.DESTROYED: EventType.FORM_DESTROYED,
}


VALID_TRANSITIONS: Dict[RuntimeState, Set[RuntimeState]] = {
    RuntimeState.INITIAL: {
        RuntimeState.RENDERING,
        RuntimeState.DESTROYED,
    },
    RuntimeState.RENDERING: {
        RuntimeState.IDLE,
        RuntimeState.DESTROYED,
    },
    RuntimeState.IDLE: {
        RuntimeState.RENDERING,
        RuntimeState.SUBMITTING,
        RuntimeState.DESTROYED,
    },
    RuntimeState.SUBMITTING: {
        RuntimeState.IDLE,
        RuntimeState.SUBMITTED,
        RuntimeState.DESTROYED,
    },
    RuntimeState.SUBMITTED: {
        RuntimeState.RENDERING,
        RuntimeState.DESTROYED,
    },
    # Terminal state - no transitions allowed
    RuntimeState.DESTROYED: set(),
}


@dataclass
class RuntimeStateMachine:
    """Enforces the form lifecycle and records every transition.

    Attributes:
        form_id: Identifier of the form this machine belongs to
        state: Current lifecycle state
        emitter: Optional emitter that receives transition events
    """

    form_id: str
    state: RuntimeState = RuntimeState.INITIAL
    emitter: Optional[EventEmitter] = field(default=None, repr=False)
    _history: List[Dict[str, Any]] = field(default_factory=list, init=False, repr=False)

    def can_transition_to(self, target_state: RuntimeState) -> bool:
        return target_state in VALID_TRANSITIONS.get(self.state, set())

    def transition_to(self, target_state: RuntimeState, payload: Optional[Dict[str, Any]] = None) -> None:
        """Move to ``target_state``.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(target_state):
            raise InvalidStateTransitionError(
                current_state=self.state,
                target_state=target_state,
                message=(
                    f"Invalid state transition: cannot transition from "
                    f"'{self.state.value}' to '{target_state.value}'. "
                    f"Valid transitions from '{self.state.value}' are: "
                    f"{', '.join(sorted(s.value for s in VALID_TRANSITIONS[self.state]))}"
                    if VALID_TRANSITIONS[self.state]
                    else f"Invalid state transition: '{self.state.value}' is a terminal state, "
                    f"no transitions are allowed."
                ),
            )

        old_state = self.state
        self.state = target_state
        self._history.append({"from_state": old_state.value, "to_state": target_state.value})
        logger.debug("Form '%s' %s -> %s", self.form_id, old_state.value, target_state.value)

        event_type = STATE_TO_EVENT_TYPE.get(target_state)
        if event_type is not None:
            self.emit(event_type, dict(payload or {}, from_state=old_state.value))

    def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> RuntimeEvent:
        """Emit an event stamped with the current state."""
        event = RuntimeEvent(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            type=event_type,
            form_id=self.form_id,
            ts=datetime.now(timezone.utc),
            state=self.state,
            payload=payload,
        )
        if self.emitter is not None:
            self.emitter.emit(event)
        return event

    def is_terminal(self) -> bool:
        return len(VALID_TRANSITIONS[self.state]) == 0

    def get_history(self) -> List[Dict[str, Any]]:
        """Every transition taken so far, oldest first."""
        return list(self._history)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the state machine to a dictionary.

        Examples:
            >>> RuntimeStateMachine(form_id="contact", state=RuntimeState.IDLE).to_dict()
            {'formId': 'contact', 'state': 'idle'}
        """
        return {
            "formId": self.form_id,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeStateMachine":
        state = data["state"]
        if isinstance(state, str):
            state = RuntimeState(state)
        return cls(form_id=data["formId"], state=state)


__all__ = [
    "RuntimeStateMachine",
    "InvalidStateTransitionError",
    "VALID_TRANSITIONS",
]
