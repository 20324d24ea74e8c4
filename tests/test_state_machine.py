"""Unit tests for the form lifecycle state machine.

Tests cover:
- Valid state transitions for all states
- Invalid transitions and the terminal state
- Transition history and emitted events
- Serialization and deserialization
"""

import pytest

from formruntime.events import EventEmitter
from formruntime.state_machine import (
    InvalidStateTransitionError,
    RuntimeStateMachine,
    VALID_TRANSITIONS,
)
from formruntime.types import EventType, RuntimeState


def machine_in(state):
    return RuntimeStateMachine(form_id="contact", state=state)


class TestStateMachineInitialization:
    """Test state machine initialization and defaults."""

    def test_init_with_form_id(self):
        """Should initialize with form_id and default to INITIAL state."""
        sm = RuntimeStateMachine(form_id="contact")
        assert sm.form_id == "contact"
        assert sm.state == RuntimeState.INITIAL

    def test_init_with_custom_state(self):
        """Should initialize with custom state if provided."""
        sm = machine_in(RuntimeState.IDLE)
        assert sm.state == RuntimeState.IDLE


class TestValidTransitions:
    """Test every allowed transition."""

    @pytest.mark.parametrize("source,target", [
        (RuntimeState.INITIAL, RuntimeState.RENDERING),
        (RuntimeState.RENDERING, RuntimeState.IDLE),
        (RuntimeState.IDLE, RuntimeState.RENDERING),
        (RuntimeState.IDLE, RuntimeState.SUBMITTING),
        (RuntimeState.SUBMITTING, RuntimeState.IDLE),
        (RuntimeState.SUBMITTING, RuntimeState.SUBMITTED),
        (RuntimeState.SUBMITTED, RuntimeState.RENDERING),
    ])
    def test_transition(self, source, target):
        """Should move between states the lifecycle allows."""
        sm = machine_in(source)
        sm.transition_to(target)
        assert sm.state == target

    @pytest.mark.parametrize("source", [s for s in RuntimeState if s != RuntimeState.DESTROYED])
    def test_any_state_can_be_destroyed(self, source):
        """Should allow destroy from every non-terminal state."""
        sm = machine_in(source)
        sm.transition_to(RuntimeState.DESTROYED)
        assert sm.state == RuntimeState.DESTROYED


class TestInvalidTransitions:
    """Test rejected transitions."""

    @pytest.mark.parametrize("source,target", [
        (RuntimeState.INITIAL, RuntimeState.IDLE),
        (RuntimeState.INITIAL, RuntimeState.SUBMITTING),
        (RuntimeState.RENDERING, RuntimeState.SUBMITTING),
        (RuntimeState.IDLE, RuntimeState.SUBMITTED),
        (RuntimeState.SUBMITTED, RuntimeState.SUBMITTING),
    ])
    def test_rejected(self, source, target):
        """Should raise InvalidStateTransitionError and keep the state."""
        sm = machine_in(source)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.transition_to(target)
        assert exc_info.value.current_state == source
        assert exc_info.value.target_state == target
        assert "Valid transitions from" in str(exc_info.value)
        assert sm.state == source

    def test_destroyed_is_terminal(self):
        """Should reject every transition out of DESTROYED."""
        sm = machine_in(RuntimeState.DESTROYED)
        assert sm.is_terminal() is True
        assert VALID_TRANSITIONS[RuntimeState.DESTROYED] == set()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.transition_to(RuntimeState.RENDERING)
        assert "terminal state" in str(exc_info.value)


class TestCanTransitionTo:
    """Test can_transition_to helper."""

    def test_can_transition_to_valid_state(self):
        """Should return True for valid transitions."""
        assert machine_in(RuntimeState.IDLE).can_transition_to(RuntimeState.SUBMITTING) is True

    def test_can_transition_to_invalid_state(self):
        """Should return False for invalid transitions."""
        assert machine_in(RuntimeState.INITIAL).can_transition_to(RuntimeState.SUBMITTED) is False


class TestHistoryAndEvents:
    """Test transition history and emitted events."""

    def test_history_records_transitions(self):
        """Should record every transition in order."""
        sm = RuntimeStateMachine(form_id="contact")
        sm.transition_to(RuntimeState.RENDERING)
        sm.transition_to(RuntimeState.IDLE)
        assert sm.get_history() == [
            {"from_state": "initial", "to_state": "rendering"},
            {"from_state": "rendering", "to_state": "idle"},
        ]

    def test_history_is_a_copy(self):
        """Should not expose the internal history list."""
        sm = RuntimeStateMachine(form_id="contact")
        sm.get_history().append({"from_state": "x", "to_state": "y"})
        assert sm.get_history() == []

    def test_submission_transitions_emit_events(self):
        """Should emit events only for states that carry one."""
        emitter = EventEmitter()
        seen = []
        emitter.on_any(seen.append)
        sm = RuntimeStateMachine(form_id="contact", emitter=emitter)

        sm.transition_to(RuntimeState.RENDERING)
        sm.transition_to(RuntimeState.IDLE)
        sm.transition_to(RuntimeState.SUBMITTING, {"attempt": 1})
        sm.transition_to(RuntimeState.SUBMITTED)

        assert [e.type for e in seen] == [EventType.SUBMISSION_STARTED, EventType.SUBMISSION_SUCCEEDED]
        assert seen[0].payload == {"attempt": 1, "from_state": "idle"}
        assert seen[0].state == RuntimeState.SUBMITTING
        assert seen[0].form_id == "contact"

    def test_emit_returns_event(self):
        """Should return the emitted event stamped with the current state."""
        sm = machine_in(RuntimeState.IDLE)
        event = sm.emit(EventType.PAGE_CHANGED, {"to": "p2"})
        assert event.type == EventType.PAGE_CHANGED
        assert event.state == RuntimeState.IDLE
        assert event.event_id.startswith("evt_")


class TestSerialization:
    """Test state machine serialization."""

    def test_to_dict(self):
        """Should serialize with camelCase keys."""
        assert machine_in(RuntimeState.SUBMITTED).to_dict() == {"formId": "contact", "state": "submitted"}

    def test_from_dict_creates_correct_instance(self):
        """Should rebuild a machine from its dict form."""
        sm = RuntimeStateMachine.from_dict({"formId": "contact", "state": "idle"})
        assert sm.form_id == "contact"
        assert sm.state == RuntimeState.IDLE
