"""Event stream for formruntime.

Every lifecycle transition and significant runtime action (field updates,
page changes, instance add/remove, submission outcomes) emits a typed
RuntimeEvent. Hosts subscribe through an EventEmitter to mirror state,
persist progress or collect analytics.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from formruntime.types import EventType, RuntimeState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeEvent:
    """A single event emitted by a mounted form.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_3f2a...")
        type: Event type from EventType enum
        form_id: Identifier of the form schema
        ts: UTC timestamp when the event occurred
        state: Runtime state after this event
        payload: Optional event-specific data (e.g., field id, page id)

    Examples:
        >>> from datetime import datetime, timezone
        >>> event = RuntimeEvent(
        ...     event_id="evt_001",
        ...     type=EventType.FORM_RENDERED,
        ...     form_id="contact",
        ...     ts=datetime.now(timezone.utc),
        ...     state=RuntimeState.IDLE,
        ... )
    """
    event_id: str
    type: EventType
    form_id: str
    ts: datetime
    state: RuntimeState
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Normalize string enum values."""
        if isinstance(self.state, str) and not isinstance(self.state, RuntimeState):
            object.__setattr__(self, "state", RuntimeState(self.state))
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Timestamp is formatted as ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "formId": self.form_id,
            "ts": self.ts.isoformat(),
            "state": self.state.value,
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Convert event to a single JSON line."""
        return json.dumps(self.to_dict(), separators=(',', ':'), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeEvent":
        """Create RuntimeEvent from dictionary (camelCase keys)."""
        ts = datetime.fromisoformat(data["ts"].replace('Z', '+00:00'))
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            form_id=data["formId"],
            ts=ts,
            state=RuntimeState(data["state"]),
            payload=data.get("payload"),
        )


EventListener = Callable[[RuntimeEvent], None]
"""Type alias for event listener callbacks.

Listeners are called synchronously when events are emitted.
"""


class EventEmitter:
    """Observer-style dispatcher for runtime events.

    Features:
    - Type-specific subscriptions (listen to specific event types)
    - Wildcard subscriptions (listen to all events)
    - Synchronous dispatch (listeners called in registration order)
    - Error isolation (a failing listener is logged, the rest still run)
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        self._listeners.setdefault(EventType(event_type), []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        listeners = self._listeners.get(EventType(event_type))
        if listeners is not None:
            try:
                listeners.remove(listener)
            except ValueError:
                pass  # Listener not registered, ignore

    def off_any(self, listener: EventListener) -> None:
        try:
            self._any_listeners.remove(listener)
        except ValueError:
            pass  # Listener not registered, ignore

    def emit(self, event: RuntimeEvent) -> None:
        """Dispatch an event to type-specific listeners, then wildcard listeners."""
        listeners = list(self._listeners.get(event.type, [])) + list(self._any_listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event.type.value)

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count listeners for one type, or all of them (wildcards included)."""
        if event_type is not None:
            return len(self._listeners.get(EventType(event_type), []))
        total = len(self._any_listeners)
        for listeners in self._listeners.values():
            total += len(listeners)
        return total


__all__ = [
    "RuntimeEvent",
    "EventType",
    "EventListener",
    "EventEmitter",
]
