"""Form change notifications.

FormRepository emits a FormEvent after every successful form mutation:
- ``form.status_changed`` when an update only touched ``status``
- ``form.changed`` for structural edits and field reordering

Delivery is left to the host: subscribe a listener that forwards events to a
websocket room, a message queue or a log. Listeners run synchronously in the
thread that made the change.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from formvault.types import EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormEvent:
    """A notification about one form.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_0190...")
        type: Event type from EventType enum
        form_id: ID of the form that changed
        ts: UTC timestamp when the change was stored
        status: Form status after the change
        title: Form title after the change

    Examples:
        >>> from datetime import datetime, timezone
        >>> event = FormEvent(
        ...     event_id="evt_001",
        ...     type=EventType.FORM_CHANGED,
        ...     form_id="form_001",
        ...     ts=datetime.now(timezone.utc),
        ...     status="active",
        ...     title="Contact",
        ... )
        >>> event.to_dict()["type"]
        'form.changed'
    """
    event_id: str
    type: EventType
    form_id: str
    ts: datetime
    status: str
    title: str

    def __post_init__(self):
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        The payload keys (formId, status, title) are what realtime clients
        receive; ts is formatted as ISO 8601.
        """
        return {
            "eventId": self.event_id,
            "type": self.type.value,
            "formId": self.form_id,
            "ts": self.ts.isoformat(),
            "status": self.status,
            "title": self.title,
        }

    def to_jsonl(self) -> str:
        """Convert event to a single line of JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormEvent":
        """Create FormEvent from dictionary (camelCase keys)."""
        ts = datetime.fromisoformat(data["ts"].replace("Z", "+00:00"))
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            form_id=data["formId"],
            ts=ts,
            status=data["status"],
            title=data["title"],
        )


EventListener = Callable[[FormEvent], None]
"""Type alias for event listener callbacks."""


class EventEmitter:
    """Dispatches FormEvents to subscribed listeners.

    Features:
    - Type-specific subscriptions (listen to specific event types)
    - Wildcard subscriptions (listen to all events)
    - Synchronous dispatch (listeners called in registration order)
    - Error isolation (a failing listener is logged and the rest still run)

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.FORM_CHANGED, seen.append)
        >>> emitter.listener_count(EventType.FORM_CHANGED)
        1
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(EventType(event_type), []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type. Unknown listeners are ignored."""
        listeners = self._listeners.get(EventType(event_type), [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Unsubscribe from the wildcard subscription. Unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: FormEvent) -> None:
        """Dispatch an event to all registered listeners.

        Type-specific listeners run first, then wildcard listeners. A listener
        that raises is logged with its traceback; the change that produced the
        event has already been stored and is not affected.
        """
        for listener in self._listeners.get(event.type, []) + self._any_listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Event listener %r failed for %s on form %s",
                    listener, event.type.value, event.form_id,
                )

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count listeners for one type, or all listeners including wildcards."""
        if event_type is not None:
            return len(self._listeners.get(EventType(event_type), []))
        return len(self._any_listeners) + sum(len(l) for l in self._listeners.values())


__all__ = [
    "FormEvent",
    "EventListener",
    "EventEmitter",
]
