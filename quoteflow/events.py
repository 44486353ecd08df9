"""Audit events for the Quoteflow lifecycle engine.

Every applied transition, approval request or decision, expiration warning
and forced expiry produces a QuoteEvent. Events are immutable and are
dispatched through an EventEmitter to any subscribed listeners (audit table
writers, notification hooks, dashboards).
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as date_parser

from quoteflow.types import Actor, EventType, QuoteStatus


logger = logging.getLogger(__name__)


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class QuoteEvent:
    """A single event in a quote's lifecycle.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_01H8...")
        type: Event type from EventType enum
        quote_id: ID of the quote this event relates to
        ts: UTC timestamp when the event occurred
        actor: Actor who triggered this event
        status: Quote status after this event
        payload: Optional event-specific data (from/to status, reason, approval id)

    Examples:
        >>> from datetime import timezone
        >>> event = QuoteEvent(
        ...     event_id="evt_001",
        ...     type=EventType.STATUS_CHANGED,
        ...     quote_id="q_001",
        ...     ts=datetime.now(timezone.utc),
        ...     actor=Actor(id="user_1"),
        ...     status=QuoteStatus.DRAFT,
        ...     payload={"fromStatus": "BUILDING", "toStatus": "DRAFT"},
        ... )
    """
    event_id: str
    type: EventType
    quote_id: str
    ts: datetime
    actor: Actor
    status: QuoteStatus
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if isinstance(self.status, str) and not isinstance(self.status, QuoteStatus):
            object.__setattr__(self, "status", QuoteStatus(self.status))
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "quoteId": self.quote_id,
            "ts": self.ts.isoformat(),
            "actor": self.actor.to_dict(),
            "status": self.status.value,
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Single-line JSON, suitable for appending to an audit log."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuoteEvent":
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            quote_id=data["quoteId"],
            ts=date_parser.isoparse(data["ts"]),
            actor=Actor.from_dict(data["actor"]),
            status=QuoteStatus(data["status"]),
            payload=data.get("payload"),
        )


EventListener = Callable[[QuoteEvent], None]


class EventEmitter:
    """Dispatches events to subscribed listeners.

    Listeners are called synchronously in registration order: type-specific
    listeners first, then wildcard listeners. A failing listener is logged
    and skipped; it never affects other listeners or the transition that
    produced the event.

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.STATUS_CHANGED, seen.append)
        >>> emitter.listener_count(EventType.STATUS_CHANGED)
        1
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: QuoteEvent) -> None:
        for listener in list(self._listeners.get(event.type, [])) + list(self._any_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Event listener %r failed for %s on quote %s",
                    listener, event.type.value, event.quote_id,
                )

    def clear(self) -> None:
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count listeners for one type, or all listeners including wildcards."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(ls) for ls in self._listeners.values())


__all__ = [
    "QuoteEvent",
    "EventListener",
    "EventEmitter",
    "new_event_id",
]
