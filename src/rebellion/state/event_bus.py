"""
Event bus for rebellion state changes.

Decouples the state service and phase systems from observers (websocket
broadcast, CLI rendering, tests). Observers re-render from the latest
snapshot, so delivery is at-least-once and handlers must be idempotent.

Usage:
    from .event_bus import get_event_bus, EventType

    bus = get_event_bus()
    bus.on(EventType.STATE_CHANGED, on_state_changed)

    bus.emit(EventType.RANK_CHANGED, before=3, after=4)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Notifications published by the engine."""

    # State service
    STATE_CHANGED = "state.changed"
    STATE_RESET = "state.reset"
    UPDATE_DROPPED = "update.dropped"

    # Weekly cycle
    PHASE_CHANGED = "phase.changed"
    WEEK_ADVANCED = "week.advanced"
    RANK_CHANGED = "rank.changed"

    # Rebellion events
    EVENT_TRIGGERED = "event.triggered"
    EVENT_MITIGATED = "event.mitigated"

    # Actions and rolls
    ACTION_RESOLVED = "action.resolved"
    ROLL_RESOLVED = "roll.resolved"
    TEAM_CHANGED = "team.changed"
    ALLY_CHANGED = "ally.changed"


@dataclass
class BusEvent:
    """
    Payload delivered to bus listeners.

    Attributes:
        type: The event type
        data: Event-specific payload
        week: Rebellion week the event belongs to (0 if not tied to a week)
        timestamp: When the event was emitted
    """

    type: EventType
    data: dict = field(default_factory=dict)
    week: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.type.value}] week {self.week}: {self.data}"


EventHandler = Callable[[BusEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe bus.

    Listeners run inline on emit(). Async observers schedule their own work
    (e.g. asyncio.create_task) from the handler.
    """

    def __init__(self, history_limit: int = 200):
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: list[BusEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._listeners.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_type: EventType, week: int = 0, **data) -> BusEvent:
        """
        Emit an event to all subscribers.

        Returns:
            The emitted BusEvent (for chaining/testing)
        """
        event = BusEvent(type=event_type, data=data, week=week)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        for handler in list(self._listeners.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                # One bad listener must not starve the others
                logger.exception("Bus handler failed for %s", event_type.value)

        return event

    def clear(self) -> None:
        """Drop all listeners and history."""
        self._listeners.clear()
        self._history.clear()

    def get_history(self, event_type: EventType | None = None) -> list[BusEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]


# Global singleton instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Process-wide bus, created on first use."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Clear and forget the global bus. Used by tests."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
