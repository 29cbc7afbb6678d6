"""
Pending roll registry.

Some consequences wait on a die roll made elsewhere (a player's sheet, a chat
roller). Before asking for the roll the engine registers a marker; each
observed roll result is matched against it. A result older than its marker
is a historical roll and is ignored, and a marker is consumed on first use
so the same roll is never applied twice.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from .schema import ActiveEvent

logger = logging.getLogger(__name__)


@dataclass
class PendingRoll:
    """A roll the engine is waiting on."""

    kind: str
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4())[:8])
    timestamp: float = field(default_factory=time.time)


class PendingRollRegistry:
    """Markers keyed by kind; at most one outstanding roll per kind."""

    def __init__(self):
        self._pending: dict[str, PendingRoll] = {}

    def register(self, kind: str, *, timestamp: float | None = None, **context) -> PendingRoll:
        """Register (or replace) the marker for a kind of roll."""
        roll = PendingRoll(kind=kind, context=context)
        if timestamp is not None:
            roll.timestamp = timestamp
        if kind in self._pending:
            logger.debug("Replacing pending %s roll %s", kind, self._pending[kind].id)
        self._pending[kind] = roll
        return roll

    def get(self, kind: str) -> PendingRoll | None:
        return self._pending.get(kind)

    def resolve(self, kind: str, message_timestamp: float | None = None) -> PendingRoll | None:
        """
        Claim the marker for an observed roll result.

        Returns None when nothing is pending or the result predates the
        marker; neither is an error.
        """
        roll = self._pending.get(kind)
        if roll is None:
            return None
        if message_timestamp is not None and message_timestamp < roll.timestamp:
            logger.debug("Ignoring stale %s roll (%.3f < %.3f)", kind, message_timestamp, roll.timestamp)
            return None
        del self._pending[kind]
        return roll

    def discard(self, kind: str) -> bool:
        return self._pending.pop(kind, None) is not None

    def clear(self) -> None:
        self._pending.clear()

    def __contains__(self, kind: str) -> bool:
        return kind in self._pending

    def __len__(self) -> int:
        return len(self._pending)


def match_mitigation(
    events: list[ActiveEvent],
    week: int,
    skill: str,
    event_name: str | None = None,
) -> int | None:
    """
    Find the event a mitigation roll is aimed at.

    Looks for an active, unmitigated event whose mitigation skill matches.
    An explicit event name wins over skill-only matching.

    Returns:
        Index into events, or None if nothing can be mitigated
    """
    candidates = [
        i for i, e in enumerate(events)
        if e.is_active(week) and not e.mitigated and e.mitigate
    ]
    if event_name is not None:
        for i in candidates:
            if events[i].name == event_name:
                return i
        return None
    for i in candidates:
        if events[i].mitigate == skill:
            return i
    return None
