"""
Weekly phase controller.

Owns the week's phase state machine:
    ACTIVITY → EVENT → MAINTENANCE → (advance_week) → ACTIVITY

The controller sequences and delegates. Actions are resolved by
ActivitySystem, the event roll and its consequences by EventSystem, and the
end-of-week bookkeeping by MaintenanceSystem. Every mutation goes through
the state service, so only the authority can run a phase.

Usage:
    controller = PhaseController(service, RandomDice())

    controller.activity.perform_team_action(0, "earnGold")
    controller.begin_event_phase()
    controller.run_event_phase()
    controller.begin_maintenance()
    controller.run_maintenance()
    controller.advance_week()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import RebellionError
from ..state.event_bus import EventBus, EventType
from ..state.pending import PendingRollRegistry
from ..state.schema import ActiveEvent, OrganizationState, WeekPhase
from ..tools.dice import DiceRoller, roll_expression
from .officers import ActorDirectory
from .rolls import RollResolver

if TYPE_CHECKING:
    from ..state.service import StateService
    from .activity import ActivitySystem
    from .event_phase import EventRoll, EventSystem
    from .maintenance import MaintenanceReport, MaintenanceSystem

logger = logging.getLogger(__name__)


# Valid phase transitions; maintenance leaves only through advance_week()
VALID_TRANSITIONS: dict[WeekPhase, set[WeekPhase]] = {
    WeekPhase.ACTIVITY: {WeekPhase.EVENT},
    WeekPhase.EVENT: {WeekPhase.MAINTENANCE},
    WeekPhase.MAINTENANCE: set(),
}


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class PhaseError(RebellionError):
    """Error during phase processing."""
    pass


class InvalidPhaseError(PhaseError):
    """Attempted operation not valid in current phase."""
    def __init__(self, current: WeekPhase, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} during {current.value} phase.")


class RejectedOperationError(PhaseError):
    """The operation is structurally impossible; nothing was changed."""
    pass


class UnknownTeamTypeError(RejectedOperationError):
    pass


class UnknownActionError(RejectedOperationError):
    pass


class TeamNotFoundError(RejectedOperationError):
    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No team at index {index}")


class AllyNotFoundError(RejectedOperationError):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"No ally {slug!r}")


class MissingSelectionError(RejectedOperationError):
    """A required choice (target, role, size) was not supplied."""
    pass


class ActionBudgetError(RejectedOperationError):
    pass


class CapabilityError(RejectedOperationError):
    pass


# -----------------------------------------------------------------------------
# Partial helpers
# -----------------------------------------------------------------------------

def append_events(state: OrganizationState, *events: ActiveEvent) -> dict[str, Any]:
    """Sparse partial appending events after the current ones."""
    start = len(state.events)
    return {"events": {str(start + i): e.to_document() for i, e in enumerate(events)}}


def replace_events(events: list[ActiveEvent]) -> dict[str, Any]:
    return {"events": [e.to_document() for e in events]}


@dataclass
class WeekReport:
    week: int
    event: "EventRoll"
    maintenance: "MaintenanceReport"


class PhaseController:
    """
    Sequences the weekly cycle. Delegates, never resolves.

    Subsystems are created lazily on first access.
    """

    def __init__(
        self,
        service: "StateService",
        dice: DiceRoller,
        actors: ActorDirectory | None = None,
        bus: EventBus | None = None,
    ):
        self.service = service
        self.dice = dice
        self.actors = actors
        self.bus = bus or service.bus
        self.resolver = RollResolver(dice, actors)
        self.pending = PendingRollRegistry()

        self._activity: "ActivitySystem | None" = None
        self._events: "EventSystem | None" = None
        self._maintenance: "MaintenanceSystem | None" = None

    # -------------------------------------------------------------------------
    # Subsystems
    # -------------------------------------------------------------------------

    @property
    def activity(self) -> "ActivitySystem":
        if self._activity is None:
            from .activity import ActivitySystem
            self._activity = ActivitySystem(self)
        return self._activity

    @property
    def events(self) -> "EventSystem":
        if self._events is None:
            from .event_phase import EventSystem
            self._events = EventSystem(self)
        return self._events

    @property
    def maintenance(self) -> "MaintenanceSystem":
        if self._maintenance is None:
            from .maintenance import MaintenanceSystem
            self._maintenance = MaintenanceSystem(self)
        return self._maintenance

    # -------------------------------------------------------------------------
    # Shared plumbing
    # -------------------------------------------------------------------------

    @property
    def state(self) -> OrganizationState:
        return self.service.get()

    @property
    def phase(self) -> WeekPhase:
        return self.state.phase

    def apply(self, partial: dict[str, Any]) -> OrganizationState:
        return self.service.apply(partial)

    def roll(self, expression: str) -> int:
        return roll_expression(self.dice, expression).total

    def require_phase(self, phase: WeekPhase, attempted: str) -> OrganizationState:
        state = self.state
        if state.phase != phase:
            raise InvalidPhaseError(state.phase, attempted)
        return state

    def _transition(self, to: WeekPhase) -> OrganizationState:
        state = self.state
        if to not in VALID_TRANSITIONS.get(state.phase, set()):
            raise InvalidPhaseError(state.phase, f"transition to {to.value}")
        state = self.apply({"phase": to.value})
        logger.info("Week %d: %s phase", state.week, to.value)
        self.bus.emit(EventType.PHASE_CHANGED, week=state.week, phase=to.value)
        return state

    # -------------------------------------------------------------------------
    # Weekly cycle
    # -------------------------------------------------------------------------

    def begin_event_phase(self) -> OrganizationState:
        return self._transition(WeekPhase.EVENT)

    def run_event_phase(self) -> "EventRoll":
        self.require_phase(WeekPhase.EVENT, "roll for events")
        return self.events.roll_for_event()

    def begin_maintenance(self) -> OrganizationState:
        return self._transition(WeekPhase.MAINTENANCE)

    def run_maintenance(self) -> "MaintenanceReport":
        self.require_phase(WeekPhase.MAINTENANCE, "run maintenance")
        return self.maintenance.run()

    def advance_week(self) -> OrganizationState:
        """Close maintenance and open the next week's activity phase."""
        state = self.require_phase(WeekPhase.MAINTENANCE, "advance the week")
        state = self.apply({"week": state.week + 1, "phase": WeekPhase.ACTIVITY.value})
        self.pending.clear()
        logger.info("Advanced to week %d", state.week)
        self.bus.emit(EventType.WEEK_ADVANCED, week=state.week)
        return state

    def run_week(self) -> WeekReport:
        """Event phase, maintenance and advance in one go (from activity)."""
        self.begin_event_phase()
        event = self.run_event_phase()
        self.begin_maintenance()
        maintenance = self.run_maintenance()
        state = self.advance_week()
        return WeekReport(week=state.week, event=event, maintenance=maintenance)
