"""
Event phase: the weekly event roll, immediate event effects, mitigation
and the traitor follow-ups.

Flow:
    roll_for_event()  d100 vs event chance
      → draw_event()  d100 + effective danger on EVENT_TABLE
        → immediate effect of the drawn kind
    attempt_mitigation() / reroll_event() / resolve_traitor() /
    persuade_prisoner() react to what was drawn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from ..state.event_bus import EventType
from ..state.merge import deep_merge
from ..state.pending import match_mitigation
from ..state.schema import ActiveEvent, CheckType, OrganizationState, Team
from .allies import ALLIES, immune_ally, is_immune
from .bonuses import get_effective_danger, get_event_chance
from .events import DEFINITIONS, EventKind, event_kind, lookup_event
from .phases import MissingSelectionError, append_events, replace_events
from .rolls import CheckResult, RerollUnavailableError
from .teams import get_definition, is_operational

if TYPE_CHECKING:
    from .phases import PhaseController

logger = logging.getLogger(__name__)

SETTLEMENT_MODIFIERS = ("Corruption", "Crime", "Economy", "Law", "Lore", "Society")

TRAITOR_ROLL = "traitor"


class TraitorChoice:
    EXECUTE = "execute"
    EXILE = "exile"
    IMPRISON = "imprison"

    ALL = (EXECUTE, EXILE, IMPRISON)


@dataclass
class EventResolution:
    """One drawn event and what it did."""

    kind: EventKind
    total: int
    deltas: dict[str, float] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)
    check: CheckResult | None = None
    pending: str | None = None
    extra: list["EventResolution"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.kind.value

    def change(self, key: str, delta: float) -> None:
        if delta:
            self.deltas[key] = self.deltas.get(key, 0) + delta

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "total": self.total,
            "deltas": dict(self.deltas),
            "notes": list(self.notes),
            "check": self.check.to_dict() if self.check else None,
            "pending": self.pending,
            "extra": [e.to_dict() for e in self.extra],
        }


@dataclass
class EventRoll:
    chance: int
    roll: int | None
    occurred: bool
    suppressed: bool = False
    resolution: EventResolution | None = None

    def to_dict(self) -> dict:
        return {
            "chance": self.chance,
            "roll": self.roll,
            "occurred": self.occurred,
            "suppressed": self.suppressed,
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }


Effect = Callable[[OrganizationState, EventResolution], dict[str, Any]]


class EventSystem:
    """Resolves the event phase for one controller."""

    def __init__(self, controller: "PhaseController"):
        self.controller = controller
        self._effects: dict[EventKind, Effect] = {
            EventKind.WEEK_OF_SECRECY: self._week_of_secrecy,
            EventKind.SUCCESSFUL_PROTEST: self._successful_protest,
            EventKind.REDUCED_THREAT: self._reduced_threat,
            EventKind.DONATION: self._donation,
            EventKind.SUPPORT_GROWS: self._support_grows,
            EventKind.MARKET_BOOM: self._note_only,
            EventKind.ALL_QUIET: self._all_quiet,
            EventKind.INFORMANT: self._informant,
            EventKind.RIVALRY: self._rivalry,
            EventKind.DANGEROUS_TIMES: self._dangerous_times,
            EventKind.MISSING: self._missing,
            EventKind.CACHE_DISCOVERED: self._cache_discovered,
            EventKind.INCREASED_PATROLS: self._increased_patrols,
            EventKind.LOW_MORALE: self._immune_or_persistent,
            EventKind.SICKNESS: self._immune_or_persistent,
            EventKind.DISABLED_TEAM: self._disabled_team,
            EventKind.DISCORD: self._persistent,
            EventKind.INVASION: self._note_only,
            EventKind.FAILED_PROTEST: self._failed_protest,
            EventKind.ALLY_IN_DANGER: self._ally_in_danger,
            EventKind.CATASTROPHIC_MISSION: self._catastrophic_mission,
            EventKind.TRAITOR: self._traitor,
            EventKind.DEVIL_INFILTRATION: self._devil_infiltration,
            EventKind.INQUISITION: self._persistent,
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _pick(self, items: list):
        """Uniform random choice through the dice roller."""
        return items[self.controller.dice.roll(len(items)) - 1]

    def _check(self, state: OrganizationState, check: CheckType, dc: int | None, label: str) -> CheckResult:
        result = self.controller.resolver.check(state, check, dc, label=label)
        self.controller.bus.emit(
            EventType.ROLL_RESOLVED, week=state.week,
            check=check.value, total=result.total, dc=dc,
            degree=result.degree.value if result.degree else None,
        )
        return result

    @staticmethod
    def _new_event(state: OrganizationState, kind: EventKind, **fields) -> ActiveEvent:
        definition = DEFINITIONS.get(kind)
        base: dict[str, Any] = {"name": kind.value, "week_started": state.week}
        if definition is not None:
            base.update(is_persistent=definition.persistent, mitigate=definition.mitigate, dc=definition.dc)
        base.update(fields)
        return ActiveEvent(**base)

    @staticmethod
    def _operational_teams(state: OrganizationState) -> list[tuple[int, Team]]:
        return [
            (i, t) for i, t in enumerate(state.teams)
            if is_operational(t) and not get_definition(t.type).is_core
        ]

    # -------------------------------------------------------------------------
    # Event roll
    # -------------------------------------------------------------------------

    def event_chance(self) -> int:
        return get_event_chance(self.controller.state)

    def _quiet_week(self, state: OrganizationState) -> bool:
        """All Quiet drawn last week suppresses this week's roll."""
        return any(
            event_kind(e.name) == EventKind.ALL_QUIET
            and e.week_started == state.week - 1
            and e.is_active(state.week)
            for e in state.events
        )

    def roll_for_event(self) -> EventRoll:
        state = self.controller.state
        chance = get_event_chance(state)
        if self._quiet_week(state):
            logger.info("Week %d: All Quiet, no event roll", state.week)
            return EventRoll(chance=chance, roll=None, occurred=False, suppressed=True)

        result = self.controller.resolver.percentile(chance)
        if not result.noticed:
            self.controller.apply({"weeksWithoutEvent": state.weeks_without_event + 1})
            logger.info("Week %d: no event (%d > %d)", state.week, result.roll, chance)
            return EventRoll(chance=chance, roll=result.roll, occurred=False)

        self.controller.apply({"weeksWithoutEvent": 0})
        resolution = self.draw_event()
        return EventRoll(chance=chance, roll=result.roll, occurred=True, resolution=resolution)

    def draw_event(self, forced_kind: EventKind | str | None = None, _nested: bool = False) -> EventResolution:
        """
        Draw an event on the table and apply its immediate effect.

        Args:
            forced_kind: Skip the table roll (GM choice)
        """
        state = self.controller.state
        if forced_kind is not None:
            kind = EventKind(forced_kind)
            total = 0
        else:
            total = self.controller.dice.roll(100) + get_effective_danger(state)
            kind = lookup_event(total).kind

        resolution = EventResolution(kind=kind, total=total)
        partial: dict[str, Any] = {"eventsThisPhase": state.events_this_phase + [kind.value]}

        if kind == EventKind.ROLL_TWICE:
            if _nested:
                resolution.notes.append("Roll Twice ignored")
                self.controller.apply(partial)
                return resolution
            self.controller.apply(partial)
            resolution.extra = [self.draw_event(_nested=True) for _ in range(2)]
            self._announce(state, resolution)
            return resolution

        effect = self._effects.get(kind, self._note_only)
        deep_merge(partial, effect(state, resolution))
        for key, delta in resolution.deltas.items():
            partial.setdefault(key, getattr(state, key) + delta)
        self.controller.apply(partial)
        self._announce(state, resolution)
        return resolution

    def _announce(self, state: OrganizationState, resolution: EventResolution) -> None:
        logger.info("Week %d event: %s (%d)", state.week, resolution.name, resolution.total)
        self.controller.bus.emit(
            EventType.EVENT_TRIGGERED, week=state.week,
            name=resolution.name, total=resolution.total, notes=list(resolution.notes),
        )

    # -------------------------------------------------------------------------
    # Mitigation and rerolls
    # -------------------------------------------------------------------------

    def attempt_mitigation(self, skill: str, total: int, event_name: str | None = None) -> bool:
        """
        Apply an externally rolled skill check to a mitigable event.

        Returns:
            True if an event was mitigated
        """
        state = self.controller.state
        index = match_mitigation(state.events, state.week, skill, event_name)
        if index is None:
            logger.debug("No event to mitigate with %s", skill)
            return False
        event = state.events[index]
        if event.dc is None or total < event.dc:
            logger.info("Mitigation of %s failed (%d vs DC %s)", event.name, total, event.dc)
            return False

        patch: dict[str, Any] = {"mitigated": True}
        if event_kind(event.name) == EventKind.DANGEROUS_TIMES:
            patch["dangerIncrease"] = 5
        self.controller.apply({"events": {str(index): patch}})
        self.controller.bus.emit(EventType.EVENT_MITIGATED, week=state.week, name=event.name, total=total)
        return True

    def reroll_event(self) -> EventResolution:
        """Spend Manipulate Events to discard the last drawn event and draw again."""
        state = self.controller.state
        if not self.controller.resolver.can_reroll_event(state):
            raise RerollUnavailableError("No Manipulate Events grant is active")
        if not state.events_this_phase:
            raise MissingSelectionError("No event was drawn this phase")

        last = state.events_this_phase[-1]
        grant = self.controller.resolver.consume_event_reroll(state)
        kept = [ActiveEvent.model_validate(e) for e in grant["events"]]
        kept = [
            e for e in kept
            if not (e.name == last and e.week_started >= state.week and not e.is_permanent)
        ]
        partial = replace_events(kept)
        partial["eventsThisPhase"] = state.events_this_phase[:-1]
        self.controller.apply(partial)
        logger.info("Rerolling event %s", last)
        return self.draw_event()

    # -------------------------------------------------------------------------
    # Traitor
    # -------------------------------------------------------------------------

    def resolve_traitor(self, choice: str, total: int | None = None) -> bool:
        """
        Decide the fate of an exposed traitor.

        execute: loyalty DC 20 or persistent Low Morale.
        exile: security DC 25 or +2d6 notoriety.
        imprison: the traitor's team is held, prison needs weekly secrecy.

        Returns:
            Whether the choice went cleanly
        """
        if choice not in TraitorChoice.ALL:
            raise MissingSelectionError(f"Choose one of {', '.join(TraitorChoice.ALL)}")
        pending = self.controller.pending.resolve(TRAITOR_ROLL)
        if pending is None:
            raise MissingSelectionError("No traitor awaiting judgement")

        state = self.controller.state
        team_index = pending.context.get("team_index")

        if choice == TraitorChoice.IMPRISON:
            prison = self._new_event(
                state, EventKind.TRAITOR_IN_PRISON,
                is_persistent=True, needs_secrecy_check=True, team_index=team_index,
            )
            partial = append_events(state, prison)
            if team_index is not None and team_index < len(state.teams):
                partial["teams"] = {str(team_index): {"disabled": True, "canAutoRecover": False}}
            self.controller.apply(partial)
            return True

        if total is None:
            raise MissingSelectionError(f"{choice} needs a check total")

        if choice == TraitorChoice.EXECUTE:
            if total >= 20:
                return True
            kept = [e for e in state.events if event_kind(e.name) != EventKind.LOW_MORALE]
            kept.append(self._new_event(
                state, EventKind.LOW_MORALE,
                duration=999, is_persistent=True, mitigate="performance", dc=20,
            ))
            self.controller.apply(replace_events(kept))
            return False

        if total >= 25:
            return True
        gained = self.controller.roll("2d6")
        self.controller.apply({"notoriety": state.notoriety + gained})
        return False

    def persuade_prisoner(self, total: int) -> bool:
        """Try to turn an imprisoned traitor (DC 20)."""
        state = self.controller.state
        index = next(
            (i for i, e in enumerate(state.events) if event_kind(e.name) == EventKind.TRAITOR_IN_PRISON),
            None,
        )
        if index is None:
            raise MissingSelectionError("No traitor is imprisoned")
        if total < 20:
            return False

        prison = state.events[index]
        kept = [e for i, e in enumerate(state.events) if i != index]
        kept.append(self._new_event(
            state, EventKind.PERSUASION_BONUS,
            week_started=state.week + 1, duration=1,
            supporters_bonus=self.controller.roll("1d6"), needs_supporters_collection=True,
        ))
        partial = replace_events(kept)
        if prison.team_index is not None and prison.team_index < len(state.teams):
            partial["teams"] = {str(prison.team_index): {"disabled": False}}
        self.controller.apply(partial)
        return True

    # -------------------------------------------------------------------------
    # Immediate effects
    # -------------------------------------------------------------------------

    def _note_only(self, state, resolution):
        definition = DEFINITIONS.get(resolution.kind)
        if definition is not None:
            resolution.notes.append(definition.description)
        return {}

    def _persistent(self, state, resolution):
        return append_events(state, self._new_event(state, resolution.kind))

    def _week_of_secrecy(self, state, resolution):
        return append_events(state, self._new_event(state, resolution.kind, duration=1))

    def _settlement_event(self, state, kind: EventKind, value: int) -> ActiveEvent:
        modifier = self._pick(list(SETTLEMENT_MODIFIERS))
        return self._new_event(
            state, kind, week_started=state.week + 1, duration=1,
            modifier_value=value, settlementModifier=modifier,
        )

    def _successful_protest(self, state, resolution):
        gained = self.controller.roll("2d6")
        resolution.change("supporters", gained)
        event = self._settlement_event(state, resolution.kind, 4)
        resolution.notes.append(f"+{gained} supporters; settlement {event.model_extra['settlementModifier']} +4")
        return append_events(state, event)

    def _support_grows(self, state, resolution):
        gained = self.controller.roll("2d6")
        resolution.change("supporters", gained)
        resolution.notes.append(f"+{gained} supporters")
        return {}

    def _reduced_threat(self, state, resolution):
        return append_events(state, self._new_event(
            state, resolution.kind, week_started=state.week + 1, duration=1, danger_reduction=10,
        ))

    def _donation(self, state, resolution):
        result = self._check(state, CheckType.LOYALTY, None, "Donation")
        resolution.check = result
        gold = max(0, result.total) * 20
        resolution.change("treasury", gold)
        resolution.notes.append(f"Donation of {gold} gp")
        return {}

    def _all_quiet(self, state, resolution):
        return append_events(state, self._new_event(state, resolution.kind, duration=2))

    def _informant(self, state, resolution):
        result = self._check(state, CheckType.LOYALTY, 15, "Informant")
        resolution.check = result
        resolution.change("supporters", -1)
        if not result.success:
            gained = self.controller.roll("1d6")
            resolution.change("notoriety", gained)
            resolution.notes.append(f"The informant talked: notoriety +{gained}")
        return {}

    def _rivalry(self, state, resolution):
        # Second rivalry this phase makes the first one permanent
        if state.events_this_phase.count(EventKind.RIVALRY.value) >= 1:
            for i, e in enumerate(state.events):
                if event_kind(e.name) == EventKind.RIVALRY and e.is_active(state.week):
                    resolution.notes.append("The rivalry becomes permanent")
                    return {"events": {str(i): {"isPermanent": True}}}
            return append_events(state, self._new_event(state, resolution.kind, is_permanent=True))

        types = list(dict.fromkeys(t.type for _, t in self._operational_teams(state)))
        affected = []
        while types and len(affected) < 2:
            choice = self._pick(types)
            types.remove(choice)
            affected.append(choice)
        if affected:
            resolution.notes.append(f"Rivalry between {', '.join(affected)}")
        return append_events(state, self._new_event(state, resolution.kind, affected_teams=affected))

    def _dangerous_times(self, state, resolution):
        return append_events(state, self._new_event(state, EventKind.DANGEROUS_TIMES, danger_increase=10))

    def _missing(self, state, resolution):
        teams = self._operational_teams(state)
        if not teams:
            resolution.notes.append("No team to go missing")
            return {}
        index, team = self._pick(teams)
        resolution.notes.append(f"{get_definition(team.type).label} went missing")
        self.controller.bus.emit(EventType.TEAM_CHANGED, week=state.week, index=index, change="missing")
        return {"teams": {str(index): {"missing": True, "canAutoRecover": True}}}

    def _cache_discovered(self, state, resolution):
        if state.caches:
            resolution.notes.append("The newest cache was discovered")
            return {"caches": [c.to_document() for c in state.caches[:-1]]}
        lost = self.controller.roll("1d6")
        resolution.change("supporters", -lost)
        resolution.change("population", -lost)
        resolution.notes.append(f"No cache to lose: -{lost} supporters")
        return {}

    def _increased_patrols(self, state, resolution):
        if is_immune(state, resolution.kind):
            gained = self.controller.roll("3d6")
            resolution.change("supporters", gained)
            resolution.notes.append(f"{immune_ally(state, resolution.kind).name} turns the patrols: +{gained} supporters")
            return {}
        return self._persistent(state, resolution)

    def _immune_or_persistent(self, state, resolution):
        ally = immune_ally(state, resolution.kind)
        if ally is not None:
            resolution.notes.append(f"{ally.name} grants immunity to {resolution.name}")
            return {}
        return self._persistent(state, resolution)

    def _disabled_team(self, state, resolution):
        teams = self._operational_teams(state)
        if not teams:
            resolution.notes.append("No team to disable")
            return {}
        index, team = self._pick(teams)
        resolution.notes.append(f"{get_definition(team.type).label} is disabled")
        self.controller.bus.emit(EventType.TEAM_CHANGED, week=state.week, index=index, change="disabled")
        return {"teams": {str(index): {"disabled": True, "canAutoRecover": False}}}

    def _failed_protest(self, state, resolution):
        result = self._check(state, CheckType.SECURITY, 25, "Failed Protest")
        resolution.check = result
        if not result.success:
            lost = self.controller.roll("2d6")
            resolution.change("supporters", -lost)
            resolution.change("population", -lost)
            resolution.notes.append(f"-{lost} supporters and population")
        event = self._settlement_event(state, resolution.kind, -4)
        resolution.notes.append(f"Settlement {event.model_extra['settlementModifier']} -4 next week")
        return append_events(state, event)

    def _ally_in_danger(self, state, resolution):
        candidates = [(i, a) for i, a in enumerate(state.allies) if a.is_eligible]
        if not candidates:
            resolution.notes.append("No ally is in danger")
            return {}
        index, ally = self._pick(candidates)
        definition = ALLIES.get(ally.slug)
        dc = max(10, 20 - (definition.level if definition else 0))
        result = self._check(state, CheckType.SECURITY, dc, "Ally in Danger")
        resolution.check = result
        name = definition.name if definition else ally.slug
        self.controller.bus.emit(EventType.ALLY_CHANGED, week=state.week, slug=ally.slug)
        if result.success:
            resolution.notes.append(f"{name} went into hiding (missing)")
            return {"allies": {str(index): {"missing": True, "missingWeek": state.week}}}
        resolution.notes.append(f"{name} was captured")
        return {"allies": {str(index): {"captured": True}}}

    def _catastrophic_mission(self, state, resolution):
        teams = self._operational_teams(state)
        if not teams:
            resolution.notes.append("No team on a mission: Dangerous Times instead")
            return self._dangerous_times(state, resolution)

        index, team = self._pick(teams)
        result = self._check(state, CheckType.SECURITY, 20, "Catastrophic Mission")
        resolution.check = result
        gained = self.controller.roll("1d6")
        resolution.change("notoriety", gained)
        label = get_definition(team.type).label
        if result.success:
            resolution.notes.append(f"{label} is disabled")
            return {"teams": {str(index): {"disabled": True, "canAutoRecover": False}}}
        resolution.notes.append(f"{label} was destroyed")
        return {"teams": [t.to_document() for i, t in enumerate(state.teams) if i != index]}

    def _traitor(self, state, resolution):
        result = self._check(state, CheckType.LOYALTY, 20, "Traitor")
        resolution.check = result
        if not result.success:
            gained = self.controller.roll("2d6")
            resolution.change("notoriety", gained)
            resolution.notes.append(f"The traitor escaped: notoriety +{gained}")
            return {}
        teams = self._operational_teams(state)
        team_index = self._pick(teams)[0] if teams else None
        self.controller.pending.register(TRAITOR_ROLL, team_index=team_index)
        resolution.pending = TRAITOR_ROLL
        resolution.notes.append("The traitor was caught: execute, exile or imprison")
        return {}

    def _devil_infiltration(self, state, resolution):
        weeks = self.controller.dice.roll(6)
        while weeks == 6:
            weeks = self.controller.dice.roll(6)
        gained = sum(self.controller.dice.roll(6) for _ in range(weeks))
        result = self._check(state, CheckType.LOYALTY, 15, "Devil Infiltration")
        resolution.check = result
        if result.success:
            gained //= 2
        resolution.change("notoriety", gained)
        resolution.notes.append(f"Infiltration over {weeks} weeks: notoriety +{gained}")
        return {}
