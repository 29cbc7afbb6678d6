"""
Maintenance phase: end-of-week bookkeeping, run by the authority.

Steps run in a fixed order and each one is persisted before the next reads
the state, so a later step always sees the effect of an earlier one (for
example, rank evaluation sees supporters after upkeep).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..state.event_bus import EventType
from ..state.schema import ActiveEvent, Cache, CacheSize, CheckType, OrganizationState
from .allies import (
    ALLIES,
    TREASURY_SHORTAGE,
    active_allies,
    can_use_monthly_action,
    is_immune,
    monthly_action_partial,
)
from .bonuses import calculate_rank, is_treasury_low
from .events import EventKind, event_kind
from .phases import replace_events
from .tables import rank_info

if TYPE_CHECKING:
    from .phases import PhaseController

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceStep:
    name: str
    notes: list[str] = field(default_factory=list)


@dataclass
class MaintenanceReport:
    week: int
    steps: list[MaintenanceStep] = field(default_factory=list)
    supporters_lost: int = 0
    rank_before: int = 1
    rank_after: int = 1
    gift: str | None = None

    def step(self, name: str) -> MaintenanceStep:
        step = MaintenanceStep(name)
        self.steps.append(step)
        return step

    def to_dict(self) -> dict:
        return {
            "week": self.week,
            "steps": [{"name": s.name, "notes": list(s.notes)} for s in self.steps],
            "supportersLost": self.supporters_lost,
            "rankBefore": self.rank_before,
            "rankAfter": self.rank_after,
            "gift": self.gift,
        }

    def summary(self) -> str:
        lines = [f"Week {self.week} maintenance"]
        for s in self.steps:
            lines.extend(f"  {s.name}: {note}" for note in s.notes)
        return "\n".join(lines)


class MaintenanceSystem:
    """Runs the maintenance steps for one controller."""

    def __init__(self, controller: "PhaseController"):
        self.controller = controller

    @property
    def _state(self) -> OrganizationState:
        return self.controller.state

    def _apply(self, partial: dict[str, Any]) -> None:
        if partial:
            self.controller.apply(partial)

    def run(self) -> MaintenanceReport:
        state = self._state
        report = MaintenanceReport(week=state.week, rank_before=state.rank, rank_after=state.rank)

        self._notoriety_allies(report.step("Allies"))
        self._upkeep(report)
        self._traitor_containment(report.step("Traitor in Prison"))
        self._collect_persuasion(report.step("Persuasion"))
        self._recovery(report.step("Recovery"))
        self._monthly_actions(report.step("Monthly actions"))
        self._rank(report)
        self._rivalry(report.step("Rivalry"))
        self._lifecycle(report.step("Events"))
        self._weekly_reset()

        report.steps = [s for s in report.steps if s.notes]
        state = self._state
        self._apply({"phaseReport": report.summary()})
        logger.info("Week %d maintenance done: -%d supporters, rank %d", state.week, report.supporters_lost, state.rank)
        return report

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _notoriety_allies(self, step: MaintenanceStep) -> None:
        state = self._state
        reduction = 0
        for _, definition in active_allies(state):
            amount = definition.notoriety_reduction
            if definition.notoriety_reduction_dice:
                amount += self.controller.roll(definition.notoriety_reduction_dice)
            if amount:
                reduction += amount
                step.notes.append(f"{definition.name}: notoriety -{amount}")
        if reduction:
            self._apply({"notoriety": state.notoriety - reduction})

    def _upkeep(self, report: MaintenanceReport) -> None:
        step = report.step("Upkeep")
        state = self._state
        result = self.controller.resolver.check(state, CheckType.LOYALTY, label="Upkeep")
        if result.total >= 10:
            loss = self.controller.roll("1d6")
        else:
            loss = self.controller.roll("2d4") + state.rank
        step.notes.append(f"Loyalty {result.total}: {loss} supporters leave")

        if is_treasury_low(state):
            if is_immune(state, TREASURY_SHORTAGE):
                step.notes.append("Treasury is low, but the queen covers the shortfall")
            else:
                extra = self.controller.roll("2d4") + state.rank
                loss += extra
                step.notes.append(f"Treasury is low: {extra} more leave")

        if any(
            event_kind(e.name) == EventKind.INQUISITION and not e.mitigated
            for e in state.active_event_list()
        ):
            loss *= 2
            step.notes.append("The Inquisition doubles the losses")

        loss = min(loss, state.supporters)
        report.supporters_lost = loss
        self._apply({"supporters": state.supporters - loss})

    def _traitor_containment(self, step: MaintenanceStep) -> None:
        state = self._state
        for index, event in enumerate(state.events):
            if event_kind(event.name) != EventKind.TRAITOR_IN_PRISON or not event.needs_secrecy_check:
                continue
            result = self.controller.resolver.check(state, CheckType.SECRECY, 20, label="Prison")
            if result.success:
                step.notes.append(f"The traitor stays locked up ({result.total})")
                return
            gained = self.controller.roll("2d6")
            kept = [e for i, e in enumerate(state.events) if i != index]
            partial = replace_events(kept)
            partial["notoriety"] = state.notoriety + gained
            self._apply(partial)
            step.notes.append(f"The traitor escaped: notoriety +{gained}")
            return

    def _collect_persuasion(self, step: MaintenanceStep) -> None:
        state = self._state
        collected = [
            e for e in state.active_event_list()
            if event_kind(e.name) == EventKind.PERSUASION_BONUS and e.needs_supporters_collection
        ]
        if not collected:
            return
        gained = sum(e.supporters_bonus for e in collected)
        kept = [e for e in state.events if not any(e is c for c in collected)]
        partial = replace_events(kept)
        partial["supporters"] = state.supporters + gained
        self._apply(partial)
        step.notes.append(f"The turned traitor brings {gained} supporters")

    def _recovery(self, step: MaintenanceStep) -> None:
        state = self._state
        teams: dict[str, Any] = {}
        for i, team in enumerate(state.teams):
            if team.disabled and team.can_auto_recover:
                teams[str(i)] = {"disabled": False, "canAutoRecover": False}
                step.notes.append(f"Team {i} recovered")
            elif team.missing:
                teams[str(i)] = {"missing": False, "canAutoRecover": False}
                step.notes.append(f"Team {i} returned")

        allies: dict[str, Any] = {}
        for i, ally in enumerate(state.allies):
            if not ally.missing:
                continue
            result = self.controller.resolver.check(state, CheckType.SECURITY, 15, label="Ally recovery")
            name = ALLIES[ally.slug].name if ally.slug in ALLIES else ally.slug
            if result.success:
                allies[str(i)] = {"missing": False, "missingWeek": None}
                step.notes.append(f"{name} is back")
            else:
                step.notes.append(f"{name} is still missing")

        partial: dict[str, Any] = {}
        if teams:
            partial["teams"] = teams
        if allies:
            partial["allies"] = allies
        self._apply(partial)

    def _monthly_actions(self, step: MaintenanceStep) -> None:
        state = self._state
        if not can_use_monthly_action(state, "hetamon"):
            return
        cache = Cache(size=CacheSize.SMALL, week_created=state.week, source=ALLIES["hetamon"].name)
        partial = monthly_action_partial(state, "hetamon")
        partial["caches"] = {str(len(state.caches)): cache.to_document()}
        self._apply(partial)
        step.notes.append("Hetamon stocks a free small cache")

    def _rank(self, report: MaintenanceReport) -> None:
        step = report.step("Rank")
        state = self._state
        new_rank = max(state.rank, calculate_rank(state.supporters, state.max_rank))
        report.rank_after = new_rank
        if new_rank == state.rank:
            return
        gift = state.custom_gifts.get(str(new_rank)) or rank_info(new_rank).gift
        report.gift = gift
        self._apply({"rank": new_rank})
        step.notes.append(f"Rank {state.rank} -> {new_rank}" + (f", gift: {gift}" if gift else ""))
        self.controller.bus.emit(
            EventType.RANK_CHANGED, week=state.week, before=state.rank, after=new_rank, gift=gift,
        )

    def _rivalry(self, step: MaintenanceStep) -> None:
        state = self._state
        blocked: set[str] = set()
        for event in state.active_event_list():
            if event_kind(event.name) != EventKind.RIVALRY:
                continue
            if event.mitigated and not event.is_permanent:
                continue
            blocked.update(event.affected_teams)

        teams = {}
        for i, team in enumerate(state.teams):
            should_block = team.type in blocked
            if team.blocked_by_rivalry != should_block:
                teams[str(i)] = {"blockedByRivalry": should_block}
        if teams:
            self._apply({"teams": teams})
        if blocked:
            step.notes.append(f"Blocked by rivalry: {', '.join(sorted(blocked))}")

    def _lifecycle(self, step: MaintenanceStep) -> None:
        state = self._state
        next_week = state.week + 1

        def keep(event: ActiveEvent) -> bool:
            return event.is_persistent or event.week_started > state.week or event.is_active(next_week)

        kept = [e for e in state.events if keep(e)]
        expired = len(state.events) - len(kept)
        if expired:
            self._apply(replace_events(kept))
            step.notes.append(f"{expired} event(s) expired")

    def _weekly_reset(self) -> None:
        state = self._state
        partial: dict[str, Any] = {
            "eventsThisPhase": [],
            "actionsUsedThisWeek": 0,
            "strategistUsed": False,
            "recruitedThisPhase": False,
        "silverRavensAction": "",
            "manticceBonusUsedThisWeek": False,
            "tempBonuses": {c.value: 0 for c in CheckType},
        }
        if state.teams:
            partial["teams"] = {
                str(i): {"currentAction": "", "hasActed": False} for i in range(len(state.teams))
            }
        if state.allies:
            partial["allies"] = {
                str(i): {"rerollUsedThisWeek": False} for i in range(len(state.allies))
            }
        self._apply(partial)
