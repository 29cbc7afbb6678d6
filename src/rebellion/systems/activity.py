"""
Activity phase: team actions, Silver Ravens actions and team management.

Each action is validated structurally first (phase, team, capability,
budget); a structural problem raises a RejectedOperationError and changes
nothing. Once validated the action rolls (if it has a check), and the
outcome, success or failure, is applied as one partial update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from ..state.event_bus import EventType
from ..state.merge import deep_merge
from ..state.schema import (
    ActiveEvent,
    Cache,
    CacheSize,
    CheckType,
    OfficerAssignment,
    OfficerRole,
    OrganizationState,
    Team,
    WeekPhase,
)
from ..tools.dice import Degree
from .allies import ally_enables_action, can_use_manticce_bonus
from .bonuses import get_roll_bonuses, recruit_available
from .events import EventKind, event_kind, safehouse_name
from .income import calculate_earn_income, earn_income_dc, earn_income_modifier, format_income
from .phases import (
    ActionBudgetError,
    CapabilityError,
    MissingSelectionError,
    RejectedOperationError,
    TeamNotFoundError,
    UnknownActionError,
    UnknownTeamTypeError,
    AllyNotFoundError,
    append_events,
    replace_events,
)
from .rolls import CheckResult
from .tables import ACTION_CHECKS, ACTION_DC, CACHE_LIMITS, Action, DcRule, rank_info
from .teams import (
    TEAMS,
    get_definition,
    has_team_slot,
    is_known_type,
    team_capabilities,
    upgrade_options,
)

if TYPE_CHECKING:
    from .phases import PhaseController

logger = logging.getLogger(__name__)

CORE_ACTIONS = frozenset(TEAMS["silverRavens"].caps)


@dataclass
class ActionOutcome:
    """What an action did. A failed roll is still an outcome."""

    action: Action
    team_index: int | None = None
    roll: CheckResult | None = None
    degree: Degree | None = None
    deltas: dict[str, float] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.degree is None or self.degree.succeeded

    def change(self, key: str, delta: float) -> None:
        if delta:
            self.deltas[key] = self.deltas.get(key, 0) + delta

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "teamIndex": self.team_index,
            "roll": self.roll.to_dict() if self.roll else None,
            "degree": self.degree.value if self.degree else None,
            "deltas": dict(self.deltas),
            "notes": list(self.notes),
        }


def parse_action(action: Action | str) -> Action:
    try:
        return Action(action)
    except ValueError:
        raise UnknownActionError(f"Unknown action: {action!r}") from None


def action_dc(state: OrganizationState, action: Action, cache_size: CacheSize | None = None) -> int | None:
    rule = ACTION_DC.get(action)
    if rule is None or isinstance(rule, int):
        return rule
    if rule == DcRule.RANK:
        return 10 + state.rank
    if rule == DcRule.LEVEL:
        return 10 + state.party_level
    if rule == DcRule.EARN_INCOME:
        return earn_income_dc(state.party_level)
    return CACHE_LIMITS[cache_size or CacheSize.SMALL].dc


Handler = Callable[[OrganizationState, "ActionOutcome", dict[str, Any]], dict[str, Any]]


class ActivitySystem:
    """Resolves the activity phase for one controller."""

    def __init__(self, controller: "PhaseController"):
        self.controller = controller
        self._handlers: dict[Action, Handler] = {
            Action.RECRUIT_SUPPORTERS: self._recruit_supporters,
            Action.EARN_GOLD: self._earn_gold,
            Action.GATHER_INFO: self._gather_info,
            Action.KNOWLEDGE: self._roll_only,
            Action.REDUCE_DANGER: self._reduce_danger,
            Action.DISINFORMATION: self._disinformation,
            Action.SABOTAGE: self._sabotage,
            Action.CACHE: self._cache,
            Action.SAFEHOUSE: self._safehouse,
            Action.COVERT: self._roll_only,
            Action.BLACK_MARKET: self._roll_only,
            Action.RESCUE: self._rescue,
            Action.RESTORE: self._restore,
            Action.MANIPULATE: self._manipulate,
            Action.URBAN_INFLUENCE: self._urban_influence,
            Action.REFRESH_MARKET: self._record_only,
            Action.SPECIAL_ORDER: self._record_only,
            Action.GUARANTEE: self._guarantee,
            Action.LIE_LOW: self._lie_low,
            Action.CHANGE_OFFICER: self._change_officer,
            Action.SPECIAL: self._special,
        }

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _state(self, attempted: str) -> OrganizationState:
        return self.controller.require_phase(WeekPhase.ACTIVITY, attempted)

    @staticmethod
    def _team(state: OrganizationState, index: int) -> Team:
        if not 0 <= index < len(state.teams):
            raise TeamNotFoundError(index)
        return state.teams[index]

    def _check_budget(self, state: OrganizationState) -> None:
        max_actions = get_roll_bonuses(state, actors=self.controller.actors).max_actions
        if state.actions_used_this_week >= max_actions:
            raise ActionBudgetError(
                f"All {max_actions} actions used this week"
            )

    def _spend_action(self, state: OrganizationState) -> dict[str, Any]:
        used = state.actions_used_this_week + 1
        partial: dict[str, Any] = {"actionsUsedThisWeek": used}
        if used > rank_info(state.rank).actions:
            partial["strategistUsed"] = True
        return partial

    # -------------------------------------------------------------------------
    # Rolling
    # -------------------------------------------------------------------------

    def _roll(
        self,
        state: OrganizationState,
        outcome: ActionOutcome,
        check: CheckType,
        dc: int | None,
        manual_modifier: int = 0,
        team: Team | None = None,
    ) -> CheckResult:
        result = self.controller.resolver.check(
            state, check, dc,
            manual_modifier=manual_modifier,
            action_context=outcome.action,
            label=outcome.action.value,
            team=team,
        )
        # Rolls without a DC only fail critically on a natural 1
        if result.degree is None and result.natural == 1:
            result.degree = Degree.CRITICAL_FAILURE
        outcome.roll = result
        outcome.degree = result.degree
        self.controller.bus.emit(
            EventType.ROLL_RESOLVED, week=state.week,
            check=check.value, total=result.total, dc=dc,
            degree=result.degree.value if result.degree else None,
        )
        return result

    def _roll_action(self, state: OrganizationState, outcome: ActionOutcome, ctx: dict[str, Any]) -> CheckResult:
        check = ACTION_CHECKS[outcome.action]
        assert check is not None
        dc = action_dc(state, outcome.action, ctx.get("cache_size"))
        return self._roll(state, outcome, check, dc, ctx.get("manual_modifier", 0), ctx.get("team"))

    def _notoriety_on_critical_failure(self, outcome: ActionOutcome) -> None:
        if outcome.degree == Degree.CRITICAL_FAILURE:
            gained = self.controller.roll("1d6")
            outcome.change("notoriety", gained)
            outcome.notes.append(f"Critical failure: notoriety +{gained}")

    # -------------------------------------------------------------------------
    # Finishing
    # -------------------------------------------------------------------------

    def _commit(
        self,
        state: OrganizationState,
        outcome: ActionOutcome,
        partial: dict[str, Any],
    ) -> ActionOutcome:
        for key, delta in outcome.deltas.items():
            if key in partial:
                continue
            partial[key] = getattr(state, key) + delta
        self.controller.apply(partial)
        logger.info(
            "Action %s (team %s): %s",
            outcome.action.value, outcome.team_index,
            outcome.degree.value if outcome.degree else "no roll",
        )
        self.controller.bus.emit(
            EventType.ACTION_RESOLVED, week=state.week,
            action=outcome.action.value, team_index=outcome.team_index,
            degree=outcome.degree.value if outcome.degree else None,
        )
        return outcome

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def perform_team_action(
        self,
        team_index: int,
        action: Action | str,
        *,
        target: int | str | None = None,
        cache_size: CacheSize | str | None = None,
        manual_modifier: int = 0,
    ) -> ActionOutcome:
        """
        Have a team perform an action this week.

        Raises:
            InvalidPhaseError: Not in the activity phase
            RejectedOperationError: Unknown action or team, team cannot act,
                action not in its capabilities, or no action left
        """
        state = self._state("perform team actions")
        action = parse_action(action)
        team = self._team(state, team_index)

        if not team.is_operational:
            raise CapabilityError(f"Team {team_index} is disabled or missing")
        if team.blocked_by_rivalry:
            raise CapabilityError(f"Team {team_index} is blocked by a rivalry")
        if team.has_acted:
            raise ActionBudgetError(f"Team {team_index} already acted this week")
        if action not in team_capabilities(team, state):
            if not (action == Action.DISINFORMATION and ally_enables_action(state, action)):
                raise CapabilityError(
                    f"{get_definition(team.type).label} cannot perform {action.value}"
                )
        if action == Action.RECRUIT_SUPPORTERS and not recruit_available(state):
            raise ActionBudgetError("Supporters were already recruited this phase")
        self._check_budget(state)

        outcome = ActionOutcome(action=action, team_index=team_index)
        ctx = {
            "team": team,
            "team_index": team_index,
            "target": target,
            "cache_size": CacheSize(cache_size) if cache_size else None,
            "manual_modifier": manual_modifier,
        }
        partial = self._handle(state, outcome, ctx)
        deep_merge(partial, self._spend_action(state))
        deep_merge(partial, {"teams": {str(team_index): {
            "hasActed": True, "currentAction": action.value,
        }}})
        return self._commit(state, outcome, partial)

    def perform_core_action(self, action: Action | str, **kwargs) -> ActionOutcome:
        """
        Silver Ravens action: recruitSupporters, lieLow, guarantee,
        changeOfficer (role=, actor_id=) or special (text=).
        """
        state = self._state("perform Silver Ravens actions")
        action = parse_action(action)
        if action not in CORE_ACTIONS:
            raise CapabilityError(f"The Silver Ravens cannot perform {action.value}")
        if state.silver_ravens_action:
            raise ActionBudgetError(
                f"The Silver Ravens already acted this week ({state.silver_ravens_action})"
            )
        if action == Action.RECRUIT_SUPPORTERS and not recruit_available(state):
            raise ActionBudgetError("Supporters were already recruited this phase")
        self._check_budget(state)

        outcome = ActionOutcome(action=action)
        ctx = {"manual_modifier": kwargs.pop("manual_modifier", 0), **kwargs}
        partial = self._handle(state, outcome, ctx)
        deep_merge(partial, self._spend_action(state))
        partial.setdefault("silverRavensAction", action.value)
        return self._commit(state, outcome, partial)

    def use_manticce_bonus(self, team_index: int, manual_modifier: int = 0) -> ActionOutcome:
        """Bonus earnGold for the queen's favorite; does not use the action budget."""
        state = self._state("use the manticce bonus")
        team = self._team(state, team_index)
        if not team.is_operational:
            raise CapabilityError(f"Team {team_index} is disabled or missing")
        if not can_use_manticce_bonus(state, team):
            raise CapabilityError("The manticce bonus is not available for this team")

        outcome = ActionOutcome(action=Action.EARN_GOLD, team_index=team_index)
        ctx = {"team": team, "team_index": team_index, "manual_modifier": manual_modifier}
        partial = self._earn_gold(state, outcome, ctx)
        partial["manticceBonusUsedThisWeek"] = True
        outcome.notes.append("Manticce bonus action")
        return self._commit(state, outcome, partial)

    def hire_team(self, team_type: str, manager: str = "", manual_modifier: int = 0) -> ActionOutcome:
        """
        Recruit a new team. Rank-1 teams need a hire check; unique teams
        join without one. Higher tiers are reached by upgrading.
        """
        state = self._state("hire teams")
        if not is_known_type(team_type):
            raise UnknownTeamTypeError(f"Unknown team type: {team_type!r}")
        definition = TEAMS[team_type]
        if definition.is_core:
            raise CapabilityError("The Silver Ravens cannot be hired")
        if not definition.unique and definition.hire_dc is None:
            raise CapabilityError(f"{definition.label} must be reached by upgrading")
        if not definition.unique and not has_team_slot(state):
            raise ActionBudgetError(
                f"Rank {state.rank} supports at most {rank_info(state.rank).max_teams} teams"
            )
        self._check_budget(state)

        outcome = ActionOutcome(action=Action.RECRUIT_TEAM)
        hired = True
        if definition.hire_dc is not None:
            result = self._roll(
                state, outcome, definition.hire_check or CheckType.LOYALTY,
                definition.hire_dc, manual_modifier,
            )
            if result.natural == 1:
                result.degree = outcome.degree = Degree.CRITICAL_FAILURE
                result.success = False
            hired = bool(result.success)

        partial = self._spend_action(state)
        if hired:
            index = len(state.teams)
            partial["teams"] = {str(index): Team(type=team_type, manager=manager).to_document()}
            outcome.team_index = index
            outcome.notes.append(f"Hired {definition.label}")
            self.controller.bus.emit(EventType.TEAM_CHANGED, week=state.week, index=index, change="hired")
        else:
            outcome.notes.append(f"Failed to hire {definition.label}")
        return self._commit(state, outcome, partial)

    def upgrade_team(self, team_index: int, new_type: str) -> ActionOutcome:
        state = self._state("upgrade teams")
        team = self._team(state, team_index)
        options = {d.key: d for d in upgrade_options(team.type)}
        if new_type not in options:
            raise CapabilityError(
                f"{get_definition(team.type).label} cannot be upgraded to {new_type!r}"
            )
        cost = options[new_type].upgrade_cost or 0
        if state.treasury < cost:
            raise RejectedOperationError(
                f"Upgrade costs {cost} gp, treasury has {state.treasury:g} gp"
            )
        self._check_budget(state)

        outcome = ActionOutcome(action=Action.UPGRADE, team_index=team_index)
        outcome.change("treasury", -cost)
        outcome.notes.append(f"Upgraded to {options[new_type].label} for {cost} gp")
        partial = self._spend_action(state)
        partial["teams"] = {str(team_index): {"type": new_type}}
        self.controller.bus.emit(EventType.TEAM_CHANGED, week=state.week, index=team_index, change="upgraded")
        return self._commit(state, outcome, partial)

    def dismiss_team(self, team_index: int, manual_modifier: int = 0) -> ActionOutcome:
        """Dismiss a team. A failed loyalty check leaks: +1d6 notoriety."""
        state = self._state("dismiss teams")
        self._team(state, team_index)
        self._check_budget(state)

        outcome = ActionOutcome(action=Action.DISMISS, team_index=team_index)
        result = self._roll(
            state, outcome, CheckType.LOYALTY,
            action_dc(state, Action.DISMISS), manual_modifier,
        )
        if not result.success:
            gained = self.controller.roll("1d6")
            outcome.change("notoriety", gained)
            outcome.notes.append(f"Dismissed badly: notoriety +{gained}")
        partial = self._spend_action(state)
        partial["teams"] = [t.to_document() for i, t in enumerate(state.teams) if i != team_index]
        self.controller.bus.emit(EventType.TEAM_CHANGED, week=state.week, index=team_index, change="dismissed")
        return self._commit(state, outcome, partial)

    def restore_team(self, team_index: int) -> ActionOutcome:
        """Re-enable a disabled team outright (no action spent)."""
        state = self._state("restore teams")
        team = self._team(state, team_index)
        if not team.disabled:
            raise CapabilityError(f"Team {team_index} is not disabled")
        outcome = ActionOutcome(action=Action.RESTORE, team_index=team_index)
        outcome.notes.append(f"{get_definition(team.type).label} restored")
        partial = {"teams": {str(team_index): {"disabled": False, "canAutoRecover": False}}}
        self.controller.bus.emit(EventType.TEAM_CHANGED, week=state.week, index=team_index, change="restored")
        return self._commit(state, outcome, partial)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _handle(self, state: OrganizationState, outcome: ActionOutcome, ctx: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(outcome.action)
        if handler is None:
            raise UnknownActionError(f"{outcome.action.value} cannot be performed directly")
        return handler(state, outcome, ctx)

    def _roll_only(self, state, outcome, ctx):
        self._roll_action(state, outcome, ctx)
        self._notoriety_on_critical_failure(outcome)
        return {}

    def _record_only(self, state, outcome, ctx):
        outcome.notes.append(f"{outcome.action.value} recorded for the GM")
        return {}

    def _recruit_supporters(self, state, outcome, ctx):
        result = self._roll_action(state, outcome, ctx)
        bonus = get_roll_bonuses(state, actors=self.controller.actors).recruitment_bonus
        if result.degree == Degree.CRITICAL_SUCCESS:
            gained = self.controller.roll("2d6") + bonus
        elif result.success:
            gained = self.controller.roll("1d6") + bonus
        else:
            gained = 0
        if gained:
            gained = min(gained, state.population)
            outcome.change("supporters", gained)
            outcome.change("population", -gained)
            outcome.notes.append(f"Recruited {gained} supporters")
        if result.degree == Degree.CRITICAL_FAILURE:
            outcome.change("notoriety", 1)
        return {"recruitedThisPhase": True}

    def _earn_gold(self, state, outcome, ctx):
        team: Team = ctx["team"]
        team_rank = get_definition(team.type).rank
        modifier = earn_income_modifier(state.rank, team_rank) + ctx.get("manual_modifier", 0)
        dc = earn_income_dc(state.party_level)
        result = self.controller.resolver.flat(dc=dc, modifier=modifier, label="earnGold")
        income = calculate_earn_income(state.party_level, team_rank, result.total, dc)
        outcome.roll = result
        outcome.degree = income.degree
        outcome.change("treasury", income.gold)
        outcome.notes.append(f"Earned {format_income(income.income)} ({income.proficiency.value})")
        return {}

    def _gather_info(self, state, outcome, ctx):
        result = self._roll_action(state, outcome, ctx)
        if not result.success:
            return {}
        bonus = 4 if result.degree == Degree.CRITICAL_SUCCESS else 2
        outcome.notes.append(f"+{bonus} to knowledge checks this week")
        return append_events(state, ActiveEvent(
            name=EventKind.GATHERED_INFORMATION.value,
            week_started=state.week, duration=1,
            is_action_effect=True, knowledge_bonus=bonus,
        ))

    def _reduce_danger(self, state, outcome, ctx):
        result = self._roll_action(state, outcome, ctx)
        if not result.success:
            return {}
        reduction = 20 if result.degree == Degree.CRITICAL_SUCCESS else 10
        outcome.notes.append(f"Danger -{reduction} this week")
        return append_events(state, ActiveEvent(
            name=EventKind.REDUCED_DANGER_ACTION.value,
            week_started=state.week, duration=1,
            is_action_effect=True, danger_reduction=reduction,
        ))

    def _disinformation(self, state, outcome, ctx):
        result = self._roll_action(state, outcome, ctx)
        if result.degree == Degree.CRITICAL_SUCCESS:
            outcome.change("notoriety", -self.controller.roll("2d6"))
        elif result.success:
            outcome.change("notoriety", -self.controller.roll("1d6"))
        else:
            self._notoriety_on_critical_failure(outcome)
        return {}

    def _sabotage(self, state, outcome, ctx):
        result = self._roll_action(state, outcome, ctx)
        if not result.success:
            self._notoriety_on_critical_failure(outcome)
            return {}
        outcome.notes.append("Danger -5 this week")
        return append_events(state, ActiveEvent(
            name="Sabotage", week_started=state.week, duration=1,
            is_custom_modifier=True, modifier_value=-5, affected_checks=["danger"],
        ))

    def _cache(self, state, outcome, ctx):
        team: Team = ctx["team"]
        size = ctx.get("cache_size") or get_definition(team.type).cache_size or CacheSize.SMALL
        ctx["cache_size"] = size
        result = self._roll_action(state, outcome, ctx)
        if not result.success:
            self._notoriety_on_critical_failure(outcome)
            return {}
        cache = Cache(size=size, week_created=state.week, source=get_definition(team.type).label)
        outcome.notes.append(f"Created a {size.value} cache")
        return {"caches": {str(len(state.caches)): cache.to_document()}}

    def _safehouse(self, state, outcome, ctx):
        label = get_definition(ctx["team"].type).label
        outcome.notes.append("Safehouse established: +1 security this week")
        return append_events(state, ActiveEvent(
            name=safehouse_name(label), week_started=state.week, duration=1,
            is_action_effect=True, security_bonus=1,
        ))

    def _rescue(self, state, outcome, ctx):
        target = ctx.get("target")
        if target is None:
            raise MissingSelectionError("Rescue needs a target ally or team")
        if isinstance(target, str) and not target.isdigit():
            index = state.ally_index(target)
            if index is None:
                raise AllyNotFoundError(target)
            collection, patch = "allies", {"captured": False, "missing": False, "missingWeek": None}
        else:
            index = int(target)
            self._team(state, index)
            collection, patch = "teams", {"missing": False, "canAutoRecover": False}

        result = self._roll_action(state, outcome, ctx)
        partial: dict[str, Any] = {}
        if result.success:
            partial[collection] = {str(index): patch}
            outcome.notes.append(f"Rescued {target}")
            change = EventType.ALLY_CHANGED if collection == "allies" else EventType.TEAM_CHANGED
            self.controller.bus.emit(change, week=state.week, index=index, change="rescued")
        elif result.degree == Degree.CRITICAL_FAILURE:
            partial["teams"] = {str(ctx["team_index"]): {"missing": True, "canAutoRecover": True}}
            outcome.notes.append("The rescuers went missing")
        return partial

    def _restore(self, state, outcome, ctx):
        target = ctx.get("target")
        if target is None:
            raise MissingSelectionError("Restore needs a target team")
        index = int(target)
        if not self._team(state, index).disabled:
            raise CapabilityError(f"Team {index} is not disabled")
        outcome.notes.append(f"Team {index} restored")
        return {"teams": {str(index): {"disabled": False, "canAutoRecover": False}}}

    def _manipulate(self, state, outcome, ctx):
        outcome.notes.append("One event this week may be rerolled")
        return append_events(state, ActiveEvent(
            name=EventKind.MANIPULATE_EVENTS.value, week_started=state.week,
            is_persistent=True, allow_event_reroll=True,
        ))

    def _urban_influence(self, state, outcome, ctx):
        outcome.notes.append("+2 loyalty this week")
        return append_events(state, ActiveEvent(
            name=EventKind.URBAN_INFLUENCE.value, week_started=state.week, duration=1,
            is_action_effect=True, social_bonus=2,
        ))

    def _guarantee(self, state, outcome, ctx):
        outcome.notes.append("An event will occur this week")
        return append_events(state, ActiveEvent(
            name=EventKind.GUARANTEED_EVENT.value, week_started=state.week, duration=1,
            guarantee_event=True,
        ))

    def _lie_low(self, state, outcome, ctx):
        result = self._roll_action(state, outcome, ctx)
        if not result.success:
            return {}
        outcome.change("notoriety", -self.controller.roll("1d6"))
        remaining = [e for e in state.events if event_kind(e.name) != EventKind.INQUISITION]
        if len(remaining) == len(state.events):
            return {}
        outcome.notes.append("The Inquisition loses the trail")
        return replace_events(remaining)

    def _change_officer(self, state, outcome, ctx):
        role = ctx.get("role")
        if role is None:
            raise MissingSelectionError("changeOfficer needs a role")
        role = OfficerRole(role)
        officer = OfficerAssignment(
            role=role,
            actor_id=ctx.get("actor_id"),
            selected_checks=ctx.get("selected_checks") or [],
            selected_attribute=ctx.get("selected_attribute"),
        )
        officers = [o for o in state.officers if o.role != role] + [officer]
        outcome.notes.append(f"{role.value} is now {officer.actor_id or 'vacant'}")
        return {"officers": [o.to_document() for o in officers]}

    def _special(self, state, outcome, ctx):
        text = ctx.get("text")
        if not text:
            raise MissingSelectionError("special needs a description")
        return {"silverRavensAction": text}
