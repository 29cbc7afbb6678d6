"""
Modifier aggregation.

get_roll_bonuses() folds every source of modifiers (rank and focus,
temporary bonuses, active events, safehouses, officers, allies and teams)
into one bonus per organization check, each with a labelled breakdown.
It is a pure function of the state snapshot and the actor directory.
"""

from dataclasses import dataclass, field
from enum import Enum

from ..state.schema import (
    ActiveEvent,
    CheckType,
    OfficerRole,
    OrganizationState,
    Team,
)
from .allies import active_allies, manticce_bonus_action_count
from .events import (
    CHECK_EFFECTS,
    DANGER_EFFECTS,
    EventKind,
    custom_check_effect,
    custom_danger_effect,
    event_kind,
)
from .officers import ActorDirectory, OFFICER_ROLES, best_officers, eligible_officers, officer_value
from .tables import DEFAULT_MIN_TREASURY, MAX_RANK, MIN_TREASURY, RANK_TABLE, rank_info
from .teams import DISINFORMATION_TEAMS, get_definition, is_operational

SAFEHOUSE_CAP = 5
EVENT_CHANCE_MIN = 10
EVENT_CHANCE_MAX = 95


@dataclass
class BonusPart:
    label: str
    value: int


@dataclass
class CheckBonus:
    total: int = 0
    parts: list[BonusPart] = field(default_factory=list)

    def add(self, label: str, value: int) -> None:
        if not value:
            return
        self.total += value
        self.parts.append(BonusPart(label, value))


@dataclass
class RollBonuses:
    loyalty: CheckBonus = field(default_factory=CheckBonus)
    security: CheckBonus = field(default_factory=CheckBonus)
    secrecy: CheckBonus = field(default_factory=CheckBonus)
    max_actions: int = 1
    recruitment_bonus: int = 0

    def __getitem__(self, check: CheckType | str) -> CheckBonus:
        return getattr(self, CheckType(check).value)

    def add(self, check: CheckType | str, label: str, value: int) -> None:
        self[check].add(label, value)

    def totals(self) -> dict[str, int]:
        return {c.value: self[c].total for c in CheckType}

    def to_dict(self) -> dict:
        result = {
            c.value: {
                "total": self[c].total,
                "parts": [{"label": p.label, "value": p.value} for p in self[c].parts],
            }
            for c in CheckType
        }
        result["maxActions"] = self.max_actions
        result["recruitmentBonus"] = self.recruitment_bonus
        return result


def _context(action_context) -> str | None:
    if isinstance(action_context, Enum):
        return action_context.value
    return action_context


def is_event_active(event: ActiveEvent, week: int) -> bool:
    return event.is_active(week)


# -----------------------------------------------------------------------------
# Contributors
# -----------------------------------------------------------------------------

def _apply_rank(state: OrganizationState, bonuses: RollBonuses) -> None:
    info = rank_info(state.rank)
    for check in CheckType:
        if check == state.focus:
            bonuses.add(check, "Priority", info.focus_bonus)
        else:
            bonuses.add(check, "Secondary", info.secondary_bonus)


def _apply_temporary(state: OrganizationState, bonuses: RollBonuses) -> None:
    for check in CheckType:
        bonuses.add(check, "Temporary", int(state.temp_bonuses.get(check.value, 0) or 0))


def _apply_events(state: OrganizationState, bonuses: RollBonuses, context: str | None) -> None:
    for event in state.active_event_list():
        kind = event_kind(event.name)
        effect = CHECK_EFFECTS.get(kind) if kind is not None else None
        if effect is not None:
            for check, value in effect(event, context).items():
                bonuses.add(check, event.name, value)
        for check, value in custom_check_effect(event).items():
            bonuses.add(check, event.name, value)


def safehouse_bonus(state: OrganizationState) -> tuple[int, int]:
    """(capped security bonus, number of contributing safehouses)."""
    total = 0
    count = 0
    for event in state.active_event_list():
        if not event.is_action_effect or event_kind(event.name) != EventKind.SAFEHOUSE:
            continue
        total += event.security_bonus or 1
        count += 1
    return min(SAFEHOUSE_CAP, total), count


def _apply_safehouses(state: OrganizationState, bonuses: RollBonuses) -> None:
    value, count = safehouse_bonus(state)
    if count:
        bonuses.add(CheckType.SECURITY, f"Safehouses ({count})", value)


def _apply_officers(
    state: OrganizationState,
    bonuses: RollBonuses,
    actors: ActorDirectory | None,
) -> None:
    best = best_officers(state, actors)
    for role, (officer, value) in best.items():
        target = OFFICER_ROLES[role].target
        if target is not None:
            bonuses.add(target, OFFICER_ROLES[role].label, value)

    if OfficerRole.STRATEGIST in best:
        bonuses.max_actions += 1

    sentinel = best.get(OfficerRole.SENTINEL)
    if sentinel is not None:
        for check in dict.fromkeys(sentinel[0].selected_checks):
            bonuses.add(check, OFFICER_ROLES[OfficerRole.SENTINEL].label, 1)

    bonuses.recruitment_bonus = sum(
        officer_value(o, state, actors) for o in eligible_officers(state, OfficerRole.RECRUITER)
    )


def _has_disinformation_team(state: OrganizationState) -> bool:
    return any(is_operational(t) and t.type in DISINFORMATION_TEAMS for t in state.teams)


def _apply_allies(state: OrganizationState, bonuses: RollBonuses, context: str | None) -> None:
    for ally, definition in active_allies(state):
        for check, value in definition.check_bonuses.items():
            bonuses.add(check, definition.name, value)

        if ally.slug == "mialari" and ally.selected_bonus is not None:
            bonuses.add(ally.selected_bonus, definition.name, 1)

        if ally.slug == "tayacet":
            if ally.revealed:
                bonuses.add(CheckType.LOYALTY, definition.name, 2)
            else:
                bonuses.add(CheckType.SECRECY, definition.name, 2)
                bonuses.add(CheckType.SECURITY, definition.name, 2)

        if context is None or context not in definition.context_bonuses:
            continue
        if ally.slug == "vendalfek" and not _has_disinformation_team(state):
            continue
        check, value = definition.context_bonuses[context]
        bonuses.add(check, definition.name, value)


def _apply_teams(
    state: OrganizationState,
    bonuses: RollBonuses,
    context: str | None,
    team: Team | None,
) -> None:
    for t in state.teams:
        if t.type == "acisaziScouts" and is_operational(t):
            bonuses.add(CheckType.SECRECY, get_definition(t.type).label, 1)
            break
    if team is None or context is None:
        return
    definition = get_definition(team.type)
    for action, (check, value) in definition.action_bonuses.items():
        if action.value == context:
            bonuses.add(check, definition.label, value)


def get_roll_bonuses(
    state: OrganizationState,
    action_context=None,
    actors: ActorDirectory | None = None,
    team: Team | None = None,
) -> RollBonuses:
    """
    Aggregate all modifiers for the organization checks.

    Args:
        state: Snapshot to read
        action_context: Action key for context-only bonuses (e.g. "rescue")
        actors: Directory used to resolve officer characters
        team: The acting team, for team-specific action bonuses

    Returns:
        RollBonuses with a breakdown per check
    """
    context = _context(action_context)
    bonuses = RollBonuses(max_actions=rank_info(state.rank).actions)
    _apply_rank(state, bonuses)
    _apply_temporary(state, bonuses)
    _apply_events(state, bonuses, context)
    _apply_safehouses(state, bonuses)
    _apply_officers(state, bonuses, actors)
    _apply_allies(state, bonuses, context)
    _apply_teams(state, bonuses, context, team)
    return bonuses


# -----------------------------------------------------------------------------
# Danger, event chance, treasury, rank
# -----------------------------------------------------------------------------

def get_effective_danger(state: OrganizationState) -> int:
    danger = state.danger
    for event in state.active_event_list():
        kind = event_kind(event.name)
        effect = DANGER_EFFECTS.get(kind) if kind is not None else None
        if effect is not None:
            delta = effect(event)
            danger = max(0, danger + delta) if delta < 0 else danger + delta
        danger += custom_danger_effect(event)
    return danger


def has_guaranteed_event(state: OrganizationState) -> bool:
    return any(
        event_kind(e.name) == EventKind.GUARANTEED_EVENT and e.guarantee_event
        for e in state.active_event_list()
    )


def get_event_chance(state: OrganizationState) -> int:
    if has_guaranteed_event(state):
        return 100
    chance = get_effective_danger(state) + state.notoriety
    if state.weeks_without_event > 0:
        chance *= 2
    return max(EVENT_CHANCE_MIN, min(EVENT_CHANCE_MAX, chance))


def get_min_treasury(state: OrganizationState) -> int:
    override = state.maintenance_settings.min_treasury.get(f"rank{state.rank}")
    if override is not None:
        return override
    return MIN_TREASURY.get(state.rank, DEFAULT_MIN_TREASURY)


def is_treasury_low(state: OrganizationState) -> bool:
    return state.treasury < get_min_treasury(state)


def calculate_rank(supporters: int, max_rank: int = MAX_RANK) -> int:
    """Highest rank whose supporter threshold is met."""
    rank = 1
    for r, info in RANK_TABLE.items():
        if r <= max_rank and supporters >= info.min_supporters:
            rank = max(rank, r)
    return rank


def recruit_available(state: OrganizationState) -> bool:
    """Supporters may still be recruited this phase."""
    return not state.recruited_this_phase


def get_actions_remaining(state: OrganizationState, actors: ActorDirectory | None = None) -> int:
    bonuses = get_roll_bonuses(state, actors=actors)
    total = bonuses.max_actions + manticce_bonus_action_count(state)
    return max(0, total - state.actions_used_this_week)
