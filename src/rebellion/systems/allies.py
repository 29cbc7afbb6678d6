"""
Ally catalog and ally-driven rules.

Allies are recruited NPCs. Their effect only applies while the ally is
eligible: enabled and neither missing nor captured.
"""

from dataclasses import dataclass, field

from ..state.schema import AllyState, CheckType, OrganizationState, Team
from .events import EventKind
from .tables import Action
from .teams import team_capabilities

# Immunity that is not an event
TREASURY_SHORTAGE = "treasuryShortage"

MONTHLY_COOLDOWN_WEEKS = 4


@dataclass(frozen=True)
class AllyDefinition:
    slug: str
    name: str
    level: int
    can_be_officer: bool = False
    check_bonuses: dict[CheckType, int] = field(default_factory=dict)
    # action context -> (check, bonus)
    context_bonuses: dict[str, tuple[CheckType, int]] = field(default_factory=dict)
    reroll_check: CheckType | None = None
    immunities: frozenset[str] = frozenset()
    notoriety_reduction: int = 0
    notoriety_reduction_dice: str | None = None
    monthly_action: str | None = None
    enables_actions: tuple[Action, ...] = ()
    bonus_earn_gold: bool = False
    grants_team_caps: tuple[Action, ...] = ()


L, S, C = CheckType.LOYALTY, CheckType.SECURITY, CheckType.SECRECY

ALLIES: dict[str, AllyDefinition] = {
    # Adventure 1
    "laria": AllyDefinition(
        "laria", "Laria Longroad", 3,
        context_bonuses={Action.RECRUIT_SUPPORTERS.value: (L, 2)},
    ),
    "rexus": AllyDefinition("rexus", "Rexus Victocora", 2, notoriety_reduction=1),
    "vendalfek": AllyDefinition(
        "vendalfek", "Vendalfek", 4,
        context_bonuses={Action.DISINFORMATION.value: (C, 4)},
        enables_actions=(Action.DISINFORMATION,),
    ),
    "blosodriette": AllyDefinition(
        "blosodriette", "Blosodriette", 6, check_bonuses={C: 1, L: -1},
    ),

    # Adventure 2
    "cassius": AllyDefinition(
        "cassius", "Captain Cassius Sargaeta", 7,
        immunities=frozenset({EventKind.INCREASED_PATROLS.value}),
    ),
    "octavio": AllyDefinition(
        "octavio", "Lictor Octavio Sabinus", 8,
        context_bonuses={Action.RESCUE.value: (S, 4), "rescueCharacter": (S, 4)},
        immunities=frozenset({EventKind.LOW_MORALE.value}),
    ),
    "hetamon": AllyDefinition(
        "hetamon", "Hetamon Haas", 6,
        notoriety_reduction_dice="1d6",
        immunities=frozenset({EventKind.SICKNESS.value}),
        monthly_action="freeCache",
    ),

    # Adventure 3
    "jilia": AllyDefinition(
        "jilia", "Jilia Bainilus", 9, can_be_officer=True, check_bonuses={S: 2, L: 2},
    ),
    "mialari": AllyDefinition("mialari", "Mialari Docur", 10, can_be_officer=True),
    "manticce": AllyDefinition(
        "manticce", "Queen Manticce Kalikkii", 12,
        immunities=frozenset({TREASURY_SHORTAGE}), bonus_earn_gold=True,
    ),
    "tayacet": AllyDefinition("tayacet", "Tayacet Tiora", 8),

    # Adventure 4
    "chuko": AllyDefinition("chuko", "Chuko", 11, can_be_officer=True, reroll_check=S),
    "jackdaw": AllyDefinition(
        "jackdaw", "Jackdaw", 13, can_be_officer=True, check_bonuses={L: 1, S: 1, C: 1},
    ),
    "molly": AllyDefinition(
        "molly", "Molly Mayapple", 10, can_be_officer=True,
        grants_team_caps=(Action.COVERT, Action.SABOTAGE),
    ),
    "shensen": AllyDefinition("shensen", "Shensen", 12, can_be_officer=True, reroll_check=L),
    "strea": AllyDefinition("strea", "Strea Vestori", 11, can_be_officer=True, reroll_check=C),
}

REROLL_ALLIES: dict[CheckType, str] = {
    d.reroll_check: d.slug for d in ALLIES.values() if d.reroll_check is not None
}


def get_ally(slug: str) -> AllyDefinition | None:
    return ALLIES.get(slug)


def is_ally_active(state: OrganizationState, slug: str) -> bool:
    ally = state.find_ally(slug)
    return ally is not None and ally.is_eligible


def active_allies(state: OrganizationState) -> list[tuple[AllyState, AllyDefinition]]:
    """Eligible allies that have a catalog entry, in document order."""
    result = []
    for ally in state.allies:
        definition = ALLIES.get(ally.slug)
        if definition is not None and ally.is_eligible:
            result.append((ally, definition))
    return result


def ally_enables_action(state: OrganizationState, action: Action | str) -> bool:
    action = Action(action)
    return any(action in d.enables_actions for _, d in active_allies(state))


def is_immune(state: OrganizationState, kind: EventKind | str) -> bool:
    key = kind.value if isinstance(kind, EventKind) else kind
    return any(key in d.immunities for _, d in active_allies(state))


def immune_ally(state: OrganizationState, kind: EventKind | str) -> AllyDefinition | None:
    """The first active ally granting immunity, for reporting."""
    key = kind.value if isinstance(kind, EventKind) else kind
    for _, definition in active_allies(state):
        if key in definition.immunities:
            return definition
    return None


# -----------------------------------------------------------------------------
# Monthly actions
# -----------------------------------------------------------------------------

def can_use_monthly_action(state: OrganizationState, slug: str) -> bool:
    if not is_ally_active(state, slug):
        return False
    record = state.monthly_actions.get(slug)
    if record is None:
        return True
    return state.week - record.last_used_week >= MONTHLY_COOLDOWN_WEEKS


def monthly_action_status(state: OrganizationState, slug: str) -> dict:
    record = state.monthly_actions.get(slug)
    if record is None:
        return {"available": is_ally_active(state, slug), "last_used_week": None, "weeks_until_available": 0}
    waited = state.week - record.last_used_week
    return {
        "available": can_use_monthly_action(state, slug),
        "last_used_week": record.last_used_week,
        "weeks_until_available": max(0, MONTHLY_COOLDOWN_WEEKS - waited),
    }


def monthly_action_partial(state: OrganizationState, slug: str) -> dict:
    return {"monthlyActions": {slug: {"lastUsedWeek": state.week}}}


# -----------------------------------------------------------------------------
# Manticce
# -----------------------------------------------------------------------------

def _favorite_player(state: OrganizationState) -> str | None:
    manticce = state.find_ally("manticce")
    if manticce is None or not manticce.is_eligible:
        return None
    return manticce.favorite_player


def manticce_bonus_action_count(state: OrganizationState) -> int:
    """
    Bonus earnGold actions granted by manticce: teams whose manager is the
    queen's favorite player and which are earning gold this week.
    """
    favorite = _favorite_player(state)
    if not favorite:
        return 0
    return sum(
        1 for t in state.teams
        if not t.disabled and not t.missing
        and t.current_action == Action.EARN_GOLD.value
        and t.manager == favorite
    )


def can_use_manticce_bonus(state: OrganizationState, team: Team) -> bool:
    favorite = _favorite_player(state)
    if not favorite or state.manticce_bonus_used_this_week:
        return False
    if team.manager != favorite:
        return False
    return Action.EARN_GOLD in team_capabilities(team, state)


def ally_label(slug: str) -> str:
    definition = ALLIES.get(slug)
    return definition.name if definition else slug
