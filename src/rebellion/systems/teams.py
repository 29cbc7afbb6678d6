"""
Team catalog and team-level queries.

A team's identity is its position in OrganizationState.teams; its type is a
key into TEAMS. Upgrades move a team along its tier tree (rank 1 -> 2 -> 3),
unique teams never upgrade.
"""

import logging
from dataclasses import dataclass, field

from ..state.schema import CacheSize, CheckType, OrganizationState, Team
from .tables import Action, rank_info

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeamDefinition:
    key: str
    label: str
    rank: int
    category: str
    caps: tuple[Action, ...] = ()
    next: tuple[str, ...] = ()
    hire_dc: int | None = None
    hire_check: CheckType | None = None
    upgrade_cost: int | None = None
    unique: bool = False
    cache_size: CacheSize | None = None
    is_core: bool = False
    # action -> (check, bonus) applied while this team performs that action
    action_bonuses: dict[Action, tuple[CheckType, int]] = field(default_factory=dict)


A = Action

TEAMS: dict[str, TeamDefinition] = {
    # Core
    "silverRavens": TeamDefinition(
        "silverRavens", "Silver Ravens", 0, "core",
        caps=(A.RECRUIT_SUPPORTERS, A.LIE_LOW, A.GUARANTEE, A.CHANGE_OFFICER, A.SPECIAL),
        is_core=True,
    ),

    # Advisors
    "streetPerformers": TeamDefinition(
        "streetPerformers", "Street Performers", 1, "advisors",
        caps=(A.GATHER_INFO,), next=("rumormongers",),
        hire_dc=10, hire_check=CheckType.SECRECY,
    ),
    "rumormongers": TeamDefinition(
        "rumormongers", "Rumormongers", 2, "advisors",
        caps=(A.GATHER_INFO, A.DISINFORMATION), next=("agitators", "cognoscenti"),
        upgrade_cost=8,
    ),
    "agitators": TeamDefinition(
        "agitators", "Agitators", 3, "advisors",
        caps=(A.GATHER_INFO, A.DISINFORMATION, A.URBAN_INFLUENCE), upgrade_cost=19,
    ),
    "cognoscenti": TeamDefinition(
        "cognoscenti", "Cognoscenti", 3, "advisors",
        caps=(A.GATHER_INFO, A.DISINFORMATION, A.KNOWLEDGE), upgrade_cost=19,
    ),

    # Outlaws
    "sneaks": TeamDefinition(
        "sneaks", "Sneaks", 1, "outlaws",
        caps=(A.CACHE,), next=("thieves",), cache_size=CacheSize.SMALL,
        hire_dc=15, hire_check=CheckType.SECRECY,
    ),
    "thieves": TeamDefinition(
        "thieves", "Thieves", 2, "outlaws",
        caps=(A.CACHE, A.SAFEHOUSE), next=("saboteurs", "smugglers"),
        cache_size=CacheSize.MEDIUM, upgrade_cost=21,
    ),
    "saboteurs": TeamDefinition(
        "saboteurs", "Saboteurs", 3, "outlaws",
        caps=(A.CACHE, A.SAFEHOUSE, A.SABOTAGE), cache_size=CacheSize.LARGE, upgrade_cost=67,
    ),
    "smugglers": TeamDefinition(
        "smugglers", "Smugglers", 3, "outlaws",
        caps=(A.CACHE, A.SAFEHOUSE, A.COVERT), cache_size=CacheSize.LARGE, upgrade_cost=67,
    ),

    # Rebels
    "freedomFighters": TeamDefinition(
        "freedomFighters", "Freedom Fighters", 1, "rebels",
        caps=(A.REDUCE_DANGER,), next=("infiltrators",),
        hire_dc=15, hire_check=CheckType.SECURITY,
    ),
    "infiltrators": TeamDefinition(
        "infiltrators", "Infiltrators", 2, "rebels",
        caps=(A.REDUCE_DANGER, A.RESCUE), next=("cabalists", "spellcasters"), upgrade_cost=21,
    ),
    "cabalists": TeamDefinition(
        "cabalists", "Cabalists", 3, "rebels",
        caps=(A.REDUCE_DANGER, A.RESCUE, A.MANIPULATE), upgrade_cost=67,
    ),
    "spellcasters": TeamDefinition(
        "spellcasters", "Spellcasters", 3, "rebels",
        caps=(A.REDUCE_DANGER, A.RESCUE, A.RESTORE), upgrade_cost=67,
    ),

    # Traders
    "peddlers": TeamDefinition(
        "peddlers", "Peddlers", 1, "traders",
        caps=(A.EARN_GOLD,), next=("merchants",),
        hire_dc=10, hire_check=CheckType.SECURITY,
    ),
    "merchants": TeamDefinition(
        "merchants", "Merchants", 2, "traders",
        caps=(A.EARN_GOLD, A.REFRESH_MARKET), next=("blackMarketers", "merchantLords"),
        upgrade_cost=8,
    ),
    "blackMarketers": TeamDefinition(
        "blackMarketers", "Black Marketers", 3, "traders",
        caps=(A.EARN_GOLD, A.REFRESH_MARKET, A.BLACK_MARKET), upgrade_cost=19,
    ),
    "merchantLords": TeamDefinition(
        "merchantLords", "Merchant Lords", 3, "traders",
        caps=(A.EARN_GOLD, A.REFRESH_MARKET, A.SPECIAL_ORDER), upgrade_cost=19,
    ),

    # Unique
    "fushiSisters": TeamDefinition(
        "fushiSisters", "Fushi Sisters", 2, "unique",
        caps=(A.EARN_GOLD, A.GATHER_INFO), unique=True,
    ),
    "torrentArmigers": TeamDefinition(
        "torrentArmigers", "Torrent Armigers", 2, "unique",
        caps=(A.REDUCE_DANGER, A.RESCUE), unique=True,
    ),
    "acisaziScouts": TeamDefinition(
        "acisaziScouts", "Acisazi Scouts", 3, "unique",
        caps=(A.CACHE, A.SAFEHOUSE, A.COVERT), unique=True, cache_size=CacheSize.LARGE,
    ),
    "bellflower": TeamDefinition(
        "bellflower", "Bellflower Network", 3, "unique",
        caps=(A.COVERT, A.RESCUE, A.SABOTAGE), unique=True,
        action_bonuses={A.SABOTAGE: (CheckType.SECRECY, 2)},
    ),
    "lacunafex": TeamDefinition(
        "lacunafex", "Lacunafex", 3, "unique",
        caps=(A.COVERT, A.GATHER_INFO, A.DISINFORMATION, A.SABOTAGE), unique=True,
        action_bonuses={A.COVERT: (CheckType.SECRECY, 2)},
    ),
    "orderTorrent": TeamDefinition(
        "orderTorrent", "Order of the Torrent", 3, "unique",
        caps=(A.REDUCE_DANGER, A.RESCUE, A.SABOTAGE), unique=True,
        action_bonuses={A.RESCUE: (CheckType.SECURITY, 4)},
    ),

    "unknown": TeamDefinition("unknown", "Unknown Team", 1, "unknown"),
}

UNKNOWN = TEAMS["unknown"]

# Teams whose presence unlocks vendalfek's disinformation bonus
DISINFORMATION_TEAMS = frozenset({"rumormongers", "agitators", "cognoscenti"})

# Extra capabilities for teams managed by molly
MOLLY_CAPS: tuple[Action, ...] = (A.COVERT, A.SABOTAGE)


def get_definition(key: str | None) -> TeamDefinition:
    """Definition for a team type; unknown keys resolve to the fallback."""
    if not key:
        return UNKNOWN
    definition = TEAMS.get(key)
    if definition is None:
        logger.warning("Unknown team type: %s", key)
        return UNKNOWN
    return definition


def is_known_type(key: str | None) -> bool:
    return bool(key) and key in TEAMS and key != "unknown"


def is_operational(team: Team) -> bool:
    return not team.disabled and not team.missing


def team_capabilities(team: Team, state: OrganizationState) -> tuple[Action, ...]:
    caps = list(get_definition(team.type).caps)
    if team.manager == "molly":
        molly = state.find_ally("molly")
        if molly is not None and molly.is_eligible:
            caps.extend(c for c in MOLLY_CAPS if c not in caps)
    return tuple(caps)


def can_upgrade(key: str) -> bool:
    definition = TEAMS.get(key)
    return definition is not None and bool(definition.next) and not definition.unique


def upgrade_options(key: str) -> list[TeamDefinition]:
    if not can_upgrade(key):
        return []
    return [TEAMS[k] for k in TEAMS[key].next]


# -----------------------------------------------------------------------------
# Counts
# -----------------------------------------------------------------------------

def count_operational_teams(state: OrganizationState) -> int:
    """Operational non-unique teams; this is what max_teams limits."""
    return sum(
        1 for t in state.teams
        if is_operational(t) and not get_definition(t.type).unique
    )


def count_disabled_teams(state: OrganizationState) -> int:
    """Disabled teams that need gold to recover (auto-recovering ones excluded)."""
    return sum(
        1 for t in state.teams
        if t.disabled and not t.missing and not t.can_auto_recover
    )


def count_missing_teams(state: OrganizationState) -> int:
    return sum(1 for t in state.teams if t.missing)


def has_team_slot(state: OrganizationState) -> bool:
    return count_operational_teams(state) < rank_info(state.rank).max_teams
