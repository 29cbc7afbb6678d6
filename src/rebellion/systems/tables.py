"""
Static rule tables: rank progression, treasury floors, action checks and
DCs, cache sizes and the earn income table.
"""

from dataclasses import dataclass
from enum import Enum

from ..state.schema import CacheSize, CheckType


# -----------------------------------------------------------------------------
# Rank progression
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class RankInfo:
    min_supporters: int
    focus_bonus: int
    secondary_bonus: int
    actions: int
    max_teams: int
    gift: str | None = None


RANK_TABLE: dict[int, RankInfo] = {
    1: RankInfo(0, 2, 0, 1, 2),
    2: RankInfo(10, 3, 0, 2, 2, "Training: +1 skill rank"),
    3: RankInfo(15, 3, 1, 2, 3, "Potion (up to 25 gp)"),
    4: RankInfo(20, 4, 1, 2, 3, "Title: Defender"),
    5: RankInfo(30, 4, 1, 2, 4, "40 gp"),
    6: RankInfo(40, 5, 2, 2, 4, "55 gp"),
    7: RankInfo(55, 5, 2, 3, 4, "Training: +2 skill rank"),
    8: RankInfo(75, 6, 2, 3, 5, "Armor or wand (up to 75 gp)"),
    9: RankInfo(105, 6, 3, 3, 5, "Title: Guardian"),
    10: RankInfo(160, 7, 3, 3, 5, "95 gp"),
    11: RankInfo(235, 7, 3, 4, 6, "170 gp"),
    12: RankInfo(330, 8, 4, 4, 6, "Training: +3 skill rank"),
    13: RankInfo(475, 8, 4, 4, 6, "Wand or weapon (up to 290 gp)"),
    14: RankInfo(665, 9, 4, 4, 6, "Title: Warden"),
    15: RankInfo(955, 9, 5, 5, 7, "185 gp"),
    16: RankInfo(1350, 10, 5, 5, 7, "460 gp"),
    17: RankInfo(1900, 10, 5, 5, 7, "Training: +4 skill rank"),
    18: RankInfo(2700, 11, 6, 5, 7, "Magic item (up to 570 gp)"),
    19: RankInfo(3850, 11, 6, 6, 7, "Title: Savior"),
    20: RankInfo(5350, 12, 6, 6, 8, "750 gp"),
}

MAX_RANK = max(RANK_TABLE)


def rank_info(rank: int) -> RankInfo:
    """Row for a rank, clamped into the table."""
    return RANK_TABLE[max(1, min(MAX_RANK, rank))]


# Minimum treasury (gp) before upkeep doubles, by rank
MIN_TREASURY: dict[int, int] = {
    1: 2, 2: 3, 3: 4, 4: 5, 5: 7,
    6: 9, 7: 12, 8: 15, 9: 18, 10: 22,
    11: 26, 12: 29, 13: 32, 14: 35, 15: 38,
    16: 40, 17: 42, 18: 43, 19: 44, 20: 45,
}
DEFAULT_MIN_TREASURY = 19


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

class Action(str, Enum):
    # Universal (Silver Ravens and organization-level)
    CHANGE_OFFICER = "changeOfficer"
    DISMISS = "dismiss"
    GUARANTEE = "guarantee"
    LIE_LOW = "lieLow"
    RECRUIT_SUPPORTERS = "recruitSupporters"
    RECRUIT_TEAM = "recruitTeam"
    SPECIAL = "special"
    UPGRADE = "upgrade"

    # Team-specific
    BLACK_MARKET = "blackMarket"
    CACHE = "cache"
    COVERT = "covert"
    DISINFORMATION = "disinformation"
    EARN_GOLD = "earnGold"
    GATHER_INFO = "gatherInfo"
    KNOWLEDGE = "knowledge"
    MANIPULATE = "manipulate"
    REDUCE_DANGER = "reduceDanger"
    REFRESH_MARKET = "refreshMarket"
    RESCUE = "rescue"
    RESTORE = "restore"
    SABOTAGE = "sabotage"
    SAFEHOUSE = "safehouse"
    SPECIAL_ORDER = "specialOrder"
    URBAN_INFLUENCE = "urbanInfluence"


# Which organization check an action rolls; None = no roll
ACTION_CHECKS: dict[Action, CheckType | None] = {
    Action.BLACK_MARKET: CheckType.SECRECY,
    Action.CACHE: CheckType.SECRECY,
    Action.COVERT: CheckType.SECRECY,
    Action.DISINFORMATION: CheckType.SECRECY,
    Action.GATHER_INFO: CheckType.SECRECY,
    Action.KNOWLEDGE: CheckType.SECRECY,
    Action.LIE_LOW: CheckType.SECRECY,
    Action.SABOTAGE: CheckType.SECRECY,
    Action.DISMISS: CheckType.LOYALTY,
    Action.RECRUIT_SUPPORTERS: CheckType.LOYALTY,
    Action.EARN_GOLD: CheckType.SECURITY,
    Action.REDUCE_DANGER: CheckType.SECURITY,
    Action.RESCUE: CheckType.SECURITY,
}


class DcRule(str, Enum):
    """How a non-fixed action DC is derived."""
    RANK = "rank"                # 10 + rebellion rank
    LEVEL = "level"              # 10 + party level
    EARN_INCOME = "earnIncome"   # earn income table by party level
    CACHE_SIZE = "cacheSize"     # CACHE_LIMITS by size


ACTION_DC: dict[Action, int | DcRule] = {
    Action.BLACK_MARKET: 20,
    Action.DISMISS: 10,
    Action.EARN_GOLD: DcRule.EARN_INCOME,
    Action.GATHER_INFO: 15,
    Action.RECRUIT_SUPPORTERS: DcRule.RANK,
    Action.REDUCE_DANGER: 15,
    Action.RESCUE: DcRule.LEVEL,
    Action.SABOTAGE: 20,
    Action.CACHE: DcRule.CACHE_SIZE,
    Action.DISINFORMATION: 20,
    Action.LIE_LOW: 20,
}


# -----------------------------------------------------------------------------
# Caches
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheLimit:
    weight: int
    max_value: int | None
    dc: int


CACHE_LIMITS: dict[CacheSize, CacheLimit] = {
    CacheSize.SMALL: CacheLimit(weight=5, max_value=62, dc=15),
    CacheSize.MEDIUM: CacheLimit(weight=10, max_value=143, dc=20),
    CacheSize.LARGE: CacheLimit(weight=20, max_value=None, dc=30),
}


# -----------------------------------------------------------------------------
# Earn income (values in copper pieces, 7 days of work)
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class IncomeRow:
    dc: int
    failure: int
    trained: int
    expert: int
    master: int
    legendary: int


EARN_INCOME_TABLE: dict[int, IncomeRow] = {
    0: IncomeRow(14, 7, 35, 35, 35, 35),
    1: IncomeRow(15, 14, 140, 140, 140, 140),
    2: IncomeRow(16, 28, 210, 210, 210, 210),
    3: IncomeRow(18, 56, 350, 350, 350, 350),
    4: IncomeRow(19, 70, 490, 560, 560, 560),
    5: IncomeRow(20, 140, 630, 700, 700, 700),
    6: IncomeRow(22, 210, 1050, 1400, 1400, 1400),
    7: IncomeRow(23, 280, 1400, 1750, 1750, 1750),
    8: IncomeRow(24, 350, 1750, 2100, 2100, 2100),
    9: IncomeRow(26, 420, 2100, 2800, 2800, 2800),
    10: IncomeRow(27, 490, 2800, 3500, 4200, 4200),
    11: IncomeRow(28, 560, 3500, 4200, 5600, 5600),
    12: IncomeRow(30, 630, 4200, 5600, 7000, 7000),
    13: IncomeRow(31, 700, 4900, 7000, 10500, 10500),
    14: IncomeRow(32, 1050, 5600, 10500, 14000, 14000),
    15: IncomeRow(34, 1400, 7000, 14000, 19600, 19600),
    16: IncomeRow(35, 1750, 9100, 17500, 25200, 28000),
    17: IncomeRow(36, 2100, 10500, 21000, 31500, 38500),
    18: IncomeRow(38, 2800, 14000, 31500, 49000, 63000),
    19: IncomeRow(39, 4200, 21000, 42000, 70000, 91000),
    20: IncomeRow(40, 5600, 28000, 52500, 105000, 140000),
    # Critical success at level 20
    21: IncomeRow(40, 5600, 35000, 63000, 122500, 210000),
}
