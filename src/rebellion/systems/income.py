"""
Earn income for trader teams.

The earnGold action rolls d20 + (ceil(rank / 2) + team proficiency bonus)
against the earn income DC for the party level, and pays out a week of
income in copper pieces from EARN_INCOME_TABLE.
"""

import math
from dataclasses import dataclass
from enum import Enum

from ..tools.dice import Degree, degree_of_success
from .tables import EARN_INCOME_TABLE, IncomeRow

MAX_INCOME_LEVEL = 20


class Proficiency(str, Enum):
    TRAINED = "trained"
    EXPERT = "expert"
    MASTER = "master"
    LEGENDARY = "legendary"


PROFICIENCY_BONUS: dict[Proficiency, int] = {
    Proficiency.TRAINED: 2,
    Proficiency.EXPERT: 4,
    Proficiency.MASTER: 6,
    Proficiency.LEGENDARY: 8,
}


@dataclass
class IncomeResult:
    degree: Degree
    income: int  # copper pieces
    proficiency: Proficiency

    @property
    def gold(self) -> float:
        return self.income / 100


def team_proficiency(team_rank: int) -> Proficiency:
    if team_rank >= 3:
        return Proficiency.MASTER
    if team_rank == 2:
        return Proficiency.EXPERT
    return Proficiency.TRAINED


def team_proficiency_bonus(team_rank: int) -> int:
    return PROFICIENCY_BONUS.get(team_proficiency(team_rank), 2)


def half_rank_bonus(rank: int) -> int:
    return math.ceil(rank / 2)


def earn_income_modifier(rank: int, team_rank: int) -> int:
    return half_rank_bonus(rank) + team_proficiency_bonus(team_rank)


def _row(level: int) -> IncomeRow:
    return EARN_INCOME_TABLE[max(0, min(MAX_INCOME_LEVEL, level))]


def earn_income_dc(level: int) -> int:
    return _row(level).dc


def calculate_earn_income(level: int, team_rank: int, total: int, dc: int) -> IncomeResult:
    """
    Income for one earnGold check.

    A critical success pays at the next level's rate (level 20 uses the
    critical row). A failure pays the failure column, a critical failure
    pays nothing.
    """
    proficiency = team_proficiency(team_rank)
    degree = degree_of_success(total, dc)

    if degree == Degree.CRITICAL_FAILURE:
        income = 0
    elif degree == Degree.FAILURE:
        income = _row(level).failure
    elif degree == Degree.CRITICAL_SUCCESS:
        row = EARN_INCOME_TABLE[min(MAX_INCOME_LEVEL + 1, max(0, level) + 1)]
        income = getattr(row, proficiency.value)
    else:
        income = getattr(_row(level), proficiency.value)

    return IncomeResult(degree=degree, income=income, proficiency=proficiency)


def format_income(copper: int) -> str:
    """Render copper as 'X gp Y sp Z cp', skipping zero parts."""
    gold, rest = divmod(int(copper), 100)
    silver, copper = divmod(rest, 10)
    parts = []
    if gold:
        parts.append(f"{gold} gp")
    if silver:
        parts.append(f"{silver} sp")
    if copper:
        parts.append(f"{copper} cp")
    return " ".join(parts) or "0 cp"
