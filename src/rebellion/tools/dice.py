"""
Dice rolling tools for the rebellion tracker.

The engine never calls random directly: every roll goes through a
DiceRoller so tests can script results and a table can seed a session.
"""

import random
import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class Degree(str, Enum):
    """Degree of success, banded at +/-10 around the DC."""
    CRITICAL_FAILURE = "criticalFailure"
    FAILURE = "failure"
    SUCCESS = "success"
    CRITICAL_SUCCESS = "criticalSuccess"

    @property
    def succeeded(self) -> bool:
        return self in (Degree.SUCCESS, Degree.CRITICAL_SUCCESS)


@runtime_checkable
class DiceRoller(Protocol):
    """Source of die results."""

    def roll(self, sides: int) -> int:
        """Roll one die with the given number of sides (1..sides)."""
        ...


class RandomDice:
    """DiceRoller backed by random.Random. Pass a seed for reproducible weeks."""

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed)

    def roll(self, sides: int) -> int:
        if sides < 1:
            raise ValueError(f"A die needs at least one side, got {sides}")
        return self._rng.randint(1, sides)


@dataclass
class DiceTotal:
    """Result of rolling a dice expression."""
    rolls: list[int]
    bonus: int
    total: int

    def __str__(self) -> str:
        dice = "+".join(str(r) for r in self.rolls) or "0"
        if self.bonus:
            return f"{dice}{self.bonus:+d} = {self.total}"
        return f"{dice} = {self.total}"


_EXPRESSION = re.compile(r"^\s*(\d*)d(\d+)\s*(?:([+-])\s*(\d+))?\s*$")


def parse_expression(expression: str) -> tuple[int, int, int]:
    """
    Parse an NdS[+/-K] expression.

    Returns:
        (count, sides, bonus)

    Raises:
        ValueError: Expression is not in NdS[+/-K] form
    """
    match = _EXPRESSION.match(expression)
    if not match:
        raise ValueError(f"Unsupported dice expression: {expression!r}")
    count = int(match.group(1) or 1)
    sides = int(match.group(2))
    bonus = int(match.group(4) or 0)
    if match.group(3) == "-":
        bonus = -bonus
    return count, sides, bonus


def roll_dice(roller: DiceRoller, count: int, sides: int, bonus: int = 0) -> DiceTotal:
    rolls = [roller.roll(sides) for _ in range(count)]
    return DiceTotal(rolls=rolls, bonus=bonus, total=sum(rolls) + bonus)


def roll_expression(roller: DiceRoller, expression: str) -> DiceTotal:
    """Roll e.g. '2d4+3' or 'd100'."""
    return roll_dice(roller, *parse_expression(expression))


def degree_of_success(total: int, dc: int) -> Degree:
    margin = total - dc
    if margin <= -10:
        return Degree.CRITICAL_FAILURE
    if margin < 0:
        return Degree.FAILURE
    if margin >= 10:
        return Degree.CRITICAL_SUCCESS
    return Degree.SUCCESS
