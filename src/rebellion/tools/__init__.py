"""Tools used by the rebellion systems."""

from .dice import (
    Degree,
    DiceRoller,
    DiceTotal,
    RandomDice,
    degree_of_success,
    parse_expression,
    roll_dice,
    roll_expression,
)

__all__ = [
    "Degree",
    "DiceRoller",
    "DiceTotal",
    "RandomDice",
    "degree_of_success",
    "parse_expression",
    "roll_dice",
    "roll_expression",
]
