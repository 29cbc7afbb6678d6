"""
Roll resolution for organization checks.

Three kinds of roll exist:
- d20 checks (loyalty, security, secrecy) with the aggregated bonus;
- flat checks for externally supplied skills, with no organization bonus;
- percentile notoriety checks, where a low roll means the rebellion was
  noticed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..errors import RebellionError
from ..state.schema import AllyState, CheckType, OrganizationState
from ..tools.dice import Degree, DiceRoller, degree_of_success
from .allies import REROLL_ALLIES
from .bonuses import BonusPart, get_effective_danger, get_roll_bonuses
from .events import EventKind, event_kind
from .officers import ActorDirectory

logger = logging.getLogger(__name__)


class RerollUnavailableError(RebellionError):
    """No reroll grant is left for this check."""


@dataclass
class CheckResult:
    check: CheckType | None
    natural: int
    modifier: int
    total: int
    dc: int | None = None
    success: bool | None = None
    degree: Degree | None = None
    breakdown: list[BonusPart] = field(default_factory=list)
    label: str = ""
    action_context: str | None = None

    def to_dict(self) -> dict:
        return {
            "check": self.check.value if self.check else None,
            "natural": self.natural,
            "modifier": self.modifier,
            "total": self.total,
            "dc": self.dc,
            "success": self.success,
            "degree": self.degree.value if self.degree else None,
            "breakdown": [{"label": p.label, "value": p.value} for p in self.breakdown],
            "label": self.label,
        }


@dataclass
class PercentileResult:
    roll: int
    threshold: int
    noticed: bool


class NotorietyVariant(str, Enum):
    NOTORIETY = "notoriety"
    HALF_NOTORIETY = "halfNotoriety"
    DOUBLE_NOTORIETY = "doubleNotoriety"
    COMBINED = "combined"
    HALF_COMBINED = "halfCombined"
    DOUBLE_COMBINED = "doubleCombined"
    DANGER = "danger"


def is_noticed(roll: int, threshold: int) -> bool:
    """Percentile polarity: rolling at or under the threshold means noticed."""
    return roll <= threshold


def notoriety_threshold(state: OrganizationState, variant: NotorietyVariant) -> int:
    notoriety = state.notoriety
    combined = notoriety + get_effective_danger(state)
    value = {
        NotorietyVariant.NOTORIETY: notoriety,
        NotorietyVariant.HALF_NOTORIETY: notoriety // 2,
        NotorietyVariant.DOUBLE_NOTORIETY: notoriety * 2,
        NotorietyVariant.COMBINED: combined,
        NotorietyVariant.HALF_COMBINED: combined // 2,
        NotorietyVariant.DOUBLE_COMBINED: combined * 2,
        NotorietyVariant.DANGER: get_effective_danger(state),
    }[NotorietyVariant(variant)]
    return max(0, min(100, value))


class RollResolver:
    """Rolls checks against the aggregated bonuses of a state snapshot."""

    def __init__(self, dice: DiceRoller, actors: ActorDirectory | None = None):
        self.dice = dice
        self.actors = actors

    def _finish(self, result: CheckResult) -> CheckResult:
        if result.dc is not None:
            result.degree = degree_of_success(result.total, result.dc)
            result.success = result.degree.succeeded
        logger.debug(
            "Check %s: %d%+d = %d vs DC %s",
            result.check.value if result.check else result.label,
            result.natural, result.modifier, result.total, result.dc,
        )
        return result

    def check(
        self,
        state: OrganizationState,
        check_type: CheckType | str,
        dc: int | None = None,
        manual_modifier: int = 0,
        action_context=None,
        label: str = "",
        team=None,
    ) -> CheckResult:
        check_type = CheckType(check_type)
        bonuses = get_roll_bonuses(state, action_context, self.actors, team)
        bonus = bonuses[check_type]
        breakdown = list(bonus.parts)
        if manual_modifier:
            breakdown.append(BonusPart("Manual", manual_modifier))
        modifier = bonus.total + manual_modifier
        natural = self.dice.roll(20)
        context = action_context.value if isinstance(action_context, Enum) else action_context
        return self._finish(CheckResult(
            check=check_type,
            natural=natural,
            modifier=modifier,
            total=natural + modifier,
            dc=dc,
            breakdown=breakdown,
            label=label or check_type.value,
            action_context=context,
        ))

    def flat(self, dc: int | None = None, modifier: int = 0, sides: int = 20, label: str = "") -> CheckResult:
        natural = self.dice.roll(sides)
        breakdown = [BonusPart("Modifier", modifier)] if modifier else []
        return self._finish(CheckResult(
            check=None,
            natural=natural,
            modifier=modifier,
            total=natural + modifier,
            dc=dc,
            breakdown=breakdown,
            label=label,
        ))

    def percentile(self, threshold: int) -> PercentileResult:
        roll = self.dice.roll(100)
        return PercentileResult(roll=roll, threshold=threshold, noticed=is_noticed(roll, threshold))

    def notoriety_check(
        self,
        state: OrganizationState,
        variant: NotorietyVariant = NotorietyVariant.NOTORIETY,
    ) -> PercentileResult:
        return self.percentile(notoriety_threshold(state, variant))

    # -------------------------------------------------------------------------
    # Rerolls
    # -------------------------------------------------------------------------

    def reroll_ally(self, state: OrganizationState, check_type: CheckType | str) -> AllyState | None:
        """The ally able to reroll this check this week, if any."""
        slug = REROLL_ALLIES.get(CheckType(check_type))
        if slug is None:
            return None
        ally = state.find_ally(slug)
        if ally is None or not ally.is_eligible or ally.reroll_used_this_week:
            return None
        return ally

    def reroll(self, state: OrganizationState, previous: CheckResult) -> tuple[CheckResult, dict]:
        """
        Reroll a check with the same modifier and DC.

        Returns:
            (new result, partial update consuming the grant)

        Raises:
            RerollUnavailableError: No eligible ally or the grant is spent
        """
        if previous.check is None:
            raise RerollUnavailableError("Flat checks cannot be rerolled")
        ally = self.reroll_ally(state, previous.check)
        if ally is None:
            raise RerollUnavailableError(f"No {previous.check.value} reroll available this week")

        natural = self.dice.roll(20)
        result = self._finish(CheckResult(
            check=previous.check,
            natural=natural,
            modifier=previous.modifier,
            total=natural + previous.modifier,
            dc=previous.dc,
            breakdown=list(previous.breakdown),
            label=previous.label,
            action_context=previous.action_context,
        ))
        index = state.ally_index(ally.slug)
        partial = {"allies": {str(index): {"rerollUsedThisWeek": True}}}
        logger.info("%s reroll used: %d -> %d", ally.slug, previous.total, result.total)
        return result, partial

    def can_reroll_event(self, state: OrganizationState) -> bool:
        return _event_reroll_index(state) is not None

    def consume_event_reroll(self, state: OrganizationState) -> dict:
        """Partial removing the Manipulate Events grant."""
        index = _event_reroll_index(state)
        if index is None:
            raise RerollUnavailableError("No Manipulate Events grant is active")
        events = [e.to_document() for i, e in enumerate(state.events) if i != index]
        return {"events": events}


def _event_reroll_index(state: OrganizationState) -> int | None:
    for i, event in enumerate(state.events):
        if (
            event_kind(event.name) == EventKind.MANIPULATE_EVENTS
            and event.allow_event_reroll
            and event.is_active(state.week)
        ):
            return i
    return None
