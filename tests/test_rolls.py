"""Tests for dice tools and the roll resolver."""

import pytest

from rebellion.state import ActiveEvent, AllyState, CheckType, OrganizationState
from rebellion.systems.rolls import (
    NotorietyVariant,
    RerollUnavailableError,
    RollResolver,
    is_noticed,
    notoriety_threshold,
)
from rebellion.tools.dice import (
    Degree,
    RandomDice,
    degree_of_success,
    parse_expression,
    roll_expression,
)

from conftest import ScriptedDice


class TestDice:
    """Test dice expressions and degrees of success."""

    @pytest.mark.parametrize("expression,parsed", [
        ("d100", (1, 100, 0)),
        ("2d4+3", (2, 4, 3)),
        ("1d6 - 1", (1, 6, -1)),
    ])
    def test_parse_expression(self, expression, parsed):
        """NdS[+/-K] expressions parse into count, sides and bonus."""
        assert parse_expression(expression) == parsed

    def test_bad_expression(self):
        """Anything else is rejected."""
        with pytest.raises(ValueError):
            parse_expression("two dice")

    def test_roll_expression(self):
        """Expressions roll each die and add the bonus."""
        total = roll_expression(ScriptedDice(3, 4), "2d4+2")
        assert total.rolls == [3, 4]
        assert total.total == 9
        assert str(total) == "3+4+2 = 9"

    def test_seeded_dice_repeat(self):
        """The same seed gives the same rolls."""
        first = RandomDice(7)
        second = RandomDice(7)
        assert [first.roll(20) for _ in range(10)] == [second.roll(20) for _ in range(10)]

    def test_zero_sided_die(self):
        """A die needs at least one side."""
        with pytest.raises(ValueError):
            RandomDice().roll(0)

    @pytest.mark.parametrize("total,degree", [
        (5, Degree.CRITICAL_FAILURE),
        (6, Degree.FAILURE),
        (14, Degree.FAILURE),
        (15, Degree.SUCCESS),
        (24, Degree.SUCCESS),
        (25, Degree.CRITICAL_SUCCESS),
    ])
    def test_degree_bands(self, total, degree):
        """Degrees band at ten either side of the DC."""
        assert degree_of_success(total, 15) is degree

    def test_succeeded(self):
        """Only success and critical success count as success."""
        assert Degree.CRITICAL_SUCCESS.succeeded
        assert not Degree.FAILURE.succeeded


class TestChecks:
    """Test organization, flat and percentile checks."""

    def test_check_adds_bonus(self, actors):
        """A check is d20 plus the aggregated bonus."""
        resolver = RollResolver(ScriptedDice(13), actors)
        result = resolver.check(OrganizationState(), CheckType.LOYALTY, dc=15)
        assert result.natural == 13
        assert result.modifier == 2
        assert result.total == 15
        assert result.success is True
        assert result.degree is Degree.SUCCESS

    def test_manual_modifier_in_breakdown(self):
        """Manual modifiers add to the total and the breakdown."""
        resolver = RollResolver(ScriptedDice(10))
        result = resolver.check(OrganizationState(), "security", dc=20, manual_modifier=-3)
        assert result.total == 7
        assert [(p.label, p.value) for p in result.breakdown] == [("Manual", -3)]
        assert result.degree is Degree.FAILURE

    def test_check_without_dc(self):
        """Without a DC there is no degree."""
        result = RollResolver(ScriptedDice(20)).check(OrganizationState(), CheckType.SECRECY)
        assert result.dc is None
        assert result.success is None
        assert result.to_dict()["degree"] is None

    def test_context_reaches_bonuses(self):
        """The action context selects context bonuses."""
        state = OrganizationState(allies=[AllyState(slug="laria")])
        result = RollResolver(ScriptedDice(10)).check(state, CheckType.LOYALTY, action_context="recruitSupporters")
        assert result.modifier == 4
        assert result.action_context == "recruitSupporters"

    def test_flat_check(self):
        """Flat checks use only the given modifier."""
        result = RollResolver(ScriptedDice(12)).flat(dc=20, modifier=5, label="diplomacy")
        assert result.check is None
        assert result.total == 17
        assert result.degree is Degree.FAILURE

    @pytest.mark.parametrize("roll,noticed", [(1, True), (30, True), (31, False), (100, False)])
    def test_percentile_polarity(self, roll, noticed):
        """Rolling at or under the threshold means the rebellion was noticed."""
        result = RollResolver(ScriptedDice(roll)).percentile(30)
        assert result.noticed is noticed
        assert is_noticed(roll, 30) is noticed

    @pytest.mark.parametrize("variant,expected", [
        (NotorietyVariant.NOTORIETY, 30),
        (NotorietyVariant.HALF_NOTORIETY, 15),
        (NotorietyVariant.DOUBLE_NOTORIETY, 60),
        (NotorietyVariant.COMBINED, 50),
        (NotorietyVariant.HALF_COMBINED, 25),
        (NotorietyVariant.DOUBLE_COMBINED, 100),
        (NotorietyVariant.DANGER, 20),
    ])
    def test_notoriety_thresholds(self, variant, expected):
        """Threshold variants combine notoriety and danger, clamped to 100."""
        assert notoriety_threshold(OrganizationState(notoriety=30), variant) == expected

    def test_notoriety_check(self):
        """A notoriety check rolls d100 against the chosen threshold."""
        state = OrganizationState(notoriety=30)
        result = RollResolver(ScriptedDice(45)).notoriety_check(state, NotorietyVariant.COMBINED)
        assert result.threshold == 50
        assert result.noticed
        assert not RollResolver(ScriptedDice(45)).notoriety_check(state).noticed


class TestRerolls:
    """Test ally check rerolls and the event reroll grant."""

    def test_ally_reroll(self):
        """Chuko rerolls a security check once per week."""
        state = OrganizationState(allies=[AllyState(slug="rexus"), AllyState(slug="chuko")])
        resolver = RollResolver(ScriptedDice(3, 17))
        first = resolver.check(state, CheckType.SECURITY, dc=15)
        second, partial = resolver.reroll(state, first)
        assert second.total == 17
        assert second.success is True
        assert partial == {"allies": {"1": {"rerollUsedThisWeek": True}}}

    def test_reroll_spent(self):
        """A used grant cannot be reused the same week."""
        state = OrganizationState(allies=[AllyState(slug="chuko", reroll_used_this_week=True)])
        resolver = RollResolver(ScriptedDice(3))
        first = resolver.check(state, CheckType.SECURITY, dc=15)
        with pytest.raises(RerollUnavailableError):
            resolver.reroll(state, first)

    def test_no_reroll_ally(self):
        """Checks without a reroll ally cannot be rerolled."""
        state = OrganizationState(allies=[AllyState(slug="chuko")])
        resolver = RollResolver(ScriptedDice(3))
        first = resolver.check(state, CheckType.LOYALTY, dc=15)
        with pytest.raises(RerollUnavailableError):
            resolver.reroll(state, first)

    def test_flat_check_not_rerolled(self):
        """Flat checks have no reroll."""
        resolver = RollResolver(ScriptedDice(3))
        with pytest.raises(RerollUnavailableError):
            resolver.reroll(OrganizationState(), resolver.flat(dc=10))

    def test_event_reroll_grant(self):
        """Manipulate Events allows one event reroll, then is removed."""
        state = OrganizationState(events=[
            ActiveEvent(name="Donation", week_started=1),
            ActiveEvent(name="Manipulate Events", week_started=1, duration=1, allow_event_reroll=True),
        ])
        resolver = RollResolver(ScriptedDice())
        assert resolver.can_reroll_event(state)
        partial = resolver.consume_event_reroll(state)
        assert [e["name"] for e in partial["events"]] == ["Donation"]

    def test_no_event_reroll(self):
        """Without the grant, consuming it fails."""
        resolver = RollResolver(ScriptedDice())
        assert not resolver.can_reroll_event(OrganizationState())
        with pytest.raises(RerollUnavailableError):
            resolver.consume_event_reroll(OrganizationState())
