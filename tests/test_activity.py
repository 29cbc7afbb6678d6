"""Tests for the activity phase: team actions and team management."""

import pytest

from rebellion.state import EventType
from rebellion.systems.bonuses import get_actions_remaining, get_effective_danger, get_event_chance
from rebellion.systems.phases import (
    ActionBudgetError,
    AllyNotFoundError,
    CapabilityError,
    InvalidPhaseError,
    MissingSelectionError,
    RejectedOperationError,
    TeamNotFoundError,
    UnknownActionError,
    UnknownTeamTypeError,
)
from rebellion.tools.dice import Degree


def _with_teams(service, *types, **fields):
    partial = {"teams": [{"type": t} for t in types]}
    partial.update(fields)
    service.apply(partial)


class TestValidation:
    """Structural problems reject the action and change nothing."""

    def test_wrong_phase(self, service, controller):
        """Team actions are only possible during the activity phase."""
        _with_teams(service, "peddlers")
        controller.begin_event_phase()
        with pytest.raises(InvalidPhaseError, match="Cannot perform team actions during event phase."):
            controller.activity.perform_team_action(0, "earnGold")

    def test_unknown_action(self, service, controller):
        """Unknown action keys are rejected."""
        _with_teams(service, "peddlers")
        with pytest.raises(UnknownActionError):
            controller.activity.perform_team_action(0, "juggle")

    def test_missing_team(self, service, controller):
        """Team indices must exist."""
        with pytest.raises(TeamNotFoundError):
            controller.activity.perform_team_action(3, "earnGold")

    def test_capability(self, service, controller):
        """Teams only perform actions they are capable of."""
        _with_teams(service, "peddlers")
        with pytest.raises(CapabilityError):
            controller.activity.perform_team_action(0, "gatherInfo")

    def test_disabled_team(self, service, controller):
        """Disabled teams cannot act."""
        service.apply({"teams": [{"type": "peddlers", "disabled": True}]})
        with pytest.raises(CapabilityError):
            controller.activity.perform_team_action(0, "earnGold")

    def test_rivalry_blocks(self, service, controller):
        """Teams blocked by a rivalry cannot act."""
        service.apply({"teams": [{"type": "peddlers", "blockedByRivalry": True}]})
        with pytest.raises(CapabilityError):
            controller.activity.perform_team_action(0, "earnGold")

    def test_rejection_changes_nothing(self, service, controller, memory_store):
        """A rejected action leaves the store untouched."""
        _with_teams(service, "peddlers")
        saves = memory_store.save_count
        with pytest.raises(RejectedOperationError):
            controller.activity.perform_team_action(0, "sabotage")
        assert memory_store.save_count == saves

    def test_action_budget(self, service, controller, dice):
        """Rank 1 allows one action per week."""
        _with_teams(service, "peddlers", "peddlers")
        dice.push(12)
        controller.activity.perform_team_action(0, "earnGold")
        with pytest.raises(ActionBudgetError):
            controller.activity.perform_team_action(1, "earnGold")

    def test_team_acts_once(self, service, controller, dice):
        """A team acts at most once per week."""
        _with_teams(service, "peddlers", rank=2, supporters=10)
        dice.push(12)
        controller.activity.perform_team_action(0, "earnGold")
        with pytest.raises(ActionBudgetError):
            controller.activity.perform_team_action(0, "earnGold")

    def test_strategist_extra_action(self, service, controller, dice):
        """A strategist's extra action is tracked."""
        _with_teams(service, "peddlers", "peddlers", officers=[{"role": "strategist", "actorId": "pc-2"}])
        dice.push(12, 12)
        controller.activity.perform_team_action(0, "earnGold")
        controller.activity.perform_team_action(1, "earnGold")
        state = service.get()
        assert state.actions_used_this_week == 2
        assert state.strategist_used is True


class TestTeamActions:
    """Test individual team actions."""

    def test_earn_gold(self, service, controller, dice):
        """earnGold rolls d20 + ceil(rank/2) + proficiency against the income DC."""
        _with_teams(service, "peddlers")
        dice.push(12)
        outcome = controller.activity.perform_team_action(0, "earnGold")
        assert outcome.roll.total == 15
        assert outcome.degree is Degree.SUCCESS
        state = service.get()
        assert state.treasury == pytest.approx(11.4)
        assert state.teams[0].has_acted is True
        assert state.teams[0].current_action == "earnGold"
        assert state.actions_used_this_week == 1

    def test_failed_roll_still_spends_action(self, service, controller, dice):
        """A failed action is still an action."""
        _with_teams(service, "streetPerformers")
        dice.push(5)
        outcome = controller.activity.perform_team_action(0, "gatherInfo")
        assert not outcome.succeeded
        assert service.get().actions_used_this_week == 1
        assert service.get().events == []

    def test_gather_info(self, service, controller, dice):
        """Success adds a knowledge bonus for the week."""
        _with_teams(service, "streetPerformers")
        dice.push(15)
        controller.activity.perform_team_action(0, "gatherInfo")
        event = service.get().events[0]
        assert event.name == "Gathered Information"
        assert event.knowledge_bonus == 2

    def test_gather_info_critical(self, service, controller, dice):
        """A critical success doubles the knowledge bonus."""
        _with_teams(service, "streetPerformers", tempBonuses={"secrecy": 10})
        dice.push(15)
        controller.activity.perform_team_action(0, "gatherInfo")
        assert service.get().events[0].knowledge_bonus == 4

    def test_reduce_danger(self, service, controller, dice):
        """Reduce danger lowers effective danger for the week."""
        _with_teams(service, "freedomFighters")
        dice.push(15)
        controller.activity.perform_team_action(0, "reduceDanger")
        assert get_effective_danger(service.get()) == 10

    def test_sabotage(self, service, controller, dice):
        """Sabotage cuts danger by 5."""
        _with_teams(service, "saboteurs")
        dice.push(20)
        controller.activity.perform_team_action(0, "sabotage")
        assert get_effective_danger(service.get()) == 15

    def test_cache(self, service, controller, dice):
        """Sneaks create small caches."""
        _with_teams(service, "sneaks")
        dice.push(15)
        controller.activity.perform_team_action(0, "cache")
        caches = service.get().caches
        assert len(caches) == 1
        assert caches[0].size.value == "small"
        assert caches[0].source == "Sneaks"

    def test_critical_failure_raises_notoriety(self, service, controller, dice):
        """Critical failures leak: +1d6 notoriety."""
        _with_teams(service, "sneaks")
        dice.push(4, 5)
        outcome = controller.activity.perform_team_action(0, "cache")
        assert outcome.degree is Degree.CRITICAL_FAILURE
        assert service.get().notoriety == 5

    def test_safehouse(self, service, controller):
        """Safehouses need no roll and add security."""
        _with_teams(service, "thieves")
        controller.activity.perform_team_action(0, "safehouse")
        state = service.get()
        assert state.events[0].name == "Safehouse: Thieves"
        assert state.events[0].is_action_effect

    def test_rescue_needs_target(self, service, controller):
        """Rescue without a target is rejected."""
        _with_teams(service, "infiltrators")
        with pytest.raises(MissingSelectionError):
            controller.activity.perform_team_action(0, "rescue")

    def test_rescue_unknown_ally(self, service, controller):
        """Rescue targets must exist."""
        _with_teams(service, "infiltrators")
        with pytest.raises(AllyNotFoundError):
            controller.activity.perform_team_action(0, "rescue", target="laria")

    def test_rescue_ally(self, service, controller, dice):
        """A successful rescue frees a captured ally."""
        _with_teams(service, "infiltrators", allies=[{"slug": "jilia", "captured": True}])
        dice.push(11)
        controller.activity.perform_team_action(0, "rescue", target="jilia")
        assert service.get().allies[0].captured is False


class TestCoreActions:
    """Test Silver Ravens actions."""

    def test_recruit_supporters(self, service, controller, dice):
        """Success recruits 1d6 supporters from the population."""
        dice.push(9, 4)
        outcome = controller.activity.perform_core_action("recruitSupporters")
        assert outcome.roll.dc == 11
        state = service.get()
        assert state.supporters == 4
        assert state.population == 11896
        assert state.recruited_this_phase is True

    def test_recruit_once_per_phase(self, service, controller, dice):
        """Supporters are recruited once per phase."""
        service.apply({"rank": 2, "supporters": 10})
        dice.push(9, 4)
        controller.activity.perform_core_action("recruitSupporters")
        with pytest.raises(ActionBudgetError):
            controller.activity.perform_core_action("recruitSupporters")

    def test_recruitment_capped_by_population(self, service, controller, dice):
        """Recruiting never takes more people than exist."""
        service.apply({"population": 2})
        dice.push(15, 6)
        controller.activity.perform_core_action("recruitSupporters")
        state = service.get()
        assert state.supporters == 2
        assert state.population == 0

    def test_core_acts_once(self, service, controller, dice):
        """The Silver Ravens act at most once per week, even with actions to spare."""
        service.apply({"rank": 2, "supporters": 10})
        dice.push(20, 2)
        controller.activity.perform_core_action("lieLow")
        with pytest.raises(ActionBudgetError, match="already acted this week"):
            controller.activity.perform_core_action("lieLow")
        state = service.get()
        assert state.actions_used_this_week == 1
        assert get_actions_remaining(state) == 1
        assert dice.remaining == 0

    def test_guarantee(self, service, controller):
        """Guaranteeing an event sets the chance to 100."""
        controller.activity.perform_core_action("guarantee")
        state = service.get()
        assert get_event_chance(state) == 100
        assert state.silver_ravens_action == "guarantee"

    def test_lie_low(self, service, controller, dice):
        """Lying low sheds notoriety and the Inquisition."""
        service.apply({"notoriety": 10, "events": [
            {"name": "Inquisition", "weekStarted": 1, "isPersistent": True},
        ]})
        dice.push(20, 2)
        controller.activity.perform_core_action("lieLow")
        state = service.get()
        assert state.notoriety == 8
        assert state.events == []

    def test_change_officer(self, service, controller):
        """changeOfficer replaces the holder of a role."""
        service.apply({"officers": [{"role": "demagogue", "actorId": "pc-2"}]})
        controller.activity.perform_core_action("changeOfficer", role="demagogue", actor_id="pc-1")
        officers = service.get().officers
        assert len(officers) == 1
        assert officers[0].actor_id == "pc-1"

    def test_team_action_not_core(self, controller):
        """The Silver Ravens cannot earn gold."""
        with pytest.raises(CapabilityError):
            controller.activity.perform_core_action("earnGold")

    def test_action_resolved_emitted(self, controller, bus):
        """Resolved actions are announced on the bus."""
        controller.activity.perform_core_action("special", text="Bribe the guard captain")
        events = bus.get_history(EventType.ACTION_RESOLVED)
        assert events[0].data["action"] == "special"


class TestTeamManagement:
    """Test hiring, upgrading, dismissing and restoring."""

    def test_hire(self, service, controller, dice):
        """A successful hire check adds the team."""
        dice.push(10)
        outcome = controller.activity.hire_team("streetPerformers", manager="pc-1")
        state = service.get()
        assert outcome.team_index == 0
        assert state.teams[0].type == "streetPerformers"
        assert state.teams[0].manager == "pc-1"
        assert state.actions_used_this_week == 1

    def test_hire_natural_one_fails(self, service, controller, dice):
        """A natural 1 never hires."""
        service.apply({"tempBonuses": {"secrecy": 20}})
        dice.push(1)
        outcome = controller.activity.hire_team("streetPerformers")
        assert outcome.degree is Degree.CRITICAL_FAILURE
        assert service.get().teams == []

    def test_hire_unique_without_roll(self, service, controller, dice):
        """Unique teams join without a check."""
        controller.activity.hire_team("fushiSisters")
        assert service.get().teams[0].type == "fushiSisters"
        assert dice.history == []

    def test_hire_unknown_type(self, controller):
        """Unknown team types cannot be hired."""
        with pytest.raises(UnknownTeamTypeError):
            controller.activity.hire_team("dragons")

    def test_hire_upgrade_tier(self, controller):
        """Higher tiers are reached by upgrading."""
        with pytest.raises(CapabilityError):
            controller.activity.hire_team("rumormongers")

    def test_hire_team_limit(self, service, controller):
        """Rank 1 supports two teams."""
        _with_teams(service, "peddlers", "sneaks")
        with pytest.raises(ActionBudgetError):
            controller.activity.hire_team("streetPerformers")

    def test_upgrade(self, service, controller):
        """Upgrading changes the type and costs gold."""
        _with_teams(service, "streetPerformers")
        controller.activity.upgrade_team(0, "rumormongers")
        state = service.get()
        assert state.teams[0].type == "rumormongers"
        assert state.treasury == 2

    def test_upgrade_unaffordable(self, service, controller):
        """Upgrades need the gold up front."""
        _with_teams(service, "streetPerformers", treasury=5)
        with pytest.raises(RejectedOperationError):
            controller.activity.upgrade_team(0, "rumormongers")

    def test_upgrade_wrong_path(self, service, controller):
        """Upgrades follow the tier tree."""
        _with_teams(service, "streetPerformers")
        with pytest.raises(CapabilityError):
            controller.activity.upgrade_team(0, "thieves")

    def test_dismiss(self, service, controller, dice):
        """A clean dismissal removes the team."""
        _with_teams(service, "peddlers", "sneaks")
        dice.push(8)
        controller.activity.dismiss_team(0)
        state = service.get()
        assert [t.type for t in state.teams] == ["sneaks"]
        assert state.notoriety == 0

    def test_dismiss_badly(self, service, controller, dice):
        """A failed dismissal leaks: +1d6 notoriety."""
        _with_teams(service, "peddlers")
        dice.push(2, 3)
        controller.activity.dismiss_team(0)
        state = service.get()
        assert state.teams == []
        assert state.notoriety == 3

    def test_restore(self, service, controller):
        """Restoring a disabled team spends no action."""
        service.apply({"teams": [{"type": "peddlers", "disabled": True}]})
        controller.activity.restore_team(0)
        state = service.get()
        assert state.teams[0].disabled is False
        assert state.actions_used_this_week == 0

    def test_restore_operational_team(self, service, controller):
        """Only disabled teams can be restored."""
        _with_teams(service, "peddlers")
        with pytest.raises(CapabilityError):
            controller.activity.restore_team(0)


class TestManticceBonus:
    """Test the queen's bonus earnGold action."""

    def test_bonus_action(self, service, controller, dice):
        """The favorite's trader earns gold without spending an action."""
        service.apply({
            "teams": [{"type": "peddlers", "manager": "pc-1"}],
            "allies": [{"slug": "manticce", "favoritePlayer": "pc-1"}],
        })
        dice.push(12)
        controller.activity.use_manticce_bonus(0)
        state = service.get()
        assert state.manticce_bonus_used_this_week is True
        assert state.actions_used_this_week == 0
        assert state.treasury == pytest.approx(11.4)
        assert get_actions_remaining(state) == 1
        with pytest.raises(CapabilityError):
            controller.activity.use_manticce_bonus(0)

    def test_other_manager(self, service, controller):
        """Only teams managed by the favorite qualify."""
        service.apply({
            "teams": [{"type": "peddlers", "manager": "pc-2"}],
            "allies": [{"slug": "manticce", "favoritePlayer": "pc-1"}],
        })
        with pytest.raises(CapabilityError):
            controller.activity.use_manticce_bonus(0)
