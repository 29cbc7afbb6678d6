"""Tests for the weekly phase controller."""

import pytest

from rebellion.errors import RebellionError
from rebellion.state import EventType, WeekPhase
from rebellion.systems.phases import InvalidPhaseError, PhaseController


class TestTransitions:
    """Test the activity → event → maintenance state machine."""

    def test_initial_phase(self, controller):
        """A fresh rebellion starts in the activity phase."""
        assert controller.phase == WeekPhase.ACTIVITY

    def test_forward_transitions(self, controller, bus):
        """Phases advance in order and each change is announced."""
        controller.begin_event_phase()
        assert controller.phase == WeekPhase.EVENT
        controller.begin_maintenance()
        assert controller.phase == WeekPhase.MAINTENANCE
        phases = [e.data["phase"] for e in bus.get_history(EventType.PHASE_CHANGED)]
        assert phases == ["event", "maintenance"]

    def test_skipping_event_phase(self, controller):
        """Maintenance cannot start straight from activity."""
        with pytest.raises(InvalidPhaseError, match="Cannot transition to maintenance during activity phase."):
            controller.begin_maintenance()
        assert controller.phase == WeekPhase.ACTIVITY

    def test_no_backwards_transition(self, controller):
        """The event phase cannot be reopened from maintenance."""
        controller.begin_event_phase()
        controller.begin_maintenance()
        with pytest.raises(InvalidPhaseError):
            controller.begin_event_phase()

    def test_phase_error_is_rebellion_error(self, controller):
        """Phase errors share the package base error."""
        with pytest.raises(RebellionError):
            controller.run_maintenance()

    @pytest.mark.parametrize("operation,message", [
        ("run_event_phase", "Cannot roll for events during activity phase."),
        ("run_maintenance", "Cannot run maintenance during activity phase."),
        ("advance_week", "Cannot advance the week during activity phase."),
    ])
    def test_operations_check_phase(self, controller, operation, message):
        """Phase operations name the attempted operation and the current phase."""
        with pytest.raises(InvalidPhaseError) as info:
            getattr(controller, operation)()
        assert str(info.value) == message
        assert info.value.current == WeekPhase.ACTIVITY


class TestAdvanceWeek:
    """Test closing a week."""

    def test_advance(self, service, controller, bus):
        """The next week opens in the activity phase."""
        controller.begin_event_phase()
        controller.begin_maintenance()
        state = controller.advance_week()
        assert state.week == 2
        assert state.phase == WeekPhase.ACTIVITY
        assert bus.get_history(EventType.WEEK_ADVANCED)[0].week == 2

    def test_pending_rolls_cleared(self, controller):
        """Pending rolls do not survive into the next week."""
        controller.pending.register("traitor", team_index=0)
        controller.begin_event_phase()
        controller.begin_maintenance()
        controller.advance_week()
        assert "traitor" not in controller.pending


class TestRunWeek:
    """Test a full week with scripted dice."""

    def test_quiet_week(self, service, controller, dice):
        """No event, calm upkeep, then the next week."""
        dice.push(50, 8, 1)
        report = controller.run_week()
        assert report.week == 2
        assert not report.event.occurred
        assert report.maintenance.week == 1
        state = service.get()
        assert state.week == 2
        assert state.phase == WeekPhase.ACTIVITY
        assert state.weeks_without_event == 1
        assert dice.remaining == 0

    def test_all_quiet_carries_over(self, service, controller, dice):
        """All Quiet suppresses the following week's roll, then expires."""
        dice.push(20, 25, 8, 1)
        first = controller.run_week()
        assert first.event.resolution.name == "All Quiet"
        assert [e.name for e in service.get().events] == ["All Quiet"]

        dice.push(8, 1)
        second = controller.run_week()
        assert second.event.suppressed
        state = service.get()
        assert state.week == 3
        assert state.events == []

    def test_events_this_phase_cleared(self, service, controller, dice):
        """Drawn event names are a per-week record."""
        dice.push(20, 25, 8, 1)
        controller.run_week()
        assert service.get().events_this_phase == []

    def test_run_week_from_wrong_phase(self, controller):
        """A week can only be run from the activity phase."""
        controller.begin_event_phase()
        with pytest.raises(InvalidPhaseError):
            controller.run_week()


class TestSubsystems:
    """Test controller wiring."""

    def test_subsystems_cached(self, controller):
        """Each subsystem is created once."""
        assert controller.activity is controller.activity
        assert controller.events is controller.events
        assert controller.maintenance is controller.maintenance

    def test_bus_defaults_to_service_bus(self, service, dice):
        """Without an explicit bus the controller publishes on the service's."""
        assert PhaseController(service, dice).bus is service.bus

    def test_roll_expression(self, controller, dice):
        """Dice expressions roll through the controller's dice."""
        dice.push(2, 5)
        assert controller.roll("2d6+1") == 8
