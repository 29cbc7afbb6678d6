"""Tests for earn income."""

import pytest

from rebellion.systems.income import (
    Proficiency,
    calculate_earn_income,
    earn_income_dc,
    earn_income_modifier,
    format_income,
    team_proficiency,
)
from rebellion.tools.dice import Degree


class TestEarnIncome:
    """Test income by degree of success."""

    def test_success_pays_proficiency_column(self):
        """A level 5 rank 2 team succeeding earns the expert rate."""
        result = calculate_earn_income(5, 2, 25, 20)
        assert result.degree is Degree.SUCCESS
        assert result.proficiency is Proficiency.EXPERT
        assert result.income == 700
        assert result.gold == 7.0

    def test_critical_success_pays_next_level(self):
        """A critical success pays at the next level's rate."""
        assert calculate_earn_income(5, 2, 30, 20).income == 1400

    def test_critical_success_at_level_twenty(self):
        """Level 20 critical successes use the extra row."""
        assert calculate_earn_income(20, 1, 50, 40).income == 35000

    def test_failure_column(self):
        """A failure pays the failure column."""
        assert calculate_earn_income(5, 2, 15, 20).income == 140

    def test_critical_failure_pays_nothing(self):
        """A critical failure earns nothing."""
        assert calculate_earn_income(5, 2, 10, 20).income == 0

    @pytest.mark.parametrize("team_rank,proficiency", [
        (1, Proficiency.TRAINED),
        (2, Proficiency.EXPERT),
        (3, Proficiency.MASTER),
    ])
    def test_team_proficiency(self, team_rank, proficiency):
        """Team tier sets proficiency."""
        assert team_proficiency(team_rank) is proficiency

    def test_modifier(self):
        """Half the rebellion rank, rounded up, plus the proficiency bonus."""
        assert earn_income_modifier(3, 1) == 4
        assert earn_income_modifier(4, 3) == 8

    def test_dc_by_level(self):
        """DCs come from the table, clamped to its levels."""
        assert earn_income_dc(1) == 15
        assert earn_income_dc(25) == 40
        assert earn_income_dc(-2) == 14


class TestFormatIncome:
    """Test copper formatting."""

    @pytest.mark.parametrize("copper,text", [(0, "0 cp"), (700, "7 gp"), (1234, "12 gp 3 sp 4 cp"), (5, "5 cp")])
    def test_format(self, copper, text):
        """Zero parts are skipped."""
        assert format_income(copper) == text
