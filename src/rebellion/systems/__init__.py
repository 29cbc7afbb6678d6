"""
Rules systems for the rebellion tracker.

Catalogs (tables, teams, allies, officers, events) are plain data. The
aggregator and resolver are pure over a state snapshot. The phase
controller and its subsystems mutate state through the state service.
"""

from .bonuses import (
    BonusPart,
    CheckBonus,
    RollBonuses,
    calculate_rank,
    get_actions_remaining,
    get_effective_danger,
    get_event_chance,
    get_min_treasury,
    get_roll_bonuses,
    is_event_active,
    is_treasury_low,
    safehouse_bonus,
)
from .rolls import (
    CheckResult,
    NotorietyVariant,
    PercentileResult,
    RerollUnavailableError,
    RollResolver,
    is_noticed,
)
from .income import IncomeResult, Proficiency, calculate_earn_income
from .officers import ActorDirectory, ActorInfo, StaticActorDirectory
from .events import EventKind, canonical_event_name, lookup_event
from .teams import TEAMS, get_definition, is_known_type
from .allies import ALLIES, get_ally
from .phases import (
    PhaseController,
    PhaseError,
    InvalidPhaseError,
    RejectedOperationError,
    WeekReport,
)
from .activity import ActionOutcome, ActivitySystem
from .event_phase import EventResolution, EventRoll, EventSystem, TraitorChoice
from .maintenance import MaintenanceReport, MaintenanceSystem

__all__ = [
    # Modifier aggregator
    "BonusPart",
    "CheckBonus",
    "RollBonuses",
    "calculate_rank",
    "get_actions_remaining",
    "get_effective_danger",
    "get_event_chance",
    "get_min_treasury",
    "get_roll_bonuses",
    "is_event_active",
    "is_treasury_low",
    "safehouse_bonus",
    # Roll resolver
    "CheckResult",
    "NotorietyVariant",
    "PercentileResult",
    "RerollUnavailableError",
    "RollResolver",
    "is_noticed",
    "IncomeResult",
    "Proficiency",
    "calculate_earn_income",
    # Registries
    "ActorDirectory",
    "ActorInfo",
    "StaticActorDirectory",
    "EventKind",
    "canonical_event_name",
    "lookup_event",
    "TEAMS",
    "get_definition",
    "is_known_type",
    "ALLIES",
    "get_ally",
    # Weekly cycle
    "PhaseController",
    "PhaseError",
    "InvalidPhaseError",
    "RejectedOperationError",
    "WeekReport",
    "ActionOutcome",
    "ActivitySystem",
    "EventResolution",
    "EventRoll",
    "EventSystem",
    "TraitorChoice",
    "MaintenanceReport",
    "MaintenanceSystem",
]
