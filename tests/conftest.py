"""
Pytest fixtures for rebellion tracker tests.

Provides in-memory stores, an isolated event bus and scripted dice for
deterministic phase tests.
"""

import pytest
from pathlib import Path

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rebellion.state import EventBus, MemoryRebellionStore, StateService, reset_event_bus
from rebellion.systems.officers import ActorInfo, StaticActorDirectory
from rebellion.systems.phases import PhaseController


class ScriptedDice:
    """
    DiceRoller returning queued results in order.

    Once the script runs out, `default` is returned (or the roll fails the
    test when no default is set). Every roll is recorded in `history` as
    (sides, result).
    """

    def __init__(self, *results: int, default: int | None = None):
        self.results = list(results)
        self.default = default
        self.history: list[tuple[int, int]] = []

    def push(self, *results: int) -> "ScriptedDice":
        self.results.extend(results)
        return self

    def roll(self, sides: int) -> int:
        if self.results:
            value = self.results.pop(0)
        elif self.default is not None:
            value = min(self.default, sides)
        else:
            raise AssertionError(f"Unscripted d{sides} roll")
        assert 1 <= value <= sides, f"Scripted {value} does not fit a d{sides}"
        self.history.append((sides, value))
        return value

    @property
    def remaining(self) -> int:
        return len(self.results)


@pytest.fixture(autouse=True)
def fresh_global_bus():
    """Services built without a bus share the global one; reset it per test."""
    yield
    reset_event_bus()


@pytest.fixture
def memory_store():
    """In-memory rebellion store for testing."""
    return MemoryRebellionStore()


@pytest.fixture
def bus():
    """Event bus private to one test."""
    return EventBus()


@pytest.fixture
def service(memory_store, bus):
    """Authority state service over the memory store."""
    return StateService(memory_store, bus=bus)


@pytest.fixture
def dice():
    """Scripted dice; tests push the results they expect to be rolled."""
    return ScriptedDice()


@pytest.fixture
def actors():
    """Two player characters and one ally-bound character."""
    return StaticActorDirectory([
        ActorInfo("pc-1", "Ilsa", level=5, abilities={"cha": 4, "con": 1, "dex": 3, "int": 2, "str": 0, "wis": 2}),
        ActorInfo("pc-2", "Borin", level=7, abilities={"cha": 1, "con": 3, "dex": 1, "int": 0, "str": 4, "wis": 1}),
        ActorInfo("npc-jilia", "Jilia", level=9, abilities={"cha": 2, "dex": 5, "int": 3}),
    ])


@pytest.fixture
def controller(service, dice, actors):
    """Phase controller wired to the test service and scripted dice."""
    return PhaseController(service, dice, actors)
