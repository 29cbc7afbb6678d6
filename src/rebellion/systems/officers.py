"""
Officer roles and the actor directory they read from.

Officers are characters (or allies bound to characters) filling one of six
roles. The bonus an officer contributes is derived from the character's
ability modifiers, which live outside the rebellion document and are looked
up through an ActorDirectory.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..state.schema import CheckType, OfficerAssignment, OfficerRole, OrganizationState


@dataclass(frozen=True)
class RoleDefinition:
    label: str
    abilities: tuple[str, ...] = ()
    target: CheckType | None = None


OFFICER_ROLES: dict[OfficerRole, RoleDefinition] = {
    OfficerRole.DEMAGOGUE: RoleDefinition("Demagogue", ("con", "cha"), CheckType.LOYALTY),
    OfficerRole.PARTISAN: RoleDefinition("Partisan", ("str", "wis"), CheckType.SECURITY),
    OfficerRole.SPYMASTER: RoleDefinition("Spymaster", ("dex", "int"), CheckType.SECRECY),
    OfficerRole.RECRUITER: RoleDefinition("Recruiter"),
    OfficerRole.SENTINEL: RoleDefinition("Sentinel"),
    OfficerRole.STRATEGIST: RoleDefinition("Strategist"),
}


# -----------------------------------------------------------------------------
# Actor directory
# -----------------------------------------------------------------------------

@dataclass
class ActorInfo:
    """A character as far as the rebellion cares: level and ability modifiers."""
    id: str
    name: str = ""
    level: int = 1
    abilities: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ActorInfo":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            level=int(data.get("level", 1) or 1),
            abilities={k: int(v) for k, v in (data.get("abilities") or {}).items()},
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "level": self.level, "abilities": dict(self.abilities)}


@runtime_checkable
class ActorDirectory(Protocol):
    def get(self, actor_id: str) -> ActorInfo | None:
        ...


class StaticActorDirectory:
    """In-memory directory, filled from config or a JSON file."""

    def __init__(self, actors: list[ActorInfo] | None = None):
        self._actors: dict[str, ActorInfo] = {}
        for actor in actors or []:
            self.add(actor)

    def add(self, actor: ActorInfo) -> None:
        self._actors[actor.id] = actor

    def get(self, actor_id: str) -> ActorInfo | None:
        return self._actors.get(actor_id)

    def __len__(self) -> int:
        return len(self._actors)

    @classmethod
    def from_dicts(cls, items: list[dict]) -> "StaticActorDirectory":
        return cls([ActorInfo.from_dict(item) for item in items])


# -----------------------------------------------------------------------------
# Officer values
# -----------------------------------------------------------------------------

def resolve_actor(
    officer: OfficerAssignment,
    state: OrganizationState,
    actors: ActorDirectory | None,
) -> tuple[ActorInfo | None, str | None]:
    """
    Actor behind an officer slot, plus the attribute to restrict to.

    An actor id naming an ally slug means "the character bound to that
    ally"; the ally's own selected attribute then applies.
    """
    if not officer.actor_id or actors is None:
        return None, officer.selected_attribute
    ally = state.find_ally(officer.actor_id)
    if ally is not None:
        if not ally.actor_id:
            return None, None
        return actors.get(ally.actor_id), ally.selected_attribute or officer.selected_attribute
    return actors.get(officer.actor_id), officer.selected_attribute


def officer_value(
    officer: OfficerAssignment,
    state: OrganizationState,
    actors: ActorDirectory | None,
) -> int:
    """Numeric contribution of one officer; 0 when it cannot be resolved."""
    role = OFFICER_ROLES[officer.role]
    if officer.role == OfficerRole.RECRUITER:
        actor, _ = resolve_actor(officer, state, actors)
        return actor.level if actor is not None else (1 if officer.actor_id else 0)
    if not role.abilities:
        return 0
    actor, attribute = resolve_actor(officer, state, actors)
    if actor is None:
        return 0
    if attribute and attribute in role.abilities:
        return actor.abilities.get(attribute, 0)
    return max(actor.abilities.get(a, 0) for a in role.abilities)


def officer_name(
    officer: OfficerAssignment,
    state: OrganizationState,
    actors: ActorDirectory | None,
) -> str:
    actor, _ = resolve_actor(officer, state, actors)
    if actor is not None and actor.name:
        return actor.name
    return "NPC"


def eligible_officers(state: OrganizationState, role: OfficerRole) -> list[OfficerAssignment]:
    """Officers able to contribute for a role, in registration order."""
    result = []
    for officer in state.officers:
        if officer.role != role or not officer.is_eligible:
            continue
        if role != OfficerRole.SENTINEL and not officer.actor_id:
            continue
        result.append(officer)
    return result


def best_officers(
    state: OrganizationState,
    actors: ActorDirectory | None = None,
) -> dict[OfficerRole, tuple[OfficerAssignment, int]]:
    """
    Highest-valued officer per role. Ties go to the officer registered
    first.
    """
    best: dict[OfficerRole, tuple[OfficerAssignment, int]] = {}
    for role in OfficerRole:
        for officer in eligible_officers(state, role):
            value = officer_value(officer, state, actors)
            current = best.get(role)
            if current is None or value > current[1]:
                best[role] = (officer, value)
    return best
