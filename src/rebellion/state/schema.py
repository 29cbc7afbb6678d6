"""
Pydantic models for the rebellion state document.

The whole organization is one JSON document. Stored documents use camelCase
keys; the models expose snake_case attributes and always dump by alias so a
saved snapshot stays readable by older and newer versions alike.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class CheckType(str, Enum):
    LOYALTY = "loyalty"
    SECURITY = "security"
    SECRECY = "secrecy"


class OfficerRole(str, Enum):
    DEMAGOGUE = "demagogue"      # Con/Cha to loyalty
    PARTISAN = "partisan"        # Str/Wis to security
    RECRUITER = "recruiter"      # Level to recruitment rolls
    SENTINEL = "sentinel"        # +1 to two chosen checks
    SPYMASTER = "spymaster"      # Dex/Int to secrecy
    STRATEGIST = "strategist"    # +1 action per week


class CacheSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class WeekPhase(str, Enum):
    """Weekly phases, always run in this order."""
    ACTIVITY = "activity"
    EVENT = "event"
    MAINTENANCE = "maintenance"


CHECK_NAMES: tuple[str, ...] = tuple(c.value for c in CheckType)


# -----------------------------------------------------------------------------
# Base
# -----------------------------------------------------------------------------

class DocumentModel(BaseModel):
    """Base for every model stored in the rebellion document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=False,
    )

    def to_document(self) -> dict[str, Any]:
        """Dump to the camelCase JSON shape used on disk and over the wire."""
        return self.model_dump(by_alias=True, mode="json")


def _blank_to_none(value: Any) -> Any:
    if value == "":
        return None
    return value


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------

class OfficerAssignment(DocumentModel):
    """One officer slot. Roles are unique per organization."""

    role: OfficerRole
    actor_id: str | None = None
    selected_checks: list[CheckType] = Field(default_factory=list)
    selected_attribute: str | None = None
    disabled: bool = False
    missing: bool = False
    captured: bool = False

    @field_validator("actor_id", "selected_attribute", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @property
    def is_eligible(self) -> bool:
        return not (self.disabled or self.missing or self.captured)


class Team(DocumentModel):
    """
    A hired team. Its position in the team list is its identity.

    disabled = temporarily inoperative, recoverable (by gold or automatically
    when can_auto_recover is set); missing = returns on its own during
    maintenance; removal is permanent.
    """

    type: str = "streetPerformers"
    manager: str = ""
    bonus: int = 0
    disabled: bool = False
    missing: bool = False
    can_auto_recover: bool = False
    current_action: str = ""
    blocked_by_rivalry: bool = False
    has_acted: bool = False

    @field_validator("manager", "current_action", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_operational(self) -> bool:
        return not self.disabled and not self.missing


class AllyState(DocumentModel):
    slug: str
    enabled: bool = True
    missing: bool = False
    captured: bool = False
    actor_id: str | None = None
    selected_attribute: str | None = None
    selected_bonus: CheckType | None = None
    revealed: bool = False
    favorite_player: str | None = None
    reroll_used_this_week: bool = False
    missing_week: int | None = None

    @field_validator("actor_id", "selected_attribute", "selected_bonus", "favorite_player", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @property
    def is_eligible(self) -> bool:
        """Enabled and neither missing nor captured."""
        return self.enabled and not self.missing and not self.captured


class ActiveEvent(DocumentModel):
    """
    A time-scoped effect instance.

    Active at week W iff week_started <= W and the event is persistent or
    W - week_started < duration. No duration and no persistence means the
    event lasts exactly its starting week.
    """

    name: str
    week_started: int = 0
    duration: int | None = None
    is_persistent: bool = False

    # Mitigation
    mitigate: str | None = None
    dc: int | None = None
    mitigated: bool = False

    # Danger payloads
    danger_reduction: int = 0
    danger_increase: int = 0

    # Generic modifiers
    is_custom_modifier: bool = False
    modifier_value: int = 0
    affected_checks: list[str] = Field(default_factory=list)

    # Action effects
    is_action_effect: bool = False
    social_bonus: int = 0
    knowledge_bonus: int = 0
    security_bonus: int = 0
    guarantee_event: bool = False
    allow_event_reroll: bool = False

    # Rivalry / traitor / persuasion
    affected_teams: list[str] = Field(default_factory=list)
    is_permanent: bool = False
    needs_secrecy_check: bool = False
    supporters_bonus: int = 0
    needs_supporters_collection: bool = False
    team_index: int | None = None

    @field_validator("week_started", mode="before")
    @classmethod
    def _week_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    def is_active(self, week: int) -> bool:
        if self.week_started > week:
            return False
        if self.is_persistent:
            return True
        duration = 1 if self.duration is None else self.duration
        return week - self.week_started < duration


class Cache(DocumentModel):
    size: CacheSize = CacheSize.SMALL
    week_created: int = 0
    source: str = ""
    contents: str = ""


class MonthlyAction(DocumentModel):
    last_used_week: int


class MaintenanceSettings(DocumentModel):
    # "rank{N}" -> minimum treasury override
    min_treasury: dict[str, int] = Field(default_factory=dict)


def _zero_bonuses() -> dict[str, int]:
    return {name: 0 for name in CHECK_NAMES}


# -----------------------------------------------------------------------------
# Root document
# -----------------------------------------------------------------------------

class OrganizationState(DocumentModel):
    """
    The singleton rebellion snapshot.

    Invariants enforced at mutation time by the state service:
    rank never decreases, notoriety stays in [0, 100], supporters,
    population and treasury never go negative.
    """

    week: int = 1
    rank: int = 1
    max_rank: int = 20
    supporters: int = 0
    population: int = 11900
    treasury: float = 10
    notoriety: int = 0
    danger: int = 20
    focus: CheckType = CheckType.LOYALTY
    phase: WeekPhase = WeekPhase.ACTIVITY
    phase_report: str = ""
    party_level: int = 1

    weeks_without_event: int = 0
    actions_used_this_week: int = 0
    strategist_used: bool = False
    recruited_this_phase: bool = False
    manticce_bonus_used_this_week: bool = False
    silver_ravens_action: str = ""

    temp_bonuses: dict[str, int] = Field(default_factory=_zero_bonuses)

    officers: list[OfficerAssignment] = Field(default_factory=list)
    teams: list[Team] = Field(default_factory=list)
    allies: list[AllyState] = Field(default_factory=list)
    events: list[ActiveEvent] = Field(default_factory=list)
    active_events: list[ActiveEvent] = Field(default_factory=list)
    caches: list[Cache] = Field(default_factory=list)

    custom_gifts: dict[str, Any] = Field(default_factory=dict)
    monthly_actions: dict[str, MonthlyAction] = Field(default_factory=dict)
    events_this_phase: list[str] = Field(default_factory=list)
    maintenance_settings: MaintenanceSettings = Field(default_factory=MaintenanceSettings)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_ally(self, slug: str) -> AllyState | None:
        for ally in self.allies:
            if ally.slug == slug:
                return ally
        return None

    def ally_index(self, slug: str) -> int | None:
        for i, ally in enumerate(self.allies):
            if ally.slug == slug:
                return i
        return None

    def find_officer(self, role: OfficerRole) -> OfficerAssignment | None:
        for officer in self.officers:
            if officer.role == role:
                return officer
        return None

    def active_event_list(self) -> list[ActiveEvent]:
        """Events active at the current week."""
        return [e for e in self.events if e.is_active(self.week)]


def default_document() -> dict[str, Any]:
    """Fresh defaults as a document, used under every stored partial."""
    return OrganizationState().to_document()
