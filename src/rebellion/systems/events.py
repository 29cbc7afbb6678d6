"""
Event catalog.

Events are stored by name on the document. Each known name maps to an
EventKind; the kind selects the roll-bonus and danger effects applied while
the event is active. Unknown names are kept as-is and only the generic
custom-modifier fields apply to them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..state.schema import ActiveEvent, CheckType


class EventKind(str, Enum):
    # Positive
    WEEK_OF_SECRECY = "Week of Secrecy"
    SUCCESSFUL_PROTEST = "Successful Protest"
    REDUCED_THREAT = "Reduced Threat"
    DONATION = "Donation"
    SUPPORT_GROWS = "Support Grows"
    MARKET_BOOM = "Market Boom"
    ALL_QUIET = "All Quiet"

    # Negative
    ROLL_TWICE = "Roll Twice"
    INFORMANT = "Informant"
    RIVALRY = "Rivalry"
    DANGEROUS_TIMES = "Dangerous Times"
    MISSING = "Missing"
    CACHE_DISCOVERED = "Cache Discovered"
    INCREASED_PATROLS = "Increased Patrols"
    LOW_MORALE = "Low Morale"
    SICKNESS = "Sickness"
    DISABLED_TEAM = "Disabled Team"
    DISCORD = "Discord in the Ranks"
    INVASION = "Invasion"
    FAILED_PROTEST = "Failed Protest"
    ALLY_IN_DANGER = "Ally in Danger"
    CATASTROPHIC_MISSION = "Catastrophic Mission"
    TRAITOR = "Traitor"
    DEVIL_INFILTRATION = "Devil Infiltration"
    INQUISITION = "Inquisition"

    # Effects created by actions and follow-ups
    GUARANTEED_EVENT = "Guaranteed Event"
    MANIPULATE_EVENTS = "Manipulate Events"
    REDUCED_DANGER_ACTION = "Reduced Danger (action)"
    URBAN_INFLUENCE = "Urban Influence"
    GATHERED_INFORMATION = "Gathered Information"
    TRAITOR_IN_PRISON = "Traitor in Prison"
    PERSUASION_BONUS = "Persuasion Bonus"
    SAFEHOUSE = "Safehouse"


SAFEHOUSE_PREFIX = "Safehouse:"
LEGACY_SAFEHOUSE_PREFIX = "Убежище:"


@dataclass(frozen=True)
class EventDefinition:
    kind: EventKind
    low: int
    high: int
    positive: bool = False
    persistent: bool = False
    mitigate: str | None = None
    dc: int | None = None
    dynamic_dc: bool = False
    description: str = ""


K = EventKind

EVENT_TABLE: tuple[EventDefinition, ...] = (
    EventDefinition(K.WEEK_OF_SECRECY, 1, 4, positive=True,
                    description="+6 to all checks this week."),
    EventDefinition(K.SUCCESSFUL_PROTEST, 5, 8, positive=True,
                    description="Gain 2d6 supporters."),
    EventDefinition(K.REDUCED_THREAT, 9, 14, positive=True,
                    description="Danger -10 next week."),
    EventDefinition(K.DONATION, 15, 20, positive=True,
                    description="Gain (d20 + loyalty) x 20 gp."),
    EventDefinition(K.SUPPORT_GROWS, 21, 28, positive=True,
                    description="Gain 2d6 supporters."),
    EventDefinition(K.MARKET_BOOM, 29, 38, positive=True,
                    description="Markets are flush this week."),
    EventDefinition(K.ALL_QUIET, 39, 48, positive=True,
                    description="+1 security; no event roll next week."),

    EventDefinition(K.ROLL_TWICE, 49, 51, description="Roll two more events."),
    EventDefinition(K.INFORMANT, 52, 59, description="Loyalty DC 15 or +1d6 notoriety."),
    EventDefinition(K.RIVALRY, 60, 63, persistent=True, mitigate="diplomacy", dc=20,
                    description="Two team types cannot act."),
    EventDefinition(K.DANGEROUS_TIMES, 64, 67, persistent=True, mitigate="intimidation", dc=20,
                    description="Danger +10 (+5 if mitigated)."),
    EventDefinition(K.MISSING, 68, 71, description="A team goes missing."),
    EventDefinition(K.CACHE_DISCOVERED, 72, 75, description="A cache is lost."),
    EventDefinition(K.INCREASED_PATROLS, 76, 79, persistent=True, mitigate="survival", dc=20,
                    description="Secrecy -4 (-2 if mitigated)."),
    EventDefinition(K.LOW_MORALE, 80, 83, persistent=True, mitigate="performance", dc=20,
                    description="Loyalty -4 (-2 if mitigated)."),
    EventDefinition(K.SICKNESS, 84, 87, persistent=True, mitigate="medicine", dc=20,
                    description="Security -4 (-2 if mitigated)."),
    EventDefinition(K.DISABLED_TEAM, 88, 91, description="A team is disabled."),
    EventDefinition(K.DISCORD, 92, 95, persistent=True, mitigate="diplomacy", dc=20,
                    description="All checks -4 (-2 if mitigated)."),
    EventDefinition(K.INVASION, 96, 99, description="The GM adjudicates an invasion."),
    EventDefinition(K.FAILED_PROTEST, 100, 103, description="Security DC 25 or lose supporters."),
    EventDefinition(K.ALLY_IN_DANGER, 104, 107, mitigate="security", dynamic_dc=True,
                    description="An ally goes missing or is captured."),
    EventDefinition(K.CATASTROPHIC_MISSION, 108, 111, mitigate="security", dc=20,
                    description="A team is disabled or destroyed."),
    EventDefinition(K.TRAITOR, 112, 115, mitigate="loyalty", dc=20,
                    description="A traitor is exposed."),
    EventDefinition(K.DEVIL_INFILTRATION, 116, 119, mitigate="perception", dc=20,
                    description="Notoriety rises each week."),
    EventDefinition(K.INQUISITION, 120, 999, persistent=True, mitigate="secrecy", dc=20,
                    description="Supporter losses double."),
)

DEFINITIONS: dict[EventKind, EventDefinition] = {d.kind: d for d in EVENT_TABLE}


def lookup_event(total: int) -> EventDefinition:
    """Table entry for a d100 + danger total; out-of-range totals clamp."""
    if total < EVENT_TABLE[0].low:
        return EVENT_TABLE[0]
    for definition in EVENT_TABLE:
        if definition.low <= total <= definition.high:
            return definition
    return DEFINITIONS[K.INQUISITION]


# -----------------------------------------------------------------------------
# Names
# -----------------------------------------------------------------------------

# Names stored by older campaign documents
LEGACY_NAMES: dict[str, EventKind] = {
    "Неделя Секретности": K.WEEK_OF_SECRECY,
    "Успешный протест": K.SUCCESSFUL_PROTEST,
    "Уменьшенная угроза": K.REDUCED_THREAT,
    "Пожертвование": K.DONATION,
    "Рост поддержки": K.SUPPORT_GROWS,
    "Рыночный бум": K.MARKET_BOOM,
    "Все спокойно": K.ALL_QUIET,
    "Бросьте дважды": K.ROLL_TWICE,
    "Стукач": K.INFORMANT,
    "Соперничество": K.RIVALRY,
    "Опасные времена": K.DANGEROUS_TIMES,
    "Пропавшие без вести": K.MISSING,
    "Тайник обнаружен": K.CACHE_DISCOVERED,
    "Усиленные патрули": K.INCREASED_PATROLS,
    "Низкий боевой дух": K.LOW_MORALE,
    "Болезнь": K.SICKNESS,
    "Недееспособная команда": K.DISABLED_TEAM,
    "Разлад в рядах": K.DISCORD,
    "Вторжение": K.INVASION,
    "Провальный протест": K.FAILED_PROTEST,
    "Союзник в опасности": K.ALLY_IN_DANGER,
    "Катастроф. миссия": K.CATASTROPHIC_MISSION,
    "Предатель": K.TRAITOR,
    "Дьявольское проникн.": K.DEVIL_INFILTRATION,
    "Инквизиция": K.INQUISITION,
    "Манипулирование событиями": K.MANIPULATE_EVENTS,
    "Предатель в тюрьме": K.TRAITOR_IN_PRISON,
    "Бонус от переубеждения": K.PERSUASION_BONUS,
    "Гарантированное событие": K.GUARANTEED_EVENT,
    "Городское влияние": K.URBAN_INFLUENCE,
    "Собранная информация": K.GATHERED_INFORMATION,
    "Сниженная опасность (действие)": K.REDUCED_DANGER_ACTION,
}

_CANONICAL = {k.value: k for k in EventKind if k is not K.SAFEHOUSE}


def canonical_event_name(name: str) -> str:
    """Repair a stored event name; unknown names pass through untouched."""
    if not isinstance(name, str):
        return name
    kind = LEGACY_NAMES.get(name)
    if kind is not None:
        return kind.value
    if name.startswith(LEGACY_SAFEHOUSE_PREFIX):
        return SAFEHOUSE_PREFIX + name[len(LEGACY_SAFEHOUSE_PREFIX):]
    return name


def event_kind(name: str) -> EventKind | None:
    if name in _CANONICAL:
        return _CANONICAL[name]
    if name in LEGACY_NAMES:
        return LEGACY_NAMES[name]
    if name.startswith(SAFEHOUSE_PREFIX) or name.startswith(LEGACY_SAFEHOUSE_PREFIX):
        return K.SAFEHOUSE
    return None


def safehouse_name(label: str) -> str:
    return f"{SAFEHOUSE_PREFIX} {label}"


# -----------------------------------------------------------------------------
# Effects
# -----------------------------------------------------------------------------

ALL_CHECKS = tuple(CheckType)

CheckEffect = Callable[[ActiveEvent, str | None], dict[CheckType, int]]
DangerEffect = Callable[[ActiveEvent], int]


def _penalty(*checks: CheckType) -> CheckEffect:
    def effect(event: ActiveEvent, context: str | None) -> dict[CheckType, int]:
        value = -2 if event.mitigated else -4
        return {c: value for c in checks}
    return effect


def _week_of_secrecy(event, context):
    return {c: 6 for c in ALL_CHECKS}


def _all_quiet(event, context):
    return {CheckType.SECURITY: 1}


def _urban_influence(event, context):
    return {CheckType.LOYALTY: event.social_bonus}


def _gathered_information(event, context):
    if context != "knowledge":
        return {}
    return {CheckType.SECRECY: event.knowledge_bonus}


CHECK_EFFECTS: dict[EventKind, CheckEffect] = {
    K.WEEK_OF_SECRECY: _week_of_secrecy,
    K.ALL_QUIET: _all_quiet,
    K.INCREASED_PATROLS: _penalty(CheckType.SECRECY),
    K.LOW_MORALE: _penalty(CheckType.LOYALTY),
    K.SICKNESS: _penalty(CheckType.SECURITY),
    K.DISCORD: _penalty(*ALL_CHECKS),
    K.URBAN_INFLUENCE: _urban_influence,
    K.GATHERED_INFORMATION: _gathered_information,
}


def custom_check_effect(event: ActiveEvent) -> dict[CheckType, int]:
    """Generic modifier: modifierValue to each named check."""
    if not event.is_custom_modifier or not event.modifier_value:
        return {}
    result = {}
    for name in event.affected_checks:
        if name in CheckType._value2member_map_:
            result[CheckType(name)] = event.modifier_value
    return result


def _reduction(event: ActiveEvent) -> int:
    return -event.danger_reduction


def _increase(event: ActiveEvent) -> int:
    return event.danger_increase


DANGER_EFFECTS: dict[EventKind, DangerEffect] = {
    K.REDUCED_THREAT: _reduction,
    K.REDUCED_DANGER_ACTION: _reduction,
    K.DANGEROUS_TIMES: _increase,
}


def custom_danger_effect(event: ActiveEvent) -> int:
    if event.is_custom_modifier and "danger" in event.affected_checks:
        return event.modifier_value
    return 0
