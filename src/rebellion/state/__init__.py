"""State management for the rebellion tracker."""

from .schema import (
    ActiveEvent,
    AllyState,
    Cache,
    CacheSize,
    CheckType,
    CHECK_NAMES,
    MonthlyAction,
    OfficerAssignment,
    OfficerRole,
    OrganizationState,
    Team,
    WeekPhase,
    default_document,
)
from .store import RebellionStore, JsonRebellionStore, MemoryRebellionStore
from .merge import MergeError, Slots, SlotShape, deep_merge, merge_document, normalize_document
from .channel import (
    LocalChannel,
    MessageError,
    PayloadMessage,
    UpdateChannel,
    UpdateMessage,
    parse_message,
)
from .service import NotAuthorityError, StateService
from .pending import PendingRoll, PendingRollRegistry, match_mitigation
from .event_bus import (
    BusEvent,
    EventBus,
    EventType,
    get_event_bus,
    reset_event_bus,
)

__all__ = [
    # Schema
    "ActiveEvent",
    "AllyState",
    "Cache",
    "CacheSize",
    "CheckType",
    "CHECK_NAMES",
    "MonthlyAction",
    "OfficerAssignment",
    "OfficerRole",
    "OrganizationState",
    "Team",
    "WeekPhase",
    "default_document",
    # Store
    "RebellionStore",
    "JsonRebellionStore",
    "MemoryRebellionStore",
    # Merge
    "MergeError",
    "Slots",
    "SlotShape",
    "deep_merge",
    "merge_document",
    "normalize_document",
    # Channel
    "LocalChannel",
    "MessageError",
    "PayloadMessage",
    "UpdateChannel",
    "UpdateMessage",
    "parse_message",
    # Service
    "NotAuthorityError",
    "StateService",
    # Pending rolls
    "PendingRoll",
    "PendingRollRegistry",
    "match_mitigation",
    # Events
    "BusEvent",
    "EventBus",
    "EventType",
    "get_event_bus",
    "reset_event_bus",
]
