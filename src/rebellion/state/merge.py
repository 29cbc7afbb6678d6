"""
Authority-side merge of partial state updates.

Concurrent editors send partial deltas keyed by collection index. The
authority folds them into the current document with the rules below so that
two editors touching different teams (or different fields of one team) do
not clobber each other.

Collection updates come in three explicit shapes (see Slots):
    DENSE   - a list. For teams it merges by position; for the other
              indexed collections it replaces the whole list.
    SPARSE  - an {index: update} mapping, merged into existing elements.
    EMPTY   - a list whose every slot is None; ignored.

Within a dense team list a None slot means "keep the current team", and a
list shorter than the current one is an authoritative deletion.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

from ..errors import RebellionError

logger = logging.getLogger(__name__)


INDEXED_COLLECTIONS: tuple[str, ...] = ("officers", "allies", "events", "activeEvents", "caches")
ALL_COLLECTIONS: tuple[str, ...] = ("teams",) + INDEXED_COLLECTIONS

DEFAULT_TEAM_TYPE = "streetPerformers"
UNKNOWN_TEAM_TYPE = "unknown"

# Structural team fields and the value a merged team falls back to
TEAM_BACKFILL: dict[str, Any] = {
    "type": DEFAULT_TEAM_TYPE,
    "manager": "",
    "bonus": 0,
    "disabled": False,
    "missing": False,
    "canAutoRecover": False,
    "currentAction": "",
}


# -----------------------------------------------------------------------------
# Slots
# -----------------------------------------------------------------------------

class MergeError(RebellionError):
    """A partial update has a collection the merge cannot interpret."""
    pass


class SlotShape(str, Enum):
    DENSE = "dense"
    SPARSE = "sparse"
    EMPTY = "empty"


def slot_index(key: Any) -> int:
    """Interpret a mapping key as a collection index."""
    if isinstance(key, bool):
        raise MergeError(f"Not a slot index: {key!r}")
    if isinstance(key, int) and key >= 0:
        return key
    if isinstance(key, str) and key.isdigit():
        return int(key)
    raise MergeError(f"Not a slot index: {key!r}")


@dataclass(frozen=True)
class Slots:
    """
    An ordered collection update with explicit slot semantics.

    entries holds (index, value) pairs in ascending index order. A value of
    None is an explicitly empty slot; an index missing from entries is an
    absent slot.
    """

    shape: SlotShape
    entries: tuple[tuple[int, Any], ...]
    length: int

    @classmethod
    def parse(cls, value: Any) -> "Slots":
        if isinstance(value, list):
            entries = tuple(enumerate(value))
            if value and all(item is None for item in value):
                return cls(SlotShape.EMPTY, entries, len(value))
            return cls(SlotShape.DENSE, entries, len(value))

        if isinstance(value, dict):
            indexed = sorted((slot_index(k), v) for k, v in value.items())
            length = indexed[-1][0] + 1 if indexed else 0
            return cls(SlotShape.SPARSE, tuple(indexed), length)

        raise MergeError(f"Collection update must be a list or mapping, got {type(value).__name__}")

    def values(self) -> list[Any]:
        return [v for _, v in self.entries]

    def shrinks(self, current_length: int) -> bool:
        """A dense list shorter than the current collection deletes entries."""
        return self.shape is SlotShape.DENSE and self.length < current_length


# -----------------------------------------------------------------------------
# Deep merge
# -----------------------------------------------------------------------------

def deep_merge(target: dict, source: dict) -> dict:
    """
    Recursively merge source into target (in place) and return target.

    Nested mappings merge key by key; anything else, lists included,
    overwrites.
    """
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def densify(value: Any, keep: Callable[[Any], bool] = lambda item: item is not None) -> list:
    """
    Coerce a collection into a dense, gap-free list.

    Sparse {index: item} mappings are ordered by index; empty slots are
    dropped.
    """
    if value is None:
        return []
    if isinstance(value, dict):
        items: Iterable[Any] = Slots.parse(value).values()
    elif isinstance(value, list):
        items = value
    else:
        raise TypeError(f"Cannot densify {type(value).__name__}")
    return [item for item in items if keep(item)]


# -----------------------------------------------------------------------------
# Teams
# -----------------------------------------------------------------------------

def _backfill_team(team: dict) -> dict:
    for key, default in TEAM_BACKFILL.items():
        if key == "manager":
            if team.get("manager") is None:
                team["manager"] = ""
        elif key in ("type", "currentAction", "bonus"):
            if not team.get(key):
                team[key] = default
        elif team.get(key) is None:
            team[key] = default
    return team


def _merge_team_at(current: dict | None, incoming: dict, is_known_type: Callable[[str], bool]) -> dict:
    """Positional merge: incoming wins except for type and manager rules."""
    team = copy.deepcopy(incoming)
    if current:
        if current.get("type") and not (team.get("type") and is_known_type(team["type"])):
            team["type"] = current["type"]
        if "manager" not in team and current.get("manager"):
            team["manager"] = current["manager"]
    return _backfill_team(team)


def merge_teams(
    current: list[dict],
    incoming: Any,
    is_known_type: Callable[[str], bool],
) -> list[dict]:
    """Apply a teams update to the current team list and return the result."""
    slots = Slots.parse(incoming)

    if slots.shrinks(len(current)):
        logger.debug("Team list shrank %d -> %d, replacing", len(current), slots.length)
        return [copy.deepcopy(t) for t in incoming if t is not None]

    if slots.shape is SlotShape.EMPTY:
        logger.debug("Ignoring team update with only empty slots")
        return current

    if slots.shape is SlotShape.DENSE:
        merged: list[dict | None] = []
        for i, update in slots.entries:
            existing = current[i] if i < len(current) else None
            if update is None:
                merged.append(copy.deepcopy(existing))
            else:
                merged.append(_merge_team_at(existing, update, is_known_type))
        return [t for t in merged if t is not None]

    # Sparse index -> update mapping
    result = [copy.deepcopy(t) for t in current]
    for i, update in slots.entries:
        if update is None:
            continue
        update = copy.deepcopy(update)
        if i < len(result) and result[i]:
            if not (update.get("type") and is_known_type(update["type"])):
                update["type"] = result[i].get("type", DEFAULT_TEAM_TYPE)
            deep_merge(result[i], update)
            for key in ("disabled", "missing", "canAutoRecover"):
                if result[i].get(key) is None:
                    result[i][key] = False
        else:
            if not (update.get("type") and is_known_type(update["type"])):
                update["type"] = UNKNOWN_TEAM_TYPE
            while len(result) < i:
                result.append(None)
            if i < len(result):
                result[i] = update
            else:
                result.append(update)
    return [t for t in result if t is not None]


# -----------------------------------------------------------------------------
# Indexed collections
# -----------------------------------------------------------------------------

def merge_indexed(current: list[dict], incoming: Any) -> list[dict]:
    """Sparse updates deep-merge per index; dense lists replace."""
    slots = Slots.parse(incoming)
    if slots.shape is not SlotShape.SPARSE:
        return [copy.deepcopy(v) for v in incoming if v is not None]

    result: list[Any] = [copy.deepcopy(v) for v in current]
    for i, update in slots.entries:
        if update is None:
            continue
        if i < len(result) and isinstance(result[i], dict):
            deep_merge(result[i], update)
        else:
            while len(result) <= i:
                result.append(None)
            result[i] = copy.deepcopy(update)
    return [v for v in result if v is not None]


# -----------------------------------------------------------------------------
# Whole document
# -----------------------------------------------------------------------------

def merge_document(
    current: dict,
    partial: dict,
    is_known_team_type: Callable[[str], bool],
) -> dict:
    """
    Fold a partial update into a copy of the current document.

    Order matters only for which rule claims a key: teams first, then the
    indexed collections, then monthlyActions, then a deep merge of the rest.
    """
    merged = copy.deepcopy(current)
    remaining = dict(partial)

    if remaining.get("teams") is not None:
        merged["teams"] = merge_teams(merged.get("teams") or [], remaining.pop("teams"), is_known_team_type)
    else:
        remaining.pop("teams", None)

    for key in INDEXED_COLLECTIONS:
        if key in remaining:
            update = remaining.pop(key)
            if update is None:
                continue
            merged[key] = merge_indexed(merged.get(key) or [], update)

    if isinstance(remaining.get("monthlyActions"), dict):
        merged.setdefault("monthlyActions", {})
        deep_merge(merged["monthlyActions"], remaining.pop("monthlyActions"))

    return deep_merge(merged, remaining)


def normalize_document(
    stored: dict | None,
    defaults: dict,
    valid_roles: Iterable[str],
    canonical_event_name: Callable[[str], str] | None = None,
) -> dict:
    """
    Repair a stored document into the current dense, fully defaulted shape.

    Legacy sparse {index: item} collections become gap-free lists, defaults
    are merged underneath, officers without a known role are dropped and
    event names are canonicalized. Runs on every read; drift is repaired,
    never reported.
    """
    data = copy.deepcopy(stored) if stored else {}

    for key in ALL_COLLECTIONS:
        if key in data:
            try:
                data[key] = densify(data[key])
            except (MergeError, TypeError):
                logger.warning("Discarding malformed %s collection", key)
                data[key] = []

    if not isinstance(data.get("monthlyActions"), dict):
        data["monthlyActions"] = {}

    document = deep_merge(copy.deepcopy(defaults), data)

    roles = set(valid_roles)
    document["officers"] = [
        o for o in document["officers"]
        if isinstance(o, dict) and o.get("role") in roles
    ]
    document["teams"] = [t for t in document["teams"] if isinstance(t, dict)]

    if canonical_event_name is not None:
        for key in ("events", "activeEvents"):
            for event in document[key]:
                if isinstance(event, dict) and isinstance(event.get("name"), str):
                    event["name"] = canonical_event_name(event["name"])

    return document
