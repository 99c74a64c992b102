"""角色名解析：把抽取结果中的别名、称谓形式统一为规范名。"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

from lorekeeper.models.event import (
    CharacterAppearedEvent,
    Event,
    NarrativeDescriptionEvent,
    RelationshipStatusChangedEvent,
    RelationshipSubjectEvent,
    is_character_event,
    is_directional_relationship_event,
)
from lorekeeper.models.snapshot import Snapshot, sort_pair

logger = logging.getLogger(__name__)

TITLES = (
    "mr", "mrs", "ms", "miss", "mx", "dr", "doctor", "prof", "professor", "sir", "lady", "lord",
    "dame", "madam", "madame", "captain", "capt", "officer", "detective", "agent", "father",
    "sister", "brother", "king", "queen", "prince", "princess",
)

_TITLE_RE = re.compile(r"^(?:(?:%s)\.?\s+)+" % "|".join(TITLES), re.IGNORECASE)


def strip_titles(name: str) -> str:
    """去掉名字前缀的称谓（Dr. / Captain 等）。"""
    return _TITLE_RE.sub("", name.strip()).strip()


def build_aka_lookup(snapshot: Snapshot, extra_names: Iterable[str] = ()) -> dict[str, str]:
    """小写别名 -> 规范名。

    依次收录：规范名、已知别名、去称谓形式、唯一的名（first name）。
    先收录的映射不会被后收录的覆盖；有歧义的名不收录。
    """
    lookup: dict[str, str] = {}
    canonical = [state.name for state in snapshot.characters.values()]
    canonical += [n for n in extra_names if n]

    def put(alias: str, name: str) -> None:
        key = alias.strip().lower()
        if key and key not in lookup:
            lookup[key] = name

    for name in canonical:
        put(name, name)
    for state in snapshot.characters.values():
        for aka in state.akas:
            put(aka, state.name)
    for name in canonical:
        put(strip_titles(name), name)

    first_names: dict[str, set[str]] = {}
    for name in canonical:
        parts = strip_titles(name).split()
        if len(parts) > 1:
            first_names.setdefault(parts[0].lower(), set()).add(name)
    for first, owners in first_names.items():
        if len(owners) == 1:
            put(first, next(iter(owners)))
    return lookup


def resolve_character_name(name: str, lookup: dict[str, str]) -> str | None:
    key = name.strip().lower()
    if key in lookup:
        return lookup[key]
    stripped = strip_titles(name).lower()
    if stripped in lookup:
        return lookup[stripped]
    return None


def resolve_names_in_events(
    events: Sequence[Event],
    snapshot: Snapshot,
    extra_names: Iterable[str] = (),
) -> tuple[list[Event], list[str]]:
    """返回 (解析后的事件, 无法解析的名字)。

    解析后的事件是同 ID 的副本；本批次中新登场的角色视为已知。
    """
    lookup = build_aka_lookup(snapshot, extra_names)
    for event in events:
        if isinstance(event, CharacterAppearedEvent):
            lookup.setdefault(event.character.strip().lower(), event.character.strip())

    unresolved: list[str] = []

    def resolve(name: str) -> str:
        resolved = resolve_character_name(name, lookup)
        if resolved is None:
            if name not in unresolved:
                unresolved.append(name)
            return name
        return resolved

    out: list[Event] = []
    for event in events:
        update: dict = {}
        if is_character_event(event):
            update["character"] = resolve(event.character)
        elif is_directional_relationship_event(event):
            update["from_character"] = resolve(event.from_character)
            update["toward_character"] = resolve(event.toward_character)
        elif isinstance(event, (RelationshipSubjectEvent, RelationshipStatusChangedEvent)):
            update["pair"] = sort_pair(resolve(event.pair[0]), resolve(event.pair[1]))
        elif isinstance(event, NarrativeDescriptionEvent):
            update["witnesses"] = [resolve(w) for w in event.witnesses]
        out.append(event.model_copy(update=update) if update else event)

    if unresolved:
        logger.warning("无法解析的角色名，保持原样: %s", ", ".join(unresolved))
    return out, unresolved
