"""投影折叠：把单个事件应用到快照上。

``fold_into`` 把事件原地折叠进快照，不做任何外部调用；调用方负责先复制快照。
每种事件只改动它所属的子结构；对不存在的条目执行 ``_removed`` 是空操作。
"""

from __future__ import annotations

import logging
from datetime import timedelta

from lorekeeper.models.event import (
    BaseEvent,
    ChapterDescribedEvent,
    ChapterEndedEvent,
    CharacterActivityChangedEvent,
    CharacterAkasAddedEvent,
    CharacterAppearedEvent,
    CharacterDepartedEvent,
    CharacterMoodAddedEvent,
    CharacterMoodRemovedEvent,
    CharacterOutfitChangedEvent,
    CharacterPhysicalAddedEvent,
    CharacterPhysicalRemovedEvent,
    CharacterPositionChangedEvent,
    ClimateSetEvent,
    ForecastGeneratedEvent,
    LocationMovedEvent,
    LocationPropAddedEvent,
    LocationPropRemovedEvent,
    NarrativeDescriptionEvent,
    RelationshipFeelingAddedEvent,
    RelationshipFeelingRemovedEvent,
    RelationshipSecretAddedEvent,
    RelationshipSecretRemovedEvent,
    RelationshipStatusChangedEvent,
    RelationshipSubjectEvent,
    RelationshipWantAddedEvent,
    RelationshipWantRemovedEvent,
    TensionEvent,
    TimeDeltaEvent,
    TimeInitialEvent,
    TopicToneEvent,
)
from lorekeeper.models.snapshot import (
    ChapterRecord,
    CharacterState,
    LocationState,
    NarrativeEventRecord,
    RelationshipAttitude,
    RelationshipState,
    SceneState,
    Snapshot,
    Tension,
    pair_key,
    sort_pair,
)
from lorekeeper.state.sets import add_ci, remove_ci

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────
# 子结构访问（按需创建）
# ──────────────────────────────────────────


def _location(snapshot: Snapshot) -> LocationState:
    if snapshot.location is None:
        snapshot.location = LocationState()
    return snapshot.location


def _scene(snapshot: Snapshot) -> SceneState:
    if snapshot.scene is None:
        snapshot.scene = SceneState()
    return snapshot.scene


def _character(snapshot: Snapshot, name: str) -> CharacterState:
    existing = snapshot.find_character(name)
    if existing is not None:
        return existing
    state = CharacterState(name=name)
    snapshot.characters[name] = state
    return state


def _relationship(snapshot: Snapshot, a: str, b: str) -> RelationshipState:
    key = pair_key(a, b)
    rel = snapshot.relationships.get(key)
    if rel is None:
        rel = RelationshipState(pair=sort_pair(a, b))
        snapshot.relationships[key] = rel
    return rel


def _attitude(snapshot: Snapshot, from_character: str, toward_character: str) -> RelationshipAttitude:
    rel = _relationship(snapshot, from_character, toward_character)
    if rel.pair[0].lower() == from_character.lower():
        return rel.a_to_b
    return rel.b_to_a


def _chapter(snapshot: Snapshot, index: int) -> ChapterRecord:
    for record in snapshot.chapters:
        if record.index == index:
            return record
    record = ChapterRecord(index=index)
    snapshot.chapters.append(record)
    snapshot.chapters.sort(key=lambda c: c.index)
    return record


# ──────────────────────────────────────────
# 折叠
# ──────────────────────────────────────────


def fold_into(snapshot: Snapshot, event: BaseEvent) -> None:
    """就地折叠单个事件。仅供投影引擎在私有副本上使用。"""
    match event:
        # ── 时间 ──
        case TimeInitialEvent():
            snapshot.time = event.time
        case TimeDeltaEvent():
            if snapshot.time is not None:
                snapshot.time = snapshot.time + timedelta(seconds=event.delta.total_seconds())

        # ── 地点 ──
        case LocationMovedEvent():
            loc = _location(snapshot)
            loc.area = event.new_area
            loc.place = event.new_place
            loc.position = event.new_position
            if event.new_location_type:
                loc.location_type = event.new_location_type
        case LocationPropAddedEvent():
            add_ci(_location(snapshot).props, event.prop)
        case LocationPropRemovedEvent():
            if snapshot.location is not None:
                remove_ci(snapshot.location.props, event.prop)

        # ── 天气 ──
        case ClimateSetEvent():
            snapshot.climate = event.climate.model_copy(deep=True)
        case ForecastGeneratedEvent():
            snapshot.forecasts[event.area_name] = [d.model_copy() for d in event.days]

        # ── 角色 ──
        case CharacterAppearedEvent():
            state = _character(snapshot, event.character)
            add_ci(snapshot.characters_present, state.name)
        case CharacterDepartedEvent():
            remove_ci(snapshot.characters_present, event.character)
        case CharacterAkasAddedEvent():
            state = _character(snapshot, event.character)
            for aka in event.akas:
                if aka.lower() != state.name.lower():
                    add_ci(state.akas, aka)
        case CharacterPositionChangedEvent():
            _character(snapshot, event.character).position = event.new_position
        case CharacterActivityChangedEvent():
            _character(snapshot, event.character).activity = event.new_activity
        case CharacterMoodAddedEvent():
            add_ci(_character(snapshot, event.character).mood, event.mood)
        case CharacterMoodRemovedEvent():
            state = snapshot.find_character(event.character)
            if state is not None:
                remove_ci(state.mood, event.mood)
        case CharacterOutfitChangedEvent():
            _character(snapshot, event.character).outfit[event.slot] = event.new_value
        case CharacterPhysicalAddedEvent():
            add_ci(_character(snapshot, event.character).physical_state, event.physical_state)
        case CharacterPhysicalRemovedEvent():
            state = snapshot.find_character(event.character)
            if state is not None:
                remove_ci(state.physical_state, event.physical_state)

        # ── 关系 ──
        case RelationshipSubjectEvent():
            _relationship(snapshot, *event.pair).subjects.append(event.subject)
        case RelationshipStatusChangedEvent():
            _relationship(snapshot, *event.pair).status = event.new_status
        case RelationshipFeelingAddedEvent():
            add_ci(_attitude(snapshot, event.from_character, event.toward_character).feelings, event.value)
        case RelationshipFeelingRemovedEvent():
            remove_ci(_attitude(snapshot, event.from_character, event.toward_character).feelings, event.value)
        case RelationshipWantAddedEvent():
            add_ci(_attitude(snapshot, event.from_character, event.toward_character).wants, event.value)
        case RelationshipWantRemovedEvent():
            remove_ci(_attitude(snapshot, event.from_character, event.toward_character).wants, event.value)
        case RelationshipSecretAddedEvent():
            add_ci(_attitude(snapshot, event.from_character, event.toward_character).secrets, event.value)
        case RelationshipSecretRemovedEvent():
            remove_ci(_attitude(snapshot, event.from_character, event.toward_character).secrets, event.value)

        # ── 场景 ──
        case TopicToneEvent():
            scene = _scene(snapshot)
            scene.topic = event.topic
            scene.tone = event.tone
        case TensionEvent():
            _scene(snapshot).tension = Tension(
                level=event.level, type=event.type, direction=event.direction
            )

        # ── 章节与叙事 ──
        case ChapterEndedEvent():
            record = _chapter(snapshot, event.chapter_index)
            record.ended_at_message = event.source.message_id
            record.end_reason = event.reason
            snapshot.current_chapter = event.chapter_index + 1
        case ChapterDescribedEvent():
            record = _chapter(snapshot, event.chapter_index)
            record.title = event.title
            record.summary = event.summary
        case NarrativeDescriptionEvent():
            snapshot.narrative_events.append(
                NarrativeEventRecord(
                    description=event.description,
                    witnesses=list(event.witnesses),
                    location=event.location,
                    message_id=event.source.message_id,
                    chapter_index=snapshot.current_chapter,
                )
            )

        case _:
            logger.warning("未知事件类型，已忽略: %s/%s", getattr(event, "kind", "?"), getattr(event, "subkind", "?"))
