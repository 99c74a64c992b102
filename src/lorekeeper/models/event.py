"""事件模型：叙事事实的不可变、带类型标签的记录。

每个事件由 (kind, subkind) 唯一确定其变体，组成一个封闭的可辨识联合类型 ``Event``。
事件创建后只允许翻转 ``deleted`` 标记（软撤销），其余字段不应再被修改。
"""

from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

from lorekeeper.models.snapshot import (
    ChapterEndReason,
    Climate,
    DailyForecast,
    OutfitSlot,
    RelationshipStatus,
    Source,
    TensionDirection,
    TensionLevel,
    TensionType,
)


# ──────────────────────────────────────────
# 标识与时间戳
# ──────────────────────────────────────────

_timestamp_lock = threading.Lock()
_last_timestamp = 0


def next_timestamp() -> int:
    """返回进程内严格递增的毫秒时间戳。

    同一毫秒内创建的多个事件会依次 +1，保证创建顺序可比。
    """
    global _last_timestamp
    with _timestamp_lock:
        now = int(time.time() * 1000)
        _last_timestamp = max(now, _last_timestamp + 1)
        return _last_timestamp


def new_event_id() -> str:
    return uuid.uuid4().hex


class BaseEvent(BaseModel):
    """所有事件的公共字段。"""

    id: str = Field(default_factory=new_event_id, description="事件唯一 ID")
    source: Source = Field(description="事件来源消息")
    timestamp: int = Field(default_factory=next_timestamp, description="创建时间（毫秒，单调递增）")
    deleted: bool = Field(default=False, description="软撤销标记")


# ── 时间 ──


class TimeDelta(BaseModel):
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    def total_seconds(self) -> int:
        return ((self.days * 24 + self.hours) * 60 + self.minutes) * 60 + self.seconds

    def is_zero(self) -> bool:
        return self.total_seconds() == 0


class TimeInitialEvent(BaseEvent):
    kind: Literal["time"] = "time"
    subkind: Literal["initial"] = "initial"
    time: datetime = Field(description="故事内的起始时间")


class TimeDeltaEvent(BaseEvent):
    kind: Literal["time"] = "time"
    subkind: Literal["delta"] = "delta"
    delta: TimeDelta = Field(description="故事时间的推进量")


# ── 地点 ──


class LocationMovedEvent(BaseEvent):
    kind: Literal["location"] = "location"
    subkind: Literal["moved"] = "moved"
    new_area: str = Field(description="新的大区域，如城市/街区")
    new_place: str = Field(description="新的具体场所")
    new_position: str = Field(default="", description="场所内的位置")
    new_location_type: str = Field(default="", description="场所类型，如 outdoor/modern/heated")


class LocationPropAddedEvent(BaseEvent):
    kind: Literal["location"] = "location"
    subkind: Literal["prop_added"] = "prop_added"
    prop: str


class LocationPropRemovedEvent(BaseEvent):
    kind: Literal["location"] = "location"
    subkind: Literal["prop_removed"] = "prop_removed"
    prop: str


# ── 天气 ──


class ClimateSetEvent(BaseEvent):
    kind: Literal["climate"] = "climate"
    subkind: Literal["set"] = "set"
    climate: Climate


class ForecastGeneratedEvent(BaseEvent):
    kind: Literal["forecast_generated"] = "forecast_generated"
    subkind: Literal[None] = None
    area_name: str = Field(description="预报所属区域")
    days: list[DailyForecast] = Field(default_factory=list, description="逐日预报")


# ── 角色 ──


class _CharacterEvent(BaseEvent):
    kind: Literal["character"] = "character"
    character: str = Field(description="角色名")


class CharacterAppearedEvent(_CharacterEvent):
    subkind: Literal["appeared"] = "appeared"
    description: str = Field(default="", description="初次出场时的简短描述")


class CharacterDepartedEvent(_CharacterEvent):
    subkind: Literal["departed"] = "departed"


class CharacterAkasAddedEvent(_CharacterEvent):
    subkind: Literal["akas_added"] = "akas_added"
    akas: list[str] = Field(default_factory=list, description="别名/昵称")


class CharacterPositionChangedEvent(_CharacterEvent):
    subkind: Literal["position_changed"] = "position_changed"
    new_position: str


class CharacterActivityChangedEvent(_CharacterEvent):
    subkind: Literal["activity_changed"] = "activity_changed"
    new_activity: str | None = None


class CharacterMoodAddedEvent(_CharacterEvent):
    subkind: Literal["mood_added"] = "mood_added"
    mood: str


class CharacterMoodRemovedEvent(_CharacterEvent):
    subkind: Literal["mood_removed"] = "mood_removed"
    mood: str


class CharacterOutfitChangedEvent(_CharacterEvent):
    subkind: Literal["outfit_changed"] = "outfit_changed"
    slot: OutfitSlot
    new_value: str | None = Field(default=None, description="None 表示该部位已脱下/无穿戴")


class CharacterPhysicalAddedEvent(_CharacterEvent):
    subkind: Literal["physical_added"] = "physical_added"
    physical_state: str


class CharacterPhysicalRemovedEvent(_CharacterEvent):
    subkind: Literal["physical_removed"] = "physical_removed"
    physical_state: str


# ── 关系 ──


class RelationshipSubjectEvent(BaseEvent):
    kind: Literal["relationship"] = "relationship"
    subkind: Literal["subject"] = "subject"
    pair: tuple[str, str] = Field(description="按名字排序后的角色对")
    subject: str = Field(description="本轮互动的主题，如 conflict/trust")


class _DirectionalRelationshipEvent(BaseEvent):
    kind: Literal["relationship"] = "relationship"
    from_character: str = Field(description="态度的持有者")
    toward_character: str = Field(description="态度指向的对象")
    value: str


class RelationshipFeelingAddedEvent(_DirectionalRelationshipEvent):
    subkind: Literal["feeling_added"] = "feeling_added"


class RelationshipFeelingRemovedEvent(_DirectionalRelationshipEvent):
    subkind: Literal["feeling_removed"] = "feeling_removed"


class RelationshipWantAddedEvent(_DirectionalRelationshipEvent):
    subkind: Literal["want_added"] = "want_added"


class RelationshipWantRemovedEvent(_DirectionalRelationshipEvent):
    subkind: Literal["want_removed"] = "want_removed"


class RelationshipSecretAddedEvent(_DirectionalRelationshipEvent):
    subkind: Literal["secret_added"] = "secret_added"


class RelationshipSecretRemovedEvent(_DirectionalRelationshipEvent):
    subkind: Literal["secret_removed"] = "secret_removed"


class RelationshipStatusChangedEvent(BaseEvent):
    kind: Literal["relationship"] = "relationship"
    subkind: Literal["status_changed"] = "status_changed"
    pair: tuple[str, str]
    new_status: RelationshipStatus


# ── 场景 ──


class TopicToneEvent(BaseEvent):
    kind: Literal["topic_tone"] = "topic_tone"
    subkind: Literal[None] = None
    topic: str
    tone: str


class TensionEvent(BaseEvent):
    kind: Literal["tension"] = "tension"
    subkind: Literal[None] = None
    level: TensionLevel
    type: TensionType
    direction: TensionDirection = "stable"


# ── 章节与叙事 ──


class ChapterEndedEvent(BaseEvent):
    kind: Literal["chapter"] = "chapter"
    subkind: Literal["ended"] = "ended"
    chapter_index: int = Field(ge=0, description="结束的章节序号")
    reason: ChapterEndReason = "manual"


class ChapterDescribedEvent(BaseEvent):
    kind: Literal["chapter"] = "chapter"
    subkind: Literal["described"] = "described"
    chapter_index: int = Field(ge=0)
    title: str
    summary: str


class NarrativeDescriptionEvent(BaseEvent):
    kind: Literal["narrative_description"] = "narrative_description"
    subkind: Literal[None] = None
    description: str
    witnesses: list[str] = Field(default_factory=list)
    location: str = ""


# ──────────────────────────────────────────
# 可辨识联合
# ──────────────────────────────────────────


def event_tag(kind: str | None, subkind: str | None) -> str:
    return f"{kind}/{subkind}" if subkind else str(kind)


def _discriminate(value: Any) -> str | None:
    if isinstance(value, dict):
        return event_tag(value.get("kind"), value.get("subkind"))
    kind = getattr(value, "kind", None)
    if kind is None:
        return None
    return event_tag(kind, getattr(value, "subkind", None))


Event = Annotated[
    Union[
        Annotated[TimeInitialEvent, Tag("time/initial")],
        Annotated[TimeDeltaEvent, Tag("time/delta")],
        Annotated[LocationMovedEvent, Tag("location/moved")],
        Annotated[LocationPropAddedEvent, Tag("location/prop_added")],
        Annotated[LocationPropRemovedEvent, Tag("location/prop_removed")],
        Annotated[ClimateSetEvent, Tag("climate/set")],
        Annotated[CharacterAppearedEvent, Tag("character/appeared")],
        Annotated[CharacterDepartedEvent, Tag("character/departed")],
        Annotated[CharacterAkasAddedEvent, Tag("character/akas_added")],
        Annotated[CharacterPositionChangedEvent, Tag("character/position_changed")],
        Annotated[CharacterActivityChangedEvent, Tag("character/activity_changed")],
        Annotated[CharacterMoodAddedEvent, Tag("character/mood_added")],
        Annotated[CharacterMoodRemovedEvent, Tag("character/mood_removed")],
        Annotated[CharacterOutfitChangedEvent, Tag("character/outfit_changed")],
        Annotated[CharacterPhysicalAddedEvent, Tag("character/physical_added")],
        Annotated[CharacterPhysicalRemovedEvent, Tag("character/physical_removed")],
        Annotated[RelationshipSubjectEvent, Tag("relationship/subject")],
        Annotated[RelationshipFeelingAddedEvent, Tag("relationship/feeling_added")],
        Annotated[RelationshipFeelingRemovedEvent, Tag("relationship/feeling_removed")],
        Annotated[RelationshipWantAddedEvent, Tag("relationship/want_added")],
        Annotated[RelationshipWantRemovedEvent, Tag("relationship/want_removed")],
        Annotated[RelationshipSecretAddedEvent, Tag("relationship/secret_added")],
        Annotated[RelationshipSecretRemovedEvent, Tag("relationship/secret_removed")],
        Annotated[RelationshipStatusChangedEvent, Tag("relationship/status_changed")],
        Annotated[TopicToneEvent, Tag("topic_tone")],
        Annotated[TensionEvent, Tag("tension")],
        Annotated[ChapterEndedEvent, Tag("chapter/ended")],
        Annotated[ChapterDescribedEvent, Tag("chapter/described")],
        Annotated[NarrativeDescriptionEvent, Tag("narrative_description")],
        Annotated[ForecastGeneratedEvent, Tag("forecast_generated")],
    ],
    Discriminator(_discriminate),
]

EVENT_LIST_ADAPTER: TypeAdapter[list[Event]] = TypeAdapter(list[Event])

DirectionalRelationshipEvent = (
    RelationshipFeelingAddedEvent
    | RelationshipFeelingRemovedEvent
    | RelationshipWantAddedEvent
    | RelationshipWantRemovedEvent
    | RelationshipSecretAddedEvent
    | RelationshipSecretRemovedEvent
)

CharacterEvent = (
    CharacterAppearedEvent
    | CharacterDepartedEvent
    | CharacterAkasAddedEvent
    | CharacterPositionChangedEvent
    | CharacterActivityChangedEvent
    | CharacterMoodAddedEvent
    | CharacterMoodRemovedEvent
    | CharacterOutfitChangedEvent
    | CharacterPhysicalAddedEvent
    | CharacterPhysicalRemovedEvent
)


# ──────────────────────────────────────────
# 类型收窄与匹配
# ──────────────────────────────────────────


class EventKindFilter(BaseModel):
    """按 (kind, subkind) 匹配事件；subkind 为 None 时匹配该 kind 的全部变体。"""

    model_config = ConfigDict(frozen=True)

    kind: str
    subkind: str | None = None

    def matches(self, event: BaseEvent) -> bool:
        if getattr(event, "kind", None) != self.kind:
            return False
        return self.subkind is None or getattr(event, "subkind", None) == self.subkind


def kind_filter(kind: str, subkind: str | None = None) -> EventKindFilter:
    return EventKindFilter(kind=kind, subkind=subkind)


def matches_any(event: BaseEvent, kinds: list[EventKindFilter] | tuple[EventKindFilter, ...]) -> bool:
    return any(k.matches(event) for k in kinds)


def is_character_event(event: BaseEvent) -> bool:
    return isinstance(event, _CharacterEvent)


def is_directional_relationship_event(event: BaseEvent) -> bool:
    return isinstance(event, _DirectionalRelationshipEvent)
