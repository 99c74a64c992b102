"""Pydantic 数据模型。"""

from lorekeeper.models.chat import ChatCharacter, ChatContext, ChatMessage
from lorekeeper.models.event import (
    EVENT_LIST_ADAPTER,
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
    Event,
    EventKindFilter,
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
    TimeDelta,
    TimeDeltaEvent,
    TimeInitialEvent,
    TopicToneEvent,
    kind_filter,
)
from lorekeeper.models.lore import LoreEntry
from lorekeeper.models.snapshot import (
    CharacterState,
    Climate,
    LocationState,
    RelationshipAttitude,
    RelationshipState,
    SceneState,
    Snapshot,
    Source,
    Tension,
    pair_key,
    sort_pair,
)

__all__ = [
    "EVENT_LIST_ADAPTER",
    "BaseEvent",
    "ChapterDescribedEvent",
    "ChapterEndedEvent",
    "CharacterActivityChangedEvent",
    "CharacterAkasAddedEvent",
    "CharacterAppearedEvent",
    "CharacterDepartedEvent",
    "CharacterMoodAddedEvent",
    "CharacterMoodRemovedEvent",
    "CharacterOutfitChangedEvent",
    "CharacterPhysicalAddedEvent",
    "CharacterPhysicalRemovedEvent",
    "CharacterPositionChangedEvent",
    "CharacterState",
    "ChatCharacter",
    "ChatContext",
    "ChatMessage",
    "Climate",
    "ClimateSetEvent",
    "Event",
    "EventKindFilter",
    "ForecastGeneratedEvent",
    "LocationMovedEvent",
    "LocationPropAddedEvent",
    "LocationPropRemovedEvent",
    "LocationState",
    "LoreEntry",
    "NarrativeDescriptionEvent",
    "RelationshipAttitude",
    "RelationshipFeelingAddedEvent",
    "RelationshipFeelingRemovedEvent",
    "RelationshipSecretAddedEvent",
    "RelationshipSecretRemovedEvent",
    "RelationshipState",
    "RelationshipStatusChangedEvent",
    "RelationshipSubjectEvent",
    "RelationshipWantAddedEvent",
    "RelationshipWantRemovedEvent",
    "SceneState",
    "Snapshot",
    "Source",
    "Tension",
    "TensionEvent",
    "TimeDelta",
    "TimeDeltaEvent",
    "TimeInitialEvent",
    "TopicToneEvent",
    "kind_filter",
    "pair_key",
    "sort_pair",
]
