"""关系抽取器：互动主题、态度变化（感受、诉求、秘密、状态）。"""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import BaseModel, Field

from lorekeeper.extractors.base import EventExtractor, PerPairExtractor, TurnContext
from lorekeeper.extractors.formatting import build_user_prompt, format_messages, format_relationship
from lorekeeper.extractors.strategies import EveryNMessages, FixedNumber
from lorekeeper.models.event import (
    Event,
    RelationshipFeelingAddedEvent,
    RelationshipFeelingRemovedEvent,
    RelationshipSecretAddedEvent,
    RelationshipSecretRemovedEvent,
    RelationshipStatusChangedEvent,
    RelationshipSubjectEvent,
    RelationshipWantAddedEvent,
    RelationshipWantRemovedEvent,
)
from lorekeeper.models.snapshot import (
    RelationshipAttitude,
    RelationshipStatus,
    Snapshot,
    sort_pair,
)
from lorekeeper.reconcile import filter_to_add, filter_to_remove, subject_exists_in_turn
from lorekeeper.state.sets import contains_ci

logger = logging.getLogger(__name__)

RELATIONSHIP_SUBJECTS: tuple[str, ...] = (
    "conversation",
    "confession",
    "argument",
    "negotiation",
    "conflict",
    "trust",
    "betrayal",
    "attraction",
    "discovery",
    "secret_shared",
    "secret_revealed",
    "emotional",
    "supportive",
    "rejection",
    "comfort",
    "apology",
    "forgiveness",
    "laugh",
    "gift",
    "compliment",
    "tease",
    "flirt",
    "date",
    "i_love_you",
    "shared_meal",
    "shared_activity",
    "intimate_touch",
    "intimate_kiss",
    "intimate_embrace",
    "promise",
    "decision",
    "danger",
)


def normalize_subject(subject: str) -> str | None:
    value = subject.strip().lower().replace(" ", "_").replace("-", "_")
    return value if value in RELATIONSHIP_SUBJECTS else None


def attitude_of(snapshot: Snapshot, from_character: str, toward_character: str) -> RelationshipAttitude:
    """某一方对另一方的态度；尚无关系时为空态度。"""
    rel = snapshot.get_relationship(from_character, toward_character)
    if rel is None:
        return RelationshipAttitude()
    return rel.a_to_b if rel.pair[0].lower() == from_character.lower() else rel.b_to_a


def _pair_in(pair: Sequence[str], present: Sequence[str]) -> bool:
    return len(pair) == 2 and all(contains_ci(present, name) for name in pair)


# ────────────────────────────────────────────
# 互动主题
# ────────────────────────────────────────────


class SubjectItem(BaseModel):
    pair: list[str]
    subject: str


class RelationshipSubjectsReply(BaseModel):
    reasoning: str = ""
    subjects: list[SubjectItem] = Field(default_factory=list)


class RelationshipSubjectsExtractor(EventExtractor):
    name = "relationship_subjects"
    category = "relationships"
    default_temperature = 0.5
    message_strategy = FixedNumber(2)
    response_model = RelationshipSubjectsReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        present = projection.characters_present
        if len(present) < 2:
            return []
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Characters present", ", ".join(present)),
            ("Allowed subjects", ", ".join(RELATIONSHIP_SUBJECTS)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: RelationshipSubjectsReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []

        events: list[Event] = []
        for item in reply.subjects:
            subject = normalize_subject(item.subject)
            if subject is None or not _pair_in(item.pair, present):
                logger.debug("忽略无效的关系主题: %s %s", item.pair, item.subject)
                continue
            pair = sort_pair(item.pair[0].strip(), item.pair[1].strip())
            if pair[0].lower() == pair[1].lower():
                continue
            if subject_exists_in_turn([*turn_events, *events], pair, subject):
                continue
            events.append(self.make(ctx, RelationshipSubjectEvent, pair=pair, subject=subject))
        return events


# ────────────────────────────────────────────
# 态度变化（逐角色对）
# ────────────────────────────────────────────


class AttitudeDelta(BaseModel):
    feelings_added: list[str] = Field(default_factory=list)
    feelings_removed: list[str] = Field(default_factory=list)
    wants_added: list[str] = Field(default_factory=list)
    wants_removed: list[str] = Field(default_factory=list)
    secrets_added: list[str] = Field(default_factory=list)
    secrets_removed: list[str] = Field(default_factory=list)


class AttitudeChangeReply(BaseModel):
    reasoning: str = ""
    status_changed: bool = False
    new_status: RelationshipStatus | None = None
    a_to_b: AttitudeDelta = Field(default_factory=AttitudeDelta)
    b_to_a: AttitudeDelta = Field(default_factory=AttitudeDelta)


def attitude_delta_events(
    extractor: PerPairExtractor,
    ctx: TurnContext,
    from_character: str,
    toward_character: str,
    current: RelationshipAttitude,
    delta: AttitudeDelta,
) -> list[Event]:
    """把一个方向上的增删映射为事件，已存在/不存在的条目被过滤。"""
    events: list[Event] = []
    for field_name, added_cls, removed_cls, added, removed in (
        ("feelings", RelationshipFeelingAddedEvent, RelationshipFeelingRemovedEvent,
         delta.feelings_added, delta.feelings_removed),
        ("wants", RelationshipWantAddedEvent, RelationshipWantRemovedEvent,
         delta.wants_added, delta.wants_removed),
        ("secrets", RelationshipSecretAddedEvent, RelationshipSecretRemovedEvent,
         delta.secrets_added, delta.secrets_removed),
    ):
        existing = getattr(current, field_name)
        for value in filter_to_remove(removed, existing):
            events.append(
                extractor.make(ctx, removed_cls, from_character=from_character,
                               toward_character=toward_character, value=value)
            )
        for value in filter_to_add(added, existing):
            events.append(
                extractor.make(ctx, added_cls, from_character=from_character,
                               toward_character=toward_character, value=value)
            )
    return events


class AttitudeChangeExtractor(PerPairExtractor):
    name = "attitude_change"
    category = "relationships"
    default_temperature = 0.6
    message_strategy = FixedNumber(3)
    run_strategy = EveryNMessages(n=2)
    response_model = AttitudeChangeReply

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], pair: tuple[str, str]
    ) -> list[Event]:
        a, b = sort_pair(*pair)
        projection = ctx.projection(turn_events)
        rel = projection.get_relationship(a, b)
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Pair", f"A = {a}, B = {b}"),
            ("Current relationship", format_relationship(rel, a, b)),
            ("World info", await self.lore_text(ctx, window, pair=(a, b))),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: AttitudeChangeReply | None = await self.ask(ctx, user_prompt, f"{a}|{b}")
        if reply is None:
            return []

        events: list[Event] = []
        events += attitude_delta_events(self, ctx, a, b, attitude_of(projection, a, b), reply.a_to_b)
        events += attitude_delta_events(self, ctx, b, a, attitude_of(projection, b, a), reply.b_to_a)
        current_status = rel.status if rel else "strangers"
        if reply.status_changed and reply.new_status and reply.new_status != current_status:
            events.append(
                self.make(ctx, RelationshipStatusChangedEvent, pair=(a, b), new_status=reply.new_status)
            )
        return events
