"""对账类抽取器：主题确认、角色状态合并、关系态度合并。

这几个抽取器不追踪增量，而是索取某一维度的权威结果，再与当前投影做差分。
"""

from __future__ import annotations

import logging
from typing import Literal, Sequence

from pydantic import BaseModel, Field

from lorekeeper.extractors.base import (
    EventExtractor,
    PerCharacterExtractor,
    PerPairExtractor,
    TurnContext,
)
from lorekeeper.extractors.formatting import (
    build_user_prompt,
    format_character_state,
    format_messages,
    format_relationship,
)
from lorekeeper.extractors.relationships import RELATIONSHIP_SUBJECTS, attitude_of, normalize_subject
from lorekeeper.extractors.strategies import EveryNMessages, FixedNumber, NewEventsOfKind
from lorekeeper.models.event import (
    CharacterMoodAddedEvent,
    CharacterMoodRemovedEvent,
    CharacterPhysicalAddedEvent,
    CharacterPhysicalRemovedEvent,
    Event,
    RelationshipFeelingAddedEvent,
    RelationshipFeelingRemovedEvent,
    RelationshipSecretAddedEvent,
    RelationshipSecretRemovedEvent,
    RelationshipSubjectEvent,
    RelationshipWantAddedEvent,
    RelationshipWantRemovedEvent,
    kind_filter,
)
from lorekeeper.models.snapshot import RelationshipAttitude, sort_pair
from lorekeeper.reconcile import consolidate, plan_subject_correction

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────
# 主题确认
# ────────────────────────────────────────────


class SubjectVerdict(BaseModel):
    index: int = Field(description="待核验主题的序号（从 0 开始）")
    result: Literal["accept", "wrong_subject", "reject"]
    correct_subject: str | None = None
    reasoning: str = ""


class SubjectsConfirmationReply(BaseModel):
    results: list[SubjectVerdict] = Field(default_factory=list)


class SubjectsConfirmationExtractor(EventExtractor):
    """核验本轮新产出的互动主题。

    reject 直接撤销；wrong_subject 撤销原事件并补发纠正后的主题，
    若纠正后的主题已在本轮出现则只撤销不补发。
    撤销通过翻转本轮事件的 ``deleted`` 标记完成。
    """

    name = "subjects_confirmation"
    category = "relationships"
    default_temperature = 0.3
    message_strategy = FixedNumber(2)
    run_strategy = NewEventsOfKind((kind_filter("relationship", "subject"),))
    response_model = SubjectsConfirmationReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        pending = [
            e for e in turn_events if isinstance(e, RelationshipSubjectEvent) and not e.deleted
        ]
        if not pending:
            return []
        window = self.message_range(ctx)
        listing = "\n".join(
            f"{i}. {e.pair[0]} & {e.pair[1]}: {e.subject}" for i, e in enumerate(pending)
        )
        user_prompt = build_user_prompt(
            ("Subjects to verify", listing),
            ("Allowed subjects", ", ".join(RELATIONSHIP_SUBJECTS)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: SubjectsConfirmationReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []

        # 以下全部为同步操作，期间不会有其他协程观察到半完成的撤销
        replacements: list[Event] = []
        handled: set[int] = set()
        for verdict in reply.results:
            if not 0 <= verdict.index < len(pending) or verdict.index in handled:
                continue
            handled.add(verdict.index)
            event = pending[verdict.index]
            if event.deleted:
                continue
            if verdict.result == "reject":
                logger.info("撤销主题 %s %s: %s", event.pair, event.subject, verdict.reasoning)
                event.deleted = True
            elif verdict.result == "wrong_subject":
                corrected = normalize_subject(verdict.correct_subject or "")
                if corrected is None:
                    logger.warning("主题纠正值无效，保留原主题: %s", verdict.correct_subject)
                    continue
                plan = plan_subject_correction([*turn_events, *replacements], event, corrected)
                if plan.retract is not None:
                    event.deleted = True
                if plan.replacement_subject is not None:
                    replacements.append(
                        self.make(
                            ctx, RelationshipSubjectEvent, pair=event.pair, subject=plan.replacement_subject
                        )
                    )
        return replacements


# ────────────────────────────────────────────
# 角色状态合并
# ────────────────────────────────────────────


class CharacterStateConsolidationReply(BaseModel):
    reasoning: str = ""
    mood: list[str] | None = Field(default=None, description="当前完整情绪列表")
    physical_state: list[str] | None = Field(default=None, description="当前完整身体状态列表")


class CharacterStateConsolidationExtractor(PerCharacterExtractor):
    name = "character_state_consolidation"
    category = "characters"
    default_temperature = 0.2
    message_strategy = FixedNumber(6)
    run_strategy = EveryNMessages(n=6)
    response_model = CharacterStateConsolidationReply

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], target_character: str
    ) -> list[Event]:
        projection = ctx.projection(turn_events)
        state = projection.find_character(target_character)
        if state is None:
            return []
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Target character", state.name),
            ("Tracked state", format_character_state(state, state.name)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: CharacterStateConsolidationReply | None = await self.ask(ctx, user_prompt, state.name)
        if reply is None:
            return []

        name = state.name
        events: list[Event] = []
        if reply.mood is not None:
            events += consolidate(
                state.mood,
                reply.mood,
                lambda v: self.make(ctx, CharacterMoodRemovedEvent, character=name, mood=v),
                lambda v: self.make(ctx, CharacterMoodAddedEvent, character=name, mood=v),
            )
        if reply.physical_state is not None:
            events += consolidate(
                state.physical_state,
                reply.physical_state,
                lambda v: self.make(ctx, CharacterPhysicalRemovedEvent, character=name, physical_state=v),
                lambda v: self.make(ctx, CharacterPhysicalAddedEvent, character=name, physical_state=v),
            )
        return events


# ────────────────────────────────────────────
# 关系态度合并
# ────────────────────────────────────────────


class AttitudeSnapshot(BaseModel):
    feelings: list[str] | None = None
    wants: list[str] | None = None
    secrets: list[str] | None = None


class AttitudeConsolidationReply(BaseModel):
    reasoning: str = ""
    a_to_b: AttitudeSnapshot = Field(default_factory=AttitudeSnapshot)
    b_to_a: AttitudeSnapshot = Field(default_factory=AttitudeSnapshot)


_ATTITUDE_FIELDS = (
    ("feelings", RelationshipFeelingRemovedEvent, RelationshipFeelingAddedEvent),
    ("wants", RelationshipWantRemovedEvent, RelationshipWantAddedEvent),
    ("secrets", RelationshipSecretRemovedEvent, RelationshipSecretAddedEvent),
)


class RelationshipAttitudeConsolidationExtractor(PerPairExtractor):
    name = "relationship_attitude_consolidation"
    category = "relationships"
    default_temperature = 0.2
    message_strategy = FixedNumber(6)
    run_strategy = EveryNMessages(n=6, offset=3)
    response_model = AttitudeConsolidationReply

    def _direction(
        self,
        ctx: TurnContext,
        from_character: str,
        toward_character: str,
        current: RelationshipAttitude,
        canonical: AttitudeSnapshot,
    ) -> list[Event]:
        events: list[Event] = []
        for field_name, removed_cls, added_cls in _ATTITUDE_FIELDS:
            values = getattr(canonical, field_name)
            if values is None:
                continue
            events += consolidate(
                getattr(current, field_name),
                values,
                lambda v, cls=removed_cls: self.make(
                    ctx, cls, from_character=from_character, toward_character=toward_character, value=v
                ),
                lambda v, cls=added_cls: self.make(
                    ctx, cls, from_character=from_character, toward_character=toward_character, value=v
                ),
            )
        return events

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], pair: tuple[str, str]
    ) -> list[Event]:
        a, b = sort_pair(*pair)
        projection = ctx.projection(turn_events)
        rel = projection.get_relationship(a, b)
        if rel is None:
            return []
        window = self.message_range(ctx)
        user_prompt = build_user_prompt(
            ("Pair", f"A = {a}, B = {b}"),
            ("Tracked relationship", format_relationship(rel, a, b)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: AttitudeConsolidationReply | None = await self.ask(ctx, user_prompt, f"{a}|{b}")
        if reply is None:
            return []
        return self._direction(ctx, a, b, attitude_of(projection, a, b), reply.a_to_b) + self._direction(
            ctx, b, a, attitude_of(projection, b, a), reply.b_to_a
        )
