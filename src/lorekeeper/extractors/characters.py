"""角色抽取器：情绪与身体状态、位置与动作、穿着、新登场角色的穿着与昵称。"""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import BaseModel, Field

from lorekeeper.extractors.base import EventExtractor, PerCharacterExtractor, TurnContext
from lorekeeper.extractors.formatting import (
    build_user_prompt,
    format_character_state,
    format_location,
    format_messages,
)
from lorekeeper.extractors.name_resolution import build_aka_lookup, resolve_character_name
from lorekeeper.extractors.strategies import (
    Custom,
    EveryNMessages,
    FixedNumber,
    RunContext,
    SinceLastEventOfKind,
)
from lorekeeper.models.event import (
    CharacterActivityChangedEvent,
    CharacterAkasAddedEvent,
    CharacterAppearedEvent,
    CharacterMoodAddedEvent,
    CharacterMoodRemovedEvent,
    CharacterOutfitChangedEvent,
    CharacterPhysicalAddedEvent,
    CharacterPhysicalRemovedEvent,
    CharacterPositionChangedEvent,
    Event,
    kind_filter,
)
from lorekeeper.models.snapshot import OUTFIT_SLOTS, CharacterState
from lorekeeper.reconcile import filter_to_add, filter_to_remove
from lorekeeper.state.sets import add_ci, contains_ci, dedupe_ci

logger = logging.getLogger(__name__)


def appeared_this_turn(turn_events: Sequence[Event]) -> list[str]:
    """本轮新登场的角色名。"""
    return [e.character for e in turn_events if isinstance(e, CharacterAppearedEvent) and not e.deleted]


async def _character_prompt(
    extractor: PerCharacterExtractor, ctx: TurnContext, state: CharacterState | None, target: str
) -> str:
    window = extractor.message_range(ctx)
    return build_user_prompt(
        ("Target character", target),
        ("Current state", format_character_state(state, target)),
        ("World info", await extractor.lore_text(ctx, window, character=target)),
        ("Messages", format_messages(ctx.chat, window)),
    )


# ────────────────────────────────────────────
# 情绪与身体状态
# ────────────────────────────────────────────


class MoodPhysicalReply(BaseModel):
    reasoning: str = ""
    mood_added: list[str] = Field(default_factory=list)
    mood_removed: list[str] = Field(default_factory=list)
    physical_added: list[str] = Field(default_factory=list)
    physical_removed: list[str] = Field(default_factory=list)


class MoodPhysicalChangeExtractor(PerCharacterExtractor):
    name = "mood_physical_change"
    category = "characters"
    default_temperature = 0.5
    message_strategy = SinceLastEventOfKind(
        (
            kind_filter("character", "mood_added"),
            kind_filter("character", "mood_removed"),
            kind_filter("character", "physical_added"),
            kind_filter("character", "physical_removed"),
        )
    )
    run_strategy = EveryNMessages(n=2)
    response_model = MoodPhysicalReply

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], target_character: str
    ) -> list[Event]:
        projection = ctx.projection(turn_events)
        state = projection.find_character(target_character)
        reply: MoodPhysicalReply | None = await self.ask(
            ctx, await _character_prompt(self, ctx, state, target_character), target_character
        )
        if reply is None:
            return []

        mood = state.mood if state else []
        physical = state.physical_state if state else []
        name = state.name if state else target_character
        events: list[Event] = []
        for value in filter_to_remove(reply.mood_removed, mood):
            events.append(self.make(ctx, CharacterMoodRemovedEvent, character=name, mood=value))
        for value in filter_to_add(reply.mood_added, mood):
            events.append(self.make(ctx, CharacterMoodAddedEvent, character=name, mood=value))
        for value in filter_to_remove(reply.physical_removed, physical):
            events.append(
                self.make(ctx, CharacterPhysicalRemovedEvent, character=name, physical_state=value)
            )
        for value in filter_to_add(reply.physical_added, physical):
            events.append(
                self.make(ctx, CharacterPhysicalAddedEvent, character=name, physical_state=value)
            )
        return events


# ────────────────────────────────────────────
# 位置与动作
# ────────────────────────────────────────────


class PositionActivityReply(BaseModel):
    reasoning: str = ""
    position_changed: bool = False
    new_position: str = ""
    activity_changed: bool = False
    new_activity: str | None = None


class PositionActivityChangeExtractor(PerCharacterExtractor):
    name = "position_activity_change"
    category = "characters"
    default_temperature = 0.5
    message_strategy = FixedNumber(2)
    response_model = PositionActivityReply

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], target_character: str
    ) -> list[Event]:
        projection = ctx.projection(turn_events)
        state = projection.find_character(target_character)
        user_prompt = await _character_prompt(self, ctx, state, target_character)
        user_prompt = f"## Location\n{format_location(projection)}\n\n{user_prompt}"
        reply: PositionActivityReply | None = await self.ask(ctx, user_prompt, target_character)
        if reply is None:
            return []

        name = state.name if state else target_character
        events: list[Event] = []
        position = reply.new_position.strip()
        if reply.position_changed and position and (
            state is None or position.lower() != state.position.lower()
        ):
            events.append(
                self.make(ctx, CharacterPositionChangedEvent, character=name, new_position=position)
            )
        if reply.activity_changed:
            activity = (reply.new_activity or "").strip() or None
            current = state.activity if state else None
            if (activity or "").lower() != (current or "").lower():
                events.append(
                    self.make(ctx, CharacterActivityChangedEvent, character=name, new_activity=activity)
                )
        return events


# ────────────────────────────────────────────
# 穿着
# ────────────────────────────────────────────


class OutfitChange(BaseModel):
    slot: str
    new_value: str | None = None


class OutfitChangeReply(BaseModel):
    reasoning: str = ""
    changes: list[OutfitChange] = Field(default_factory=list)


class OutfitChangeExtractor(PerCharacterExtractor):
    """已在场角色的穿着变化；本轮新登场的角色交给 AppearedCharacterOutfitExtractor。"""

    name = "outfit_change"
    category = "characters"
    default_temperature = 0.5
    message_strategy = FixedNumber(2)
    response_model = OutfitChangeReply

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], target_character: str
    ) -> list[Event]:
        if contains_ci(appeared_this_turn(turn_events), target_character):
            return []
        projection = ctx.projection(turn_events)
        state = projection.find_character(target_character)
        reply: OutfitChangeReply | None = await self.ask(
            ctx, await _character_prompt(self, ctx, state, target_character), target_character
        )
        if reply is None:
            return []

        name = state.name if state else target_character
        outfit = state.outfit if state else {}
        changes = [(change.slot, change.new_value) for change in reply.changes]
        return outfit_events(self, ctx, name, outfit, changes)


def outfit_events(
    extractor: PerCharacterExtractor,
    ctx: TurnContext,
    name: str,
    outfit: dict[str, str | None],
    changes: list[tuple[str, str | None]],
) -> list[Event]:
    """把 (部位, 新值) 对比当前穿着，生成最小的变化事件；每个部位至多一条。"""
    events: list[Event] = []
    changed: set[str] = set()
    for raw_slot, raw_value in changes:
        slot = raw_slot.strip().lower()
        if slot not in OUTFIT_SLOTS:
            logger.debug("忽略未知穿着部位: %s", raw_slot)
            continue
        if slot in changed:
            continue
        value = (raw_value or "").strip() or None
        if (value or "").lower() == (outfit.get(slot) or "").lower():
            continue
        changed.add(slot)
        events.append(
            extractor.make(ctx, CharacterOutfitChangedEvent, character=name, slot=slot, new_value=value)
        )
    return events


# ────────────────────────────────────────────
# 新登场角色的穿着
# ────────────────────────────────────────────


def has_appeared_characters(context: RunContext) -> bool:
    return bool(appeared_this_turn(context.turn_events))


class AppearedCharacterOutfitReply(BaseModel):
    reasoning: str = ""
    outfit: dict[str, str | None] = Field(default_factory=dict)


class AppearedCharacterOutfitExtractor(PerCharacterExtractor):
    """为本轮新登场的角色建立完整穿着，其他角色直接跳过。"""

    name = "appeared_character_outfit"
    category = "characters"
    default_temperature = 0.5
    message_strategy = FixedNumber(3)
    run_strategy = Custom(has_appeared_characters, "characters appeared this turn")
    response_model = AppearedCharacterOutfitReply

    async def run(
        self, ctx: TurnContext, turn_events: Sequence[Event], target_character: str
    ) -> list[Event]:
        appeared = [
            e
            for e in turn_events
            if isinstance(e, CharacterAppearedEvent)
            and not e.deleted
            and e.character.lower() == target_character.lower()
        ]
        if not appeared:
            return []
        projection = ctx.projection(turn_events)
        state = projection.find_character(target_character)
        user_prompt = await _character_prompt(self, ctx, state, target_character)
        if appeared[0].description:
            user_prompt = f"## First appearance\n{appeared[0].description}\n\n{user_prompt}"
        reply: AppearedCharacterOutfitReply | None = await self.ask(ctx, user_prompt, target_character)
        if reply is None:
            return []

        name = state.name if state else target_character
        outfit = state.outfit if state else {}
        return outfit_events(self, ctx, name, outfit, list(reply.outfit.items()))


# ────────────────────────────────────────────
# 昵称
# ────────────────────────────────────────────


class CharacterNicknames(BaseModel):
    character: str
    names: list[str] = Field(default_factory=list)


class NicknameReply(BaseModel):
    reasoning: str = ""
    nicknames: list[CharacterNicknames] = Field(default_factory=list)


class NicknameExtractor(EventExtractor):
    """从近期对话中收集角色的昵称、称呼与简称，补充到别名表。

    昵称必须落在已知角色上；和规范名相同、已经记录、或指向另一个角色的名字都会被丢弃。
    """

    name = "nickname_extraction"
    category = "characters"
    default_temperature = 0.5
    message_strategy = FixedNumber(8)
    run_strategy = EveryNMessages(n=8)
    response_model = NicknameReply

    async def run(self, ctx: TurnContext, turn_events: Sequence[Event]) -> list[Event]:
        projection = ctx.projection(turn_events)
        if not projection.characters:
            return []
        window = self.message_range(ctx)
        known = [
            f"- {state.name}" + (f" (also: {', '.join(state.akas)})" if state.akas else "")
            for state in projection.characters.values()
        ]
        user_prompt = build_user_prompt(
            ("Known characters", "\n".join(known)),
            ("Messages", format_messages(ctx.chat, window)),
        )
        reply: NicknameReply | None = await self.ask(ctx, user_prompt)
        if reply is None:
            return []

        lookup = build_aka_lookup(projection)
        found: dict[str, list[str]] = {}
        for item in reply.nicknames:
            name = resolve_character_name(item.character, lookup)
            if name is None:
                logger.debug("昵称指向未知角色，忽略: %s", item.character)
                continue
            state = projection.find_character(name)
            for nickname in dedupe_ci(n.strip() for n in item.names if n.strip()):
                if nickname.lower() == name.lower() or contains_ci(state.akas, nickname):
                    continue
                owner = resolve_character_name(nickname, lookup)
                if owner is not None and owner != name:
                    continue
                add_ci(found.setdefault(name, []), nickname)

        return [
            self.make(ctx, CharacterAkasAddedEvent, character=name, akas=akas)
            for name, akas in found.items()
            if akas
        ]
